import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AuthUser, AuthSession, utcnow
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


_seed_admins: Dict[str, str] = {}


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	return password.encode('utf-8')[:72].decode('utf-8', errors='ignore')


def _ensure_seed_admin() -> None:
	username = settings.seed_username
	password = settings.seed_password_plain
	if username and password and username not in _seed_admins:
		_seed_admins[username] = pwd_context.hash(_bcrypt_safe(password))


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_admin(db: Session, username: str, password: str) -> Optional[User]:
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if row and verify_password(password, row.password_hash):
		return User(username=username)
	# Seed admin from settings for fresh deployments
	_ensure_seed_admin()
	hashed = _seed_admins.get(username)
	if hashed and verify_password(password, hashed):
		return User(username=username)
	return None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
	to_encode.update({"exp": datetime.now(timezone.utc) + delta})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_admin(db, form_data.username, form_data.password)
	if not user:
		logger.warning("Failed admin login for %s", form_data.username)
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.username, "jti": session_id})
	try:
		db.merge(AuthSession(session_id=session_id, username=user.username))
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Could not persist session for %s", user.username)
		raise HTTPException(status_code=500, detail="Could not create session")
	return Token(access_token=access_token)


def get_current_admin(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: Optional[str] = payload.get("sub")
		jti: Optional[str] = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# A missing session row means it was revoked
	try:
		row = db.get(AuthSession, jti)
		if not row or row.username != username:
			raise credentials_exception
		row.last_activity_at = utcnow()
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		raise credentials_exception
	return User(username=username)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_admin)):
	return user
