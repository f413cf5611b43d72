from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./engliquest.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def get_session_factory():
	# Background jobs outlive the request session and open their own
	return SessionLocal


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "template_batches" in tables:
		cols = {c["name"] for c in inspector.get_columns("template_batches")}
		with engine.begin() as conn:
			if "requested_questions" not in cols:
				conn.exec_driver_sql("ALTER TABLE template_batches ADD COLUMN requested_questions INTEGER")
			if "generated_by" not in cols:
				conn.exec_driver_sql("ALTER TABLE template_batches ADD COLUMN generated_by VARCHAR(128)")
	if "quiz_sets" in tables:
		cols = {c["name"] for c in inspector.get_columns("quiz_sets")}
		with engine.begin() as conn:
			if "regeneration_error" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sets ADD COLUMN regeneration_error TEXT")
