from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..constants import quiz_set_number
from ..db import get_db
from ..models import QuizSet
from ..personalized import approve_all_pending_quiz_sets, approve_quiz_set, list_quiz_sets, summarize_user_quizzes
from ..schemas import CamelModel
from .auth import User, get_current_admin
from .common import to_http_exception

router = APIRouter(prefix="/quiz-sets", tags=["quiz-sets"])


class ApproveAllRequest(CamelModel):
	user_id: str


def quiz_set_to_dict(quiz_set: QuizSet) -> dict:
	return {
		"id": quiz_set.id,
		"userId": quiz_set.user_id,
		"quizSetNumber": quiz_set_number(quiz_set.game_mode, quiz_set.level),
		"level": quiz_set.level,
		"gameMode": quiz_set.game_mode,
		"difficulty": quiz_set.difficulty,
		"interests": list(quiz_set.interests or []),
		"questions": list(quiz_set.questions or []),
		"status": quiz_set.status,
		"createdAt": quiz_set.created_at,
		"updatedAt": quiz_set.updated_at,
		"approvedAt": quiz_set.approved_at,
		"regeneratedAt": quiz_set.regenerated_at,
		"regenerationError": quiz_set.regeneration_error,
	}


@router.get("")
async def get_quiz_sets(user_id: str, status: Optional[str] = None, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	rows = list_quiz_sets(db, user_id, status)
	return {"userId": user_id, "count": len(rows), "quizSets": [quiz_set_to_dict(r) for r in rows]}


@router.get("/summary")
async def get_summary(user_id: str, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	return summarize_user_quizzes(db, user_id)


@router.post("/approve-all")
async def approve_all(req: ApproveAllRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		approved = approve_all_pending_quiz_sets(db, req.user_id)
	except Exception as e:
		raise to_http_exception(e)
	return {"success": True, "approved": approved}


@router.post("/{quiz_set_id}/approve")
async def approve(quiz_set_id: str, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		quiz_set = approve_quiz_set(db, quiz_set_id)
	except Exception as e:
		raise to_http_exception(e)
	return {"success": True, "quizSet": quiz_set_to_dict(quiz_set)}
