from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from sqlalchemy.orm import Session

from ..constants import CEFR_LEVELS, GAME_MODES
from ..db import get_db
from ..gemini_client import GeneratorFactory, get_generator_factory
from ..models import ApprovedQuestionPool, TemplateBatch, TemplateQuestion
from ..sampler import fetch_quiz
from ..schemas import CamelModel
from ..templates import (
	ModerationResult,
	approve_questions,
	generate_template_batch,
	list_batches,
	list_pools,
	list_questions,
	reject_questions,
	unapprove_questions,
	update_question,
)
from .auth import User, get_current_admin
from .common import to_http_exception

router = APIRouter(prefix="/quiz-templates", tags=["quiz-templates"])


class GenerateBatchRequest(CamelModel):
	interest: str
	level: str
	game_mode: str
	count: Optional[int] = Field(default=None, ge=1)


class QuestionIdsRequest(CamelModel):
	question_ids: List[str]


class RejectRequest(QuestionIdsRequest):
	reason: Optional[str] = None


class UpdateQuestionRequest(CamelModel):
	question_id: str
	updates: Dict[str, Any]


class FetchQuizRequest(CamelModel):
	interests: List[str]
	level: str
	game_mode: str
	questions_per_interest: int = Field(default=5, ge=1)


def batch_to_dict(batch: TemplateBatch) -> dict:
	return {
		"id": batch.id,
		"interest": batch.interest,
		"level": batch.level,
		"gameMode": batch.game_mode,
		"difficulty": batch.difficulty,
		"batchNumber": batch.batch_number,
		"totalQuestions": batch.total_questions,
		"approvedCount": batch.approved_count,
		"pendingCount": batch.pending_count,
		"rejectedCount": batch.rejected_count,
		"requestedQuestions": batch.requested_questions,
		"status": batch.status,
		"createdAt": batch.created_at,
		"lastReviewedAt": batch.last_reviewed_at,
		"generatedBy": batch.generated_by,
	}


def question_to_dict(row: TemplateQuestion) -> dict:
	data = row.content()
	data.update({
		"id": row.id,
		"interest": row.interest,
		"level": row.level,
		"gameMode": row.game_mode,
		"difficulty": row.difficulty,
		"batchId": row.batch_id,
		"batchNumber": row.batch_number,
		"questionIndex": row.question_index,
		"status": row.status,
		"createdAt": row.created_at,
		"updatedAt": row.updated_at,
		"approvedAt": row.approved_at,
		"approvedBy": row.approved_by,
		"rejectedAt": row.rejected_at,
		"rejectionReason": row.rejection_reason,
	})
	return data


def pool_to_dict(pool: ApprovedQuestionPool) -> dict:
	return {
		"id": pool.id,
		"interest": pool.interest,
		"level": pool.level,
		"gameMode": pool.game_mode,
		"difficulty": pool.difficulty,
		"totalQuestions": pool.total_questions,
		"sourceBatches": list(pool.source_batches or []),
		"lastUpdated": pool.last_updated,
	}


def _moderation_response(result: ModerationResult, key: str) -> dict:
	return {
		"success": True,
		key: result.changed,
		"skipped": result.skipped,
		"batchIds": result.batch_ids,
	}


@router.post("/generate-batch")
async def generate_batch(
	req: GenerateBatchRequest,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	if req.level not in CEFR_LEVELS:
		raise HTTPException(status_code=400, detail=f"level must be one of {CEFR_LEVELS}")
	if req.game_mode not in GAME_MODES:
		raise HTTPException(status_code=400, detail=f"gameMode must be one of {GAME_MODES}")
	generator = None
	try:
		generator = generator_factory()
		batch = await generate_template_batch(
			db, generator, req.interest, req.level, req.game_mode, req.count, generated_by=user.username
		)
	except Exception as e:
		raise to_http_exception(e)
	finally:
		if generator is not None:
			await generator.aclose()
	return {"success": True, "batch": batch_to_dict(batch)}


@router.post("/approve-questions")
async def approve(req: QuestionIdsRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		result = approve_questions(db, req.question_ids, admin_id=user.username)
	except Exception as e:
		raise to_http_exception(e)
	return _moderation_response(result, "approved")


@router.post("/reject-questions")
async def reject(req: RejectRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		result = reject_questions(db, req.question_ids, reason=req.reason)
	except Exception as e:
		raise to_http_exception(e)
	return _moderation_response(result, "rejected")


@router.post("/unapprove-questions")
async def unapprove(req: QuestionIdsRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		result = unapprove_questions(db, req.question_ids)
	except Exception as e:
		raise to_http_exception(e)
	if result.changed == 0:
		raise HTTPException(status_code=400, detail="No approved questions to unapprove")
	return _moderation_response(result, "unapproved")


@router.post("/update-question")
async def edit_question(req: UpdateQuestionRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		row = update_question(db, req.question_id, req.updates)
	except Exception as e:
		raise to_http_exception(e)
	return {"success": True, "question": question_to_dict(row)}


@router.post("/fetch-quiz")
async def fetch(req: FetchQuizRequest, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		questions = fetch_quiz(db, req.interests, req.level, req.game_mode, req.questions_per_interest)
	except Exception as e:
		raise to_http_exception(e)
	return {"success": True, "count": len(questions), "questions": [q.to_document() for q in questions]}


@router.get("/batches")
async def get_batches(
	interest: Optional[str] = None,
	level: Optional[str] = None,
	game_mode: Optional[str] = None,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
):
	try:
		rows = list_batches(db, interest, level, game_mode)
	except Exception as e:
		raise to_http_exception(e)
	return {"count": len(rows), "batches": [batch_to_dict(b) for b in rows]}


@router.get("/questions")
async def get_questions(
	batch_id: Optional[str] = None,
	status: Optional[str] = None,
	interest: Optional[str] = None,
	level: Optional[str] = None,
	game_mode: Optional[str] = None,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
):
	rows = list_questions(db, batch_id, status, interest, level, game_mode)
	return {"count": len(rows), "questions": [question_to_dict(q) for q in rows]}


@router.get("/pools")
async def get_pools(
	level: Optional[str] = None,
	game_mode: Optional[str] = None,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
):
	rows = list_pools(db, level, game_mode)
	return {"count": len(rows), "pools": [pool_to_dict(p) for p in rows]}
