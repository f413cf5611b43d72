"""
Template batches, moderation and the approved question pool.

Three levels of state move together:

- a TemplateQuestion's ``status``
- its TemplateBatch counters (approved + pending + rejected == total)
- the ApprovedQuestionPool for its (interest, level, game mode), whose
  ``total_questions`` is the number of approved questions with that key

Every moderation call writes all three levels in one session commit, so a
failed commit leaves no counter touched. Only questions currently in the
right source state are counted, which makes repeated or overlapping calls
harmless. The batch ``status`` label is derived from the counters and is
refreshed in a second step after the commit; a crash in between leaves a
stale label that ``list_batches`` and ``reconcile_batch_statuses`` repair.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .constants import batch_key, difficulty_for_level, pool_key, question_key
from .errors import NoValidQuestions, NotFoundError, PersistenceError, ValidationError
from .gemini_client import TextGenerator
from .generation import generate_question_batch
from .models import ApprovedQuestionPool, TemplateBatch, TemplateQuestion, utcnow
from .schemas import Question
from .settings import settings

logger = logging.getLogger(__name__)


# needs_revision items still sit in the batch's pending bucket
REVIEWABLE_STATES = ("pending", "needs_revision")

EDITABLE_FIELDS = {
	"question": "question",
	"passage": "passage",
	"options": "options",
	"correctIndex": "correct_index",
	"correct_index": "correct_index",
	"explanation": "explanation",
	"clue": "clue",
}

# Columns that must always hold a value; passage may be cleared
REQUIRED_CONTENT = ("question", "options", "correct_index", "explanation", "clue")
TEXT_FIELDS = ("question", "passage", "explanation", "clue")


@dataclass
class ModerationResult:
	requested: int
	changed: int
	skipped: int
	batch_ids: List[str] = field(default_factory=list)


def compute_batch_status(approved: int, pending: int, rejected: int, total: int) -> str:
	if total > 0 and approved == total:
		return "all_approved"
	if total > 0 and rejected == total:
		return "all_rejected"
	if approved == 0 and rejected == 0:
		return "all_pending"
	return "partially_approved"


def _commit(db: Session, action: str) -> None:
	try:
		db.commit()
	except SQLAlchemyError as exc:
		db.rollback()
		logger.exception("Commit failed during %s", action)
		raise PersistenceError(f"Failed to {action}: {exc}") from exc


# ---------------------------------------------------------------- creation


def next_batch_number(db: Session, interest: str, level: str, game_mode: str) -> int:
	current = (
		db.query(func.max(TemplateBatch.batch_number))
		.filter(
			TemplateBatch.interest == interest,
			TemplateBatch.level == level,
			TemplateBatch.game_mode == game_mode,
		)
		.scalar()
	)
	return (current or 0) + 1


def create_batch(
	db: Session,
	interest: str,
	level: str,
	game_mode: str,
	questions: Sequence[Question],
	*,
	requested: Optional[int] = None,
	generated_by: Optional[str] = None,
) -> TemplateBatch:
	"""Persist a batch record and its questions in a single commit.

	The batch is sized by the questions actually produced, not by the
	request. If the commit fails nothing is left behind.
	"""
	if not questions:
		raise NoValidQuestions(f"No valid questions to save for {interest} {level} {game_mode}")
	writes = len(questions) + 1
	if writes > settings.max_writes_per_commit:
		raise PersistenceError(
			f"Cannot save {len(questions)} questions in one commit (max {settings.max_writes_per_commit - 1})"
		)
	difficulty = difficulty_for_level(level)
	batch_number = next_batch_number(db, interest, level, game_mode)
	batch_id = batch_key(interest, level, game_mode, batch_number)
	now = utcnow()
	batch = TemplateBatch(
		id=batch_id,
		interest=interest,
		level=level,
		game_mode=game_mode,
		difficulty=difficulty,
		batch_number=batch_number,
		total_questions=len(questions),
		approved_count=0,
		pending_count=len(questions),
		rejected_count=0,
		requested_questions=requested,
		status="all_pending",
		created_at=now,
		generated_by=generated_by,
	)
	db.add(batch)
	for index, q in enumerate(questions):
		db.add(
			TemplateQuestion(
				id=question_key(batch_id, index),
				interest=interest,
				level=level,
				game_mode=game_mode,
				difficulty=difficulty,
				batch_id=batch_id,
				batch_number=batch_number,
				question_index=index,
				passage=q.passage,
				question=q.question,
				options=list(q.options),
				correct_index=q.correct_index,
				explanation=q.explanation,
				clue=q.clue,
				status="pending",
				created_at=now,
			)
		)
	_commit(db, f"save batch {batch_id}")
	logger.info("Saved batch %s with %d questions", batch_id, len(questions))
	return batch


async def generate_template_batch(
	db: Session,
	generator: TextGenerator,
	interest: str,
	level: str,
	game_mode: str,
	count: Optional[int] = None,
	*,
	generated_by: Optional[str] = None,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> TemplateBatch:
	count = count or settings.questions_per_batch
	logger.info("Starting batch generation for %s - %s - %s (%d questions)", interest, level, game_mode, count)
	questions = await generate_question_batch(
		generator,
		[interest],
		level,
		game_mode,
		difficulty_for_level(level),
		count,
		max_retries=max_retries,
		base_delay=base_delay,
	)
	return create_batch(db, interest, level, game_mode, questions, requested=count, generated_by=generated_by)


# -------------------------------------------------------------- moderation


def _unique(ids: Iterable[str]) -> List[str]:
	seen: Set[str] = set()
	ordered: List[str] = []
	for qid in ids:
		if qid and qid not in seen:
			seen.add(qid)
			ordered.append(qid)
	return ordered


def _load_questions(db: Session, question_ids: Sequence[str]) -> List[TemplateQuestion]:
	ids = _unique(question_ids)
	if not ids:
		raise ValidationError("questionIds array is required")
	return db.query(TemplateQuestion).filter(TemplateQuestion.id.in_(ids)).all()


def _shift_batch_counts(db: Session, batch_counts: Counter, now, **columns: int) -> None:
	"""Apply per-batch counter deltas as in-database increments.

	``columns`` maps a counter column to the sign of the delta, e.g.
	``approved_count=1, pending_count=-1``.
	"""
	for batch_id, n in batch_counts.items():
		batch = db.get(TemplateBatch, batch_id)
		if batch is None:
			logger.warning("Batch %s missing while updating counters", batch_id)
			continue
		for column, sign in columns.items():
			setattr(batch, column, getattr(TemplateBatch, column) + sign * n)
		batch.last_reviewed_at = now


def refresh_batch_status(db: Session, batch_id: str) -> Optional[str]:
	batch = db.get(TemplateBatch, batch_id)
	if batch is None:
		return None
	db.refresh(batch)
	status = compute_batch_status(batch.approved_count, batch.pending_count, batch.rejected_count, batch.total_questions)
	if batch.status != status:
		batch.status = status
		_commit(db, f"update status of {batch_id}")
	return status


def _refresh_statuses(db: Session, batch_ids: Iterable[str]) -> None:
	for batch_id in batch_ids:
		try:
			refresh_batch_status(db, batch_id)
		except PersistenceError:
			# Counters are already committed; the label is repaired on next read
			logger.warning("Batch %s status left stale", batch_id)


def approve_questions(db: Session, question_ids: Sequence[str], admin_id: Optional[str] = None) -> ModerationResult:
	requested = len(_unique(question_ids))
	rows = _load_questions(db, question_ids)
	movable = [q for q in rows if q.status in REVIEWABLE_STATES]
	now = utcnow()

	pool_counts: Counter = Counter()
	pool_batches: Dict[str, Set[str]] = defaultdict(set)
	pool_meta: Dict[str, TemplateQuestion] = {}
	batch_counts: Counter = Counter()
	for q in movable:
		q.status = "approved"
		q.approved_at = now
		if admin_id:
			q.approved_by = admin_id
		key = pool_key(q.interest, q.level, q.game_mode)
		pool_counts[key] += 1
		pool_batches[key].add(q.batch_id)
		pool_meta.setdefault(key, q)
		batch_counts[q.batch_id] += 1

	for key, n in pool_counts.items():
		pool = db.get(ApprovedQuestionPool, key)
		if pool is None:
			sample = pool_meta[key]
			db.add(
				ApprovedQuestionPool(
					id=key,
					interest=sample.interest,
					level=sample.level,
					game_mode=sample.game_mode,
					difficulty=sample.difficulty,
					total_questions=n,
					source_batches=sorted(pool_batches[key]),
					last_updated=now,
				)
			)
			continue
		pool.total_questions = ApprovedQuestionPool.total_questions + n
		pool.source_batches = sorted(set(pool.source_batches or []) | pool_batches[key])
		pool.last_updated = now

	_shift_batch_counts(db, batch_counts, now, approved_count=1, pending_count=-1)
	_commit(db, "approve questions")
	_refresh_statuses(db, batch_counts)

	logger.info("Approved %d of %d questions", len(movable), requested)
	return ModerationResult(requested, len(movable), requested - len(movable), sorted(batch_counts))


def reject_questions(db: Session, question_ids: Sequence[str], reason: Optional[str] = None) -> ModerationResult:
	requested = len(_unique(question_ids))
	rows = _load_questions(db, question_ids)
	movable = [q for q in rows if q.status in REVIEWABLE_STATES]
	now = utcnow()

	batch_counts: Counter = Counter()
	for q in movable:
		q.status = "rejected"
		q.rejected_at = now
		if reason:
			q.rejection_reason = reason
		batch_counts[q.batch_id] += 1

	# The pool only tracks approved questions
	_shift_batch_counts(db, batch_counts, now, rejected_count=1, pending_count=-1)
	_commit(db, "reject questions")
	_refresh_statuses(db, batch_counts)

	logger.info("Rejected %d of %d questions", len(movable), requested)
	return ModerationResult(requested, len(movable), requested - len(movable), sorted(batch_counts))


def unapprove_questions(db: Session, question_ids: Sequence[str]) -> ModerationResult:
	requested = len(_unique(question_ids))
	rows = _load_questions(db, question_ids)
	approved = [q for q in rows if q.status == "approved"]
	if not approved:
		return ModerationResult(requested, 0, requested, [])
	now = utcnow()

	pool_counts: Counter = Counter()
	batch_counts: Counter = Counter()
	for q in approved:
		q.status = "pending"
		q.approved_at = None
		q.approved_by = None
		pool_counts[pool_key(q.interest, q.level, q.game_mode)] += 1
		batch_counts[q.batch_id] += 1

	for key, n in pool_counts.items():
		pool = db.get(ApprovedQuestionPool, key)
		if pool is None:
			logger.warning("Pool %s missing while unapproving %d questions", key, n)
			continue
		pool.total_questions = ApprovedQuestionPool.total_questions - n
		pool.last_updated = now

	_shift_batch_counts(db, batch_counts, now, approved_count=-1, pending_count=1)
	_commit(db, "unapprove questions")
	_refresh_statuses(db, batch_counts)

	logger.info("Unapproved %d of %d questions", len(approved), requested)
	return ModerationResult(requested, len(approved), requested - len(approved), sorted(batch_counts))


def update_question(db: Session, question_id: str, updates: Dict[str, Any]) -> TemplateQuestion:
	"""Edit content fields of one question. Status and counters are untouched."""
	if not question_id:
		raise ValidationError("questionId is required")
	if not updates:
		raise ValidationError("No updates provided")
	unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
	if unknown:
		raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")
	changes = {EDITABLE_FIELDS[key]: value for key, value in updates.items()}

	row = db.get(TemplateQuestion, question_id)
	if row is None:
		raise NotFoundError("Question not found")

	for column in REQUIRED_CONTENT:
		if column in changes and changes[column] is None:
			raise ValidationError(f"{column} cannot be empty")
	for column in TEXT_FIELDS:
		value = changes.get(column)
		if value is not None and not isinstance(value, str):
			raise ValidationError(f"{column} must be a string")
	if "question" in changes and not changes["question"].strip():
		raise ValidationError("question cannot be empty")

	options = changes.get("options")
	if options is not None and (not isinstance(options, list) or len(options) != 4 or not all(isinstance(o, str) for o in options)):
		raise ValidationError("options must be a list of 4 strings")
	correct_index = changes.get("correct_index")
	if correct_index is not None and (isinstance(correct_index, bool) or not isinstance(correct_index, int)):
		raise ValidationError("correctIndex must be an integer")
	if correct_index is not None or options is not None:
		effective_options = options if options is not None else (row.options or [])
		effective_index = correct_index if correct_index is not None else row.correct_index
		if not 0 <= effective_index < len(effective_options):
			raise ValidationError("correctIndex must be within options array bounds")

	for column, value in changes.items():
		setattr(row, column, list(value) if column == "options" else value)
	row.updated_at = utcnow()
	_commit(db, f"update question {question_id}")
	logger.info("Updated question %s (%s)", question_id, ", ".join(sorted(changes)))
	return row


# ------------------------------------------------------------------- reads


def list_batches(
	db: Session,
	interest: Optional[str] = None,
	level: Optional[str] = None,
	game_mode: Optional[str] = None,
) -> List[TemplateBatch]:
	query = db.query(TemplateBatch)
	if interest:
		query = query.filter(TemplateBatch.interest == interest)
	if level:
		query = query.filter(TemplateBatch.level == level)
	if game_mode:
		query = query.filter(TemplateBatch.game_mode == game_mode)
	batches = query.order_by(TemplateBatch.created_at.desc(), TemplateBatch.batch_number.desc()).all()
	stale = False
	for batch in batches:
		status = compute_batch_status(batch.approved_count, batch.pending_count, batch.rejected_count, batch.total_questions)
		if batch.status != status:
			batch.status = status
			stale = True
	if stale:
		_commit(db, "repair batch statuses")
	return batches


def list_questions(
	db: Session,
	batch_id: Optional[str] = None,
	status: Optional[str] = None,
	interest: Optional[str] = None,
	level: Optional[str] = None,
	game_mode: Optional[str] = None,
) -> List[TemplateQuestion]:
	query = db.query(TemplateQuestion)
	if batch_id:
		query = query.filter(TemplateQuestion.batch_id == batch_id)
	if status:
		query = query.filter(TemplateQuestion.status == status)
	if interest:
		query = query.filter(TemplateQuestion.interest == interest)
	if level:
		query = query.filter(TemplateQuestion.level == level)
	if game_mode:
		query = query.filter(TemplateQuestion.game_mode == game_mode)
	return query.order_by(TemplateQuestion.batch_id, TemplateQuestion.question_index).all()


def list_pools(db: Session, level: Optional[str] = None, game_mode: Optional[str] = None) -> List[ApprovedQuestionPool]:
	query = db.query(ApprovedQuestionPool)
	if level:
		query = query.filter(ApprovedQuestionPool.level == level)
	if game_mode:
		query = query.filter(ApprovedQuestionPool.game_mode == game_mode)
	return query.order_by(ApprovedQuestionPool.id).all()


def reconcile_batch_statuses(db: Session) -> int:
	"""Recompute every batch status label from its counters; returns how many changed."""
	fixed = 0
	for batch in db.query(TemplateBatch).all():
		status = compute_batch_status(batch.approved_count, batch.pending_count, batch.rejected_count, batch.total_questions)
		if batch.status != status:
			batch.status = status
			fixed += 1
	if fixed:
		_commit(db, "reconcile batch statuses")
		logger.info("Reconciled %d stale batch statuses", fixed)
	return fixed
