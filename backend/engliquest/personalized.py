"""
Per-learner quiz sets.

A GenerationRun tracks one learner's 30-cell plan. The run is the only
shared state the progress callbacks write to, so progress only moves
forward and the terminal transition is applied once. QuizSets are written
together in one commit at the end of a full run, or one page at a time in
the batch-splitting variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .constants import QUIZ_PLAN, quiz_set_key
from .errors import NotFoundError, PersistenceError, ValidationError
from .gemini_client import GeneratorFactory, TextGenerator
from .generation import GeneratedQuiz, create_personalized_quiz, generate_all_quizzes
from .models import GenerationRun, Learner, QuizSet, utcnow
from .settings import settings

logger = logging.getLogger(__name__)

TERMINAL_RUN_STATES = ("completed", "failed")


@dataclass
class PageResult:
	batch_index: int
	saved: List[str] = field(default_factory=list)
	failed: int = 0
	progress: int = 0
	total: int = 0
	done: bool = False

	@property
	def next_batch_index(self) -> Optional[int]:
		return None if self.done else self.batch_index + 1


def _learner_interests(db: Session, user_id: str) -> List[str]:
	learner = db.get(Learner, user_id)
	if learner is None:
		raise NotFoundError(f"User {user_id} not found")
	interests = [i for i in (learner.interests or []) if i]
	if not interests:
		raise ValidationError(f"User {user_id} has no interests selected")
	return interests


def start_generation(db: Session, user_id: str) -> GenerationRun:
	"""Reset (or create) the learner's run to a fresh pending state."""
	if not user_id:
		raise ValidationError("userId is required")
	interests = _learner_interests(db, user_id)
	run = db.get(GenerationRun, user_id)
	if run is None:
		run = GenerationRun(user_id=user_id)
		db.add(run)
	run.interests = interests
	run.status = "pending"
	run.progress = 0
	run.total = len(QUIZ_PLAN)
	run.current_batch = 0
	run.error = None
	run.created_at = utcnow()
	run.completed_at = None
	db.commit()
	logger.info("Generation run reset for %s", user_id)
	return run


def get_run(db: Session, user_id: str) -> GenerationRun:
	run = db.get(GenerationRun, user_id)
	if run is None:
		raise NotFoundError(f"No generation found for {user_id}")
	return run


def record_progress(db: Session, user_id: str, progress: int, total: Optional[int] = None) -> None:
	run = db.get(GenerationRun, user_id)
	if run is None or run.status in TERMINAL_RUN_STATES:
		return
	total_changed = total is not None and total != run.total
	if total_changed:
		run.total = total
	if progress > run.progress:
		run.progress = min(progress, run.total) if run.total else progress
	elif not total_changed:
		return
	db.commit()
	logger.info("Progress for %s: %d/%d", user_id, run.progress, run.total)


def finish_run(db: Session, user_id: str, status: str, error: Optional[str] = None) -> Optional[GenerationRun]:
	"""Move a run to completed or failed. A second call is a no-op."""
	if status not in TERMINAL_RUN_STATES:
		raise ValueError(f"Not a terminal run status: {status}")
	run = db.get(GenerationRun, user_id)
	if run is None:
		return None
	if run.status in TERMINAL_RUN_STATES:
		logger.info("Run for %s already %s; ignoring %s", user_id, run.status, status)
		return run
	run.status = status
	run.error = error
	run.completed_at = utcnow()
	if status == "completed":
		run.progress = run.total
	db.commit()
	return run


def _quiz_set_row(user_id: str, interests: List[str], quiz: GeneratedQuiz, now) -> QuizSet:
	return QuizSet(
		id=quiz_set_key(user_id, quiz.level, quiz.game_mode, quiz.difficulty),
		user_id=user_id,
		level=quiz.level,
		game_mode=quiz.game_mode,
		difficulty=quiz.difficulty,
		interests=list(interests),
		questions=[q.to_document() for q in quiz.questions],
		status="pending",
		created_at=now,
		updated_at=now,
		approved_at=None,
		regeneration_requested_at=None,
		regenerated_at=None,
		regeneration_error=None,
	)


def _save_quiz_sets(db: Session, user_id: str, interests: List[str], quizzes: List[GeneratedQuiz]) -> List[str]:
	now = utcnow()
	ids = []
	for quiz in quizzes:
		row = db.merge(_quiz_set_row(user_id, interests, quiz, now))
		ids.append(row.id)
	try:
		db.commit()
	except SQLAlchemyError as exc:
		db.rollback()
		logger.exception("Failed to save %d quiz sets for %s", len(quizzes), user_id)
		raise PersistenceError(f"Failed to save quiz sets: {exc}") from exc
	return ids


async def run_personalized_generation(
	session_factory: Callable[[], Session],
	generator_factory: GeneratorFactory,
	user_id: str,
	concurrency: Optional[int] = None,
	*,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> str:
	"""Generate all 30 quiz sets for a learner and return the run's final status.

	Runs outside the request, so it opens its own session. Any failure marks
	the run failed and leaves no quiz set from this run behind.
	"""
	db = session_factory()
	generator: Optional[TextGenerator] = None
	try:
		run = db.get(GenerationRun, user_id) or start_generation(db, user_id)
		interests = list(run.interests or []) or _learner_interests(db, user_id)
		run.status = "in_progress"
		db.commit()

		def on_progress(completed: int, total: int) -> None:
			record_progress(db, user_id, completed, total)

		generator = generator_factory()
		quizzes = await generate_all_quizzes(
			generator,
			user_id,
			interests,
			on_progress,
			concurrency=concurrency,
			fail_fast=True,
			max_retries=max_retries,
			base_delay=base_delay,
		)
		saved = _save_quiz_sets(db, user_id, interests, quizzes)
		finish_run(db, user_id, "completed")
		logger.info("Generated %d quiz sets for %s", len(saved), user_id)
		return "completed"
	except Exception as exc:
		db.rollback()
		logger.exception("Generation failed for %s", user_id)
		finish_run(db, user_id, "failed", str(exc))
		return "failed"
	finally:
		if generator is not None:
			await generator.aclose()
		db.close()


async def process_generation_page(
	db: Session,
	generator: TextGenerator,
	user_id: str,
	batch_index: int,
	page_size: Optional[int] = None,
	*,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> PageResult:
	"""Generate one page of the plan and save whatever succeeded.

	Page 0 resets the run. Cells that fail are logged and skipped; progress
	still advances past them so repeated calls reach the end of the plan.
	"""
	page_size = page_size or settings.generation_page_size
	if batch_index < 0:
		raise ValidationError("batchIndex must not be negative")
	start = batch_index * page_size
	run = db.get(GenerationRun, user_id)
	# Past the end, or replaying a page of a finished run: report done, leave the run alone
	if start >= len(QUIZ_PLAN) or (batch_index != 0 and run is not None and run.status in TERMINAL_RUN_STATES):
		return PageResult(
			batch_index=batch_index,
			progress=run.progress if run else 0,
			total=run.total if run else len(QUIZ_PLAN),
			done=True,
		)

	if batch_index == 0 or run is None:
		run = start_generation(db, user_id)
	interests = list(run.interests or []) or _learner_interests(db, user_id)
	run.status = "in_progress"
	run.current_batch = batch_index
	db.commit()

	page = QUIZ_PLAN[start:start + page_size]
	quizzes = await generate_all_quizzes(
		generator,
		user_id,
		interests,
		concurrency=page_size,
		fail_fast=False,
		plan=page,
		max_retries=max_retries,
		base_delay=base_delay,
	)
	result = PageResult(batch_index=batch_index, failed=len(page) - len(quizzes), total=len(QUIZ_PLAN))
	try:
		result.saved = _save_quiz_sets(db, user_id, interests, quizzes) if quizzes else []
	except PersistenceError as exc:
		finish_run(db, user_id, "failed", str(exc))
		raise

	end = start + len(page)
	record_progress(db, user_id, end)
	result.progress = db.get(GenerationRun, user_id).progress
	result.done = end >= len(QUIZ_PLAN)
	if result.failed:
		logger.warning("Page %d for %s: %d of %d quiz sets failed", batch_index, user_id, result.failed, len(page))
	if result.done:
		finish_run(db, user_id, "completed")
	return result


async def regenerate_quiz_set(
	db: Session,
	generator: TextGenerator,
	quiz_set_id: str,
	*,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> QuizSet:
	"""Replace a quiz set's questions with a freshly generated set.

	``created_at`` is kept. On failure the set goes back to pending with
	``regeneration_error`` filled in and the error is re-raised.
	"""
	quiz_set = db.get(QuizSet, quiz_set_id)
	if quiz_set is None:
		raise NotFoundError(f"Quiz set {quiz_set_id} not found")
	if quiz_set.status == "regenerating":
		raise ValidationError(f"Quiz set {quiz_set_id} is already regenerating")
	quiz_set.status = "regenerating"
	quiz_set.regeneration_requested_at = utcnow()
	quiz_set.regeneration_error = None
	db.commit()

	try:
		quiz = await create_personalized_quiz(
			generator,
			quiz_set.user_id,
			quiz_set.level,
			list(quiz_set.interests or []),
			quiz_set.game_mode,
			quiz_set.difficulty,
			is_regeneration=True,
			max_retries=max_retries,
			base_delay=base_delay,
		)
		now = utcnow()
		quiz_set.questions = [q.to_document() for q in quiz.questions]
		quiz_set.status = "pending"
		quiz_set.approved_at = None
		quiz_set.regenerated_at = now
		quiz_set.updated_at = now
		db.commit()
	except Exception as exc:
		db.rollback()
		logger.error("Regeneration failed for %s: %s", quiz_set_id, exc)
		quiz_set.status = "pending"
		quiz_set.regeneration_error = str(exc)
		db.commit()
		raise
	logger.info("Regenerated quiz set %s", quiz_set_id)
	return quiz_set


def list_quiz_sets(db: Session, user_id: str, status: Optional[str] = None) -> List[QuizSet]:
	query = db.query(QuizSet).filter(QuizSet.user_id == user_id)
	if status:
		query = query.filter(QuizSet.status == status)
	return query.order_by(QuizSet.id).all()


def approve_quiz_set(db: Session, quiz_set_id: str) -> QuizSet:
	quiz_set = db.get(QuizSet, quiz_set_id)
	if quiz_set is None:
		raise NotFoundError(f"Quiz set {quiz_set_id} not found")
	if quiz_set.status == "regenerating":
		raise ValidationError("Cannot approve a quiz set while it is regenerating")
	if quiz_set.status != "approved":
		quiz_set.status = "approved"
		quiz_set.approved_at = utcnow()
		db.commit()
	return quiz_set


def approve_all_pending_quiz_sets(db: Session, user_id: str) -> int:
	pending = list_quiz_sets(db, user_id, status="pending")
	now = utcnow()
	for quiz_set in pending:
		quiz_set.status = "approved"
		quiz_set.approved_at = now
	if pending:
		db.commit()
	logger.info("Approved %d pending quiz sets for %s", len(pending), user_id)
	return len(pending)


def summarize_user_quizzes(db: Session, user_id: str) -> Dict[str, object]:
	sets = list_quiz_sets(db, user_id)
	counts = {"approved": 0, "pending": 0, "regenerating": 0}
	for quiz_set in sets:
		counts[quiz_set.status] = counts.get(quiz_set.status, 0) + 1
	if not sets:
		status = "no_generation"
	elif counts["approved"] == len(sets):
		status = "approved"
	elif counts["approved"] == 0:
		status = "pending"
	else:
		status = "partial"
	run = db.get(GenerationRun, user_id)
	return {
		"userId": user_id,
		"status": status,
		"total": len(sets),
		"approved": counts["approved"],
		"pending": counts["pending"],
		"regenerating": counts["regenerating"],
		"generationStatus": run.status if run else None,
	}


def reset_stuck_regenerations(db: Session, older_than: timedelta = timedelta(minutes=30)) -> int:
	"""Return quiz sets left in regenerating by a crashed process to pending."""
	cutoff = utcnow() - older_than
	stuck = (
		db.query(QuizSet)
		.filter(QuizSet.status == "regenerating", QuizSet.regeneration_requested_at < cutoff)
		.all()
	)
	for quiz_set in stuck:
		quiz_set.status = "pending"
		quiz_set.regeneration_error = "Regeneration interrupted"
	if stuck:
		db.commit()
		logger.warning("Reset %d quiz sets stuck in regenerating", len(stuck))
	return len(stuck)
