"""
Quiz content generation.

Two entry points sit on top of the prompt builder, the retry wrapper and the
response validator:

- ``generate_question_batch`` produces validated questions for one
  (interest(s), level, game mode, difficulty) cell. Short batches are kept
  and logged; only zero valid questions is a failure.
- ``generate_all_quizzes`` runs the fixed 30-cell plan (5 game modes x 6
  CEFR levels) for one learner through the concurrency-limited runner.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .constants import GAME_MODES, QUIZ_PLAN, difficulty_for_level
from .errors import NoValidQuestions, ValidationError
from .gemini_client import TextGenerator
from .prompts import build_prompt
from .retry import with_retry
from .sanitizer import validate_and_format_questions
from .schemas import Question
from .settings import settings
from .task_runner import ProgressCallback, run_with_concurrency_limit

logger = logging.getLogger(__name__)


@dataclass
class GeneratedQuiz:
	quiz_id: str
	level: str
	game_mode: str
	difficulty: str
	questions: List[Question] = field(default_factory=list)


async def generate_question_batch(
	generator: TextGenerator,
	interests: Sequence[str],
	level: str,
	game_mode: str,
	difficulty: str,
	count: int,
	*,
	is_regeneration: bool = False,
	seed: Optional[str] = None,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> List[Question]:
	if count < 1:
		raise ValidationError("count must be at least 1")
	if isinstance(interests, str):
		interests = [interests]
	if is_regeneration and not seed:
		seed = uuid.uuid4().hex[:12]
	prompt = build_prompt(level, list(interests), game_mode, difficulty, count, is_regeneration, seed)

	async def attempt() -> List[Question]:
		raw = await generator.generate(prompt)
		questions, dropped = validate_and_format_questions(raw, expected_count=count)
		if dropped:
			logger.warning("Dropped %d invalid questions for %s %s %s", dropped, level, game_mode, difficulty)
		if not questions:
			raise NoValidQuestions(f"No valid questions generated for {level} {game_mode} ({difficulty})")
		return questions

	questions = await with_retry(
		attempt,
		settings.generation_max_retries if max_retries is None else max_retries,
		settings.generation_base_delay if base_delay is None else base_delay,
	)
	if len(questions) != count:
		logger.warning("Expected %d questions for %s %s, got %d; keeping partial batch", count, level, game_mode, len(questions))
	return questions


async def create_personalized_quiz(
	generator: TextGenerator,
	user_id: str,
	level: str,
	interests: Sequence[str],
	game_mode: str,
	difficulty: Optional[str] = None,
	*,
	count: Optional[int] = None,
	is_regeneration: bool = False,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> GeneratedQuiz:
	if game_mode not in GAME_MODES:
		raise ValidationError(f"Unsupported game mode: {game_mode}")
	difficulty = difficulty or difficulty_for_level(level)
	questions = await generate_question_batch(
		generator,
		interests,
		level,
		game_mode,
		difficulty,
		count or settings.questions_per_quiz,
		is_regeneration=is_regeneration,
		max_retries=max_retries,
		base_delay=base_delay,
	)
	quiz_id = f"{user_id}_{int(time.time() * 1000)}_{game_mode}"
	return GeneratedQuiz(quiz_id=quiz_id, level=level, game_mode=game_mode, difficulty=difficulty, questions=questions)


async def generate_all_quizzes(
	generator: TextGenerator,
	user_id: str,
	interests: Sequence[str],
	on_progress: Optional[ProgressCallback] = None,
	*,
	concurrency: Optional[int] = None,
	fail_fast: bool = True,
	plan: Optional[Sequence[dict]] = None,
	max_retries: Optional[int] = None,
	base_delay: Optional[float] = None,
) -> List[GeneratedQuiz]:
	plan = QUIZ_PLAN if plan is None else plan
	# Keep upstream load between 5 and 10 parallel calls
	limit = max(5, min(10, concurrency or settings.generation_concurrency))

	def make_task(cell: dict):
		async def task() -> GeneratedQuiz:
			return await create_personalized_quiz(
				generator,
				user_id,
				cell["level"],
				interests,
				cell["game_mode"],
				cell["difficulty"],
				max_retries=max_retries,
				base_delay=base_delay,
			)
		return task

	logger.info("Generating %d quiz sets for %s (concurrency %d)", len(plan), user_id, limit)
	return await run_with_concurrency_limit([make_task(cell) for cell in plan], limit, on_progress, fail_fast=fail_fast)
