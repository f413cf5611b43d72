from __future__ import annotations

import logging
import random
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from .errors import ValidationError
from .models import TemplateQuestion
from .schemas import Question

logger = logging.getLogger(__name__)

INTERESTS_PER_QUIZ = 3


def fetch_quiz(
	db: Session,
	interests: Sequence[str],
	level: str,
	game_mode: str,
	questions_per_interest: int = 5,
	rng: Optional[random.Random] = None,
) -> List[Question]:
	"""Assemble a quiz from approved template questions.

	Each interest is sampled on its own, then the combined list is shuffled
	again. An interest with no approved questions contributes nothing, so the
	result can be shorter than ``3 * questions_per_interest``.
	"""
	if not interests or len(interests) != INTERESTS_PER_QUIZ:
		raise ValidationError("Exactly 3 interests are required")
	if not level or not game_mode:
		raise ValidationError("level and gameMode are required")
	if questions_per_interest < 1:
		raise ValidationError("questionsPerInterest must be at least 1")
	rng = rng or random.SystemRandom()

	picked: List[Question] = []
	for interest in interests:
		rows = (
			db.query(TemplateQuestion)
			.filter(
				TemplateQuestion.interest == interest,
				TemplateQuestion.level == level,
				TemplateQuestion.game_mode == game_mode,
				TemplateQuestion.status == "approved",
			)
			.order_by(TemplateQuestion.id)
			.all()
		)
		if not rows:
			logger.warning("No approved questions for %s - %s - %s", interest, level, game_mode)
			continue
		rng.shuffle(rows)
		picked.extend(Question.model_validate(row.content()) for row in rows[:questions_per_interest])

	rng.shuffle(picked)
	logger.info("Fetched %d questions for %s %s", len(picked), level, game_mode)
	return picked
