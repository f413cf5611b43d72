from __future__ import annotations
from typing import Dict, List


INTERESTS: List[str] = [
	"Adventure Stories",
	"Friendship",
	"Fantasy & Magic",
	"Music & Arts",
	"Sports & Games",
	"Nature & Animals",
	"Filipino Culture",
	"Family Values",
]

GAME_MODES: List[str] = [
	"Vocabulary",
	"Grammar",
	"Translation",
	"Sentence Construction",
	"Reading Comprehension",
]

CEFR_LEVELS: List[str] = ["A1", "A2", "B1", "B2", "C1", "C2"]

DIFFICULTY_BY_LEVEL: Dict[str, str] = {
	"A1": "easy",
	"A2": "easy",
	"B1": "medium",
	"B2": "medium",
	"C1": "hard",
	"C2": "hard",
}


def difficulty_for_level(level: str) -> str:
	return DIFFICULTY_BY_LEVEL.get((level or "").upper(), "hard")


# Every learner gets one quiz set per (game mode, level): 5 x 6 = 30
QUIZ_PLAN: List[Dict[str, str]] = [
	{"level": level, "difficulty": DIFFICULTY_BY_LEVEL[level], "game_mode": mode}
	for mode in GAME_MODES
	for level in CEFR_LEVELS
]


def quiz_set_number(game_mode: str, level: str) -> int:
	"""Position (1-30) of a quiz set in the generation plan, 0 when unknown."""
	if game_mode not in GAME_MODES or level not in CEFR_LEVELS:
		return 0
	return GAME_MODES.index(game_mode) * len(CEFR_LEVELS) + CEFR_LEVELS.index(level) + 1


def pool_key(interest: str, level: str, game_mode: str) -> str:
	return f"{interest}_{level}_{game_mode}"


def batch_key(interest: str, level: str, game_mode: str, batch_number: int) -> str:
	return f"{pool_key(interest, level, game_mode)}_batch{batch_number}"


def question_key(batch_id: str, index: int) -> str:
	return f"{batch_id}_q{index}"


def quiz_set_key(user_id: str, level: str, game_mode: str, difficulty: str) -> str:
	return f"{user_id}_{level}_{game_mode.replace(' ', '')}_{difficulty}"
