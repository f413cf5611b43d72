from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Tuple

from .errors import InvalidShape, MalformedResponse
from .schemas import Question


logger = logging.getLogger(__name__)


_CODE_FENCE_RE = re.compile(r"```[\w-]*\s*([\s\S]*?)\s*```")
_ADJACENT_ARRAYS_RE = re.compile(r"\]\s*\[")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_FIRST_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_SMART_DOUBLE = str.maketrans({"“": '"', "”": '"', "„": '"', "‟": '"'})
_SMART_SINGLE = str.maketrans({"‘": "'", "’": "'", "‚": "'", "‛": "'"})

# Item containers accepted besides a bare array
_WRAPPER_KEYS = ("quiz", "questions")


def clean_response(raw: str) -> str:
    """Unwrap fenced code blocks (any language tag), keeping their contents."""
    return _CODE_FENCE_RE.sub(r"\1", raw or "").strip()


def sanitize_json(raw: str) -> str:
    fixed = clean_response(raw)
    # Model sometimes emits two arrays back to back: [...][...]
    fixed = _ADJACENT_ARRAYS_RE.sub(",", fixed)
    fixed = _TRAILING_COMMA_RE.sub(r"\1", fixed)
    fixed = fixed.translate(_SMART_DOUBLE).translate(_SMART_SINGLE)
    return fixed


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    logger.warning("JSON parse failed, trying to recover the first array. Output starts: %r", text[:200])
    match = _FIRST_ARRAY_RE.search(text)
    if not match:
        raise MalformedResponse("Gemini returned invalid JSON")
    candidate = _TRAILING_COMMA_RE.sub(r"\1", match.group(0))
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedResponse("Gemini returned unrecoverable JSON") from exc


def extract_items(parsed: Any) -> List[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in _WRAPPER_KEYS:
            items = parsed.get(key)
            if isinstance(items, list):
                return items
    raise InvalidShape(f"Invalid quiz format from Gemini: got {type(parsed).__name__}")


def parse_response(raw: str) -> List[Any]:
    return extract_items(_loads(sanitize_json(raw)))


def capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def _check_item(item: Any) -> Tuple[Optional[Question], Optional[str]]:
    if not isinstance(item, dict):
        return None, "not an object"
    question_text = item.get("question")
    if isinstance(question_text, list) and all(isinstance(part, str) for part in question_text):
        question_text = " ".join(question_text)
    if not isinstance(question_text, str) or not question_text.strip():
        return None, "question must be a string"
    options = item.get("options")
    if not isinstance(options, list) or len(options) != 4 or not all(isinstance(o, str) for o in options):
        return None, "options must be exactly 4 strings"
    correct_index = item.get("correctIndex")
    # bool is an int subclass; true/false is not an index
    if isinstance(correct_index, bool) or not isinstance(correct_index, int) or not 0 <= correct_index <= 3:
        return None, "correctIndex must be an integer 0-3"
    explanation = item.get("explanation")
    clue = item.get("clue")
    if not isinstance(explanation, str) or not isinstance(clue, str):
        return None, "explanation and clue must be strings"
    passage = item.get("passage")
    return Question(
        passage=passage.strip() if isinstance(passage, str) and passage.strip() else None,
        question=capitalize_first(question_text.strip()),
        options=[capitalize_first(o.strip()) for o in options],
        correct_index=correct_index,
        explanation=capitalize_first(explanation.strip()),
        clue=capitalize_first(clue.strip()),
    ), None


def validate_questions(items: List[Any]) -> Tuple[List[Question], int]:
    """Keep the well-formed items, drop the rest with a warning.

    Returns ``(valid, dropped_count)``; never raises for bad items.
    """
    valid: List[Question] = []
    dropped = 0
    for idx, item in enumerate(items):
        question, problem = _check_item(item)
        if question is None:
            dropped += 1
            logger.warning("Dropping question #%d: %s", idx + 1, problem)
            continue
        valid.append(question)
    return valid, dropped


def validate_and_format_questions(raw: str, expected_count: Optional[int] = None) -> Tuple[List[Question], int]:
    valid, dropped = validate_questions(parse_response(raw))
    if expected_count is not None and len(valid) > expected_count:
        logger.info("Gemini returned %d valid questions, keeping the first %d", len(valid), expected_count)
        valid = valid[:expected_count]
    return valid, dropped
