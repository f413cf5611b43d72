from __future__ import annotations

from typing import Callable, Dict, List, Optional

from .errors import ValidationError


LEVEL_DESCRIPTIONS: Dict[str, str] = {
    "A1": "Beginner (Elementary English learners)",
    "A2": "Elementary (Pre-intermediate English learners)",
    "B1": "Threshold (Intermediate English learners)",
    "B2": "Vantage (Upper-intermediate English learners)",
    "C1": "Effective Operational Proficiency (Advanced English learners)",
    "C2": "Mastery (Proficient English users)",
}

LEVEL_GUIDELINES: Dict[str, str] = {
    "A1": "simple grammar, everyday words, short explanations",
    "A2": "slightly more complex grammar, basic connectors, everyday contexts",
    "B1": "intermediate grammar, common idioms, workplace/school contexts, more detail in explanations",
    "B2": "upper-intermediate grammar, academic/workplace vocabulary, longer explanations with nuance",
    "C1": "advanced grammar, complex idioms, academic and professional vocabulary, nuanced explanations",
    "C2": "near-native proficiency, highly precise vocabulary, academic/technical contexts, very detailed explanations",
}


# Response schema for schema-constrained generation (Gemini responseSchema dialect)
QUESTION_LIST_SCHEMA: Dict[str, object] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "passage": {"type": "STRING"},
            "question": {"type": "STRING"},
            "options": {"type": "ARRAY", "items": {"type": "STRING"}, "minItems": 4, "maxItems": 4},
            "correctIndex": {"type": "INTEGER"},
            "clue": {"type": "STRING"},
            "explanation": {"type": "STRING"},
        },
        "required": ["question", "options", "correctIndex", "clue", "explanation"],
    },
}


def _json_rules(count: int, fields: str) -> str:
    return (
        "CRITICAL JSON REQUIREMENTS:\n"
        "- Return ONLY a valid JSON array\n"
        "- NO markdown, NO code blocks, NO extra text\n"
        "- Start with [ and end with ]\n"
        f"- EXACTLY {count} questions\n"
        f"- Each question MUST have: {fields}\n"
        "- No trailing commas after the last item"
    )


def _header(level: str, interests: List[str], difficulty: str) -> str:
    guidelines = LEVEL_GUIDELINES.get(level, "")
    return (
        f"Target: {level} - {LEVEL_DESCRIPTIONS.get(level, level)} ({guidelines}) | Difficulty: {difficulty}\n"
        f"Interests: {', '.join(interests)}"
    )


_HINT_RULES = (
    "Clue vs explanation:\n"
    "- clue is shown BEFORE answering: a hint that points the learner in the right direction without giving the answer away\n"
    "- explanation is shown AFTER answering: why the correct option is right\n"
    "- Never repeat the clue inside the explanation"
)


def vocabulary_prompt(level: str, interests: List[str], difficulty: str, count: int) -> str:
    return f"""
You are a quiz creator for EngliQuest. Generate EXACTLY {count} vocabulary questions.

{_json_rules(count, "question, options (array of 4 strings), correctIndex (0-3), clue, explanation")}

{_header(level, interests, difficulty)}

Vocabulary Focus:
- Vocabulary refers to a learner's understanding and correct use of words
- Questions must test vocabulary in context, where learners choose the correct word to complete a sentence
- Use context clues (e.g., contrast, definition, or example clues) to guide learners
- All sentences and words should be appropriate for {level} level learners
- Each question connects to the learner's interests with varied scenarios

{_HINT_RULES}

Example format (follow EXACTLY):
[
  {{
    "question": "She was tired, ___ she went to bed early.",
    "options": ["but", "so", "because", "and"],
    "correctIndex": 1,
    "clue": "Look for a word that shows result or consequence.",
    "explanation": "The word 'so' shows the result of being tired."
  }}
]
""".strip()


def grammar_prompt(level: str, interests: List[str], difficulty: str, count: int) -> str:
    return f"""
You are a grammar quiz creator for EngliQuest. Generate EXACTLY {count} grammar questions.

{_json_rules(count, "question, options (array of 4 strings), correctIndex (0-3), clue, explanation")}

{_header(level, interests, difficulty)}

Grammar Focus:
- Grammar is the way words are put together to make correct sentences
- Activities: Fill-in-the-blank and Error Spotting
- Target common grammar issues like subject-verb agreement, tense usage, and misuse/omission of verbs
- Learners should practice identifying and correcting errors
- Each question must tie back to the learner's interests when possible, using different scenarios

{_HINT_RULES}

Example format (follow EXACTLY):
[
  {{
    "question": "He ___ to the market yesterday.",
    "options": ["go", "goes", "went", "gone"],
    "correctIndex": 2,
    "clue": "Think about the past tense form of the verb.",
    "explanation": "The past tense of 'go' is 'went'."
  }}
]
""".strip()


def translation_prompt(level: str, interests: List[str], difficulty: str, count: int) -> str:
    return f"""
You are a translation quiz creator for EngliQuest. Generate EXACTLY {count} Filipino to English translation questions.

{_json_rules(count, "question, options (array of 4 strings), correctIndex (0-3), clue, explanation")}

{_header(level, interests, difficulty)}

Translation Focus:
- Direction is ALWAYS Filipino to English: the question shows Filipino, every option is English
- Never ask for English to Filipino
- Activities: word or short-phrase translation (input-based recall)
- Questions should connect to the learner's interests when possible
- Keep translations age-appropriate and aligned with everyday vocabulary

CRITICAL: AVOID SYNONYM ANSWERS
- Each option must be DISTINCTLY DIFFERENT from the others
- DO NOT include synonyms or similar meanings in the options
- BAD example: "Bato" with options ["Stone", "Rock", "Pebble", "Boulder"] - these are all synonyms!
- GOOD example: "Bato" with options ["Tree", "Rock", "Water", "House"] - clearly different meanings
- Wrong answers should be unrelated words from different categories so exactly ONE answer is correct

{_HINT_RULES}

Example format (follow EXACTLY):
[
  {{
    "question": "Translate to English: 'Aso'",
    "options": ["Cat", "Dog", "Bird", "Fish"],
    "correctIndex": 1,
    "clue": "This is a common pet that barks.",
    "explanation": "'Aso' means 'Dog' in English."
  }}
]
""".strip()


def sentence_construction_prompt(level: str, interests: List[str], difficulty: str, count: int) -> str:
    return f"""
You are a sentence construction quiz creator for EngliQuest. Generate EXACTLY {count} questions.

{_json_rules(count, "question, options (array of 4 strings), correctIndex (0-3), clue, explanation")}

{_header(level, interests, difficulty)}

Sentence Construction Focus:
- A sentence is a grammatically complete string of words expressing a complete thought
- Each question presents jumbled words that learners must rearrange into a grammatically correct sentence
- This helps learners improve syntax, word order, and logical flow of English grammar
- Exactly ONE option may be a correct arrangement; the other three must be clearly ungrammatical,
  never an alternative valid word order of the same words
- Each question must tie back to the learner's interests when possible, using different scenarios

{_HINT_RULES}

Example format (follow EXACTLY):
[
  {{
    "question": "Rearrange the words: ['the', 'dog', 'brown', 'big', 'ran']",
    "options": ["The dog brown big ran.", "Big brown the dog ran.", "The big brown dog ran.", "Dog ran the big brown."],
    "correctIndex": 2,
    "clue": "Remember: adjectives come before the noun they describe.",
    "explanation": "'The big brown dog ran.' is correct because size comes before colour and both precede the noun."
  }}
]
""".strip()


def reading_comprehension_prompt(level: str, interests: List[str], difficulty: str, count: int) -> str:
    return f"""
You are a reading comprehension quiz creator for EngliQuest. Generate EXACTLY {count} questions.

{_json_rules(count, "passage, question, options (array of 4 strings), correctIndex (0-3), clue, explanation")}
- All text must be properly escaped (use \\n for line breaks if needed)

{_header(level, interests, difficulty)}

Reading Comprehension Focus:
- Learners read short passages tailored to their interests
- Every question MUST include its own passage of 2-4 sentences
- Passages must be simple, age-appropriate, and engaging for {level} level
- Questions check understanding of main idea, details, inference, and "what happens next"
- Use different stories and characters across questions

{_HINT_RULES}

Example format (follow EXACTLY):
[
  {{
    "passage": "Anna loves basketball. She practices every afternoon after school.",
    "question": "What does Anna do after school?",
    "options": ["Studies math", "Plays basketball", "Goes shopping", "Cooks dinner"],
    "correctIndex": 1,
    "clue": "Check what the passage says Anna does in the afternoon.",
    "explanation": "The passage says Anna practices basketball after school."
  }}
]
""".strip()


PROMPT_BUILDERS: Dict[str, Callable[[str, List[str], str, int], str]] = {
    "Vocabulary": vocabulary_prompt,
    "Grammar": grammar_prompt,
    "Translation": translation_prompt,
    "Sentence Construction": sentence_construction_prompt,
    "Reading Comprehension": reading_comprehension_prompt,
}


def _regeneration_block(seed: Optional[str]) -> str:
    lines = [
        "REGENERATION REQUEST:",
        "- This set is replacing a previous one that was rejected by a reviewer",
        "- Do NOT reuse questions, sentences, passages or examples from earlier sets",
        "- Pick new scenarios, new characters and new target words",
    ]
    if seed:
        lines.append(f"- Variation seed: {seed} (use it to vary topics and wording)")
    return "\n".join(lines)


def build_prompt(
    level: str,
    interests: List[str],
    game_mode: str,
    difficulty: str,
    count: int = 15,
    is_regeneration: bool = False,
    seed: Optional[str] = None,
) -> str:
    builder = PROMPT_BUILDERS.get(game_mode)
    if builder is None:
        raise ValidationError(f"Unsupported game mode: {game_mode}")
    parts = [builder(level, list(interests), difficulty, count)]
    if is_regeneration:
        parts.append(_regeneration_block(seed))
    parts.append(f"IMPORTANT: Start your response with [ and end with ]. No text before or after.\nGenerate {count} questions now:")
    return "\n\n".join(parts)
