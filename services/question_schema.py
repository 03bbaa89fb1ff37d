"""
Canonical question shape and normalization of every shape we have stored
or received from the generation provider.

Accepted input shapes:

* canonical: ``stem``, ``choices``, ``answer_index`` (or camelCase
  ``answerIndex`` / ``questionType`` / ``solvingStrategy``)
* generator v3: ``question_text``, ``choices``, ``correct_answer`` (the
  text of the correct choice), ``question_type``, ``diagram_config``
* quiz: ``question``, ``options``, ``correct_option_id``
"""
import hashlib
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError as PydanticValidationError

from constants.exam import DIFFICULTIES, SECTIONS, section_for_category

STEM_MAX_LENGTH = 2000
CHOICE_MAX_LENGTH = 300
CHOICES_COUNT = 4


class QuestionFormatError(ValueError):
    """Raised when a raw question cannot be turned into a canonical one."""


class Question(BaseModel):
    """A single multiple-choice question in canonical form."""
    id: str = Field(..., description="Content fingerprint of the question")
    section: str = Field(..., description="quantitative or verbal")
    topic: str = Field(..., description="Category slug, e.g. algebra")
    difficulty: str = Field("medium", description="easy, medium or hard")
    question_type: str = Field("mcq", description="mcq, comparison, diagram, reading, ...")
    stem: str = Field(..., min_length=1, max_length=STEM_MAX_LENGTH)
    choices: List[str] = Field(..., min_length=CHOICES_COUNT, max_length=CHOICES_COUNT)
    answer_index: int = Field(..., ge=0, le=CHOICES_COUNT - 1)
    explanation: str = ""
    solving_strategy: Optional[str] = None
    tip: Optional[str] = None
    passage: Optional[str] = None
    diagram: Optional[Dict[str, Any]] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("section")
    @classmethod
    def _known_section(cls, value: str) -> str:
        if value not in SECTIONS:
            raise ValueError(f"unknown section {value!r}")
        return value

    @field_validator("difficulty")
    @classmethod
    def _known_difficulty(cls, value: str) -> str:
        if value not in DIFFICULTIES:
            raise ValueError(f"unknown difficulty {value!r}")
        return value

    @field_validator("choices")
    @classmethod
    def _non_empty_choices(cls, value: List[str]) -> List[str]:
        if any(not c.strip() for c in value):
            raise ValueError("empty choice")
        return value

    def public_view(self) -> Dict[str, Any]:
        """Question content without the answer key."""
        return self.model_dump(exclude={"answer_index", "explanation", "solving_strategy", "tip"})


def fingerprint(stem: str, choices: List[str]) -> str:
    """Stable id derived from the question text and its choices."""
    normalized = " ".join(stem.split()).lower() + "|" + "|".join(" ".join(c.split()).lower() for c in choices)
    return "q_" + hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _resolve_answer_index(raw: Dict[str, Any], choices: List[str]) -> int:
    index = _first(raw, "answer_index", "answerIndex", "correct_option_id")
    if index is not None:
        if isinstance(index, bool) or not isinstance(index, int):
            try:
                index = int(index)
            except (TypeError, ValueError):
                raise QuestionFormatError(f"answer index is not a number: {index!r}")
        if not 0 <= index < len(choices):
            raise QuestionFormatError(f"answer index out of range: {index}")
        return index

    correct = raw.get("correct_answer")
    if isinstance(correct, str):
        target = correct.strip()
        for i, choice in enumerate(choices):
            if choice.strip() == target:
                return i
        # Providers sometimes answer with the letter of the choice
        letters = {"a": 0, "b": 1, "c": 2, "d": 3, "أ": 0, "ب": 1, "ج": 2, "د": 3}
        if target.lower() in letters:
            return letters[target.lower()]
        raise QuestionFormatError("correct_answer does not match any choice")
    if isinstance(correct, int) and not isinstance(correct, bool):
        if 0 <= correct < len(choices):
            return correct
    raise QuestionFormatError("missing correct answer")


def normalize_question(
    raw: Dict[str, Any],
    section: Optional[str] = None,
    topic: Optional[str] = None,
    difficulty: Optional[str] = None,
) -> Question:
    """
    Turn any known raw shape into a canonical ``Question``.

    ``section``, ``topic`` and ``difficulty`` fill in fields the raw item
    does not carry. Raises ``QuestionFormatError`` when the item cannot be
    used.
    """
    if not isinstance(raw, dict):
        raise QuestionFormatError("question is not an object")

    stem = _first(raw, "stem", "question_text", "question")
    if not isinstance(stem, str) or not stem.strip():
        raise QuestionFormatError("missing question text")

    choices = _first(raw, "choices", "options")
    if not isinstance(choices, list) or len(choices) < CHOICES_COUNT:
        raise QuestionFormatError("a question needs four choices")
    choices = [str(c).strip()[:CHOICE_MAX_LENGTH] for c in choices[:CHOICES_COUNT]]

    answer_index = _resolve_answer_index(raw, choices)

    q_topic = raw.get("topic") or topic
    q_section = raw.get("section") or section or (section_for_category(q_topic) if q_topic else None)
    if not q_topic:
        raise QuestionFormatError("missing topic")

    diagram = raw.get("diagram") or raw.get("diagram_config")
    stem = stem.strip()[:STEM_MAX_LENGTH]

    try:
        return Question(
            id=fingerprint(stem, choices),
            section=q_section or "",
            topic=q_topic,
            difficulty=raw.get("difficulty") or difficulty or "medium",
            question_type=_first(raw, "question_type", "questionType") or "mcq",
            stem=stem,
            choices=choices,
            answer_index=answer_index,
            explanation=raw.get("explanation") or "",
            solving_strategy=_first(raw, "solving_strategy", "solvingStrategy"),
            tip=raw.get("tip"),
            passage=raw.get("passage"),
            diagram=diagram if isinstance(diagram, dict) else None,
            tags=[str(t) for t in (raw.get("tags") or [])],
        )
    except PydanticValidationError as e:
        raise QuestionFormatError(str(e)) from e


def load_stored_question(raw: Dict[str, Any]) -> Question:
    """Read a question back from a session row, keeping its stored id."""
    question = normalize_question(raw)
    stored_id = raw.get("id")
    if stored_id:
        question = question.model_copy(update={"id": str(stored_id)})
    return question
