"""
Review card domain types.

A ReviewCard is one unit of reviewable knowledge owned by one learner.
Its memory state is mutated only by the memory model; its content is
opaque to scheduling and exposed as a tagged payload through
parse_card_back().
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class CardState(str, Enum):
    """Lifecycle state of a card."""
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


class CardType(str, Enum):
    """Content tag. Not used for scheduling."""
    FLASHCARD = "flashcard"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    SHORT_ANSWER = "short_answer"
    MATCHING = "matching"
    SEQUENCE = "sequence"
    # Legacy types
    KEY_POINT = "key_point"
    FORMULA = "formula"
    QUESTION = "question"
    EXPLANATION = "explanation"


PLAIN_TEXT_TYPES = {
    CardType.FLASHCARD,
    CardType.KEY_POINT,
    CardType.FORMULA,
    CardType.EXPLANATION,
    CardType.SHORT_ANSWER,
}


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReviewCard:
    """A card plus its persisted memory state."""
    id: str
    owner_id: str
    front: str
    back: str
    card_type: CardType = CardType.FLASHCARD
    course_id: Optional[str] = None
    lesson_index: int = 0
    step_index: int = 0
    concept_ids: list[str] = field(default_factory=list)

    # Memory state (stability/difficulty are 0 until the first review)
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    scheduled_days: int = 0
    reps: int = 0
    lapses: int = 0
    state: CardState = CardState.NEW
    due_at: datetime = field(default_factory=utcnow)
    last_reviewed_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def __post_init__(self):
        self.due_at = ensure_utc(self.due_at)
        self.last_reviewed_at = ensure_utc(self.last_reviewed_at)
        self.created_at = ensure_utc(self.created_at)

    def days_since_review(self, now: datetime) -> float:
        """Days between the last review and now (0 if never reviewed)."""
        if self.last_reviewed_at is None:
            return 0.0
        delta = ensure_utc(now) - self.last_reviewed_at
        return max(0.0, delta.total_seconds() / 86400.0)


# =============================================================================
# Card back payloads (tagged variants)
# =============================================================================


class MultipleChoiceData(BaseModel):
    options: list[str]
    correct_index: int = Field(alias="correctIndex")
    explanation: Optional[str] = None

    model_config = {"populate_by_name": True}


class TrueFalseData(BaseModel):
    correct: bool
    explanation: Optional[str] = None


class FillBlankData(BaseModel):
    answer: str
    acceptable_answers: list[str] = Field(default_factory=list, alias="acceptableAnswers")

    model_config = {"populate_by_name": True}


class MatchingData(BaseModel):
    """Each terms[i] matches definitions[correct_pairs[i]]."""
    terms: list[str]
    definitions: list[str]
    correct_pairs: list[int] = Field(alias="correctPairs")

    model_config = {"populate_by_name": True}


class SequenceData(BaseModel):
    items: list[str]
    correct_order: list[int] = Field(alias="correctOrder")

    model_config = {"populate_by_name": True}


QuestionData = Union[
    MultipleChoiceData,
    TrueFalseData,
    FillBlankData,
    MatchingData,
    SequenceData,
    str,
]

_PAYLOAD_MODELS: dict[CardType, type[BaseModel]] = {
    CardType.MULTIPLE_CHOICE: MultipleChoiceData,
    CardType.TRUE_FALSE: TrueFalseData,
    CardType.FILL_BLANK: FillBlankData,
    CardType.MATCHING: MatchingData,
    CardType.SEQUENCE: SequenceData,
}


def parse_card_back(card_type: CardType | str, back: str) -> QuestionData:
    """
    Parse the back of a card into its typed payload.

    Plain-text types return the string unchanged. Interactive types are
    JSON; anything that does not parse or validate falls back to the raw
    string so a malformed card can still be shown.
    """
    card_type = CardType(card_type)
    if card_type in PLAIN_TEXT_TYPES:
        return back

    model = _PAYLOAD_MODELS.get(card_type)
    try:
        data = json.loads(back)
    except (json.JSONDecodeError, TypeError):
        return back

    if model is None:
        return back
    try:
        return model.model_validate(data)
    except ValueError:
        return back


def serialize_card_back(payload: QuestionData) -> str:
    """Inverse of parse_card_back for storing interactive payloads."""
    if isinstance(payload, str):
        return payload
    return payload.model_dump_json(by_alias=True, exclude_none=True)
