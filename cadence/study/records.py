"""
Session and learner records shared by the study services and the stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from cadence.study.cards import ensure_utc


class SessionType(str, Enum):
    DAILY = "daily"
    TARGETED = "targeted"
    GAP_FIX = "gap_fix"
    CUSTOM = "custom"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


@dataclass
class SessionRecord:
    """Persisted summary of a practice session."""
    owner_id: str
    session_type: SessionType
    started_at: datetime
    id: Optional[str] = None

    total_cards: int = 0
    due_cards: int = 0
    gap_cards: int = 0
    reinforcement_cards: int = 0
    new_cards: int = 0
    target_concept_ids: Optional[list[str]] = None

    cards_completed: int = 0
    cards_correct: int = 0
    rating_total: int = 0

    status: SessionStatus = SessionStatus.IN_PROGRESS
    completed_at: Optional[datetime] = None
    total_time_seconds: Optional[int] = None
    average_rating: Optional[float] = None
    gaps_addressed: Optional[list[str]] = None

    def __post_init__(self):
        self.started_at = ensure_utc(self.started_at)
        self.completed_at = ensure_utc(self.completed_at)


@dataclass
class SessionStats:
    """Aggregate over completed sessions in a time window."""
    total_sessions: int = 0
    total_cards: int = 0
    total_correct: int = 0
    average_accuracy: int = 0      # percent
    total_time_minutes: int = 0
    gaps_addressed: int = 0
    window_days: int = 7


@dataclass
class LearnerSettings:
    """Per-learner scheduling preferences (defaults from config when unset)."""
    target_retention: float = 0.90
    max_new_cards_per_day: int = 20
    max_reviews_per_day: int = 100
    interleave_reviews: bool = True

    @classmethod
    def from_settings(cls, settings=None) -> LearnerSettings:
        if settings is None:
            from config import get_settings

            settings = get_settings()
        return cls(
            target_retention=settings.fsrs_desired_retention,
            max_new_cards_per_day=settings.srs_max_new_cards_per_day,
            max_reviews_per_day=settings.srs_max_reviews_per_day,
            interleave_reviews=settings.srs_interleave_reviews,
        )


@dataclass
class DueCardsSummary:
    """Counts of currently due cards by lifecycle state."""
    new: int = 0
    learning: int = 0
    review: int = 0
    relearning: int = 0

    @property
    def total_due(self) -> int:
        return self.new + self.learning + self.review + self.relearning

