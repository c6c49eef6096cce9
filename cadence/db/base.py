"""
Storage and oracle interfaces.

The study services depend only on these abstract classes. SQL-backed
implementations live alongside (SqlCardStore, SqlSessionStore, the SQL
oracles); tests substitute in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional

from cadence.study.cards import ReviewCard
from cadence.study.memory_model import SchedulingResult
from cadence.study.records import (
    DueCardsSummary,
    LearnerSettings,
    SessionRecord,
    SessionStatus,
)


# =============================================================================
# Cards
# =============================================================================


class CardStore(ABC):
    """
    Card state, review log and learner settings.

    All reads are scoped by owner. Card state writes are compare-and-set
    on ReviewCard.version.
    """

    @abstractmethod
    def get_card(self, owner_id: str, card_id: str) -> ReviewCard:
        """
        Load one card.

        Raises:
            NotFoundError: no such card for this owner
        """

    @abstractmethod
    def add_card(self, card: ReviewCard) -> ReviewCard:
        """Insert a new card and return it as stored."""

    @abstractmethod
    def due_cards(
        self,
        owner_id: str,
        now: datetime,
        limit: int,
        exclude_ids: Iterable[str] = (),
        include_new: bool = True,
    ) -> list[ReviewCard]:
        """Cards with due_at <= now, most overdue first.

        With include_new=False, cards never reviewed are left out.
        """

    @abstractmethod
    def concept_cards(
        self,
        owner_id: str,
        concept_ids: Sequence[str],
        now: datetime,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[ReviewCard]:
        """Not-yet-due cards linked to any of `concept_ids`, soonest first."""

    @abstractmethod
    def new_cards(
        self,
        owner_id: str,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[ReviewCard]:
        """Never-reviewed cards, oldest first."""

    @abstractmethod
    def summarize_due(self, owner_id: str, now: datetime) -> DueCardsSummary:
        """Counts of due cards by lifecycle state."""

    @abstractmethod
    def apply_review(
        self,
        card: ReviewCard,
        result: SchedulingResult,
        elapsed_days: float,
        duration_ms: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> ReviewCard:
        """
        Write the new memory state and append the review log, atomically.

        The write only succeeds if the stored version still equals
        card.version; the returned card carries the bumped version.

        Raises:
            ConcurrencyConflict: the card changed since it was read
        """

    @abstractmethod
    def count_reviews_since(self, owner_id: str, since: datetime) -> int:
        """Number of review log entries at or after `since`."""

    @abstractmethod
    def get_learner_settings(self, owner_id: str) -> LearnerSettings:
        """Per-learner settings, or configured defaults when none are stored."""


# =============================================================================
# Sessions
# =============================================================================


class SessionStore(ABC):
    """Session bookkeeping records."""

    @abstractmethod
    def create_session(self, record: SessionRecord) -> SessionRecord:
        """Insert an in_progress record and return it with its id."""

    @abstractmethod
    def get_session(self, session_id: str) -> SessionRecord:
        """
        Raises:
            NotFoundError: unknown session id
        """

    @abstractmethod
    def increment_progress(self, session_id: str, correct: bool, rating: int) -> SessionRecord:
        """
        Bump cards_completed (and cards_correct, rating_total) in place.

        Raises:
            NotFoundError: unknown session id
            SessionFinalizedError: session is no longer in progress
        """

    @abstractmethod
    def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        completed_at: datetime,
        total_time_seconds: Optional[int] = None,
        gaps_addressed: Optional[list[str]] = None,
    ) -> SessionRecord:
        """
        Move an in_progress session to a terminal status, exactly once.

        Completing also fixes average_rating = rating_total / cards_completed
        (0 when nothing was completed) from the stored counters.

        Raises:
            NotFoundError: unknown session id
            SessionFinalizedError: session was already completed or abandoned
        """

    @abstractmethod
    def completed_sessions(self, owner_id: str, since: datetime) -> list[SessionRecord]:
        """Completed sessions whose completed_at is at or after `since`."""


# =============================================================================
# Oracles
# =============================================================================

SEVERITY_ORDER = ("critical", "moderate", "minor")


class GapOracle(ABC):
    """Source of concepts the learner has not adequately mastered."""

    @abstractmethod
    def unresolved_gap_concepts(
        self,
        owner_id: str,
        severities: Optional[Sequence[str]] = None,
    ) -> list[str]:
        """
        Concept ids with unresolved gaps, most severe first.

        `severities` restricts the result; None means the oracle's
        configured default.
        """


class MasteryOracle(ABC):
    """Source of concepts whose mastery is decaying."""

    @abstractmethod
    def decaying_concepts(self, owner_id: str) -> list[str]:
        """Concept ids whose mastery has slipped well below its peak."""
