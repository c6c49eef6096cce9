"""
Review submission.

One review = load card, run the memory model, compare-and-set the new
state and append the log entry. A concurrent writer that got there first
surfaces as ConcurrencyConflict; submit_review_with_retry re-runs the
whole sequence against the fresh state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger

from cadence.core.errors import ConcurrencyConflict, ValidationError
from cadence.db.base import CardStore
from cadence.study.cards import CardState, ReviewCard, ensure_utc, utcnow
from cadence.study.memory_model import MemoryModel, SchedulingResult, validate_rating


@dataclass
class ReviewOutcome:
    """What the caller needs after a review: the stored card and its schedule."""
    card: ReviewCard
    result: SchedulingResult

    @property
    def next_due_at(self) -> datetime:
        return self.result.due_at

    @property
    def scheduled_days(self) -> int:
        return self.result.scheduled_days

    @property
    def new_state(self) -> CardState:
        return self.result.state


class ReviewService:
    """Applies learner ratings to stored cards."""

    def __init__(self, cards: CardStore, model: Optional[MemoryModel] = None):
        self.cards = cards
        self.model = model or MemoryModel()

    def submit_review(
        self,
        owner_id: str,
        card_id: str,
        rating,
        duration_ms: Optional[int] = None,
        now: Optional[datetime] = None,
        session_id: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Record a rating for a card.

        Raises:
            ValidationError: rating outside 1-4 or negative duration (nothing is read or written)
            NotFoundError: card does not exist for this owner
            ConcurrencyConflict: card changed between read and write
            StorageError: persistence failure
        """
        rating = validate_rating(rating)
        if duration_ms is not None and duration_ms < 0:
            raise ValidationError(f"Invalid review duration: {duration_ms}ms")
        now = ensure_utc(now) if now else utcnow()

        card = self.cards.get_card(owner_id, card_id)
        elapsed_days = card.days_since_review(now)
        learner = self.cards.get_learner_settings(owner_id)

        result = self.model.review_card(
            card, rating, now=now, request_retention=learner.target_retention
        )
        updated = self.cards.apply_review(
            card, result, elapsed_days, duration_ms=duration_ms, session_id=session_id
        )
        return ReviewOutcome(card=updated, result=result)

    def submit_review_with_retry(
        self,
        owner_id: str,
        card_id: str,
        rating,
        duration_ms: Optional[int] = None,
        now: Optional[datetime] = None,
        session_id: Optional[str] = None,
        attempts: int = 3,
    ) -> ReviewOutcome:
        """submit_review, re-run on ConcurrencyConflict up to `attempts` times."""
        if attempts < 1:
            raise ValidationError(f"attempts must be >= 1 (got {attempts})")

        attempt = 1
        while True:
            try:
                return self.submit_review(
                    owner_id,
                    card_id,
                    rating,
                    duration_ms=duration_ms,
                    now=now,
                    session_id=session_id,
                )
            except ConcurrencyConflict as e:
                if attempt >= attempts:
                    logger.error(f"Giving up on review of {card_id} after {attempts} attempts")
                    raise
                logger.warning(f"{e}; retrying ({attempt}/{attempts})")
                attempt += 1
