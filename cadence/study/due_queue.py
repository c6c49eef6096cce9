"""
Due queue - the plain "cards to review today" list.

Honours the learner's daily limits: reviews already logged today count
against max_reviews_per_day, new cards are capped by
max_new_cards_per_day and come first, due reviewed cards fill the rest.
Optionally interleaved by course and lesson.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from loguru import logger

from cadence.db.base import CardStore
from cadence.study.cards import ReviewCard, ensure_utc, utcnow
from cadence.study.interleaver import InterleaveConfig, interleave_by_course
from cadence.study.records import DueCardsSummary, LearnerSettings


@dataclass
class DueQueue:
    """Today's review queue."""
    cards: list[ReviewCard] = field(default_factory=list)
    new_cards: int = 0
    review_cards: int = 0
    reviewed_today: int = 0
    settings: LearnerSettings = field(default_factory=LearnerSettings)

    @property
    def cards_due(self) -> int:
        return len(self.cards)


def start_of_day(now: datetime) -> datetime:
    """Midnight (UTC) of the day containing `now`."""
    return ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)


class DueQueueBuilder:
    """Builds due queues from a card store."""

    def __init__(self, cards: CardStore, config: Optional[InterleaveConfig] = None):
        self.cards = cards
        self.config = config or InterleaveConfig()

    def get_due_queue(self, owner_id: str, now: Optional[datetime] = None) -> DueQueue:
        now = ensure_utc(now) if now else utcnow()
        learner = self.cards.get_learner_settings(owner_id)

        reviewed_today = self.cards.count_reviews_since(owner_id, start_of_day(now))
        remaining = max(0, learner.max_reviews_per_day - reviewed_today)

        new = self.cards.new_cards(owner_id, min(learner.max_new_cards_per_day, remaining))
        due = self.cards.due_cards(owner_id, now, remaining - len(new), include_new=False)

        cards = new + due
        if learner.interleave_reviews:
            cards = interleave_by_course(cards, now=now, config=self.config)

        logger.debug(
            f"Due queue for {owner_id}: {len(new)} new, {len(due)} due, "
            f"{reviewed_today} already reviewed today"
        )
        return DueQueue(
            cards=cards,
            new_cards=len(new),
            review_cards=len(due),
            reviewed_today=reviewed_today,
            settings=learner,
        )

    def summarize_due(self, owner_id: str, now: Optional[datetime] = None) -> DueCardsSummary:
        now = ensure_utc(now) if now else utcnow()
        return self.cards.summarize_due(owner_id, now)
