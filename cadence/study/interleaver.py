"""
Interleaving for composed sessions and the due queue.

Two strategies:
- Source rotation: one card from each pool (due, gap, reinforcement, new)
  per round, preserving each pool's priority order.
- Course rotation: cards grouped by course, round-robin across groups with
  a cap on consecutive cards from the same lesson.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from cadence.study.cards import ReviewCard, ensure_utc, utcnow


class CardSource(str, Enum):
    """Pool a session card was drawn from."""
    DUE = "due"
    GAP = "gap"
    REINFORCEMENT = "reinforcement"
    NEW = "new"


SOURCE_PRIORITY = {
    CardSource.DUE: 1,
    CardSource.GAP: 2,
    CardSource.REINFORCEMENT: 3,
    CardSource.NEW: 4,
}

ROTATION_ORDER = [
    CardSource.DUE,
    CardSource.GAP,
    CardSource.REINFORCEMENT,
    CardSource.NEW,
]


@dataclass
class SessionCard:
    """A card in a composed session queue."""
    card: ReviewCard
    source: CardSource
    priority: int
    target_concept_ids: list[str] = field(default_factory=list)

    @property
    def card_id(self) -> str:
        return self.card.id


@dataclass
class InterleaveConfig:
    """Configuration for interleaving."""
    min_cards: int = 5              # sessions at or below this keep pool order
    max_consecutive_same_lesson: int = 3
    min_cards_for_course_rotation: int = 3


def interleave_session_cards(
    cards: list[SessionCard],
    config: Optional[InterleaveConfig] = None,
) -> list[SessionCard]:
    """
    Rotate through the source pools, one card each per round.

    Pools that run out drop out of the rotation; the rest continue.
    """
    config = config or InterleaveConfig()
    if len(cards) <= config.min_cards:
        return list(cards)

    by_source: dict[CardSource, deque[SessionCard]] = {
        source: deque() for source in ROTATION_ORDER
    }
    for card in cards:
        by_source[card.source].append(card)

    result: list[SessionCard] = []
    while any(by_source.values()):
        for source in ROTATION_ORDER:
            queue = by_source[source]
            if queue:
                result.append(queue.popleft())

    return result


def _lesson_key(card: ReviewCard) -> str:
    return f"{card.course_id}:{card.lesson_index}"


def interleave_by_course(
    cards: list[ReviewCard],
    now: Optional[datetime] = None,
    config: Optional[InterleaveConfig] = None,
) -> list[ReviewCard]:
    """
    Round-robin cards across courses.

    Within a course, overdue cards come first, then by due date. Courses
    are ordered by their earliest card. One card per course per round when
    there are more than two courses, two otherwise. A run from one lesson
    stops short of `max_consecutive_same_lesson` cards (two in a row at the
    default of 3) while other courses still have cards. A held-back card
    keeps the run counting until another lesson is placed.
    """
    config = config or InterleaveConfig()
    if len(cards) <= config.min_cards_for_course_rotation:
        return list(cards)

    now = ensure_utc(now) if now else utcnow()

    groups: dict[str, list[ReviewCard]] = {}
    for card in cards:
        groups.setdefault(str(card.course_id), []).append(card)

    for group in groups.values():
        group.sort(key=lambda c: (c.due_at >= now, c.due_at))

    ordered = sorted(groups.values(), key=lambda g: g[0].due_at)
    queues = [deque(group) for group in ordered]
    per_round = 1 if len(queues) > 2 else 2

    result: list[ReviewCard] = []
    last_lesson = ""
    consecutive = 0

    while len(result) < len(cards):
        added = False
        for queue in queues:
            for _ in range(per_round):
                if not queue:
                    break
                lesson = _lesson_key(queue[0])
                if lesson == last_lesson:
                    consecutive += 1
                    if consecutive >= config.max_consecutive_same_lesson:
                        break
                else:
                    last_lesson = lesson
                    consecutive = 1
                result.append(queue.popleft())
                added = True

        if not added:
            # Only one lesson left; flush in group order
            for queue in queues:
                result.extend(queue)
                queue.clear()
            break

    return result
