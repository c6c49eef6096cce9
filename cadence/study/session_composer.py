"""
Session Composer - builds one practice session from four ranked pools.

Pools, filled strictly in priority order, each excluding cards already
chosen:
1. Due: any card whose due date has passed, most overdue first
2. Gap: not-yet-due cards testing concepts with unresolved gaps
3. Reinforcement: not-yet-due cards testing concepts whose mastery decays
4. New: never-reviewed cards not already drawn, oldest first

The merged queue is interleaved by source, recorded as an in_progress
session, and then tracked through progress, completion or abandonment.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from cadence.core.errors import SessionFinalizedError, ValidationError
from cadence.db.base import (
    SEVERITY_ORDER,
    CardStore,
    GapOracle,
    MasteryOracle,
    SessionStore,
)
from cadence.study.cards import ReviewCard, ensure_utc, utcnow
from cadence.study.interleaver import (
    SOURCE_PRIORITY,
    CardSource,
    InterleaveConfig,
    SessionCard,
    interleave_session_cards,
)
from cadence.study.memory_model import Rating, round_half_up, validate_rating
from cadence.study.records import (
    SessionRecord,
    SessionStats,
    SessionStatus,
    SessionType,
)


@dataclass
class SessionConfig:
    """Pool sizes and session defaults."""
    max_cards: int = 50
    new_card_limit: int = 10
    due_floor: int = 20
    gap_card_limit: int = 10
    reinforcement_card_limit: int = 5
    interleave_min_cards: int = 5
    seconds_per_card: int = 30
    targeted_max_cards: int = 20
    gap_fix_max_cards: int = 30

    @classmethod
    def from_settings(cls, settings=None) -> SessionConfig:
        if settings is None:
            from config import get_settings

            settings = get_settings()
        return cls(**settings.get_session_config())

    def due_cap(self, max_cards: int, new_card_limit: int) -> int:
        """Due pool ceiling: leave room for new cards, but never below the floor or above max_cards."""
        return min(max_cards, max(max_cards - new_card_limit, self.due_floor))


@dataclass
class ComposedSession:
    """A composed session: the interleaved queue plus its record."""
    id: str
    owner_id: str
    session_type: SessionType
    cards: list[SessionCard] = field(default_factory=list)
    due_cards: int = 0
    gap_cards: int = 0
    reinforcement_cards: int = 0
    new_cards: int = 0
    target_concept_ids: Optional[list[str]] = None
    started_at: datetime = field(default_factory=utcnow)
    seconds_per_card: int = 30

    @property
    def total_cards(self) -> int:
        return len(self.cards)

    @property
    def estimated_minutes(self) -> int:
        return math.ceil(self.total_cards * self.seconds_per_card / 60)

    @property
    def card_ids(self) -> list[str]:
        return [entry.card_id for entry in self.cards]


class _PoolCollector:
    """Accumulates pool draws, dropping any card id already chosen."""

    def __init__(self, max_cards: int):
        self.max_cards = max_cards
        self.entries: list[SessionCard] = []
        self.ids: set[str] = set()
        self.counts = {source: 0 for source in CardSource}

    @property
    def remaining(self) -> int:
        return max(0, self.max_cards - len(self.entries))

    def add(
        self,
        cards: list[ReviewCard],
        source: CardSource,
        targets: Optional[set[str]] = None,
    ) -> None:
        for card in cards:
            if card.id in self.ids or self.remaining == 0:
                continue
            target_ids = [c for c in card.concept_ids if c in targets] if targets else []
            self.entries.append(
                SessionCard(
                    card=card,
                    source=source,
                    priority=SOURCE_PRIORITY[source],
                    target_concept_ids=target_ids,
                )
            )
            self.ids.add(card.id)
            self.counts[source] += 1


class SessionComposer:
    """
    Composes sessions and runs their lifecycle.

    Example:
        composer = SessionComposer(card_store, session_store, gap_oracle, mastery_oracle)
        session = composer.compose_session("learner-1")
        for entry in session.cards:
            ...
            composer.record_progress(session.id, rating)
        composer.complete_session(session.id)
    """

    def __init__(
        self,
        cards: CardStore,
        sessions: SessionStore,
        gaps: GapOracle,
        mastery: MasteryOracle,
        config: Optional[SessionConfig] = None,
    ):
        self.cards = cards
        self.sessions = sessions
        self.gaps = gaps
        self.mastery = mastery
        self.config = config or SessionConfig()

    # =========================================================================
    # Composition
    # =========================================================================

    def compose_session(
        self,
        owner_id: str,
        max_cards: Optional[int] = None,
        new_card_limit: Optional[int] = None,
        target_concept_ids: Optional[Sequence[str]] = None,
        session_type: SessionType = SessionType.DAILY,
        now: Optional[datetime] = None,
    ) -> ComposedSession:
        """
        Build a session of at most `max_cards` distinct cards.

        Explicit `target_concept_ids` replace the learner's unresolved gaps
        as the gap pool's concepts; an empty list disables the gap pool.

        Raises:
            ValidationError: negative max_cards or new_card_limit
            StorageError: a pool read or the session insert failed
        """
        max_cards = self.config.max_cards if max_cards is None else max_cards
        new_card_limit = self.config.new_card_limit if new_card_limit is None else new_card_limit
        if max_cards < 0 or new_card_limit < 0:
            raise ValidationError(
                f"max_cards and new_card_limit must be >= 0 (got {max_cards}, {new_card_limit})"
            )
        now = ensure_utc(now) if now else utcnow()
        session_type = SessionType(session_type)

        pools = _PoolCollector(max_cards)

        # 1. Due
        due_cap = self.config.due_cap(max_cards, new_card_limit)
        pools.add(self.cards.due_cards(owner_id, now, due_cap), CardSource.DUE)

        # 2. Gap
        if target_concept_ids is not None:
            targets = list(dict.fromkeys(target_concept_ids))
        else:
            targets = self.gaps.unresolved_gap_concepts(owner_id)
        if pools.remaining and targets:
            limit = min(self.config.gap_card_limit, pools.remaining)
            drawn = self.cards.concept_cards(owner_id, targets, now, limit, exclude_ids=pools.ids)
            pools.add(drawn, CardSource.GAP, targets=set(targets))

        # 3. Reinforcement
        if pools.remaining:
            decaying = self.mastery.decaying_concepts(owner_id)
            if decaying:
                limit = min(self.config.reinforcement_card_limit, pools.remaining)
                drawn = self.cards.concept_cards(
                    owner_id, decaying, now, limit, exclude_ids=pools.ids
                )
                pools.add(drawn, CardSource.REINFORCEMENT)

        # 4. New
        if pools.remaining:
            limit = min(new_card_limit, pools.remaining)
            pools.add(
                self.cards.new_cards(owner_id, limit, exclude_ids=pools.ids), CardSource.NEW
            )

        record = self.sessions.create_session(
            SessionRecord(
                owner_id=owner_id,
                session_type=session_type,
                started_at=now,
                total_cards=len(pools.entries),
                due_cards=pools.counts[CardSource.DUE],
                gap_cards=pools.counts[CardSource.GAP],
                reinforcement_cards=pools.counts[CardSource.REINFORCEMENT],
                new_cards=pools.counts[CardSource.NEW],
                target_concept_ids=targets or None,
            )
        )

        ordered = interleave_session_cards(
            pools.entries, InterleaveConfig(min_cards=self.config.interleave_min_cards)
        )

        logger.info(
            f"Composed {session_type.value} session {record.id} for {owner_id}: "
            f"{len(ordered)} cards (due={record.due_cards}, gap={record.gap_cards}, "
            f"reinforcement={record.reinforcement_cards}, new={record.new_cards})"
        )

        return ComposedSession(
            id=record.id,
            owner_id=owner_id,
            session_type=session_type,
            cards=ordered,
            due_cards=record.due_cards,
            gap_cards=record.gap_cards,
            reinforcement_cards=record.reinforcement_cards,
            new_cards=record.new_cards,
            target_concept_ids=record.target_concept_ids,
            started_at=record.started_at,
            seconds_per_card=self.config.seconds_per_card,
        )

    def compose_targeted_session(
        self,
        owner_id: str,
        concept_ids: Sequence[str],
        max_cards: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ComposedSession:
        """Focused practice on specific concepts; no new cards."""
        return self.compose_session(
            owner_id,
            max_cards=self.config.targeted_max_cards if max_cards is None else max_cards,
            new_card_limit=0,
            target_concept_ids=list(concept_ids),
            session_type=SessionType.TARGETED,
            now=now,
        )

    def compose_gap_fix_session(
        self,
        owner_id: str,
        max_cards: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ComposedSession:
        """Practice against every unresolved gap, critical first; no new cards."""
        gap_concepts = self.gaps.unresolved_gap_concepts(owner_id, severities=SEVERITY_ORDER)
        return self.compose_session(
            owner_id,
            max_cards=self.config.gap_fix_max_cards if max_cards is None else max_cards,
            new_card_limit=0,
            target_concept_ids=gap_concepts,
            session_type=SessionType.GAP_FIX,
            now=now,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def get_open_session(self, session_id: str) -> SessionRecord:
        """
        Load a session that can still take progress.

        Raises:
            NotFoundError: unknown session
            SessionFinalizedError: session already completed or abandoned
        """
        record = self.sessions.get_session(session_id)
        if record.status.is_terminal:
            raise SessionFinalizedError(session_id, record.status.value)
        return record

    def record_progress(self, session_id: str, rating) -> SessionRecord:
        """
        Count one reviewed card against the session. Good or Easy counts as correct.

        Raises:
            ValidationError: invalid rating
            NotFoundError: unknown session
            SessionFinalizedError: session already completed or abandoned
        """
        rating = validate_rating(rating)
        return self.sessions.increment_progress(
            session_id, correct=rating >= Rating.GOOD, rating=int(rating)
        )

    def complete_session(
        self,
        session_id: str,
        gaps_addressed: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> SessionRecord:
        """
        Finalize a session as completed.

        Raises:
            NotFoundError: unknown session
            SessionFinalizedError: session already completed or abandoned
        """
        now = ensure_utc(now) if now else utcnow()
        record = self.get_open_session(session_id)

        elapsed = max(0.0, (now - record.started_at).total_seconds())
        record = self.sessions.finalize_session(
            session_id,
            SessionStatus.COMPLETED,
            completed_at=now,
            total_time_seconds=round_half_up(elapsed),
            gaps_addressed=list(gaps_addressed or []),
        )
        logger.info(
            f"Completed session {session_id}: {record.cards_completed} cards, "
            f"{record.cards_correct} correct, avg rating {record.average_rating or 0:.2f}"
        )
        return record

    def abandon_session(self, session_id: str, now: Optional[datetime] = None) -> SessionRecord:
        """
        Finalize a session as abandoned.

        Raises:
            NotFoundError: unknown session
            SessionFinalizedError: session already completed or abandoned
        """
        now = ensure_utc(now) if now else utcnow()
        record = self.sessions.finalize_session(
            session_id, SessionStatus.ABANDONED, completed_at=now
        )
        logger.info(f"Abandoned session {session_id} after {record.cards_completed} cards")
        return record

    # =========================================================================
    # Stats
    # =========================================================================

    def get_session_stats(
        self,
        owner_id: str,
        window_days: int = 7,
        now: Optional[datetime] = None,
    ) -> SessionStats:
        """Totals over sessions completed in the last `window_days` days."""
        now = ensure_utc(now) if now else utcnow()
        sessions = self.sessions.completed_sessions(owner_id, now - timedelta(days=window_days))

        stats = SessionStats(window_days=window_days)
        total_seconds = 0
        for record in sessions:
            stats.total_sessions += 1
            stats.total_cards += record.cards_completed
            stats.total_correct += record.cards_correct
            total_seconds += record.total_time_seconds or 0
            stats.gaps_addressed += len(record.gaps_addressed or [])

        if stats.total_cards:
            stats.average_accuracy = round_half_up(stats.total_correct / stats.total_cards * 100)
        stats.total_time_minutes = round_half_up(total_seconds / 60)
        return stats
