"""
In-memory fakes of the stores and oracles.

They follow the same ordering, exclusion and guard rules as the SQL
implementations so the study services can be tested without a database.
"""
from dataclasses import replace
from itertools import count

from cadence.core.errors import ConcurrencyConflict, NotFoundError, SessionFinalizedError
from cadence.db.base import (
    SEVERITY_ORDER,
    CardStore,
    GapOracle,
    MasteryOracle,
    SessionStore,
)
from cadence.study.cards import CardState, ReviewCard
from cadence.study.records import DueCardsSummary, LearnerSettings, SessionStatus


class FakeCardStore(CardStore):
    """Dict-backed CardStore with the same ordering and exclusion rules as SqlCardStore."""

    def __init__(self, learner: LearnerSettings | None = None):
        self.cards: dict[str, ReviewCard] = {}
        self.logs: list[dict] = []
        self.learner = learner or LearnerSettings()
        self.conflicts_to_raise = 0

    def _owned(self, owner_id, exclude_ids=()):
        excluded = set(exclude_ids)
        return [
            c for c in self.cards.values() if c.owner_id == owner_id and c.id not in excluded
        ]

    def get_card(self, owner_id, card_id):
        card = self.cards.get(card_id)
        if card is None or card.owner_id != owner_id:
            raise NotFoundError("Card", card_id)
        return card

    def add_card(self, card):
        self.cards[card.id] = card
        return card

    def due_cards(self, owner_id, now, limit, exclude_ids=(), include_new=True):
        if limit <= 0:
            return []
        cards = [
            c
            for c in self._owned(owner_id, exclude_ids)
            if c.due_at <= now and (include_new or c.state != CardState.NEW)
        ]
        return sorted(cards, key=lambda c: (c.due_at, c.created_at))[:limit]

    def concept_cards(self, owner_id, concept_ids, now, limit, exclude_ids=()):
        if limit <= 0 or not concept_ids:
            return []
        wanted = set(concept_ids)
        cards = [
            c
            for c in self._owned(owner_id, exclude_ids)
            if c.due_at > now and wanted.intersection(c.concept_ids)
        ]
        return sorted(cards, key=lambda c: (c.due_at, c.created_at))[:limit]

    def new_cards(self, owner_id, limit, exclude_ids=()):
        if limit <= 0:
            return []
        cards = [c for c in self._owned(owner_id, exclude_ids) if c.state == CardState.NEW]
        return sorted(cards, key=lambda c: (c.created_at, c.id))[:limit]

    def summarize_due(self, owner_id, now):
        summary = DueCardsSummary()
        for card in self._owned(owner_id):
            if card.due_at <= now:
                setattr(summary, card.state.value, getattr(summary, card.state.value) + 1)
        return summary

    def apply_review(self, card, result, elapsed_days, duration_ms=None, session_id=None):
        stored = self.cards[card.id]
        if self.conflicts_to_raise > 0 or stored.version != card.version:
            self.conflicts_to_raise = max(0, self.conflicts_to_raise - 1)
            raise ConcurrencyConflict(card.id, card.version)
        updated = replace(
            card,
            stability=result.stability,
            difficulty=result.difficulty,
            elapsed_days=elapsed_days,
            scheduled_days=result.scheduled_days,
            reps=result.reps,
            lapses=result.lapses,
            state=result.state,
            due_at=result.due_at,
            last_reviewed_at=result.reviewed_at,
            version=card.version + 1,
        )
        self.cards[card.id] = updated
        self.logs.append(
            {
                "card_id": card.id,
                "owner_id": card.owner_id,
                "rating": int(result.rating),
                "reviewed_at": result.reviewed_at,
                "duration_ms": duration_ms,
                "session_id": session_id,
            }
        )
        return updated

    def count_reviews_since(self, owner_id, since):
        return sum(1 for log in self.logs if log["owner_id"] == owner_id and log["reviewed_at"] >= since)

    def get_learner_settings(self, owner_id):
        return self.learner


class FakeSessionStore(SessionStore):
    """Dict-backed SessionStore."""

    def __init__(self, fail_on_create: Exception | None = None):
        self.records = {}
        self.fail_on_create = fail_on_create
        self._ids = count(1)

    def _get(self, session_id):
        record = self.records.get(session_id)
        if record is None:
            raise NotFoundError("Session", session_id)
        return record

    def create_session(self, record):
        if self.fail_on_create is not None:
            raise self.fail_on_create
        stored = replace(record, id=f"session-{next(self._ids)}")
        self.records[stored.id] = stored
        return stored

    def get_session(self, session_id):
        return replace(self._get(session_id))

    def increment_progress(self, session_id, correct, rating):
        record = self._get(session_id)
        if record.status.is_terminal:
            raise SessionFinalizedError(session_id, record.status.value)
        record.cards_completed += 1
        record.cards_correct += 1 if correct else 0
        record.rating_total += rating
        return replace(record)

    def finalize_session(
        self, session_id, status, completed_at, total_time_seconds=None, gaps_addressed=None
    ):
        record = self._get(session_id)
        if record.status.is_terminal:
            raise SessionFinalizedError(session_id, record.status.value)
        record.status = status
        record.completed_at = completed_at
        if status == SessionStatus.COMPLETED:
            record.total_time_seconds = total_time_seconds
            record.gaps_addressed = gaps_addressed or []
            record.average_rating = (
                record.rating_total / record.cards_completed if record.cards_completed else 0.0
            )
        return replace(record)

    def completed_sessions(self, owner_id, since):
        return [
            replace(r)
            for r in self.records.values()
            if r.owner_id == owner_id
            and r.status == SessionStatus.COMPLETED
            and r.completed_at >= since
        ]


class StaticGapOracle(GapOracle):
    """Gaps given as {concept_id: severity}."""

    def __init__(self, gaps: dict[str, str] | None = None):
        self.gaps = gaps or {}
        self.requested_severities = []

    def unresolved_gap_concepts(self, owner_id, severities=None):
        wanted = list(severities) if severities is not None else ["critical", "moderate"]
        self.requested_severities.append(wanted)
        ranked = sorted(self.gaps.items(), key=lambda item: SEVERITY_ORDER.index(item[1]))
        return [concept for concept, severity in ranked if severity in wanted]


class StaticMasteryOracle(MasteryOracle):
    def __init__(self, decaying: list[str] | None = None):
        self.decaying = decaying or []

    def decaying_concepts(self, owner_id):
        return list(self.decaying)


