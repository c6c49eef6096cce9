"""
SQL-backed card store.

Reads return domain ReviewCards (never ORM rows) so callers can hold them
after the session is closed. State writes go through a single UPDATE
guarded on the card's version, followed by the review log insert in the
same transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy import Select, func, select, update
from sqlalchemy.orm import sessionmaker

from cadence.core.errors import ConcurrencyConflict, NotFoundError
from cadence.db.base import CardStore
from cadence.db.database import get_session_factory, session_scope, storage_errors
from cadence.db.models import (
    ReviewCardConcept,
    ReviewCardModel,
    ReviewLogModel,
    UserSrsSettingsModel,
)
from cadence.db.models.review import _uuid
from cadence.study.cards import CardState, CardType, ReviewCard
from cadence.study.memory_model import SchedulingResult, coerce_state
from cadence.study.records import DueCardsSummary, LearnerSettings


def _card_type(value: str) -> CardType:
    try:
        return CardType(value)
    except ValueError:
        return CardType.FLASHCARD


def to_review_card(row: ReviewCardModel) -> ReviewCard:
    """Map an ORM row to the domain dataclass."""
    return ReviewCard(
        id=row.id,
        owner_id=row.owner_id,
        front=row.front,
        back=row.back,
        card_type=_card_type(row.card_type),
        course_id=row.course_id,
        lesson_index=row.lesson_index,
        step_index=row.step_index,
        concept_ids=row.concept_ids,
        stability=row.stability,
        difficulty=row.difficulty,
        elapsed_days=row.elapsed_days,
        scheduled_days=row.scheduled_days,
        reps=row.reps,
        lapses=row.lapses,
        state=coerce_state(row.state),
        due_at=row.due_at,
        last_reviewed_at=row.last_reviewed_at,
        created_at=row.created_at,
        version=row.version,
    )


def _exclude(stmt: Select, exclude_ids: Iterable[str]) -> Select:
    ids = list(exclude_ids)
    if ids:
        stmt = stmt.where(ReviewCardModel.id.not_in(ids))
    return stmt


class SqlCardStore(CardStore):
    """CardStore over the review_cards / review_logs / user_srs_settings tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, settings=None):
        self._factory = session_factory or get_session_factory()
        self._settings = settings

    def _scope(self):
        return session_scope(self._factory)

    def _fetch(self, operation: str, stmt: Select) -> list[ReviewCard]:
        with storage_errors(operation), self._scope() as session:
            return [to_review_card(row) for row in session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    def get_card(self, owner_id: str, card_id: str) -> ReviewCard:
        with storage_errors("get_card"), self._scope() as session:
            row = session.scalar(
                select(ReviewCardModel).where(
                    ReviewCardModel.id == card_id,
                    ReviewCardModel.owner_id == owner_id,
                )
            )
            if row is None:
                raise NotFoundError("Card", card_id)
            return to_review_card(row)

    def add_card(self, card: ReviewCard) -> ReviewCard:
        with storage_errors("add_card"), self._scope() as session:
            row = ReviewCardModel(
                id=card.id or _uuid(),
                owner_id=card.owner_id,
                course_id=card.course_id,
                lesson_index=card.lesson_index,
                step_index=card.step_index,
                card_type=card.card_type.value,
                front=card.front,
                back=card.back,
                stability=card.stability,
                difficulty=card.difficulty,
                elapsed_days=card.elapsed_days,
                scheduled_days=card.scheduled_days,
                reps=card.reps,
                lapses=card.lapses,
                state=card.state.value,
                due_at=card.due_at,
                last_reviewed_at=card.last_reviewed_at,
                created_at=card.created_at,
                updated_at=card.created_at,
                version=card.version,
            )
            row.concepts = [
                ReviewCardConcept(concept_id=concept_id)
                for concept_id in dict.fromkeys(card.concept_ids)
            ]
            session.add(row)
            session.flush()
            logger.debug(f"Added card {row.id} for {card.owner_id}")
            return to_review_card(row)

    def due_cards(
        self,
        owner_id: str,
        now: datetime,
        limit: int,
        exclude_ids: Iterable[str] = (),
        include_new: bool = True,
    ) -> list[ReviewCard]:
        if limit <= 0:
            return []
        stmt = select(ReviewCardModel).where(
            ReviewCardModel.owner_id == owner_id,
            ReviewCardModel.due_at <= now,
        )
        if not include_new:
            stmt = stmt.where(ReviewCardModel.state != CardState.NEW.value)
        stmt = _exclude(stmt, exclude_ids)
        stmt = stmt.order_by(ReviewCardModel.due_at, ReviewCardModel.created_at).limit(limit)
        return self._fetch("due_cards", stmt)

    def concept_cards(
        self,
        owner_id: str,
        concept_ids: Sequence[str],
        now: datetime,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[ReviewCard]:
        if limit <= 0 or not concept_ids:
            return []
        linked = select(ReviewCardConcept.card_id).where(
            ReviewCardConcept.concept_id.in_(list(concept_ids))
        )
        stmt = select(ReviewCardModel).where(
            ReviewCardModel.owner_id == owner_id,
            ReviewCardModel.due_at > now,
            ReviewCardModel.id.in_(linked),
        )
        stmt = _exclude(stmt, exclude_ids)
        stmt = stmt.order_by(ReviewCardModel.due_at, ReviewCardModel.created_at).limit(limit)
        return self._fetch("concept_cards", stmt)

    def new_cards(
        self,
        owner_id: str,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[ReviewCard]:
        if limit <= 0:
            return []
        stmt = select(ReviewCardModel).where(
            ReviewCardModel.owner_id == owner_id,
            ReviewCardModel.state == CardState.NEW.value,
        )
        stmt = _exclude(stmt, exclude_ids)
        stmt = stmt.order_by(ReviewCardModel.created_at, ReviewCardModel.id).limit(limit)
        return self._fetch("new_cards", stmt)

    def summarize_due(self, owner_id: str, now: datetime) -> DueCardsSummary:
        stmt = (
            select(ReviewCardModel.state, func.count())
            .where(ReviewCardModel.owner_id == owner_id, ReviewCardModel.due_at <= now)
            .group_by(ReviewCardModel.state)
        )
        with storage_errors("summarize_due"), self._scope() as session:
            counts = {state: count for state, count in session.execute(stmt)}

        return DueCardsSummary(
            new=counts.get(CardState.NEW.value, 0),
            learning=counts.get(CardState.LEARNING.value, 0),
            review=counts.get(CardState.REVIEW.value, 0),
            relearning=counts.get(CardState.RELEARNING.value, 0),
        )

    # -------------------------------------------------------------------------
    # Reviews
    # -------------------------------------------------------------------------

    def apply_review(
        self,
        card: ReviewCard,
        result: SchedulingResult,
        elapsed_days: float,
        duration_ms: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> ReviewCard:
        stmt = (
            update(ReviewCardModel)
            .where(
                ReviewCardModel.id == card.id,
                ReviewCardModel.owner_id == card.owner_id,
                ReviewCardModel.version == card.version,
            )
            .values(
                stability=result.stability,
                difficulty=result.difficulty,
                elapsed_days=elapsed_days,
                scheduled_days=result.scheduled_days,
                reps=result.reps,
                lapses=result.lapses,
                state=result.state.value,
                due_at=result.due_at,
                last_reviewed_at=result.reviewed_at,
                updated_at=result.reviewed_at,
                version=ReviewCardModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        with storage_errors("apply_review"), self._scope() as session:
            outcome = session.execute(stmt)
            if outcome.rowcount != 1:
                raise ConcurrencyConflict(card.id, card.version)

            session.add(
                ReviewLogModel(
                    card_id=card.id,
                    owner_id=card.owner_id,
                    rating=int(result.rating),
                    review_duration_ms=duration_ms,
                    reviewed_at=result.reviewed_at,
                    state_before=card.state.value,
                    state_after=result.state.value,
                    stability_after=result.stability,
                    difficulty_after=result.difficulty,
                    scheduled_days=result.scheduled_days,
                    session_id=session_id,
                )
            )

        return replace(
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

    def count_reviews_since(self, owner_id: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(ReviewLogModel)
            .where(ReviewLogModel.owner_id == owner_id, ReviewLogModel.reviewed_at >= since)
        )
        with storage_errors("count_reviews_since"), self._scope() as session:
            return session.scalar(stmt) or 0

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_learner_settings(self, owner_id: str) -> LearnerSettings:
        with storage_errors("get_learner_settings"), self._scope() as session:
            row = session.scalar(
                select(UserSrsSettingsModel).where(UserSrsSettingsModel.owner_id == owner_id)
            )
            if row is None:
                return LearnerSettings.from_settings(self._settings)
            return LearnerSettings(
                target_retention=row.target_retention,
                max_new_cards_per_day=row.max_new_cards_per_day,
                max_reviews_per_day=row.max_reviews_per_day,
                interleave_reviews=row.interleave_reviews,
            )

    def save_learner_settings(self, owner_id: str, learner: LearnerSettings) -> LearnerSettings:
        """Insert or replace the owner's settings row."""
        with storage_errors("save_learner_settings"), self._scope() as session:
            row = session.scalar(
                select(UserSrsSettingsModel).where(UserSrsSettingsModel.owner_id == owner_id)
            )
            if row is None:
                row = UserSrsSettingsModel(owner_id=owner_id)
                session.add(row)
            row.target_retention = learner.target_retention
            row.max_new_cards_per_day = learner.max_new_cards_per_day
            row.max_reviews_per_day = learner.max_reviews_per_day
            row.interleave_reviews = learner.interleave_reviews
        return learner
