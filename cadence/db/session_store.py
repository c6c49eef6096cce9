"""
SQL-backed session records.

Progress counters and finalization are single UPDATE statements guarded
on status = 'in_progress', so concurrent progress reports never lose an
increment and a session is finalized at most once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Float, case, cast, select, update
from sqlalchemy.orm import Session, sessionmaker

from cadence.core.errors import NotFoundError, SessionFinalizedError
from cadence.db.base import SessionStore
from cadence.db.database import get_session_factory, session_scope, storage_errors
from cadence.db.models import ReviewSessionModel
from cadence.db.models.review import _uuid
from cadence.study.records import SessionRecord, SessionStatus, SessionType


def to_session_record(row: ReviewSessionModel) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        owner_id=row.owner_id,
        session_type=SessionType(row.session_type),
        started_at=row.started_at,
        total_cards=row.total_cards or 0,
        due_cards=row.due_cards or 0,
        gap_cards=row.gap_cards or 0,
        reinforcement_cards=row.reinforcement_cards or 0,
        new_cards=row.new_cards or 0,
        target_concept_ids=row.target_concept_ids,
        cards_completed=row.cards_completed,
        cards_correct=row.cards_correct,
        rating_total=row.rating_total,
        status=SessionStatus(row.status),
        completed_at=row.completed_at,
        total_time_seconds=row.total_time_seconds,
        average_rating=row.average_rating,
        gaps_addressed=row.gaps_addressed,
    )


class SqlSessionStore(SessionStore):
    """SessionStore over the review_sessions table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._factory = session_factory or get_session_factory()

    def _scope(self):
        return session_scope(self._factory)

    @staticmethod
    def _load(session: Session, session_id: str) -> ReviewSessionModel:
        row = session.get(ReviewSessionModel, session_id)
        if row is None:
            raise NotFoundError("Session", session_id)
        return row

    def _guarded_update(self, operation: str, session_id: str, values: dict) -> SessionRecord:
        stmt = (
            update(ReviewSessionModel)
            .where(
                ReviewSessionModel.id == session_id,
                ReviewSessionModel.status == SessionStatus.IN_PROGRESS.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with storage_errors(operation), self._scope() as session:
            outcome = session.execute(stmt)
            row = self._load(session, session_id)
            if outcome.rowcount == 0:
                raise SessionFinalizedError(session_id, row.status)
            return to_session_record(row)

    def create_session(self, record: SessionRecord) -> SessionRecord:
        with storage_errors("create_session"), self._scope() as session:
            row = ReviewSessionModel(
                id=record.id or _uuid(),
                owner_id=record.owner_id,
                session_type=record.session_type.value,
                total_cards=record.total_cards,
                due_cards=record.due_cards,
                gap_cards=record.gap_cards,
                reinforcement_cards=record.reinforcement_cards,
                new_cards=record.new_cards,
                target_concept_ids=record.target_concept_ids,
                cards_completed=0,
                cards_correct=0,
                rating_total=0,
                status=SessionStatus.IN_PROGRESS.value,
                started_at=record.started_at,
            )
            session.add(row)
            session.flush()
            return to_session_record(row)

    def get_session(self, session_id: str) -> SessionRecord:
        with storage_errors("get_session"), self._scope() as session:
            return to_session_record(self._load(session, session_id))

    def increment_progress(self, session_id: str, correct: bool, rating: int) -> SessionRecord:
        return self._guarded_update(
            "increment_progress",
            session_id,
            {
                "cards_completed": ReviewSessionModel.cards_completed + 1,
                "cards_correct": ReviewSessionModel.cards_correct + (1 if correct else 0),
                "rating_total": ReviewSessionModel.rating_total + int(rating),
            },
        )

    def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        completed_at: datetime,
        total_time_seconds: Optional[int] = None,
        gaps_addressed: Optional[list[str]] = None,
    ) -> SessionRecord:
        values = {"status": status.value, "completed_at": completed_at}
        if status == SessionStatus.COMPLETED:
            values["total_time_seconds"] = total_time_seconds
            values["gaps_addressed"] = gaps_addressed or []
            values["average_rating"] = case(
                (
                    ReviewSessionModel.cards_completed > 0,
                    cast(ReviewSessionModel.rating_total, Float)
                    / ReviewSessionModel.cards_completed,
                ),
                else_=0.0,
            )
        return self._guarded_update("finalize_session", session_id, values)

    def completed_sessions(self, owner_id: str, since: datetime) -> list[SessionRecord]:
        stmt = (
            select(ReviewSessionModel)
            .where(
                ReviewSessionModel.owner_id == owner_id,
                ReviewSessionModel.status == SessionStatus.COMPLETED.value,
                ReviewSessionModel.completed_at >= since,
            )
            .order_by(ReviewSessionModel.completed_at)
        )
        with storage_errors("completed_sessions"), self._scope() as session:
            return [to_session_record(row) for row in session.scalars(stmt)]
