"""
Review scheduling models.

SQLAlchemy models for:
- Review cards and their memory state
- Card-to-concept links
- Append-only review logs
- Review session records
- Per-learner SRS settings

Column types stay portable (no PostgreSQL-only types) so the same schema
runs on SQLite for local use and tests.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _uuid() -> str:
    return str(uuid4())


class ReviewCardModel(Base):
    """
    A reviewable card and its FSRS memory state.

    `version` is the optimistic-concurrency token: every state write must
    match the version it read and bumps it by one.
    """

    __tablename__ = "review_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Content source
    course_id: Mapped[str | None] = mapped_column(Text)
    lesson_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Content (opaque to scheduling)
    card_type: Mapped[str] = mapped_column(Text, default="flashcard", nullable=False)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)

    # FSRS state
    stability: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    difficulty: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    elapsed_days: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    scheduled_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lapses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    state: Mapped[str] = mapped_column(String(16), default="new", nullable=False)

    # Scheduling
    due_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    # Relationships
    concepts: Mapped[list[ReviewCardConcept]] = relationship(
        back_populates="card", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint(
            "state IN ('new', 'learning', 'review', 'relearning')", name="ck_review_cards_state"
        ),
        Index("idx_review_cards_owner_due", "owner_id", "due_at"),
        Index("idx_review_cards_owner_state", "owner_id", "state"),
    )

    def __repr__(self) -> str:
        return f"<ReviewCard {self.id} owner={self.owner_id} state={self.state} due={self.due_at}>"

    @property
    def concept_ids(self) -> list[str]:
        return [link.concept_id for link in self.concepts]


class ReviewCardConcept(Base):
    """Which concepts a card tests."""

    __tablename__ = "review_card_concepts"

    card_id: Mapped[str] = mapped_column(
        ForeignKey("review_cards.id", ondelete="CASCADE"), primary_key=True
    )
    concept_id: Mapped[str] = mapped_column(Text, primary_key=True)

    card: Mapped[ReviewCardModel] = relationship(back_populates="concepts")

    __table_args__ = (Index("idx_review_card_concepts_concept", "concept_id"),)


class ReviewLogModel(Base):
    """One review event. Insert-only."""

    __tablename__ = "review_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    card_id: Mapped[str] = mapped_column(
        ForeignKey("review_cards.id", ondelete="CASCADE"), nullable=False
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review_duration_ms: Mapped[int | None] = mapped_column(Integer)
    reviewed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    # State snapshot for analytics
    state_before: Mapped[str] = mapped_column(String(16), nullable=False)
    state_after: Mapped[str] = mapped_column(String(16), nullable=False)
    stability_after: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_after: Mapped[float] = mapped_column(Float, nullable=False)
    scheduled_days: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(36))

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 4", name="ck_review_logs_rating"),
        Index("idx_review_logs_owner_reviewed", "owner_id", "reviewed_at"),
        Index("idx_review_logs_card", "card_id"),
    )

    def __repr__(self) -> str:
        return f"<ReviewLog card={self.card_id} rating={self.rating} at={self.reviewed_at}>"


class ReviewSessionModel(Base):
    """
    Summary record of one composed practice session.

    Created in_progress; finalized exactly once as completed or abandoned.
    """

    __tablename__ = "review_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    session_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # Composition
    total_cards: Mapped[int] = mapped_column(Integer, default=0)
    due_cards: Mapped[int] = mapped_column(Integer, default=0)
    gap_cards: Mapped[int] = mapped_column(Integer, default=0)
    reinforcement_cards: Mapped[int] = mapped_column(Integer, default=0)
    new_cards: Mapped[int] = mapped_column(Integer, default=0)
    target_concept_ids: Mapped[list | None] = mapped_column(JSON)

    # Progress
    cards_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cards_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(16), default="in_progress", nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_time_seconds: Mapped[int | None] = mapped_column(Integer)
    average_rating: Mapped[float | None] = mapped_column(Float)
    gaps_addressed: Mapped[list | None] = mapped_column(JSON)

    __table_args__ = (
        CheckConstraint(
            "session_type IN ('daily', 'targeted', 'gap_fix', 'custom')",
            name="ck_review_sessions_type",
        ),
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'abandoned')",
            name="ck_review_sessions_status",
        ),
        Index("idx_review_sessions_owner_status", "owner_id", "status", "completed_at"),
    )

    def __repr__(self) -> str:
        return f"<ReviewSession {self.id} owner={self.owner_id} status={self.status}>"


class UserSrsSettingsModel(Base):
    """Per-learner scheduling preferences."""

    __tablename__ = "user_srs_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    target_retention: Mapped[float] = mapped_column(Float, default=0.90, nullable=False)
    max_new_cards_per_day: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    max_reviews_per_day: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    interleave_reviews: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    __table_args__ = (UniqueConstraint("owner_id", name="uq_user_srs_settings_owner"),)
