"""
Gap and mastery tables.

Written by the external gap-detection and mastery subsystems; the
scheduler only reads them through the oracles in cadence.db.oracles.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .review import _uuid


class KnowledgeGapModel(Base):
    """A concept flagged as inadequately mastered."""

    __tablename__ = "user_knowledge_gaps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    concept_id: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)  # 'critical', 'moderate', 'minor'
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    __table_args__ = (Index("idx_knowledge_gaps_owner_resolved", "owner_id", "resolved"),)

    def __repr__(self) -> str:
        return f"<KnowledgeGap {self.concept_id} severity={self.severity} resolved={self.resolved}>"


class ConceptMasteryModel(Base):
    """Current and peak mastery of a concept (0-1 scale)."""

    __tablename__ = "user_concept_mastery"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    concept_id: Mapped[str] = mapped_column(Text, nullable=False)
    mastery_level: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    peak_mastery: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (UniqueConstraint("owner_id", "concept_id", name="uq_concept_mastery_owner"),)

    def __repr__(self) -> str:
        return f"<ConceptMastery {self.concept_id} mastery={self.mastery_level} peak={self.peak_mastery}>"
