"""
Gap and mastery oracles over the concept tables.

The thresholds are policy of the external mastery subsystem and come from
settings:
- gap_severities: which unresolved gaps feed a daily session
- mastery_peak_floor / mastery_decay_ratio / mastery_decay_idle_days:
  a concept is decaying when it once peaked above the floor, has fallen
  below ratio * peak, and has not been reviewed for the idle period
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, or_, select
from sqlalchemy.orm import sessionmaker

from cadence.db.base import SEVERITY_ORDER, GapOracle, MasteryOracle
from cadence.db.database import get_session_factory, session_scope, storage_errors
from cadence.db.models import ConceptMasteryModel, KnowledgeGapModel
from cadence.study.cards import ensure_utc, utcnow


def _settings(settings):
    if settings is None:
        from config import get_settings

        settings = get_settings()
    return settings


class SqlGapOracle(GapOracle):
    """Unresolved gaps from user_knowledge_gaps, critical first."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, settings=None):
        self._factory = session_factory or get_session_factory()
        self._default_severities = _settings(settings).get_gap_severities()

    def unresolved_gap_concepts(
        self,
        owner_id: str,
        severities: Optional[Sequence[str]] = None,
    ) -> list[str]:
        wanted = list(self._default_severities if severities is None else severities)
        if not wanted:
            return []

        rank = case(
            {severity: index for index, severity in enumerate(SEVERITY_ORDER)},
            value=KnowledgeGapModel.severity,
            else_=len(SEVERITY_ORDER),
        )
        stmt = (
            select(KnowledgeGapModel.concept_id)
            .where(
                KnowledgeGapModel.owner_id == owner_id,
                KnowledgeGapModel.resolved.is_(False),
                KnowledgeGapModel.severity.in_(wanted),
            )
            .order_by(rank, KnowledgeGapModel.detected_at)
        )
        with storage_errors("unresolved_gap_concepts"), session_scope(self._factory) as session:
            concept_ids = list(session.scalars(stmt))

        # A concept can be flagged more than once; keep its most severe position
        return list(dict.fromkeys(concept_ids))


class SqlMasteryOracle(MasteryOracle):
    """Decaying concepts from user_concept_mastery."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, settings=None):
        settings = _settings(settings)
        self._factory = session_factory or get_session_factory()
        self.peak_floor = settings.mastery_peak_floor
        self.decay_ratio = settings.mastery_decay_ratio
        self.idle_days = settings.mastery_decay_idle_days

    def decaying_concepts(self, owner_id: str, now: Optional[datetime] = None) -> list[str]:
        now = ensure_utc(now) if now else utcnow()
        idle_since = now - timedelta(days=self.idle_days)

        stmt = (
            select(ConceptMasteryModel.concept_id)
            .where(
                ConceptMasteryModel.owner_id == owner_id,
                ConceptMasteryModel.peak_mastery > self.peak_floor,
                ConceptMasteryModel.mastery_level
                < ConceptMasteryModel.peak_mastery * self.decay_ratio,
                or_(
                    ConceptMasteryModel.last_reviewed_at.is_(None),
                    ConceptMasteryModel.last_reviewed_at < idle_since,
                ),
            )
            .order_by(ConceptMasteryModel.mastery_level)
        )
        with storage_errors("decaying_concepts"), session_scope(self._factory) as session:
            return list(session.scalars(stmt))
