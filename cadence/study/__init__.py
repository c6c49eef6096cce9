"""
Study scheduling for Cadence.

Pure building blocks are re-exported here:
- Card types and payloads
- Memory model (FSRS-style per-card scheduling)
- Session interleaving
- Session and learner records

The services that touch storage (SessionComposer, ReviewService,
DueQueueBuilder) are imported from their own modules.
"""

from cadence.study.cards import CardState, CardType, ReviewCard, parse_card_back
from cadence.study.interleaver import CardSource, SessionCard, interleave_session_cards
from cadence.study.memory_model import (
    MemoryModel,
    Rating,
    SchedulerConfig,
    SchedulingResult,
    retrievability,
)
from cadence.study.records import (
    DueCardsSummary,
    LearnerSettings,
    SessionRecord,
    SessionStats,
    SessionStatus,
    SessionType,
)

__all__ = [
    "CardState",
    "CardType",
    "ReviewCard",
    "parse_card_back",
    "CardSource",
    "SessionCard",
    "interleave_session_cards",
    "MemoryModel",
    "Rating",
    "SchedulerConfig",
    "SchedulingResult",
    "retrievability",
    "DueCardsSummary",
    "LearnerSettings",
    "SessionRecord",
    "SessionStats",
    "SessionStatus",
    "SessionType",
]
