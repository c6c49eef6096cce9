"""
Memory Model - FSRS-style review scheduling.

Converts a learner's recall rating into the next memory state of a card:
difficulty, stability, interval, lifecycle state and due time.

Lifecycle:
- new + Again/Hard             -> learning (minute steps)
- new + Good/Easy              -> review (graduates immediately)
- learning/relearning + Again/Hard -> same state (minute steps)
- learning/relearning + Good/Easy  -> review
- review + Again               -> relearning (stability collapses)
- review + Hard/Good/Easy      -> review (stability grows)

Everything here is pure: no I/O, no clock reads unless `now` is omitted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Optional

from loguru import logger

from cadence.core.errors import ValidationError
from cadence.study.cards import CardState, ReviewCard, ensure_utc, utcnow


# =============================================================================
# CONSTANTS
# =============================================================================

class Rating(IntEnum):
    """Learner's recall rating."""
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


RATING_LABELS = {
    Rating.AGAIN: "Again",
    Rating.HARD: "Hard",
    Rating.GOOD: "Good",
    Rating.EASY: "Easy",
}

S_MIN = 0.5       # Stability floor (days)
D_MIN = 0.1       # Difficulty floor
D_MAX = 1.0       # Difficulty ceiling

# Table lookups for the first rating a card ever receives
INITIAL_DIFFICULTY = {
    Rating.AGAIN: 0.7,
    Rating.HARD: 0.6,
    Rating.GOOD: 0.3,
    Rating.EASY: 0.1,
}

INITIAL_STABILITY = {
    Rating.AGAIN: 0.5,  # 12 hours
    Rating.HARD: 1.0,
    Rating.GOOD: 3.0,
    Rating.EASY: 7.0,   # 1 week
}

DIFFICULTY_DELTA = {
    Rating.AGAIN: +0.15,
    Rating.HARD: +0.08,
    Rating.GOOD: -0.05,
    Rating.EASY: -0.10,
}

GROWTH_FACTOR = {
    Rating.HARD: 1.2,
    Rating.GOOD: 2.5,
    Rating.EASY: 3.5,
}

FORGET_FACTOR = 0.2         # review + Again
LEARNING_AGAIN_FACTOR = 0.5  # learning/relearning + Again


@dataclass
class SchedulerConfig:
    """Tunable parameters for the memory model."""
    request_retention: float = 0.90
    maximum_interval: int = 36500
    easy_bonus: float = 1.3
    hard_interval: float = 1.2
    again_step_minutes: int = 1
    hard_step_minutes: int = 6
    good_step_minutes: int = 10

    @classmethod
    def from_settings(cls, settings=None) -> SchedulerConfig:
        """Build from application settings."""
        if settings is None:
            from config import get_settings

            settings = get_settings()
        return cls(
            request_retention=settings.fsrs_desired_retention,
            maximum_interval=settings.fsrs_maximum_interval,
            easy_bonus=settings.fsrs_easy_bonus,
            hard_interval=settings.fsrs_hard_interval,
            again_step_minutes=settings.fsrs_again_step_minutes,
            hard_step_minutes=settings.fsrs_hard_step_minutes,
            good_step_minutes=settings.fsrs_good_step_minutes,
        )


@dataclass
class MemoryState:
    """The scheduling-relevant slice of a card."""
    state: CardState = CardState.NEW
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    reps: int = 0
    lapses: int = 0

    @classmethod
    def from_card(cls, card: ReviewCard) -> MemoryState:
        return cls(
            state=card.state,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=card.elapsed_days,
            reps=card.reps,
            lapses=card.lapses,
        )


@dataclass
class SchedulingResult:
    """Output of one review."""
    rating: Rating
    state: CardState
    stability: float
    difficulty: float
    scheduled_days: int       # 0 while in a minute-based learning step
    due_at: datetime
    reps: int
    lapses: int
    learning_step_minutes: int = 0
    reviewed_at: datetime = field(default_factory=utcnow)

    @property
    def is_learning_step(self) -> bool:
        return self.scheduled_days == 0


# =============================================================================
# VALIDATION & CLAMPS
# =============================================================================

def validate_rating(rating) -> Rating:
    """Reject anything outside {1, 2, 3, 4}."""
    if isinstance(rating, bool):
        raise ValidationError(f"Invalid rating: {rating!r} (expected 1-4)")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid rating: {rating!r} (expected 1-4)") from None
    if value != rating or value not in (1, 2, 3, 4):
        raise ValidationError(f"Invalid rating: {rating!r} (expected 1-4)")
    return Rating(value)


def coerce_state(state) -> CardState:
    """Stored states outside the lifecycle are treated as new."""
    try:
        return CardState(state)
    except ValueError:
        return CardState.NEW


def clamp_difficulty(d: float) -> float:
    return max(D_MIN, min(D_MAX, d))


def floor_stability(s: float) -> float:
    if s is None or math.isnan(s):
        return S_MIN
    return max(S_MIN, s)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# =============================================================================
# PURE FORMULAS
# =============================================================================

def retrievability(stability: float, elapsed_days: float) -> float:
    """
    Probability of recall after `elapsed_days`: R = exp(-t / S).

    Non-positive stability is floored and negative elapsed time counts
    as zero, so the result is always in (0, 1].
    """
    s = floor_stability(stability)
    t = max(0.0, elapsed_days or 0.0)
    return math.exp(-t / s)


def initial_difficulty(rating: Rating) -> float:
    return INITIAL_DIFFICULTY[rating]


def initial_stability(rating: Rating) -> float:
    return INITIAL_STABILITY[rating]


def next_difficulty(difficulty: float, rating: Rating) -> float:
    """Again/Hard make a card harder, Good/Easy easier; clamped to [0.1, 1.0]."""
    return clamp_difficulty(difficulty + DIFFICULTY_DELTA[rating])


class MemoryModel:
    """
    Per-card scheduler.

    Stateless apart from its configuration; safe to share across threads.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig()

    # -------------------------------------------------------------------------
    # Formulas that depend on configuration
    # -------------------------------------------------------------------------

    def next_stability(
        self,
        stability: float,
        difficulty: float,
        rating: Rating,
        elapsed_days: float,
    ) -> float:
        """
        Stability after a successful review-state recall.

        new_s = s * growth(rating) * (1 - d * 0.5) * (1 + (1 - R) * 0.5)
        with an extra easy bonus on Easy, capped at the maximum interval.
        """
        if rating == Rating.AGAIN:
            return max(S_MIN, stability * FORGET_FACTOR)

        s = floor_stability(stability)
        d = clamp_difficulty(difficulty)
        difficulty_penalty = 1 - d * 0.5
        r = retrievability(s, elapsed_days)
        review_bonus = 1 + (1 - r) * 0.5

        new_s = s * GROWTH_FACTOR[rating] * difficulty_penalty * review_bonus
        if rating == Rating.EASY:
            new_s *= self.config.easy_bonus

        return floor_stability(min(new_s, self.config.maximum_interval))

    def _raw_interval(self, stability: float, retention: float) -> float:
        return floor_stability(stability) * math.log(retention) / math.log(0.9)

    def next_interval(
        self,
        stability: float,
        request_retention: Optional[float] = None,
        divisor: float = 1.0,
    ) -> int:
        """Days until predicted retention falls to the target, in [1, maximum_interval]."""
        retention = request_retention or self.config.request_retention
        if not 0 < retention < 1:
            retention = self.config.request_retention
        interval = round_half_up(self._raw_interval(stability, retention) / divisor)
        return max(1, min(self.config.maximum_interval, interval))

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def review(
        self,
        memory: MemoryState,
        rating,
        now: Optional[datetime] = None,
        request_retention: Optional[float] = None,
    ) -> SchedulingResult:
        """
        Process a rating and return the next memory state.

        Raises:
            ValidationError: rating outside {1, 2, 3, 4}
        """
        rating = validate_rating(rating)
        now = ensure_utc(now) if now else utcnow()
        memory = replace(memory, state=coerce_state(memory.state))

        if memory.state == CardState.LEARNING or memory.state == CardState.RELEARNING:
            result = self._review_learning(memory, rating, now, request_retention)
        elif memory.state == CardState.REVIEW:
            result = self._review_review(memory, rating, now, request_retention)
        else:
            result = self._review_new(memory, rating, now, request_retention)

        logger.debug(
            f"Review {RATING_LABELS[rating]}: {memory.state.value} -> {result.state.value}, "
            f"S {memory.stability:.2f} -> {result.stability:.2f}, "
            f"D {memory.difficulty:.2f} -> {result.difficulty:.2f}, "
            f"interval {result.scheduled_days}d"
        )
        return result

    def review_card(
        self,
        card: ReviewCard,
        rating,
        now: Optional[datetime] = None,
        request_retention: Optional[float] = None,
    ) -> SchedulingResult:
        """Convenience wrapper: elapsed days are derived from the card's last review."""
        now = ensure_utc(now) if now else utcnow()
        memory = MemoryState.from_card(card)
        memory.elapsed_days = card.days_since_review(now)
        return self.review(memory, rating, now=now, request_retention=request_retention)

    def _learning_step(self, rating: Rating) -> int:
        if rating == Rating.AGAIN:
            return self.config.again_step_minutes
        if rating == Rating.HARD:
            return self.config.hard_step_minutes
        return self.config.good_step_minutes

    def _step_result(
        self,
        memory: MemoryState,
        rating: Rating,
        state: CardState,
        stability: float,
        difficulty: float,
        now: datetime,
    ) -> SchedulingResult:
        minutes = self._learning_step(rating)
        return SchedulingResult(
            rating=rating,
            state=state,
            stability=floor_stability(stability),
            difficulty=clamp_difficulty(difficulty),
            scheduled_days=0,
            due_at=now + timedelta(minutes=minutes),
            reps=memory.reps + 1,
            lapses=memory.lapses + (1 if rating == Rating.AGAIN else 0),
            learning_step_minutes=minutes,
            reviewed_at=now,
        )

    def _graduate_result(
        self,
        memory: MemoryState,
        rating: Rating,
        stability: float,
        difficulty: float,
        interval: int,
        now: datetime,
    ) -> SchedulingResult:
        return SchedulingResult(
            rating=rating,
            state=CardState.REVIEW,
            stability=floor_stability(stability),
            difficulty=clamp_difficulty(difficulty),
            scheduled_days=interval,
            due_at=now + timedelta(days=interval),
            reps=memory.reps + 1,
            lapses=memory.lapses + (1 if rating == Rating.AGAIN else 0),
            reviewed_at=now,
        )

    def _review_new(self, memory, rating, now, request_retention) -> SchedulingResult:
        d = initial_difficulty(rating)
        s = initial_stability(rating)

        if rating in (Rating.AGAIN, Rating.HARD):
            return self._step_result(memory, rating, CardState.LEARNING, s, d, now)

        interval = self.next_interval(s, request_retention)
        return self._graduate_result(memory, rating, s, d, interval, now)

    def _review_learning(self, memory, rating, now, request_retention) -> SchedulingResult:
        d = next_difficulty(memory.difficulty, rating)

        if rating == Rating.AGAIN:
            s = max(S_MIN, memory.stability * LEARNING_AGAIN_FACTOR)
            return self._step_result(memory, rating, memory.state, s, d, now)

        if rating == Rating.HARD:
            return self._step_result(memory, rating, memory.state, memory.stability, d, now)

        s = floor_stability(memory.stability)
        if rating == Rating.EASY:
            s = min(s * self.config.easy_bonus, self.config.maximum_interval)
        interval = self.next_interval(s, request_retention)
        return self._graduate_result(memory, rating, s, d, interval, now)

    def _review_review(self, memory, rating, now, request_retention) -> SchedulingResult:
        d = next_difficulty(memory.difficulty, rating)

        if rating == Rating.AGAIN:
            s = max(S_MIN, memory.stability * FORGET_FACTOR)
            return self._step_result(memory, rating, CardState.RELEARNING, s, d, now)

        s = self.next_stability(memory.stability, memory.difficulty, rating, memory.elapsed_days)
        divisor = self.config.hard_interval if rating == Rating.HARD else 1.0
        interval = self.next_interval(s, request_retention, divisor=divisor)
        return self._graduate_result(memory, rating, s, d, interval, now)

    # -------------------------------------------------------------------------
    # Previews
    # -------------------------------------------------------------------------

    def preview(
        self,
        card: ReviewCard,
        now: Optional[datetime] = None,
        request_retention: Optional[float] = None,
    ) -> dict[Rating, SchedulingResult]:
        """Run the transition for every rating without persisting anything."""
        now = ensure_utc(now) if now else utcnow()
        return {
            rating: self.review_card(card, rating, now=now, request_retention=request_retention)
            for rating in Rating
        }

    def interval_labels(
        self,
        card: ReviewCard,
        now: Optional[datetime] = None,
        request_retention: Optional[float] = None,
    ) -> dict[Rating, str]:
        """Short labels ("1m", "3d", "2mo", "1.5y") for each rating button."""
        return {
            rating: format_interval(result)
            for rating, result in self.preview(card, now, request_retention).items()
        }


def format_interval(result: SchedulingResult) -> str:
    """Human label for the wait until the next review."""
    if result.is_learning_step:
        return f"{result.learning_step_minutes}m"
    days = result.scheduled_days
    if days < 30:
        return f"{days}d"
    if days < 365:
        return f"{round_half_up(days / 30)}mo"
    return f"{days / 365:.1f}y"


def is_due(due_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A card is due when due_at <= now. Missing due dates count as due."""
    if due_at is None:
        return True
    now = ensure_utc(now) if now else utcnow()
    return ensure_utc(due_at) <= now
