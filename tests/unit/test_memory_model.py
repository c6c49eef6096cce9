"""
Unit tests for the FSRS-style memory model.

Pure functions only; no database.
"""

import math
from datetime import timedelta
from itertools import product

import pytest

from cadence.core.errors import ValidationError
from cadence.study.cards import CardState
from cadence.study.memory_model import (
    D_MAX,
    D_MIN,
    S_MIN,
    MemoryModel,
    MemoryState,
    Rating,
    SchedulerConfig,
    SchedulingResult,
    format_interval,
    is_due,
    next_difficulty,
    retrievability,
    validate_rating,
)


@pytest.fixture
def model():
    return MemoryModel()


def review_memory(stability=10.0, difficulty=0.3, elapsed_days=10.0, reps=5, lapses=0):
    return MemoryState(
        state=CardState.REVIEW,
        stability=stability,
        difficulty=difficulty,
        elapsed_days=elapsed_days,
        reps=reps,
        lapses=lapses,
    )


def expected_review_stability(s, d, elapsed, growth, easy_bonus=1.0):
    r = math.exp(-elapsed / s)
    return s * growth * (1 - d * 0.5) * (1 + (1 - r) * 0.5) * easy_bonus


class TestFirstReview:
    def test_good_graduates_in_three_days(self, model, now):
        result = model.review(MemoryState(), Rating.GOOD, now=now)

        assert result.state == CardState.REVIEW
        assert result.stability == 3.0
        assert result.difficulty == 0.3
        assert result.scheduled_days == 3
        assert result.due_at == now + timedelta(days=3)
        assert result.reps == 1
        assert result.lapses == 0

    def test_easy_graduates_in_seven_days(self, model, now):
        result = model.review(MemoryState(), Rating.EASY, now=now)

        assert result.state == CardState.REVIEW
        assert result.stability == 7.0
        assert result.difficulty == 0.1
        assert result.due_at == now + timedelta(days=7)

    def test_again_enters_learning_for_one_minute(self, model, now):
        result = model.review(MemoryState(), Rating.AGAIN, now=now)

        assert result.state == CardState.LEARNING
        assert result.stability == 0.5
        assert result.difficulty == 0.7
        assert result.scheduled_days == 0
        assert result.due_at == now + timedelta(minutes=1)
        assert result.lapses == 1

    def test_hard_enters_learning_for_six_minutes(self, model, now):
        result = model.review(MemoryState(), Rating.HARD, now=now)

        assert result.state == CardState.LEARNING
        assert result.stability == 1.0
        assert result.difficulty == 0.6
        assert result.due_at == now + timedelta(minutes=6)

    def test_lower_target_retention_lengthens_interval(self, model, now):
        result = model.review(MemoryState(), Rating.GOOD, now=now, request_retention=0.8)
        # 3 * ln(0.8) / ln(0.9) = 6.35
        assert result.scheduled_days == 6

    def test_invalid_request_retention_falls_back_to_config(self, model, now):
        result = model.review(MemoryState(), Rating.GOOD, now=now, request_retention=1.5)
        assert result.scheduled_days == 3


class TestLearningSteps:
    def learning(self, stability=1.0, difficulty=0.6, state=CardState.LEARNING):
        return MemoryState(state=state, stability=stability, difficulty=difficulty, reps=1)

    def test_again_halves_stability_and_stays(self, model, now):
        result = model.review(self.learning(stability=4.0), Rating.AGAIN, now=now)

        assert result.state == CardState.LEARNING
        assert result.stability == 2.0
        assert result.difficulty == pytest.approx(0.75)
        assert result.due_at == now + timedelta(minutes=1)

    def test_again_never_drops_below_floor(self, model, now):
        result = model.review(self.learning(stability=0.5), Rating.AGAIN, now=now)
        assert result.stability == S_MIN

    def test_hard_keeps_stability(self, model, now):
        result = model.review(self.learning(stability=1.0), Rating.HARD, now=now)

        assert result.state == CardState.LEARNING
        assert result.stability == 1.0
        assert result.difficulty == pytest.approx(0.68)
        assert result.due_at == now + timedelta(minutes=6)

    def test_good_graduates_with_current_stability(self, model, now):
        result = model.review(self.learning(stability=1.0), Rating.GOOD, now=now)

        assert result.state == CardState.REVIEW
        assert result.stability == 1.0
        assert result.scheduled_days == 1
        assert result.difficulty == pytest.approx(0.55)

    def test_easy_applies_bonus(self, model, now):
        result = model.review(self.learning(stability=10.0), Rating.EASY, now=now)

        assert result.state == CardState.REVIEW
        assert result.stability == pytest.approx(13.0)
        assert result.scheduled_days == 13

    def test_relearning_follows_learning_rules(self, model, now):
        memory = self.learning(stability=2.0, state=CardState.RELEARNING)

        assert model.review(memory, Rating.AGAIN, now=now).state == CardState.RELEARNING
        assert model.review(memory, Rating.GOOD, now=now).state == CardState.REVIEW


class TestReviewState:
    def test_again_lapses_into_relearning(self, model, now):
        result = model.review(review_memory(stability=10.0, difficulty=0.5), Rating.AGAIN, now=now)

        assert result.state == CardState.RELEARNING
        assert result.stability == pytest.approx(2.0)
        assert result.difficulty == pytest.approx(0.65)
        assert result.scheduled_days == 0
        assert result.due_at == now + timedelta(minutes=1)
        assert result.lapses == 1

    def test_good_grows_stability(self, model, now):
        result = model.review(review_memory(), Rating.GOOD, now=now)

        expected = expected_review_stability(10.0, 0.3, 10.0, 2.5)
        assert result.state == CardState.REVIEW
        assert result.stability == pytest.approx(expected)
        assert result.scheduled_days == 28
        assert result.difficulty == pytest.approx(0.25)

    def test_hard_shortens_interval(self, model, now):
        result = model.review(review_memory(), Rating.HARD, now=now)

        assert result.stability == pytest.approx(expected_review_stability(10.0, 0.3, 10.0, 1.2))
        # 13.42 / 1.2 = 11.19
        assert result.scheduled_days == 11

    def test_easy_applies_bonus(self, model, now):
        result = model.review(review_memory(), Rating.EASY, now=now)

        assert result.stability == pytest.approx(
            expected_review_stability(10.0, 0.3, 10.0, 3.5, easy_bonus=1.3)
        )
        assert result.scheduled_days == 51

    def test_intervals_are_monotonic_in_rating(self, model, now):
        memory = review_memory()
        hard, good, easy = (model.review(memory, r, now=now) for r in (Rating.HARD, Rating.GOOD, Rating.EASY))
        again = model.review(memory, Rating.AGAIN, now=now)

        assert again.stability <= hard.stability <= good.stability <= easy.stability
        assert hard.scheduled_days <= good.scheduled_days <= easy.scheduled_days

    def test_stability_and_interval_capped(self, now):
        model = MemoryModel(SchedulerConfig(maximum_interval=365))
        result = model.review(review_memory(stability=300.0, elapsed_days=300.0), Rating.EASY, now=now)

        assert result.stability == 365
        assert result.scheduled_days == 365

    def test_review_card_derives_elapsed_days(self, model, make_card, now):
        card = make_card(
            state=CardState.REVIEW,
            stability=10.0,
            difficulty=0.3,
            last_reviewed_at=now - timedelta(days=10),
            due_at=now,
        )
        result = model.review_card(card, Rating.GOOD, now=now)
        assert result.stability == pytest.approx(expected_review_stability(10.0, 0.3, 10.0, 2.5))


class TestOutOfRangeState:
    def test_out_of_range_state_is_clamped(self, model, now):
        memory = review_memory(stability=-3.0, difficulty=7.0, elapsed_days=-2.0)
        result = model.review(memory, Rating.GOOD, now=now)

        assert result.stability >= S_MIN
        assert D_MIN <= result.difficulty <= D_MAX
        assert result.scheduled_days >= 1

    def test_unknown_state_is_treated_as_new(self, model, now):
        memory = MemoryState(state="archived")
        result = model.review(memory, Rating.GOOD, now=now)

        assert result.state == CardState.REVIEW
        assert result.stability == 3.0

    @pytest.mark.parametrize("ratings", list(product(Rating, repeat=3)))
    def test_bounds_hold_for_any_rating_sequence(self, model, now, ratings):
        memory = MemoryState()
        clock = now
        for rating in ratings:
            result = model.review(memory, rating, now=clock)

            assert result.stability >= S_MIN
            assert D_MIN <= result.difficulty <= D_MAX
            if result.state == CardState.REVIEW:
                assert 1 <= result.scheduled_days <= model.config.maximum_interval

            elapsed = (result.due_at - clock).total_seconds() / 86400
            clock = result.due_at
            memory = MemoryState(
                state=result.state,
                stability=result.stability,
                difficulty=result.difficulty,
                elapsed_days=elapsed,
                reps=result.reps,
                lapses=result.lapses,
            )


class TestRatingValidation:
    @pytest.mark.parametrize("rating", [0, 5, -1, 2.5, "3", None, True])
    def test_rejects_invalid_ratings(self, model, rating):
        with pytest.raises(ValidationError):
            model.review(MemoryState(), rating)

    def test_accepts_plain_ints(self):
        assert validate_rating(3) is Rating.GOOD


class TestRetrievability:
    def test_full_recall_at_zero_elapsed(self):
        assert retrievability(5.0, 0) == 1.0

    def test_decreases_with_time(self):
        assert retrievability(5.0, 1) > retrievability(5.0, 5) > retrievability(5.0, 20)

    def test_one_stability_elapsed(self):
        assert retrievability(4.0, 4.0) == pytest.approx(math.exp(-1))

    def test_non_positive_stability_is_floored(self):
        assert 0 < retrievability(0, 1) <= 1
        assert retrievability(-5, 1) == retrievability(S_MIN, 1)

    def test_difficulty_is_clamped(self):
        assert next_difficulty(0.95, Rating.AGAIN) == D_MAX
        assert next_difficulty(0.12, Rating.EASY) == D_MIN


class TestPreview:
    def test_new_card_labels(self, model, make_card, now):
        labels = model.interval_labels(make_card(), now=now)

        assert labels == {
            Rating.AGAIN: "1m",
            Rating.HARD: "6m",
            Rating.GOOD: "3d",
            Rating.EASY: "7d",
        }

    def test_preview_does_not_touch_card(self, model, make_card, now):
        card = make_card()
        model.preview(card, now=now)
        assert card.state == CardState.NEW
        assert card.reps == 0

    @pytest.mark.parametrize(
        "days,label",
        [(1, "1d"), (29, "29d"), (30, "1mo"), (45, "2mo"), (364, "12mo"), (365, "1.0y"), (400, "1.1y")],
    )
    def test_day_labels(self, now, days, label):
        result = SchedulingResult(
            rating=Rating.GOOD,
            state=CardState.REVIEW,
            stability=float(days),
            difficulty=0.3,
            scheduled_days=days,
            due_at=now + timedelta(days=days),
            reps=1,
            lapses=0,
        )
        assert format_interval(result) == label


class TestIsDue:
    def test_past_and_present_are_due(self, now):
        assert is_due(now - timedelta(seconds=1), now)
        assert is_due(now, now)

    def test_future_is_not_due(self, now):
        assert not is_due(now + timedelta(minutes=1), now)

    def test_missing_due_date_counts_as_due(self, now):
        assert is_due(None, now)
