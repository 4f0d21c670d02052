from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vocab_mastery.errors import ValidationError
from vocab_mastery.scheduler.srs import (
    EXCELLENT,
    FAIR,
    GOOD,
    POOR,
    TRANSITIONS,
    next_state,
    performance_band,
    session_success_rate,
)

UTC = timezone.utc
NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def test_performance_band_boundaries_are_inclusive():
    assert performance_band(1.0) == EXCELLENT
    assert performance_band(0.90) == EXCELLENT
    assert performance_band(0.89) == GOOD
    assert performance_band(0.70) == GOOD
    assert performance_band(0.50) == FAIR
    assert performance_band(0.49) == POOR
    assert performance_band(0.0) == POOR


def test_learning_promotes_to_practiced_after_two_reviews():
    update = next_state("learning", 0.95, review_count=2, now=NOW)

    assert update.mastery_state == "practiced"
    assert update.next_review_at == NOW + timedelta(hours=24)
    assert update.band == EXCELLENT


def test_learning_promotion_is_held_back_without_enough_reviews():
    update = next_state("learning", 0.95, review_count=1, now=NOW)

    assert update.mastery_state == "learning"
    assert update.next_review_at == NOW + timedelta(hours=24)


def test_practiced_promotion_requires_four_reviews():
    held = next_state("practiced", 0.95, review_count=1, now=NOW)
    promoted = next_state("practiced", 0.95, review_count=4, now=NOW)

    assert held.mastery_state == "practiced"
    assert held.next_review_at == NOW + timedelta(hours=72)
    assert promoted.mastery_state == "mastered"
    assert promoted.next_review_at == NOW + timedelta(hours=72)


def test_new_word_promotes_on_first_excellent_session():
    update = next_state("new", 1.0, review_count=0, now=NOW)

    assert update.mastery_state == "learning"
    assert update.hours == 4


def test_poor_session_resets_mastered_word():
    update = next_state("mastered", 0.3, review_count=10, now=NOW)

    assert update.mastery_state == "new"
    assert update.next_review_at == NOW + timedelta(minutes=30)


def test_mastered_good_session_demotes_to_practiced():
    update = next_state("mastered", 0.75, review_count=8, now=NOW)

    assert update.mastery_state == "practiced"
    assert update.hours == 72


@pytest.mark.parametrize(("state", "band"), sorted(TRANSITIONS))
def test_every_transition_schedules_into_the_future(state, band):
    rate = {EXCELLENT: 1.0, GOOD: 0.8, FAIR: 0.6, POOR: 0.1}[band]
    update = next_state(state, rate, review_count=10, now=NOW)

    assert update.next_review_at > NOW
    assert update.mastery_state == TRANSITIONS[(state, band)][0]


def test_session_success_rate_validation():
    assert session_success_rate(5, 4) == pytest.approx(0.8)
    assert session_success_rate(0, 0) == 0.0

    with pytest.raises(ValidationError):
        session_success_rate(2, 3)
    with pytest.raises(ValidationError):
        session_success_rate(-1, 0)


def test_unknown_state_is_rejected():
    with pytest.raises(ValidationError):
        next_state("forgotten", 0.5, review_count=0, now=NOW)
