from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from vocab_mastery.errors import ValidationError

UTC = timezone.utc

NEW = "new"
LEARNING = "learning"
PRACTICED = "practiced"
MASTERED = "mastered"

EXCELLENT = "EXCELLENT"
GOOD = "GOOD"
FAIR = "FAIR"
POOR = "POOR"

# Inclusive lower bounds, checked in order.
BAND_THRESHOLDS = ((EXCELLENT, 0.90), (GOOD, 0.70), (FAIR, 0.50))

# (state, band) -> (next state, hours until next review)
TRANSITIONS: dict[tuple[str, str], tuple[str, float]] = {
    (NEW, EXCELLENT): (LEARNING, 4),
    (NEW, GOOD): (NEW, 2),
    (NEW, FAIR): (NEW, 1),
    (NEW, POOR): (NEW, 0.5),
    (LEARNING, EXCELLENT): (PRACTICED, 24),
    (LEARNING, GOOD): (LEARNING, 12),
    (LEARNING, FAIR): (LEARNING, 4),
    (LEARNING, POOR): (NEW, 0.5),
    (PRACTICED, EXCELLENT): (MASTERED, 72),
    (PRACTICED, GOOD): (PRACTICED, 48),
    (PRACTICED, FAIR): (LEARNING, 12),
    (PRACTICED, POOR): (NEW, 0.5),
    (MASTERED, EXCELLENT): (MASTERED, 168),
    (MASTERED, GOOD): (PRACTICED, 72),
    (MASTERED, FAIR): (PRACTICED, 24),
    (MASTERED, POOR): (NEW, 0.5),
}

# Promotions on EXCELLENT that need enough prior reviews; otherwise the state is kept.
PROMOTION_GATES = {LEARNING: 2, PRACTICED: 4}


@dataclass
class MasteryUpdate:
    mastery_state: str
    next_review_at: datetime
    hours: float
    band: str
    success_rate: float


def performance_band(success_rate: float) -> str:
    for band, threshold in BAND_THRESHOLDS:
        if success_rate >= threshold:
            return band
    return POOR


def session_success_rate(exercises_completed: int, exercises_correct: int) -> float:
    if exercises_completed < 0:
        raise ValidationError("exercisesCompleted", "must be zero or greater")
    if exercises_correct < 0:
        raise ValidationError("exercisesCorrect", "must be zero or greater")
    if exercises_correct > exercises_completed:
        raise ValidationError("exercisesCorrect", "cannot exceed exercisesCompleted")
    if exercises_completed == 0:
        return 0.0
    return exercises_correct / exercises_completed


def next_state(
    current_state: str,
    success_rate: float,
    review_count: int,
    now: datetime | None = None,
) -> MasteryUpdate:
    """Next mastery state and review time; ``review_count`` is the count before this session."""
    now = now or datetime.now(UTC)
    band = performance_band(success_rate)
    try:
        target, hours = TRANSITIONS[(current_state, band)]
    except KeyError:
        raise ValidationError("masteryState", f"unknown mastery state {current_state!r}") from None

    if band == EXCELLENT and current_state in PROMOTION_GATES and review_count < PROMOTION_GATES[current_state]:
        target = current_state

    return MasteryUpdate(
        mastery_state=target,
        next_review_at=now + timedelta(hours=hours),
        hours=hours,
        band=band,
        success_rate=success_rate,
    )
