"""Goal rules: status transitions, rollover intervals, progress math.

State progression: NEXT -> ACTUAL -> {ACTUAL (renewed) | INACTIVE}
INACTIVE is terminal; the next period gets a new goal instance.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta

from recycleit.config import Settings
from recycleit.db.models import GoalDifficulty, GoalFrequency, GoalStatus

VALID_TRANSITIONS: dict[GoalStatus, list[GoalStatus]] = {
    GoalStatus.NEXT: [GoalStatus.ACTUAL],
    GoalStatus.ACTUAL: [GoalStatus.ACTUAL, GoalStatus.INACTIVE],
    GoalStatus.INACTIVE: [],
}

FREQUENCY_INTERVALS: dict[GoalFrequency, timedelta] = {
    GoalFrequency.DAILY: timedelta(days=1),
    GoalFrequency.WEEKLY: timedelta(days=7),
    GoalFrequency.MONTHLY: timedelta(days=30),
}

# Finished projects needed per period for a recycle goal
RECYCLE_PROJECT_TARGETS: dict[GoalDifficulty, int] = {
    GoalDifficulty.EASY: 1,
    GoalDifficulty.NORMAL: 2,
    GoalDifficulty.DIFFICULT: 4,
}

MAX_PROGRESS = 100.0


def validate_transition(current: GoalStatus, target: GoalStatus) -> None:
    """Validate a status change. Raises ValueError if invalid."""
    valid = VALID_TRANSITIONS.get(current, [])
    if target not in valid:
        raise ValueError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def interval_for(frequency: GoalFrequency) -> timedelta:
    return FREQUENCY_INTERVALS[frequency]


def period_start(next_check: date, frequency: GoalFrequency) -> date:
    """First day of the period that ends on ``next_check``."""
    return next_check - interval_for(frequency)


def initial_status(next_check: date, frequency: GoalFrequency, today: date) -> GoalStatus:
    """ACTUAL once the goal's period has started, NEXT before."""
    return GoalStatus.ACTUAL if period_start(next_check, frequency) <= today else GoalStatus.NEXT


def clamp_progress(value: float) -> float:
    return max(0.0, min(MAX_PROGRESS, value))


def is_complete(progress: float) -> bool:
    return progress >= MAX_PROGRESS


def recycle_progress(finished_projects: int, difficulty: GoalDifficulty) -> float:
    """Finished projects over the difficulty target, as a clamped percentage."""
    target = RECYCLE_PROJECT_TARGETS.get(difficulty, 1)
    return clamp_progress(finished_projects / target * 100)


def reduce_progress(items: Iterable[tuple[int, int]]) -> float:
    """Mean per-item completion over ``(actual, target)`` pairs, as a percentage."""
    ratios = [min(actual / target, 1.0) for actual, target in items if target > 0]
    if not ratios:
        return 0.0
    return clamp_progress(sum(ratios) / len(ratios) * 100)


def base_points(difficulty: GoalDifficulty, settings: Settings) -> int:
    return {
        GoalDifficulty.EASY: settings.goal_points_easy,
        GoalDifficulty.NORMAL: settings.goal_points_normal,
        GoalDifficulty.DIFFICULT: settings.goal_points_difficult,
    }[difficulty]


def completion_points(difficulty: GoalDifficulty, multiplier: float, settings: Settings) -> int:
    """Ledger points awarded when a goal completes."""
    return round(base_points(difficulty, settings) * multiplier)


def boosted_multiplier(multiplier: float, settings: Settings) -> float:
    """Multiplier carried into the next instance after a completion."""
    return round(min(settings.goal_multiplier_max, multiplier + settings.goal_multiplier_step), 4)


def decayed_multiplier(multiplier: float, settings: Settings) -> float:
    """Multiplier after a missed check."""
    return round(max(0.0, multiplier - settings.goal_multiplier_decay), 4)
