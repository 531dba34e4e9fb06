"""Priority scoring for tasks and work units.

score = 100 * (0.4 * urgency + 0.3 * progression + 0.3 * rotation)

Urgency is a soft step function of days until the goal's target date.
Progression is the remaining fraction of the reservoir. Rotation rewards goals
that have not been worked for a while, capped at a week. Consumers order
candidates light-before-heavy, then by value density (score per remaining
minute).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Tuple

from smallsteps.core.clock import as_utc
from smallsteps.services.effort import HEAVY_THRESHOLD_MINUTES, is_heavy, remaining_minutes

URGENCY_WEIGHT = 0.4
PROGRESSION_WEIGHT = 0.3
ROTATION_WEIGHT = 0.3

NEUTRAL_URGENCY = 0.5
NEUTRAL_ROTATION = 0.5
# Base priority of a queue entry with no deadline, skips or wait.
NEUTRAL_QUEUE_PRIORITY = 100.0
ROTATION_CAP_DAYS = 7


def urgency(goal, today: date) -> float:
    target = getattr(goal, "target_date", None)
    if target is None or getattr(goal, "lifelong", False):
        return NEUTRAL_URGENCY
    days = (target - today).days
    if days <= 0:
        return 1.0
    if days <= 7:
        return 0.9
    if days <= 14:
        return 0.7
    if days <= 30:
        return 0.5
    return 0.3


def progression(record) -> float:
    total = record.estimated_total_minutes or 0
    if total <= 0:
        return 0.0
    return remaining_minutes(record) / total


def rotation(goal, now: datetime) -> float:
    reference = (
        getattr(goal, "last_worked_at", None)
        or getattr(goal, "updated_at", None)
        or getattr(goal, "created_at", None)
    )
    if reference is None:
        return NEUTRAL_ROTATION
    elapsed_days = max(0.0, (as_utc(now) - as_utc(reference)).total_seconds() / 86400)
    return min(elapsed_days / ROTATION_CAP_DAYS, 1.0)


def score(item, task, goal, active_goals: Optional[Iterable] = None, *, now: datetime) -> float:
    """Score a task or work unit under its goal. Zero when the goal is not active."""
    if goal is None:
        raise ValueError("score() requires the parent goal")
    if active_goals is not None and goal.id not in {candidate.id for candidate in active_goals}:
        return 0.0
    value = (
        URGENCY_WEIGHT * urgency(goal, as_utc(now).date())
        + PROGRESSION_WEIGHT * progression(item)
        + ROTATION_WEIGHT * rotation(goal, now)
    )
    return round(100 * value, 2)


@dataclass
class Candidate:
    """A scored, incomplete work unit with its parents."""

    work_unit: object
    task: object
    goal: object
    minutes: float
    score: float
    waiting_days: int = 0
    queue_priority: float = NEUTRAL_QUEUE_PRIORITY

    @property
    def goal_id(self):
        return self.goal.id

    @property
    def density(self) -> float:
        if self.minutes <= 0:
            return 0.0
        return self.score / self.minutes


def ordering_key(candidate: Candidate, heavy_threshold: float = HEAVY_THRESHOLD_MINUTES) -> Tuple:
    """Light before heavy, densest first, then queue priority and stable tie-breakers."""
    return (
        is_heavy(candidate.minutes, heavy_threshold),
        -candidate.density,
        -candidate.queue_priority,
        -candidate.waiting_days,
        getattr(candidate.task, "order", 0) or 0,
        getattr(candidate.work_unit, "position", 0) or 0,
        str(candidate.work_unit.id),
    )
