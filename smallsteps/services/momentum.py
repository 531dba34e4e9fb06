"""Goal momentum: recent activity weighted far above cumulative progress."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Sequence
from uuid import UUID

from smallsteps.core.clock import as_utc, days_between
from smallsteps.services.effort import is_effectively_complete
from smallsteps.services.store import PlannerStore

logger = logging.getLogger(__name__)

NEVER_WORKED_DAYS = 999
BASE_SCORE = 50
TODAY_BONUS = 30
YESTERDAY_BONUS = 20
PER_RECENT_COMPLETION = 5
NEARLY_DONE_BONUS = 20
NEARLY_DONE_RATIO = 0.8
IDLE_PENALTY = 15
IDLE_DAYS = 3
RECENT_WINDOW_DAYS = 7


@dataclass
class GoalMomentum:
    goal_id: UUID
    last_worked_date: Optional[date]
    completions_last_7_days: int
    total_completed: int
    total_work_units: int
    completion_percentage: float
    days_since_last_work: int
    momentum_score: float


def _completion_time(unit) -> Optional[datetime]:
    return as_utc(unit.last_completed_at or unit.updated_at)


def momentum_from_units(goal_id: UUID, units: Sequence, *, now: datetime) -> GoalMomentum:
    today = as_utc(now).date()
    completed = [unit for unit in units if is_effectively_complete(unit)]
    completion_days = [stamp.date() for stamp in (_completion_time(unit) for unit in completed) if stamp]

    last_worked = max(completion_days) if completion_days else None
    days_since = days_between(last_worked, today) if last_worked else NEVER_WORKED_DAYS
    recent = sum(1 for day in completion_days if days_between(day, today) < RECENT_WINDOW_DAYS)
    percentage = len(completed) / len(units) if units else 0.0

    value = BASE_SCORE
    if days_since == 0:
        value += TODAY_BONUS
    elif days_since == 1:
        value += YESTERDAY_BONUS
    value += PER_RECENT_COMPLETION * recent
    if percentage >= NEARLY_DONE_RATIO:
        value += NEARLY_DONE_BONUS
    if days_since >= IDLE_DAYS:
        value -= IDLE_PENALTY

    return GoalMomentum(
        goal_id=goal_id,
        last_worked_date=last_worked,
        completions_last_7_days=recent,
        total_completed=len(completed),
        total_work_units=len(units),
        completion_percentage=percentage,
        days_since_last_work=days_since,
        momentum_score=max(0, value),
    )


def calculate_momentum(store: PlannerStore, goal_id: UUID, *, now: datetime) -> GoalMomentum:
    return momentum_from_units(goal_id, store.list_work_units_by_goal(goal_id), now=now)


def get_all_goal_momentum(store: PlannerStore, *, now: datetime) -> List[GoalMomentum]:
    """Momentum for every active goal, in goal creation order."""
    return [calculate_momentum(store, goal.id, now=now) for goal in store.list_active_goals()]


def sort_by_momentum(momenta: Sequence[GoalMomentum]) -> List[GoalMomentum]:
    # sorted() is stable, so ties keep the caller's (creation) order.
    return sorted(momenta, key=lambda item: item.momentum_score, reverse=True)


def needs_attention(momentum: GoalMomentum) -> bool:
    return momentum.days_since_last_work >= IDLE_DAYS and momentum.completion_percentage < NEARLY_DONE_RATIO
