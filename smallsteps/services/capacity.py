"""Daily capacity and workload estimates.

Capacity is a minutes range derived from the last two weeks of allocations:
half history, half the configured default, so one unusual day cannot swing it.
It shrinks after a rough few days and when many goals compete for attention.
The same numbers back the goal admission, target-date feasibility and
overload checks. None of these ever block anything; they only advise.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Literal, Optional, Sequence
from uuid import UUID

from smallsteps.core.config import PlannerConfig
from smallsteps.schemas.capacity import CapacityRangePayload, FeasibilityPayload
from smallsteps.services.allocator import task_is_done
from smallsteps.services.effort import remaining_minutes
from smallsteps.services.store import PlannerStore

logger = logging.getLogger(__name__)

HISTORY_DAYS = 14
MIN_HISTORY_DAYS = 3
HIGH_CONFIDENCE_DAYS = 7
RECENT_WINDOW = 3
RECENT_FAILURES = 2
STRUGGLE_FACTOR = 0.8
GOAL_SWITCH_FREE_GOALS = 5
GOAL_SWITCH_PENALTY_MINUTES = 15
RANGE_LOW_FACTOR = 0.7
RANGE_HIGH_FACTOR = 1.3

UNDATED_SPREAD_DAYS = 30
BALANCED_SHARE = 0.5
FEASIBILITY_BUFFER = 1.1
HORIZON_DAYS = 365
CROWDED_GOALS = 3
LOW_ENERGY_MINUTES = 180
# (total minutes above, minimum days): big goals are not rushed even with room to spare
MINIMUM_DURATIONS = ((5000, 90), (2000, 30))

Confidence = Literal["low", "medium", "high"]


@dataclass
class DayLoad:
    day: date
    planned_minutes: float
    completed: bool


@dataclass
class CapacityRange:
    min: float
    preferred: float
    max: float
    confidence: Confidence

    def to_payload(self) -> CapacityRangePayload:
        return CapacityRangePayload(min=self.min, preferred=self.preferred, max=self.max, confidence=self.confidence)


@dataclass
class AdmissionResult:
    allowed: bool
    pace: Literal["standard", "gentle"]
    message: Optional[str] = None


@dataclass
class FeasibilityResult:
    is_feasible: bool
    daily_capacity_minutes: float
    total_task_minutes: float
    days_needed: int
    days_available: int
    suggested_date: Optional[date] = None
    message: Optional[str] = None

    def to_payload(self) -> FeasibilityPayload:
        return FeasibilityPayload(
            is_feasible=self.is_feasible,
            daily_capacity_minutes=self.daily_capacity_minutes,
            total_task_minutes=self.total_task_minutes,
            days_needed=self.days_needed,
            days_available=self.days_available,
            suggested_date=self.suggested_date,
            message=self.message,
        )


@dataclass
class WorkloadAssessment:
    is_overloaded: bool
    total_daily_minutes: float
    message: Optional[str] = None


def allocation_completed(allocation) -> bool:
    """Every unit planned that day was completed."""
    planned = len(allocation.planned_ids or [])
    return planned > 0 and (allocation.completed_count or 0) >= planned


def capacity_range(history: Sequence[DayLoad], active_goal_count: int, *, config: PlannerConfig) -> CapacityRange:
    """Pure estimate from day loads ordered oldest first."""
    default = float(config.default_capacity_minutes)
    preferred = default
    confidence: Confidence = "low"

    completed = [load for load in history if load.completed]
    if len(completed) >= MIN_HISTORY_DAYS:
        average = sum(load.planned_minutes for load in completed) / len(completed)
        preferred = float(round((average + default) / 2))
        confidence = "high" if len(completed) >= HIGH_CONFIDENCE_DAYS else "medium"

    failures = sum(1 for load in history[-RECENT_WINDOW:] if not load.completed)
    if failures >= RECENT_FAILURES:
        preferred *= STRUGGLE_FACTOR

    if active_goal_count > GOAL_SWITCH_FREE_GOALS:
        preferred -= (active_goal_count - GOAL_SWITCH_FREE_GOALS) * GOAL_SWITCH_PENALTY_MINUTES

    preferred = max(config.min_daily_minutes, min(config.max_daily_minutes, preferred))
    return CapacityRange(
        min=max(config.min_daily_minutes, preferred * RANGE_LOW_FACTOR),
        preferred=preferred,
        max=min(config.max_daily_minutes, preferred * RANGE_HIGH_FACTOR),
        confidence=confidence,
    )


def recent_day_loads(store: PlannerStore, *, today: date) -> List[DayLoad]:
    """Planned days of the last two weeks, today excluded. Empty plans are not history."""
    allocations = store.list_allocations(today - timedelta(days=HISTORY_DAYS), today)
    return [
        DayLoad(
            day=allocation.day,
            planned_minutes=allocation.planned_minutes or 0.0,
            completed=allocation_completed(allocation),
        )
        for allocation in allocations
        if allocation.planned_ids
    ]


def estimate_daily_capacity(store: PlannerStore, *, today: date, config: Optional[PlannerConfig] = None) -> CapacityRange:
    config = config or PlannerConfig()
    loads = recent_day_loads(store, today=today)
    estimate = capacity_range(loads, len(store.list_active_goals()), config=config)
    logger.debug(
        "Capacity for %s: %.0f min preferred (%s confidence, %s days of history)",
        today,
        estimate.preferred,
        estimate.confidence,
        len(loads),
    )
    return estimate


def _planning_capacity(estimate: CapacityRange, config: PlannerConfig) -> float:
    return float(config.default_capacity_minutes) if estimate.confidence == "low" else estimate.preferred


def goal_daily_minutes(store: PlannerStore, goal, *, today: date) -> float:
    """Remaining minutes of a goal spread over the days to its target (30 days without one)."""
    remaining = sum(
        remaining_minutes(task) for task in store.list_tasks_by_goal(goal.id) if not task_is_done(store, task)
    )
    if goal.target_date is not None and not goal.lifelong:
        return remaining / max(1, (goal.target_date - today).days)
    return remaining / UNDATED_SPREAD_DAYS


def existing_daily_minutes(store: PlannerStore, *, today: date, exclude_goal_id: Optional[UUID] = None) -> float:
    return sum(
        goal_daily_minutes(store, goal, today=today)
        for goal in store.list_active_goals()
        if goal.id != exclude_goal_id
    )


def assess_goal_admission(store: PlannerStore, *, today: date, config: Optional[PlannerConfig] = None) -> AdmissionResult:
    """Never refuses a goal; suggests a gentle start when many goals meet a low capacity."""
    estimate = estimate_daily_capacity(store, today=today, config=config)
    crowded = len(store.list_active_goals()) > CROWDED_GOALS
    if crowded and estimate.preferred < LOW_ENERGY_MINUTES:
        return AdmissionResult(
            allowed=True,
            pace="gentle",
            message="We'll start this gently to fit your current flow.",
        )
    return AdmissionResult(allowed=True, pace="standard")


def assess_target_date_feasibility(
    store: PlannerStore,
    total_task_minutes: float,
    target_date: Optional[date],
    *,
    today: date,
    exclude_goal_id: Optional[UUID] = None,
    config: Optional[PlannerConfig] = None,
) -> FeasibilityResult:
    """Can `total_task_minutes` fit before `target_date` next to the other active goals?"""
    config = config or PlannerConfig()
    total = abs(total_task_minutes)
    if target_date is None:
        default = float(config.default_capacity_minutes)
        return FeasibilityResult(
            is_feasible=True,
            daily_capacity_minutes=default,
            total_task_minutes=total,
            days_needed=math.ceil(total / default),
            days_available=HORIZON_DAYS,
            message="No target date set - take your time!",
        )

    days_available = max(1, (target_date - today).days)
    daily_capacity = _planning_capacity(estimate_daily_capacity(store, today=today, config=config), config)
    existing = existing_daily_minutes(store, today=today, exclude_goal_id=exclude_goal_id)
    available = max(daily_capacity * BALANCED_SHARE, daily_capacity - existing)
    days_needed = math.ceil(total / available)

    if days_needed <= days_available:
        return FeasibilityResult(
            is_feasible=True,
            daily_capacity_minutes=daily_capacity,
            total_task_minutes=total,
            days_needed=days_needed,
            days_available=days_available,
        )

    buffered = math.ceil(days_needed * FEASIBILITY_BUFFER)
    if buffered > HORIZON_DAYS:
        return FeasibilityResult(
            is_feasible=False,
            daily_capacity_minutes=daily_capacity,
            total_task_minutes=total,
            days_needed=HORIZON_DAYS,
            days_available=days_available,
            message=(
                "Your capacity is fully booked with existing goals. Consider completing some current "
                "work first, or marking this as a long-term goal."
            ),
        )
    return FeasibilityResult(
        is_feasible=False,
        daily_capacity_minutes=daily_capacity,
        total_task_minutes=total,
        days_needed=days_needed,
        days_available=days_available,
        suggested_date=today + timedelta(days=max(1, buffered)),
        message=(
            "Given your current pace and existing goals, this timeline may be too tight. "
            "We can stretch it to make this sustainable."
        ),
    )


def suggest_target_date(
    store: PlannerStore,
    total_task_minutes: float,
    *,
    today: date,
    exclude_goal_id: Optional[UUID] = None,
    config: Optional[PlannerConfig] = None,
) -> date:
    """A realistic target: half the daily capacity when other goals exist, with minimum durations for big goals."""
    config = config or PlannerConfig()
    capacity = _planning_capacity(estimate_daily_capacity(store, today=today, config=config), config)
    others = [goal for goal in store.list_active_goals() if goal.id != exclude_goal_id]
    share = BALANCED_SHARE if others else 1.0
    total = abs(total_task_minutes)

    days = max(1, math.ceil(total / (capacity * share)))
    for threshold, minimum in MINIMUM_DURATIONS:
        if total > threshold:
            days = max(days, minimum)
            break
    return today + timedelta(days=days)


def assess_total_workload(store: PlannerStore, *, today: date, config: Optional[PlannerConfig] = None) -> WorkloadAssessment:
    config = config or PlannerConfig()
    total = existing_daily_minutes(store, today=today)
    if total > config.max_daily_workload_minutes:
        logger.info("Workload of %.0f min/day exceeds %s", total, config.max_daily_workload_minutes)
        return WorkloadAssessment(
            is_overloaded=True,
            total_daily_minutes=total,
            message=(
                f"Your current goals add up to about {round(total / 60)} hours of work per day. "
                "Consider extending some timelines or reducing scope to keep things sustainable."
            ),
        )
    return WorkloadAssessment(is_overloaded=False, total_daily_minutes=total)
