"""Daily plan builder.

`build_plan` produces today's count-budgeted plan (momentum slots),
`build_capacity_plan` a minute-budgeted one (knapsack). Both treat missing data
as a normal state with a friendly message and persist the day's allocation so
skips, completions, and top-ups can work against it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from smallsteps.core.clock import as_utc
from smallsteps.core.config import PlannerConfig
from smallsteps.core.context import bind_operation
from smallsteps.observability import log_metric, trace
from smallsteps.schemas.plan import DailyPlanPayload, SlicePayload
from smallsteps.services.allocator import (
    AllocationRequest,
    AllocationStrategy,
    CapacityKnapsackStrategy,
    MomentumSlotStrategy,
    Selection,
    apply_capacity_adjustments,
    collect_incomplete_units,
)
from smallsteps.services.capacity import estimate_daily_capacity
from smallsteps.services.completion_rate import get_target_count
from smallsteps.services.effort import is_effectively_complete, perceived_effort, remaining_minutes, slice_label
from smallsteps.services.momentum import momentum_from_units, sort_by_momentum
from smallsteps.services.store import PlannerStore
from smallsteps.services.task_queue import queue_priorities_by_task, waiting_days_by_task

logger = logging.getLogger(__name__)

NO_GOALS_MESSAGE = "No active goals yet — take your time."
ALL_COMPLETE_MESSAGE = "Everything is done for now. Enjoy the space you made."


@dataclass
class Slice:
    work_unit: Any
    task: Any
    goal: Any
    minutes: float
    label: str
    effort_level: str
    reason: Optional[str] = None

    @property
    def work_unit_id(self):
        return self.work_unit.id

    def to_payload(self) -> SlicePayload:
        return SlicePayload(
            work_unit_id=self.work_unit.id,
            task_id=self.task.id,
            goal_id=self.goal.id,
            title=self.work_unit.title,
            task_title=self.task.title,
            goal_title=self.goal.title,
            minutes=self.minutes,
            label=self.label,
            effort_level=self.effort_level,
            reason=self.reason,
            first_action=self.work_unit.first_action,
            success_signal=self.work_unit.success_signal,
        )


@dataclass
class DailyPlan:
    date: date
    slices: List[Slice] = field(default_factory=list)
    summary_message: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_minutes(self) -> float:
        return sum(item.minutes for item in self.slices)

    def to_payload(self) -> DailyPlanPayload:
        return DailyPlanPayload(
            date=self.date,
            slices=[item.to_payload() for item in self.slices],
            summary_message=self.summary_message,
            metadata=self.metadata,
        )


def make_slice(unit, task, goal, *, reason: Optional[str] = None) -> Slice:
    minutes = remaining_minutes(unit)
    return Slice(
        work_unit=unit,
        task=task,
        goal=goal,
        minutes=minutes,
        label=slice_label(minutes),
        effort_level=perceived_effort(task, minutes),
        reason=reason,
    )


def summary_message(step_count: int, goal_count: int) -> str:
    steps = "step" if step_count == 1 else "steps"
    goals = "goal" if goal_count == 1 else "goals"
    return f"{step_count} {steps} across {goal_count} {goals}"


def _slice_from_selection(selection: Selection) -> Slice:
    return make_slice(selection.work_unit, selection.task, selection.goal, reason=selection.reason)


def _skipped_on(unit, day: date) -> bool:
    skipped_at = as_utc(unit.last_skipped_at)
    return skipped_at is not None and skipped_at.date() == day


def rotate_skipped_to_end(slices: Sequence[Slice], day: date) -> List[Slice]:
    fresh = [item for item in slices if not _skipped_on(item.work_unit, day)]
    skipped = [item for item in slices if _skipped_on(item.work_unit, day)]
    return fresh + skipped


def _empty_plan(day: date, message: str, reason: str, **metadata) -> DailyPlan:
    return DailyPlan(date=day, slices=[], summary_message=message, metadata={"reason": reason, **metadata})


def _persist_allocation(store: PlannerStore, day: date, slices: Sequence[Slice], strategy: str) -> None:
    ids = [str(item.work_unit.id) for item in slices]
    existing = store.get_allocation(day, for_update=True)
    planned = list(existing.planned_ids or []) if existing else []
    planned_minutes = (existing.planned_minutes or 0.0) if existing else 0.0
    for item in slices:
        key = str(item.work_unit.id)
        if key not in planned:
            planned.append(key)
            planned_minutes += item.minutes
    store.save_allocation(day, work_unit_ids=ids, planned_ids=planned, strategy=strategy, planned_minutes=planned_minutes)


def _run_strategy(
    store: PlannerStore,
    strategy: AllocationStrategy,
    *,
    day: date,
    now: datetime,
    config: PlannerConfig,
    capacity_minutes: Optional[float] = None,
    persist: bool = True,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> DailyPlan:
    extra_metadata = extra_metadata or {}
    with bind_operation(strategy.name, day=day) as trace_id, trace(
        f"planner.{strategy.name}",
        metadata={"day": day.isoformat(), "capacity_minutes": capacity_minutes},
    ):
        with store.transaction():
            goals = store.list_active_goals()
            if not goals:
                logger.info("No active goals for %s", day)
                return _empty_plan(day, NO_GOALS_MESSAGE, "no_active_goals", trace_id=trace_id, **extra_metadata)

            units_by_goal = collect_incomplete_units(store, goals)
            if not units_by_goal:
                logger.info("All %s active goals are complete for %s", len(goals), day)
                return _empty_plan(day, ALL_COMPLETE_MESSAGE, "all_complete", trace_id=trace_id, **extra_metadata)

            momenta = [
                momentum_from_units(goal.id, store.list_work_units_by_goal(goal.id), now=now) for goal in goals
            ]
            target_count = get_target_count(store, config)
            request = AllocationRequest(
                goals=goals,
                units_by_goal=units_by_goal,
                momenta=momenta,
                target_count=target_count,
                now=now,
                config=config,
                capacity_minutes=capacity_minutes,
                waiting_days=waiting_days_by_task(store),
                queue_priorities=queue_priorities_by_task(store, today=day),
            )
            result = strategy.select(request)
            slices = [_slice_from_selection(selection) for selection in result.selections]
            if isinstance(strategy, MomentumSlotStrategy):
                slices = rotate_skipped_to_end(slices, day)

            goal_count = len({item.goal.id for item in slices})
            if persist:
                _persist_allocation(store, day, slices, strategy.name)

        metadata = {
            "strategy": strategy.name,
            "target_count": target_count,
            "total_minutes": sum(item.minutes for item in slices),
            "active_goals": len(goals),
            "trace_id": trace_id,
            **result.metadata,
            **extra_metadata,
        }
        logger.info("Built %s plan for %s: %s slices across %s goals", strategy.name, day, len(slices), goal_count)
        log_metric("planner.slices", len(slices), {"strategy": strategy.name})
    return DailyPlan(date=day, slices=slices, summary_message=summary_message(len(slices), goal_count), metadata=metadata)


def build_plan(
    store: PlannerStore,
    *,
    day: Optional[date] = None,
    now: datetime,
    config: Optional[PlannerConfig] = None,
    persist: bool = True,
) -> DailyPlan:
    """Today's plan: adaptive count of work units split across goals by momentum."""
    return _run_strategy(
        store,
        MomentumSlotStrategy(),
        day=day or as_utc(now).date(),
        now=now,
        config=config or PlannerConfig(),
        persist=persist,
    )


def build_capacity_plan(
    store: PlannerStore,
    *,
    capacity_minutes: Optional[float] = None,
    energy_level: Optional[int] = None,
    mode: Optional[str] = None,
    day: Optional[date] = None,
    now: datetime,
    config: Optional[PlannerConfig] = None,
    persist: bool = True,
) -> DailyPlan:
    """A minute-budgeted plan, gentlest slice first.

    Without an explicit budget the preferred minutes of the recent-history
    capacity estimate are used.
    """
    config = config or PlannerConfig()
    day = day or as_utc(now).date()
    confidence = None
    if capacity_minutes is None:
        estimate = estimate_daily_capacity(store, today=day, config=config)
        capacity_minutes, confidence = estimate.preferred, estimate.confidence
    capacity = apply_capacity_adjustments(capacity_minutes, energy_level=energy_level, mode=mode)
    return _run_strategy(
        store,
        CapacityKnapsackStrategy(),
        day=day,
        now=now,
        config=config,
        capacity_minutes=capacity,
        persist=persist,
        extra_metadata={"energy_level": energy_level, "mode": mode, "capacity_confidence": confidence},
    )


def load_plan(store: PlannerStore, *, day: date) -> Optional[DailyPlan]:
    """Rebuild the day's remaining queue from its stored allocation. Orphaned ids are dropped with a warning."""
    allocation = store.get_allocation(day)
    if allocation is None:
        return None
    slices: List[Slice] = []
    for raw_id in allocation.work_unit_ids or []:
        unit = _get_unit(store, raw_id)
        task = store.get_task(unit.task_id) if unit else None
        goal = store.get_goal(task.goal_id) if task else None
        if unit is None or task is None or goal is None:
            logger.warning("Dropping orphaned work unit %s from allocation %s", raw_id, day)
            continue
        if is_effectively_complete(unit):
            continue
        slices.append(make_slice(unit, task, goal))
    goal_count = len({item.goal.id for item in slices})
    return DailyPlan(
        date=day,
        slices=slices,
        summary_message=summary_message(len(slices), goal_count),
        metadata={
            "strategy": allocation.strategy,
            "planned": len(allocation.planned_ids or []),
            "completed": allocation.completed_count,
        },
    )


def _get_unit(store: PlannerStore, raw_id: str):
    try:
        return store.get_work_unit(UUID(str(raw_id)))
    except ValueError:
        return None


def _existing_keys(existing_slices: Iterable[Slice]) -> tuple[set, set]:
    ids = set()
    capabilities = set()
    for item in existing_slices:
        ids.add(str(item.work_unit.id))
        if item.work_unit.capability_id:
            capabilities.add(item.work_unit.capability_id)
    return ids, capabilities


def get_next_recommended_slice(
    store: PlannerStore,
    existing_slices: Sequence[Slice],
    *,
    now: datetime,
) -> Optional[Slice]:
    """First incomplete unit not already planned, walking goals by momentum. Read only."""
    ids, capabilities = _existing_keys(existing_slices)
    goals = store.list_active_goals()
    goals_by_id = {goal.id: goal for goal in goals}
    momenta = [momentum_from_units(goal.id, store.list_work_units_by_goal(goal.id), now=now) for goal in goals]
    for momentum in sort_by_momentum(momenta):
        goal = goals_by_id[momentum.goal_id]
        for task in store.list_tasks_by_goal(goal.id):
            for unit in store.list_work_units_by_task(task.id):
                if is_effectively_complete(unit) or str(unit.id) in ids:
                    continue
                if unit.capability_id and unit.capability_id in capabilities:
                    continue
                return make_slice(unit, task, goal)
    return None


def add_recommended_slice(
    store: PlannerStore,
    *,
    existing_slices: Sequence[Slice],
    now: datetime,
    day: Optional[date] = None,
) -> Optional[Slice]:
    """Top up today's plan with one more slice and record it on the day's allocation."""
    day = day or as_utc(now).date()
    with store.transaction():
        recommended = get_next_recommended_slice(store, existing_slices, now=now)
        if recommended is None:
            logger.info("No further slices to recommend for %s", day)
            return None
        key = str(recommended.work_unit.id)
        allocation = store.get_allocation(day, for_update=True)
        remaining = list(allocation.work_unit_ids or []) if allocation else []
        planned = list(allocation.planned_ids or []) if allocation else []
        planned_minutes = (allocation.planned_minutes or 0.0) if allocation else 0.0
        if key not in remaining:
            remaining.append(key)
        if key not in planned:
            planned.append(key)
            planned_minutes += recommended.minutes
        store.save_allocation(day, work_unit_ids=remaining, planned_ids=planned, planned_minutes=planned_minutes)
    logger.info("Added recommended slice %s to %s", key, day)
    return recommended
