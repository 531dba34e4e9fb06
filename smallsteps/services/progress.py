"""Recording work against units, tasks, goals, and the day's allocation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from smallsteps.core.clock import as_utc
from smallsteps.core.context import bind_operation
from smallsteps.observability import log_metric
from smallsteps.services.allocator import check_goal_completion, task_is_done
from smallsteps.services.effort import clamp_completed, is_effectively_complete
from smallsteps.services.store import PlannerStore
from smallsteps.services.task_queue import dequeue_task, enqueue_task

logger = logging.getLogger(__name__)


@dataclass
class ProgressResult:
    work_unit: Any
    task: Any
    goal: Any
    minutes_added: float
    unit_completed: bool
    task_completed: bool
    goal_drained: bool


def _count_against_allocation(store: PlannerStore, day: date, unit_id: UUID) -> bool:
    allocation = store.get_allocation(day, for_update=True)
    key = str(unit_id)
    if allocation is None or key not in (allocation.planned_ids or []):
        return False
    store.save_allocation(
        day,
        work_unit_ids=[value for value in allocation.work_unit_ids or [] if value != key],
        completed_count=(allocation.completed_count or 0) + 1,
    )
    return True


def _uncount_against_allocation(store: PlannerStore, day: date, unit_id: UUID) -> None:
    allocation = store.get_allocation(day, for_update=True)
    key = str(unit_id)
    if allocation is None or key not in (allocation.planned_ids or []):
        return
    remaining = list(allocation.work_unit_ids or [])
    if key not in remaining:
        remaining.append(key)
    store.save_allocation(
        day,
        work_unit_ids=remaining,
        completed_count=max(0, (allocation.completed_count or 0) - 1),
    )


def record_progress(
    store: PlannerStore,
    work_unit_id: UUID,
    minutes: float,
    *,
    now: datetime,
    day: Optional[date] = None,
) -> ProgressResult:
    """Add minutes to a unit and its task. Overshoot is clamped to the estimate."""
    if minutes < 0:
        raise ValueError("minutes cannot be negative")
    day = day or as_utc(now).date()
    with bind_operation("progress", day=day), store.transaction():
        unit = store.require_work_unit(work_unit_id)
        task = store.require_task(unit.task_id)
        goal = store.require_goal(task.goal_id)

        unit_was_complete = is_effectively_complete(unit)
        task_was_done = task_is_done(store, task)

        before = unit.completed_minutes or 0
        unit.completed_minutes = clamp_completed(unit.estimated_total_minutes, before + minutes)
        added = unit.completed_minutes - before
        task.completed_minutes = clamp_completed(task.estimated_total_minutes, (task.completed_minutes or 0) + added)

        unit_completed = not unit_was_complete and is_effectively_complete(unit)
        if unit_completed:
            unit.last_completed_at = now
            goal.last_worked_at = now
            counted = _count_against_allocation(store, day, unit.id)
            logger.info("Work unit %s completed (counted toward %s: %s)", unit.id, day, counted)
            log_metric("planner.unit_completed", 1, {"goal_id": str(goal.id)})
        store.flush()

        task_completed = not task_was_done and task_is_done(store, task)
        if task_completed:
            dequeue_task(store, task.id)
            logger.info("Task %s effectively complete", task.id)
        goal_drained = check_goal_completion(store, goal, now=now)

    return ProgressResult(
        work_unit=unit,
        task=task,
        goal=goal,
        minutes_added=added,
        unit_completed=unit_completed,
        task_completed=task_completed,
        goal_drained=goal_drained,
    )


def complete_work_unit(store: PlannerStore, work_unit_id: UUID, *, now: datetime, day: Optional[date] = None) -> ProgressResult:
    unit = store.require_work_unit(work_unit_id)
    missing = max(0.0, (unit.estimated_total_minutes or 0) - (unit.completed_minutes or 0))
    return record_progress(store, work_unit_id, missing, now=now, day=day)


def reset_work_unit(store: PlannerStore, work_unit_id: UUID, *, now: datetime, day: Optional[date] = None) -> Any:
    """Undo a completion: the unit goes back to zero and its task gives the minutes back."""
    day = day or as_utc(now).date()
    with store.transaction():
        unit = store.require_work_unit(work_unit_id)
        task = store.require_task(unit.task_id)
        goal = store.require_goal(task.goal_id)
        was_complete = is_effectively_complete(unit)
        previous = unit.completed_minutes or 0

        unit.completed_minutes = 0.0
        unit.last_completed_at = None
        task.completed_minutes = max(0.0, (task.completed_minutes or 0) - previous)
        if was_complete:
            _uncount_against_allocation(store, day, unit.id)
        if goal.status == "drained" and not goal.lifelong:
            goal.status = "active"
            goal.completed_at = None
            logger.info("Goal %s reopened after reset of %s", goal.id, unit.id)
        store.flush()
        enqueue_task(store, task, goal, now=now)
    return unit
