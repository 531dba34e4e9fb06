"""Skip handling: rotate today, learn over time.

A skip never discards work. The unit moves to the end of today's remaining
queue, its counters grow, and repeated skips soften the plan: first a proposed
(never auto-applied) target-date extension, then a lighter perceived effort
tier that is never raised back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import UUID

from smallsteps.core.clock import as_utc
from smallsteps.core.context import bind_operation
from smallsteps.observability import log_metric, trace
from smallsteps.schemas.plan import SkipResultPayload, TimelineExtensionPayload
from smallsteps.services.allocator import task_is_done
from smallsteps.services.effort import downgrade_effort, perceived_effort, remaining_minutes
from smallsteps.services.store import PlannerStore
from smallsteps.services.task_queue import downgrade_queue_effort, record_queue_skip

logger = logging.getLogger(__name__)

EXTENSION_UNIT_SKIPS = 3
EXTENSION_GOAL_AVERAGE_SKIPS = 2.0
SHORT_HORIZON_DAYS = 30
SHORT_EXTENSION_DAYS = 14
LONG_EXTENSION_DAYS = 30
DOWNGRADE_SKIPS = 5


@dataclass
class TimelineExtension:
    goal_id: UUID
    current_target: Optional[date]
    proposed_target: date
    extension_days: int
    message: str

    def to_payload(self) -> TimelineExtensionPayload:
        return TimelineExtensionPayload(
            goal_id=self.goal_id,
            current_target=self.current_target,
            proposed_target=self.proposed_target,
            extension_days=self.extension_days,
            message=self.message,
        )


@dataclass
class SkipResult:
    work_unit_id: UUID
    skip_count: int
    task_skip_count: int
    rotated: bool
    effort_downgraded: bool
    effort_level: Optional[str] = None
    extension: Optional[TimelineExtension] = None

    def to_payload(self) -> SkipResultPayload:
        return SkipResultPayload(
            work_unit_id=self.work_unit_id,
            skip_count=self.skip_count,
            task_skip_count=self.task_skip_count,
            rotated=self.rotated,
            effort_downgraded=self.effort_downgraded,
            effort_level=self.effort_level,
            extension=self.extension.to_payload() if self.extension else None,
        )


def rotate_to_end(store: PlannerStore, day: date, work_unit_id: UUID) -> bool:
    allocation = store.get_allocation(day, for_update=True)
    key = str(work_unit_id)
    if allocation is None or key not in (allocation.work_unit_ids or []):
        return False
    remaining: List[str] = [value for value in allocation.work_unit_ids if value != key]
    store.save_allocation(day, work_unit_ids=remaining + [key])
    return True


def goal_average_skips(store: PlannerStore, goal_id: UUID) -> float:
    tasks = [task for task in store.list_tasks_by_goal(goal_id) if not task_is_done(store, task)]
    if not tasks:
        return 0.0
    return sum(task.skip_count or 0 for task in tasks) / len(tasks)


def propose_extension(store: PlannerStore, goal, unit_skip_count: int, *, today: date) -> Optional[TimelineExtension]:
    if goal.lifelong or goal.target_date is None or unit_skip_count < EXTENSION_UNIT_SKIPS:
        return None
    if goal.extension_offered_for == goal.target_date:
        return None
    if goal_average_skips(store, goal.id) < EXTENSION_GOAL_AVERAGE_SKIPS:
        return None
    days_left = (goal.target_date - today).days
    extension_days = SHORT_EXTENSION_DAYS if days_left < SHORT_HORIZON_DAYS else LONG_EXTENSION_DAYS
    proposed = goal.target_date + timedelta(days=extension_days)
    goal.extension_offered_for = goal.target_date
    return TimelineExtension(
        goal_id=goal.id,
        current_target=goal.target_date,
        proposed_target=proposed,
        extension_days=extension_days,
        message=f"This goal keeps getting pushed. Want to give it {extension_days} more days, until {proposed.isoformat()}?",
    )


def handle_skip(store: PlannerStore, work_unit_id: UUID, *, now: datetime, day: Optional[date] = None) -> SkipResult:
    day = day or as_utc(now).date()
    with bind_operation("skip", day=day), trace("planner.skip", metadata={"work_unit_id": str(work_unit_id), "day": day.isoformat()}):
        with store.transaction():
            unit = store.require_work_unit(work_unit_id)
            task = store.require_task(unit.task_id)
            goal = store.require_goal(task.goal_id)

            unit.skip_count = (unit.skip_count or 0) + 1
            unit.last_skipped_at = now
            task.skip_count = (task.skip_count or 0) + 1
            task.last_skipped_at = now
            record_queue_skip(store, task.id, now=now)
            rotated = rotate_to_end(store, day, unit.id)

            downgraded = False
            current_level = perceived_effort(task, remaining_minutes(task))
            if unit.skip_count >= DOWNGRADE_SKIPS:
                lowered = downgrade_effort(current_level)
                if lowered != current_level:
                    task.effort_level = lowered
                    downgrade_queue_effort(store, task.id)
                    downgraded = True
                    current_level = lowered
                    logger.info("Task %s effort tier lowered to %s after %s skips", task.id, lowered, unit.skip_count)

            store.flush()
            extension = propose_extension(store, goal, unit.skip_count, today=day)
            if extension:
                logger.info("Proposing %s-day extension for goal %s", extension.extension_days, goal.id)
                log_metric("planner.extension_proposed", 1, {"goal_id": str(goal.id)})

            result = SkipResult(
                work_unit_id=unit.id,
                skip_count=unit.skip_count,
                task_skip_count=task.skip_count,
                rotated=rotated,
                effort_downgraded=downgraded,
                effort_level=current_level,
                extension=extension,
            )
        logger.info("Skipped work unit %s (count=%s, rotated=%s)", work_unit_id, result.skip_count, rotated)
    return result


def apply_timeline_extension(store: PlannerStore, goal_id: UUID, new_target: date):
    """Apply an extension the user accepted. The queue cache follows the new date."""
    with store.transaction():
        goal = store.require_goal(goal_id)
        if goal.target_date is not None and new_target < goal.target_date:
            raise ValueError("An extension cannot move the target date earlier")
        goal.target_date = new_target
        for entry in store.list_queue_entries():
            if entry.goal_id == goal.id:
                entry.goal_target_date = new_target
        store.flush()
    logger.info("Goal %s target moved to %s", goal_id, new_target)
    return goal
