"""Persisted task queue cache.

Entries mirror incomplete, active tasks of active non-lifelong goals. The cache
can be dropped and rebuilt at any time with `rehydrate_queue`; skip history and
waiting days of surviving entries carry over.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from smallsteps.core.clock import as_utc
from smallsteps.db.models.task_queue_entry import TaskQueueEntry
from smallsteps.services.allocator import task_is_done
from smallsteps.services.effort import downgrade_effort, perceived_effort, remaining_minutes
from smallsteps.services.priority import NEUTRAL_QUEUE_PRIORITY
from smallsteps.services.store import PlannerStore

logger = logging.getLogger(__name__)

BASE_PRIORITY = NEUTRAL_QUEUE_PRIORITY
MAX_DEADLINE_BOOST = 100.0
SKIP_PENALTY = 2.0
WAITING_BOOST = 1.5
SKIPPED_TODAY_PENALTY = 50.0


def queue_priority(entry: TaskQueueEntry, *, today: date) -> float:
    value = BASE_PRIORITY
    if entry.goal_target_date is not None:
        days_until = (entry.goal_target_date - today).days
        value += MAX_DEADLINE_BOOST if days_until <= 0 else min(MAX_DEADLINE_BOOST, 100.0 / days_until)
    value -= SKIP_PENALTY * (entry.skip_count or 0)
    value += WAITING_BOOST * (entry.waiting_days or 0)
    skipped_at = as_utc(entry.last_skipped_at)
    if skipped_at is not None and skipped_at.date() == today:
        value -= SKIPPED_TODAY_PENALTY
    return max(0.0, value)


def ranked_queue(store: PlannerStore, *, today: date) -> List[TaskQueueEntry]:
    entries = store.list_queue_entries()
    return sorted(entries, key=lambda entry: queue_priority(entry, today=today), reverse=True)


def queue_priorities_by_task(store: PlannerStore, *, today: date) -> Dict[UUID, float]:
    """Task id -> queue priority, highest first. Feeds allocation tie-breaking."""
    return {entry.task_id: queue_priority(entry, today=today) for entry in ranked_queue(store, today=today)}


def enqueue_task(store: PlannerStore, task, goal, *, now: datetime) -> Optional[TaskQueueEntry]:
    """Insert or refresh the task's entry. Lifelong goals and finished tasks are not queued."""
    if goal.lifelong or goal.status != "active" or task.lifecycle != "active" or task_is_done(store, task):
        return None
    entry = store.get_queue_entry(task.id)
    effort = perceived_effort(task, remaining_minutes(task))
    if entry is None:
        entry = TaskQueueEntry(
            task_id=task.id,
            goal_id=goal.id,
            skip_count=task.skip_count or 0,
            last_skipped_at=task.last_skipped_at,
            waiting_days=0,
            queued_at=now,
        )
    entry.effort_level = effort
    entry.goal_target_date = goal.target_date
    return store.save_queue_entry(entry)


def dequeue_task(store: PlannerStore, task_id: UUID) -> bool:
    removed = store.delete_queue_entry(task_id)
    if removed:
        logger.debug("Dequeued task %s", task_id)
    return removed


def dequeue_goal(store: PlannerStore, goal_id: UUID) -> int:
    return store.delete_queue_entries_for_goal(goal_id)


def record_queue_skip(store: PlannerStore, task_id: UUID, *, now: datetime) -> Optional[TaskQueueEntry]:
    entry = store.get_queue_entry(task_id)
    if entry is None:
        return None
    entry.skip_count = (entry.skip_count or 0) + 1
    entry.last_skipped_at = now
    store.flush()
    return entry


def downgrade_queue_effort(store: PlannerStore, task_id: UUID) -> Optional[TaskQueueEntry]:
    entry = store.get_queue_entry(task_id)
    if entry is None:
        return None
    entry.effort_level = downgrade_effort(entry.effort_level)
    store.flush()
    return entry


def advance_waiting_days(store: PlannerStore, days: int = 1) -> int:
    entries = store.list_queue_entries()
    for entry in entries:
        entry.waiting_days = (entry.waiting_days or 0) + days
    store.flush()
    return len(entries)


def waiting_days_by_task(store: PlannerStore) -> Dict[UUID, int]:
    return {entry.task_id: entry.waiting_days or 0 for entry in store.list_queue_entries()}


def rehydrate_queue(store: PlannerStore, *, now: datetime) -> int:
    """Rebuild the cache from tasks and goals. Returns the number of entries written."""
    with store.transaction():
        previous = {
            entry.task_id: (entry.skip_count or 0, entry.last_skipped_at, entry.waiting_days or 0, entry.queued_at)
            for entry in store.list_queue_entries()
        }
        store.clear_queue()

        written = 0
        for goal in store.list_active_goals():
            if goal.lifelong:
                continue
            for task in store.list_tasks_by_goal(goal.id):
                if task_is_done(store, task):
                    continue
                skip_count, last_skipped_at, waiting_days, queued_at = previous.get(task.id, (0, None, 0, None))
                store.save_queue_entry(
                    TaskQueueEntry(
                        task_id=task.id,
                        goal_id=goal.id,
                        effort_level=perceived_effort(task, remaining_minutes(task)),
                        goal_target_date=goal.target_date,
                        skip_count=max(skip_count, task.skip_count or 0),
                        last_skipped_at=last_skipped_at or task.last_skipped_at,
                        waiting_days=waiting_days,
                        queued_at=queued_at or now,
                    )
                )
                written += 1
    logger.info("Rehydrated task queue with %s entries (was %s)", written, len(previous))
    return written
