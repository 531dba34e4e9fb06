from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from smallsteps.services.task_queue import (
    advance_waiting_days,
    dequeue_goal,
    queue_priority,
    ranked_queue,
    record_queue_skip,
    rehydrate_queue,
    waiting_days_by_task,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _entry(**kwargs):
    values = dict(goal_target_date=None, skip_count=0, waiting_days=0, last_skipped_at=None)
    values.update(kwargs)
    return SimpleNamespace(**values)


def test_queue_priority_components() -> None:
    assert queue_priority(_entry(), today=TODAY) == 100
    entry = _entry(goal_target_date=TODAY + timedelta(days=10), skip_count=2, waiting_days=4)
    assert queue_priority(entry, today=TODAY) == pytest.approx(100 + 10 - 4 + 6)
    assert queue_priority(_entry(goal_target_date=TODAY - timedelta(days=1)), today=TODAY) == 200
    assert queue_priority(_entry(goal_target_date=TODAY + timedelta(days=1)), today=TODAY) == 200


def test_skipped_today_is_pushed_down_and_floored() -> None:
    skipped = _entry(last_skipped_at=NOW - timedelta(hours=2))
    assert queue_priority(skipped, today=TODAY) == 50
    assert queue_priority(_entry(skip_count=100), today=TODAY) == 0


def test_rehydrate_skips_lifelong_and_finished_work(store, seed_goal) -> None:
    goal, tasks, units = seed_goal("Launch", [[10], [20]])
    seed_goal("Habit", [[10]], lifelong=True)
    with store.transaction():
        store.update_work_unit(units[0].id, completed_minutes=10)

    written = rehydrate_queue(store, now=NOW)

    assert written == 1
    assert [entry.task_id for entry in store.list_queue_entries()] == [tasks[1].id]


def test_rehydrate_preserves_history(store, seed_goal) -> None:
    _, tasks, _ = seed_goal("Launch", [[10], [20]])
    rehydrate_queue(store, now=NOW)
    with store.transaction():
        record_queue_skip(store, tasks[0].id, now=NOW)
        advance_waiting_days(store, 2)

    rehydrate_queue(store, now=NOW + timedelta(days=1))

    entry = store.get_queue_entry(tasks[0].id)
    assert entry.skip_count == 1
    assert entry.waiting_days == 2
    assert waiting_days_by_task(store) == {tasks[0].id: 2, tasks[1].id: 2}


def test_archived_tasks_leave_the_queue(store, seed_goal) -> None:
    _, tasks, _ = seed_goal("Launch", [[10], [20]])
    rehydrate_queue(store, now=NOW)
    with store.transaction():
        store.archive_task(tasks[0].id, now=NOW)
    assert store.get_queue_entry(tasks[0].id) is None
    assert rehydrate_queue(store, now=NOW) == 1


def test_ranked_queue_orders_by_priority(store, seed_goal) -> None:
    _, soon_tasks, _ = seed_goal("Soon", [[10]], target_date=TODAY + timedelta(days=2))
    _, later_tasks, _ = seed_goal("Later", [[10]])
    rehydrate_queue(store, now=NOW)
    assert [entry.task_id for entry in ranked_queue(store, today=TODAY)] == [soon_tasks[0].id, later_tasks[0].id]


def test_dequeue_goal_removes_its_entries(store, seed_goal) -> None:
    goal, _, _ = seed_goal("Launch", [[10], [20]])
    rehydrate_queue(store, now=NOW)
    with store.transaction():
        assert dequeue_goal(store, goal.id) == 2
    assert store.list_queue_entries() == []
