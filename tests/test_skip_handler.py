from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from smallsteps.core.errors import RecordNotFoundError
from smallsteps.services.daily_planner import build_plan
from smallsteps.services.skip_handler import apply_timeline_extension, handle_skip
from smallsteps.services.task_queue import rehydrate_queue

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def test_skip_rotates_unit_to_end_of_today(store, seed_goal) -> None:
    _, tasks, units = seed_goal("Piano", [[10, 20, 30, 40]])
    build_plan(store, now=NOW)

    result = handle_skip(store, units[0].id, now=NOW)

    assert result.rotated is True
    assert result.skip_count == 1
    assert result.task_skip_count == 1
    allocation = store.get_allocation(TODAY)
    assert allocation.work_unit_ids == [str(units[1].id), str(units[2].id), str(units[0].id)]
    unit = store.get_work_unit(units[0].id)
    assert unit.last_skipped_at is not None
    assert store.get_task(tasks[0].id).skip_count == 1


def test_skip_without_plan_still_counts(store, seed_goal) -> None:
    _, _, units = seed_goal("Swim", [[10]])
    result = handle_skip(store, units[0].id, now=NOW)
    assert result.rotated is False
    assert result.skip_count == 1


def test_skip_is_recorded_on_queue_entry(store, seed_goal) -> None:
    _, tasks, units = seed_goal("Bake", [[10, 10]])
    rehydrate_queue(store, now=NOW)
    handle_skip(store, units[0].id, now=NOW)
    entry = store.get_queue_entry(tasks[0].id)
    assert entry.skip_count == 1
    assert entry.last_skipped_at is not None


def test_extension_is_proposed_once_and_never_applied(store, seed_goal) -> None:
    target = TODAY + timedelta(days=20)
    goal, _, units = seed_goal("Exam", [[30, 30]], target_date=target)

    results = [handle_skip(store, units[0].id, now=NOW + timedelta(minutes=i)) for i in range(3)]
    assert [r.extension is not None for r in results] == [False, False, True]
    proposal = results[-1].extension
    assert proposal.extension_days == 14
    assert proposal.proposed_target == target + timedelta(days=14)
    assert store.get_goal(goal.id).target_date == target

    assert handle_skip(store, units[0].id, now=NOW).extension is None


def test_accepting_extension_moves_target_and_allows_new_proposal(store, seed_goal) -> None:
    target = TODAY + timedelta(days=20)
    goal, tasks, units = seed_goal("Thesis", [[30, 30]], target_date=target)
    rehydrate_queue(store, now=NOW)
    proposal = None
    for _ in range(3):
        proposal = handle_skip(store, units[0].id, now=NOW).extension

    apply_timeline_extension(store, goal.id, proposal.proposed_target)
    assert store.get_goal(goal.id).target_date == target + timedelta(days=14)
    assert store.get_queue_entry(tasks[0].id).goal_target_date == target + timedelta(days=14)

    follow_up = handle_skip(store, units[0].id, now=NOW).extension
    assert follow_up is not None
    assert follow_up.extension_days == 30


def test_long_horizon_gets_thirty_days(store, seed_goal) -> None:
    goal, _, units = seed_goal("Novel", [[30]], target_date=TODAY + timedelta(days=90))
    for _ in range(3):
        result = handle_skip(store, units[0].id, now=NOW)
    assert result.extension.extension_days == 30


def test_no_extension_when_goal_skip_rate_is_low(store, seed_goal) -> None:
    goal, _, units = seed_goal("Garden", [[30], [30], [30], [30]], target_date=TODAY + timedelta(days=10))
    for _ in range(3):
        result = handle_skip(store, units[0].id, now=NOW)
    # one skipped task out of four: average 0.75
    assert result.extension is None


def test_no_extension_for_lifelong_goals(store, seed_goal) -> None:
    _, _, units = seed_goal("Meditate", [[10]], lifelong=True, target_date=TODAY + timedelta(days=5))
    for _ in range(4):
        result = handle_skip(store, units[0].id, now=NOW)
    assert result.extension is None


def test_effort_downgrades_one_step_from_fifth_skip(store, seed_goal) -> None:
    _, tasks, units = seed_goal("Marathon", [[120]])
    rehydrate_queue(store, now=NOW)

    outcomes = [handle_skip(store, units[0].id, now=NOW) for _ in range(7)]

    assert [r.effort_downgraded for r in outcomes] == [False, False, False, False, True, True, False]
    assert [r.effort_level for r in outcomes[3:]] == ["heavy", "medium", "light", "light"]
    assert store.get_task(tasks[0].id).effort_level == "light"
    assert store.get_queue_entry(tasks[0].id).effort_level == "light"


def test_extension_cannot_shorten_target(store, seed_goal) -> None:
    goal, _, _ = seed_goal("Trip", [[10]], target_date=TODAY + timedelta(days=10))
    with pytest.raises(ValueError):
        apply_timeline_extension(store, goal.id, TODAY)


def test_unknown_unit_raises(store) -> None:
    with pytest.raises(RecordNotFoundError):
        handle_skip(store, uuid4(), now=NOW)
