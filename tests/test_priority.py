from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from smallsteps.services.priority import Candidate, ordering_key, rotation, score, urgency

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _goal(**kwargs):
    values = dict(id=uuid4(), target_date=None, lifelong=False, last_worked_at=None, updated_at=None, created_at=None)
    values.update(kwargs)
    return SimpleNamespace(**values)


def _item(estimated=100, completed=0):
    return SimpleNamespace(id=uuid4(), estimated_total_minutes=estimated, completed_minutes=completed)


def _candidate(minutes, value, *, order=0, position=0, waiting_days=0, queue_priority=100.0):
    return Candidate(
        work_unit=SimpleNamespace(id=uuid4(), position=position, capability_id=None),
        task=SimpleNamespace(id=uuid4(), order=order),
        goal=_goal(),
        minutes=minutes,
        score=value,
        waiting_days=waiting_days,
        queue_priority=queue_priority,
    )


@pytest.mark.parametrize(
    "offset, expected",
    [(-3, 1.0), (0, 1.0), (1, 0.9), (7, 0.9), (8, 0.7), (14, 0.7), (15, 0.5), (30, 0.5), (31, 0.3)],
)
def test_urgency_is_a_soft_step_function(offset, expected) -> None:
    assert urgency(_goal(target_date=TODAY + timedelta(days=offset)), TODAY) == expected


def test_missing_target_date_is_neutral() -> None:
    assert urgency(_goal(), TODAY) == 0.5
    assert urgency(_goal(target_date=TODAY, lifelong=True), TODAY) == 0.5


def test_rotation_falls_back_through_timestamps() -> None:
    assert rotation(_goal(), NOW) == 0.5
    assert rotation(_goal(created_at=NOW - timedelta(days=3, hours=12)), NOW) == pytest.approx(0.5)
    assert rotation(_goal(updated_at=NOW - timedelta(days=30), created_at=NOW - timedelta(days=1)), NOW) == 1.0
    worked = _goal(last_worked_at=NOW, updated_at=NOW - timedelta(days=30))
    assert rotation(worked, NOW) == 0.0


def test_rotation_accepts_naive_timestamps() -> None:
    naive = (NOW - timedelta(days=7)).replace(tzinfo=None)
    assert rotation(_goal(last_worked_at=naive), NOW) == 1.0


def test_score_combines_weighted_factors() -> None:
    goal = _goal(last_worked_at=NOW - timedelta(days=10))
    assert score(_item(100, 50), None, goal, now=NOW) == pytest.approx(65.0)


def test_score_is_zero_for_goals_outside_the_active_set() -> None:
    goal = _goal()
    other = _goal()
    assert score(_item(), None, goal, [other], now=NOW) == 0.0
    assert score(_item(), None, goal, [goal, other], now=NOW) > 0


def test_score_requires_goal() -> None:
    with pytest.raises(ValueError):
        score(_item(), None, None, now=NOW)


def test_score_tolerates_zero_estimate() -> None:
    assert score(_item(0, 0), None, _goal(), now=NOW) == pytest.approx(100 * (0.4 * 0.5 + 0.3 * 0.5))


def test_light_items_always_sort_before_heavy() -> None:
    heavy = _candidate(120, 500)
    light = _candidate(60, 1)
    ordered = sorted([heavy, light], key=ordering_key)
    assert ordered == [light, heavy]


def test_density_orders_within_a_bucket() -> None:
    dense = _candidate(20, 50)
    sparse = _candidate(30, 40)
    assert sorted([sparse, dense], key=ordering_key) == [dense, sparse]


def test_queue_priority_breaks_density_ties_before_waiting_days() -> None:
    skipped = _candidate(20, 40, waiting_days=3, queue_priority=48.0)
    fresh = _candidate(20, 40)
    assert sorted([skipped, fresh], key=ordering_key)[0] is fresh


def test_waiting_days_break_density_ties() -> None:
    fresh = _candidate(20, 40)
    waiting = _candidate(20, 40, waiting_days=3)
    assert sorted([fresh, waiting], key=ordering_key)[0] is waiting
