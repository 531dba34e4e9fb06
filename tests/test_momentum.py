from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

from smallsteps.services.momentum import (
    NEVER_WORKED_DAYS,
    GoalMomentum,
    calculate_momentum,
    get_all_goal_momentum,
    momentum_from_units,
    needs_attention,
    sort_by_momentum,
)
from smallsteps.services.progress import record_progress

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _unit(estimated=10, completed=0, completed_at=None):
    return SimpleNamespace(
        id=uuid4(),
        estimated_total_minutes=estimated,
        completed_minutes=completed,
        last_completed_at=completed_at,
        updated_at=None,
    )


def _momentum(score, days=0, pct=0.5):
    return GoalMomentum(
        goal_id=uuid4(),
        last_worked_date=None,
        completions_last_7_days=0,
        total_completed=0,
        total_work_units=0,
        completion_percentage=pct,
        days_since_last_work=days,
        momentum_score=score,
    )


def test_never_worked_goal_uses_sentinel_and_stays_non_negative() -> None:
    result = momentum_from_units(uuid4(), [_unit(), _unit()], now=NOW)
    assert result.days_since_last_work == NEVER_WORKED_DAYS
    assert result.last_worked_date is None
    assert result.momentum_score == 35
    assert result.momentum_score >= 0


def test_goal_without_units_has_bounded_momentum() -> None:
    result = momentum_from_units(uuid4(), [], now=NOW)
    assert result.completion_percentage == 0.0
    assert result.momentum_score >= 0


def test_recent_work_dominates() -> None:
    units = [_unit(10, 10, NOW - timedelta(hours=1)) for _ in range(4)] + [_unit()]
    result = momentum_from_units(uuid4(), units, now=NOW)
    # base 50 + today 30 + 4 recent * 5 + nearly done 20
    assert result.momentum_score == 120
    assert result.completions_last_7_days == 4
    assert result.completion_percentage == 0.8


def test_yesterday_bonus_and_trailing_window() -> None:
    units = [
        _unit(10, 10, NOW - timedelta(days=1)),
        _unit(10, 10, NOW - timedelta(days=8)),
        _unit(),
        _unit(),
    ]
    result = momentum_from_units(uuid4(), units, now=NOW)
    assert result.days_since_last_work == 1
    assert result.completions_last_7_days == 1
    assert result.momentum_score == 50 + 20 + 5


def test_completion_falls_back_to_updated_at() -> None:
    unit = _unit(10, 10)
    unit.updated_at = NOW - timedelta(days=4)
    result = momentum_from_units(uuid4(), [unit, _unit()], now=NOW)
    assert result.days_since_last_work == 4
    assert result.momentum_score == 50 + 5 - 15


def test_needs_attention() -> None:
    assert needs_attention(_momentum(20, days=3, pct=0.5))
    assert not needs_attention(_momentum(20, days=3, pct=0.8))
    assert not needs_attention(_momentum(20, days=2, pct=0.1))


def test_sort_by_momentum_is_stable_descending() -> None:
    first, second, third = _momentum(40), _momentum(80), _momentum(40)
    assert sort_by_momentum([first, second, third]) == [second, first, third]


def test_calculate_momentum_reads_store(store, seed_goal) -> None:
    goal, _, units = seed_goal("Run", [[10, 10]])
    record_progress(store, units[0].id, 10, now=NOW)
    result = calculate_momentum(store, goal.id, now=NOW)
    assert result.total_completed == 1
    assert result.total_work_units == 2
    assert result.days_since_last_work == 0
    assert [m.goal_id for m in get_all_goal_momentum(store, now=NOW)] == [goal.id]
