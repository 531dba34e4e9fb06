from __future__ import annotations

from datetime import date, timedelta

import pytest

from smallsteps.core.config import PlannerConfig
from smallsteps.services.completion_rate import (
    adjust_target_count,
    get_target_count,
    next_target_count,
    recent_completion_rate,
    record_daily_completion,
)

START = date(2026, 3, 1)
CONFIG = PlannerConfig()


def test_next_target_count_steps_once() -> None:
    assert next_target_count(3, 0.95, CONFIG) == 4
    assert next_target_count(3, 0.49, CONFIG) == 2
    assert next_target_count(3, 0.7, CONFIG) == 3
    assert next_target_count(7, 1.0, CONFIG) == 7
    assert next_target_count(2, 0.0, CONFIG) == 2


def test_no_history_uses_optimistic_prior(store) -> None:
    assert recent_completion_rate(store, today=START) == pytest.approx(0.8)
    assert adjust_target_count(store, today=START) == 3


def test_count_rises_then_holds(store) -> None:
    assert get_target_count(store) == 3
    assert record_daily_completion(store, START, 10, 10) == 4

    day = START
    for completed in (5, 7, 6, 8):
        day += timedelta(days=1)
        assert record_daily_completion(store, day, 10, completed) == 4
        rate = recent_completion_rate(store, today=day)
        assert 0.5 <= rate < 0.9
    assert get_target_count(store) == 4


def test_count_stays_within_bounds_and_moves_by_one(store) -> None:
    previous = get_target_count(store)
    day = START
    outcomes = [(10, 10)] * 9 + [(10, 0)] * 12
    for planned, completed in outcomes:
        current = record_daily_completion(store, day, planned, completed)
        assert 2 <= current <= 7
        assert abs(current - previous) <= 1
        previous = current
        day += timedelta(days=1)
    assert previous == 2


def test_window_only_covers_trailing_week(store) -> None:
    record_daily_completion(store, START, 10, 0)
    later = START + timedelta(days=7)
    assert recent_completion_rate(store, today=later) == pytest.approx(0.8)


def test_rejects_negative_counts(store) -> None:
    with pytest.raises(ValueError):
        record_daily_completion(store, START, -1, 0)


def test_recording_same_day_twice_overwrites(store) -> None:
    record_daily_completion(store, START, 10, 2)
    record_daily_completion(store, START, 4, 4)
    record = store.get_completion(START)
    assert (record.planned, record.completed, record.completion_rate) == (4, 4, 1.0)
