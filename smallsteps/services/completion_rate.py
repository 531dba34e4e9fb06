"""Adaptive daily item count.

A one-step integral controller over the number of work units planned per day.
The trailing seven-day completion rate nudges the count up (>= 0.9) or down
(< 0.5) by at most one per evaluation, always within configured bounds.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

from smallsteps.core.config import PlannerConfig
from smallsteps.observability import log_metric
from smallsteps.services.store import PlannerStore

logger = logging.getLogger(__name__)

RAISE_AT = 0.9
LOWER_BELOW = 0.5
NO_HISTORY_RATE = 0.8


def next_target_count(current: int, rate: float, config: PlannerConfig) -> int:
    current = max(config.min_target_count, min(config.max_target_count, current))
    if rate >= RAISE_AT and current < config.max_target_count:
        return current + 1
    if rate < LOWER_BELOW and current > config.min_target_count:
        return current - 1
    return current


def recent_completion_rate(store: PlannerStore, *, today: date, days: int = 7) -> float:
    start = today - timedelta(days=days - 1)
    records = store.list_completions(start, today)
    planned = sum(record.planned for record in records)
    if planned <= 0:
        return NO_HISTORY_RATE
    return sum(record.completed for record in records) / planned


def get_target_count(store: PlannerStore, config: PlannerConfig | None = None) -> int:
    config = config or PlannerConfig()
    row = store.get_planner_settings(default_target=config.default_target_count)
    return row.target_work_units


def adjust_target_count(store: PlannerStore, *, today: date, config: PlannerConfig | None = None) -> int:
    """Re-evaluate the count once; writes only when it changes."""
    config = config or PlannerConfig()
    with store.transaction():
        row = store.get_planner_settings(for_update=True, default_target=config.default_target_count)
        rate = recent_completion_rate(store, today=today)
        current = row.target_work_units
        updated = next_target_count(current, rate, config)
        if updated != current:
            row.target_work_units = updated
            logger.info("Adaptive count %s -> %s (7-day rate %.2f)", current, updated, rate)
            log_metric("planner.target_count", updated, {"previous": current, "rate": round(rate, 3)})
    return updated


def record_daily_completion(
    store: PlannerStore,
    day: date,
    planned: int,
    completed: int,
    *,
    today: date | None = None,
    config: PlannerConfig | None = None,
) -> int:
    """Upsert the day's outcome, then evaluate the adaptive count once."""
    if planned < 0 or completed < 0:
        raise ValueError("planned and completed must be non-negative")
    with store.transaction():
        store.upsert_completion(day, planned, completed)
        return adjust_target_count(store, today=today or day, config=config)
