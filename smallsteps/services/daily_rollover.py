"""End-of-day rollover: history, adaptive count, queue ageing, and cache rebuild."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from smallsteps.core.clock import as_utc
from smallsteps.core.config import PlannerConfig
from smallsteps.core.context import bind_operation
from smallsteps.observability import trace
from smallsteps.services.completion_rate import get_target_count, record_daily_completion
from smallsteps.services.store import PlannerStore
from smallsteps.services.task_queue import advance_waiting_days, rehydrate_queue

logger = logging.getLogger(__name__)


@dataclass
class RolloverResult:
    days_recorded: int
    waiting_days_advanced: int
    queue_size: int
    target_count: int


def run_daily_rollover(
    store: PlannerStore,
    *,
    now: datetime,
    today: Optional[date] = None,
    config: Optional[PlannerConfig] = None,
) -> RolloverResult:
    """Close out past days. Safe to run more than once per day."""
    config = config or PlannerConfig()
    today = today or as_utc(now).date()
    with bind_operation("rollover", day=today), trace("planner.rollover", metadata={"today": today.isoformat()}):
        with store.transaction():
            state = store.get_planner_settings(for_update=True, default_target=config.default_target_count)

            recorded = 0
            for allocation in store.list_unrecorded_allocations(before=today):
                planned = len(allocation.planned_ids or [])
                completed = min(allocation.completed_count or 0, planned)
                record_daily_completion(store, allocation.day, planned, completed, today=allocation.day, config=config)
                allocation.recorded_at = now
                recorded += 1

            days_elapsed = 1 if state.last_rollover_on is None else (today - state.last_rollover_on).days
            advanced = 0
            if days_elapsed > 0:
                advanced = advance_waiting_days(store, days_elapsed)
                state.last_rollover_on = today

            queue_size = rehydrate_queue(store, now=now)
            target_count = get_target_count(store, config)

        logger.info(
            "Rollover for %s: %s days recorded, %s queue entries aged, queue=%s, target=%s",
            today,
            recorded,
            advanced,
            queue_size,
            target_count,
        )
    return RolloverResult(
        days_recorded=recorded,
        waiting_days_advanced=advanced,
        queue_size=queue_size,
        target_count=target_count,
    )
