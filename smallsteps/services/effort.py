"""Effort arithmetic shared by scoring, allocation, and the skip loop."""
from __future__ import annotations

from typing import Optional

COMPLETION_THRESHOLD = 0.85
HEAVY_THRESHOLD_MINUTES = 90

WARM_UP_MAX_MINUTES = 20
SETTLE_MAX_MINUTES = 45

EFFORT_ORDER = ("light", "medium", "heavy")


def _minutes(record) -> tuple[float, float]:
    estimated = record.estimated_total_minutes or 0
    completed = record.completed_minutes or 0
    if estimated < 0 or completed < 0:
        raise ValueError(f"Negative minutes on {type(record).__name__} {getattr(record, 'id', None)}")
    return float(estimated), float(completed)


def remaining_minutes(record) -> float:
    """Minutes left on a task or work unit, never below zero."""
    estimated, completed = _minutes(record)
    return max(0.0, estimated - completed)


def is_effectively_complete(record) -> bool:
    """True once 85% of the estimate is done."""
    estimated, completed = _minutes(record)
    return completed >= estimated * COMPLETION_THRESHOLD


def clamp_completed(estimated: float, completed: float) -> float:
    if estimated < 0 or completed < 0:
        raise ValueError("Minutes cannot be negative")
    return min(completed, estimated)


def slice_label(minutes: float) -> str:
    if minutes <= WARM_UP_MAX_MINUTES:
        return "warm-up"
    if minutes <= SETTLE_MAX_MINUTES:
        return "settle"
    return "dive"


def is_heavy(minutes: float, threshold: float = HEAVY_THRESHOLD_MINUTES) -> bool:
    return minutes > threshold


def effort_level_for_minutes(minutes: float) -> str:
    if minutes <= WARM_UP_MAX_MINUTES:
        return "light"
    if minutes <= SETTLE_MAX_MINUTES:
        return "medium"
    return "heavy"


def downgrade_effort(level: Optional[str]) -> str:
    """heavy -> medium -> light; light stays light."""
    if level not in EFFORT_ORDER:
        return "light"
    index = EFFORT_ORDER.index(level)
    return EFFORT_ORDER[max(0, index - 1)]


def perceived_effort(task, minutes: float) -> str:
    """The task's downgraded tier when one was recorded, otherwise derived from minutes."""
    override = getattr(task, "effort_level", None) if task is not None else None
    derived = effort_level_for_minutes(minutes)
    if override in EFFORT_ORDER and EFFORT_ORDER.index(override) < EFFORT_ORDER.index(derived):
        return override
    return derived
