"""Serializable capacity estimates and target-date checks."""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field


class CapacityRangePayload(BaseModel):
    min: float = Field(..., ge=0)
    preferred: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    confidence: Literal["low", "medium", "high"]


class FeasibilityPayload(BaseModel):
    is_feasible: bool
    daily_capacity_minutes: float
    total_task_minutes: float
    days_needed: int
    days_available: int
    suggested_date: Optional[date] = None
    message: Optional[str] = None
