"""Serializable shapes of daily plans and skip outcomes."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SlicePayload(BaseModel):
    work_unit_id: UUID
    task_id: UUID
    goal_id: UUID
    title: str
    task_title: str
    goal_title: str
    minutes: float = Field(..., ge=0)
    label: Literal["warm-up", "settle", "dive"]
    effort_level: Literal["light", "medium", "heavy"]
    reason: Optional[Literal["quick-win", "due-soon", "momentum", "attention"]] = None
    first_action: Optional[str] = None
    success_signal: Optional[str] = None


class DailyPlanPayload(BaseModel):
    date: date
    slices: List[SlicePayload] = Field(default_factory=list)
    summary_message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TimelineExtensionPayload(BaseModel):
    goal_id: UUID
    current_target: Optional[date] = None
    proposed_target: date
    extension_days: int
    message: str


class SkipResultPayload(BaseModel):
    work_unit_id: UUID
    skip_count: int
    task_skip_count: int
    rotated: bool
    effort_downgraded: bool
    effort_level: Optional[str] = None
    extension: Optional[TimelineExtensionPayload] = None
