"""Singleton row holding planner state that persists across sessions."""
from __future__ import annotations

from sqlalchemy import Column, Date, Integer

from smallsteps.db.base import Base
from smallsteps.db.models._columns import updated_at_column

PLANNER_SETTINGS_ID = 1


class PlannerSettings(Base):
    __tablename__ = "planner_settings"

    id = Column(Integer, primary_key=True, default=PLANNER_SETTINGS_ID)
    target_work_units = Column(Integer, nullable=False, default=3)
    last_rollover_on = Column(Date, nullable=True)
    updated_at = updated_at_column()
