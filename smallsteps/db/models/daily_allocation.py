"""Per-day allocation: the ordered remaining queue of today's plan plus its counters."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column, updated_at_column
from smallsteps.db.types import IdList


class DailyAllocation(Base):
    __tablename__ = "daily_allocations"
    __table_args__ = (UniqueConstraint("day", name="uq_daily_allocations_day"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    day = Column(Date, nullable=False)
    # JSON lists of work unit id strings. Always reassigned, never mutated in place.
    work_unit_ids = Column(IdList, nullable=False, default=list)
    planned_ids = Column(IdList, nullable=False, default=list)
    completed_count = Column(Integer, nullable=False, default=0)
    # Minutes of every unit ever planned for the day, top-ups included.
    planned_minutes = Column(Float, nullable=False, default=0.0)
    strategy = Column(String(length=40), nullable=False, default="momentum_slots")
    recorded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()
