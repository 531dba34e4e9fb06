"""WorkUnit ORM model (the atomic, schedulable action inside a task)."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column, updated_at_column

WORK_UNIT_KINDS = ("study", "practice", "build", "review", "explore")


class WorkUnit(Base):
    __tablename__ = "work_units"
    __table_args__ = (
        Index("ix_work_units_task_id", "task_id"),
        Index("ix_work_units_capability_id", "capability_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    estimated_total_minutes = Column(Integer, nullable=False)
    completed_minutes = Column(Float, nullable=False, default=0.0)
    kind = Column(String(length=20), nullable=False, default="practice")
    capability_id = Column(String(length=120), nullable=True)
    first_action = Column(Text, nullable=True)
    success_signal = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    skip_count = Column(Integer, nullable=False, default=0)
    last_skipped_at = Column(DateTime(timezone=True), nullable=True)
    last_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()
