"""Task ORM model (an effort reservoir under a goal)."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column, updated_at_column

TASK_LIFECYCLES = ("active", "archived", "deleted")


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_goal_id", "goal_id"),
        Index("ix_tasks_lifecycle", "lifecycle"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    goal_id = Column(UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    estimated_total_minutes = Column(Integer, nullable=False)
    completed_minutes = Column(Float, nullable=False, default=0.0)
    order = Column("order_index", Integer, nullable=False, default=0)
    complexity = Column(Integer, nullable=True)
    phase = Column(String(length=80), nullable=True)
    lifecycle = Column(String(length=20), nullable=False, default="active")
    archived_at = Column(DateTime(timezone=True), nullable=True)
    skip_count = Column(Integer, nullable=False, default=0)
    last_skipped_at = Column(DateTime(timezone=True), nullable=True)
    # Perceived effort tier; only ever downgraded by repeated skips.
    effort_level = Column(String(length=10), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()
