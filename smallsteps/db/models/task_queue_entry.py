"""Task queue cache rows. Rebuildable from tasks + goals at any time."""
from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column, updated_at_column

EFFORT_LEVELS = ("light", "medium", "heavy")


class TaskQueueEntry(Base):
    __tablename__ = "task_queue_entries"
    __table_args__ = (
        Index("ix_task_queue_entries_goal_id", "goal_id"),
        Index("ix_task_queue_entries_effort_level", "effort_level"),
    )

    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    goal_id = Column(UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    effort_level = Column(String(length=10), nullable=False, default="medium")
    goal_target_date = Column(Date, nullable=True)
    skip_count = Column(Integer, nullable=False, default=0)
    last_skipped_at = Column(DateTime(timezone=True), nullable=True)
    waiting_days = Column(Integer, nullable=False, default=0)
    queued_at = Column(DateTime(timezone=True), nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()
