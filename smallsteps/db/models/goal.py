"""Goal ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column, updated_at_column

GOAL_STATUSES = ("active", "paused", "drained")


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (Index("ix_goals_status", "status"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(Text, nullable=False)
    # Soft, advisory horizon. Never enforced as a deadline.
    target_date = Column(Date, nullable=True)
    lifelong = Column(Boolean, nullable=False, default=False)
    status = Column(String(length=20), nullable=False, default="active")
    last_worked_at = Column(DateTime(timezone=True), nullable=True)
    # Target date for which a timeline extension was last proposed.
    extension_offered_for = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()
