"""Daily planned/completed history feeding the adaptive count."""
from __future__ import annotations

from sqlalchemy import Column, Date, Float, Integer

from smallsteps.db.base import Base
from smallsteps.db.models._columns import created_at_column


class DailyCompletion(Base):
    __tablename__ = "daily_completions"

    day = Column(Date, primary_key=True)
    planned = Column(Integer, nullable=False, default=0)
    completed = Column(Integer, nullable=False, default=0)
    completion_rate = Column(Float, nullable=False, default=0.0)
    created_at = created_at_column()
