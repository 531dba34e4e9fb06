"""Shared timestamp columns."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, func

from smallsteps.core.clock import utcnow


def created_at_column() -> Column:
    return Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


def updated_at_column() -> Column:
    return Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )
