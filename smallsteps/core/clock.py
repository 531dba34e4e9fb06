"""Time helpers. The scheduling core receives `now` explicitly; only entry points call utcnow()."""
from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: date, later: date) -> int:
    """Whole calendar days from `earlier` to `later`, never negative."""
    return max(0, (later - earlier).days)
