"""Database column type helpers."""
from __future__ import annotations

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON, TypeDecorator


class IdList(TypeDecorator):
    """Ordered list of record ids stored as JSON strings.

    JSONB on PostgreSQL, plain JSON on SQLite. UUIDs are written as strings and
    NULL reads back as an empty list, so callers always get a fresh ``list[str]``.
    """

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return [str(item) for item in value]

    def process_result_value(self, value, dialect):
        return [str(item) for item in value or []]
