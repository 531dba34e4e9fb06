"""Centralized logging configuration."""
from __future__ import annotations

import logging
from logging.config import dictConfig

from smallsteps.core.context import current_operation


class OperationFilter(logging.Filter):
    """Stamp records with the running operation's trace id, name and plan day ("-" outside one)."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = current_operation()
        record.trace_id = context.trace_id if context else "-"
        record.operation = context.operation if context else "-"
        record.plan_day = context.day.isoformat() if context and context.day else "-"
        return True


def configure_logging(*, log_level: str = "INFO") -> None:
    """Configure logging once per process."""
    if getattr(configure_logging, "_configured", False):
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(operation)s %(plan_day)s %(trace_id)s | %(message)s",
                }
            },
            "filters": {
                "operation": {
                    "()": "smallsteps.core.logging.OperationFilter",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": log_level,
                    "filters": ["operation"],
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
    setattr(configure_logging, "_configured", True)
