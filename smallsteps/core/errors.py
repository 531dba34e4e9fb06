"""Planner error hierarchy.

Only host-level failures (the store being unreachable) and unknown ids passed
to mutating operations surface as exceptions. Missing data, upstream LLM
failures, and invalid generated content are handled in place.
"""
from __future__ import annotations


class PlannerError(Exception):
    """Base class for errors the planner raises on purpose."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def user_message(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class StoreUnavailableError(PlannerError):
    """The backing store could not complete a read or write."""


class RecordNotFoundError(PlannerError):
    """A mutating operation referenced a record that does not exist."""
