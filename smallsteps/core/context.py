"""Per-operation context: which planning operation is running, for which day."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional
from uuid import uuid4


@dataclass(frozen=True)
class OperationContext:
    trace_id: str
    operation: str
    day: Optional[date] = None


operation_ctx_var: ContextVar[OperationContext | None] = ContextVar("planner_operation", default=None)


def current_operation() -> OperationContext | None:
    return operation_ctx_var.get()


def get_trace_id() -> str | None:
    """Return the trace id of the running planning operation, if any."""
    context = operation_ctx_var.get()
    return context.trace_id if context else None


@contextmanager
def bind_operation(operation: str, *, day: date | None = None, trace_id: str | None = None) -> Iterator[str]:
    """Bind a trace id, operation name and plan day for one plan, skip, progress or rollover call.

    A nested operation keeps the outer trace id so its log lines stay correlated.
    """
    outer = operation_ctx_var.get()
    value = trace_id or (outer.trace_id if outer else uuid4().hex[:12])
    token = operation_ctx_var.set(OperationContext(trace_id=value, operation=operation, day=day))
    try:
        yield value
    finally:
        operation_ctx_var.reset(token)
