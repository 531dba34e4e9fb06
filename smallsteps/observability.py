"""Opik tracing and metric helpers for planning and decomposition runs."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Any, Dict, Iterator, Optional

from opik import Opik

from smallsteps.core.config import settings
from smallsteps.core.context import current_operation

logger = logging.getLogger(__name__)

_client: Optional[Opik] = None
_client_lock = Lock()
_init_attempted = False


def get_opik_client() -> Optional[Opik]:
    """Return the shared Opik client, creating it on first use when tracing is enabled."""
    global _client, _init_attempted

    with _client_lock:
        if _client is not None or _init_attempted:
            return _client
        _init_attempted = True

        if not settings.opik_enabled:
            return None
        if not settings.opik_api_key:
            logger.warning("OPIK_ENABLED is true but OPIK_API_KEY is missing; tracing stays off.")
            return None
        try:
            _client = Opik(project_name=settings.opik_project, api_key=settings.opik_api_key)
        except Exception as exc:
            logger.warning("Failed to initialize Opik, tracing will be disabled: %s", exc)
            return None

    logger.info("Opik enabled (project=%s).", settings.opik_project)
    return _client


def reset_opik_client() -> None:
    """Forget the cached client so the next call re-reads settings."""
    global _client, _init_attempted
    with _client_lock:
        _client = None
        _init_attempted = False


@contextmanager
def trace(name: str, metadata: Optional[Dict[str, Any]] = None) -> Iterator[Optional[Any]]:
    """Wrap a block in an Opik trace; yields None when tracing is off."""
    client = get_opik_client()
    opik_trace = None
    if client:
        payload = {key: value for key, value in (metadata or {}).items() if value not in (None, "", [])}
        context = current_operation()
        if context:
            payload.setdefault("trace_id", context.trace_id)
            payload.setdefault("operation", context.operation)
        try:
            opik_trace = client.trace(name=name, metadata=payload or None)
        except Exception as exc:
            logger.debug("Unable to start Opik trace %s: %s", name, exc)

    try:
        yield opik_trace
    except Exception as exc:
        if opik_trace:
            try:
                opik_trace.update(error_info={"message": str(exc)})
            except Exception:
                logger.debug("Failed to attach error info to trace %s", name, exc_info=True)
        raise
    finally:
        if opik_trace:
            try:
                opik_trace.end()
            except Exception:
                logger.debug("Failed to close trace %s cleanly", name, exc_info=True)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a metric as a tiny trace when Opik is enabled."""
    client = get_opik_client()
    if not client:
        return
    payload: Dict[str, Any] = {"value": value, **(metadata or {})}
    try:
        client.trace(name=f"metric:{name}", metadata=payload)
    except Exception as exc:
        logger.debug("Unable to record metric %s: %s", name, exc)
