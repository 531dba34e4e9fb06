"""Tests ensuring tracing stays inert unless configured."""
from __future__ import annotations

import pytest

from smallsteps import observability


@pytest.fixture(autouse=True)
def _reset_client():
    observability.reset_opik_client()
    yield
    observability.reset_opik_client()


def test_trace_yields_none_when_disabled(monkeypatch) -> None:
    monkeypatch.setattr(observability.settings, "opik_enabled", False)
    assert observability.get_opik_client() is None
    with observability.trace("planner.test", metadata={"day": "2026-03-10"}) as span:
        assert span is None
    observability.log_metric("planner.test", 1)


def test_missing_api_key_keeps_tracing_off(monkeypatch) -> None:
    monkeypatch.setattr(observability.settings, "opik_enabled", True)
    monkeypatch.setattr(observability.settings, "opik_api_key", None)
    assert observability.get_opik_client() is None


def test_trace_reraises_errors(monkeypatch) -> None:
    monkeypatch.setattr(observability.settings, "opik_enabled", False)
    with pytest.raises(RuntimeError):
        with observability.trace("planner.failing"):
            raise RuntimeError("boom")


def test_trace_records_on_enabled_client(monkeypatch) -> None:
    events = []

    class FakeTrace:
        def update(self, **kwargs):
            events.append(("update", kwargs))

        def end(self):
            events.append(("end", None))

    class FakeClient:
        def trace(self, name, metadata=None):
            events.append(("trace", name, metadata))
            return FakeTrace()

    monkeypatch.setattr(observability, "get_opik_client", lambda: FakeClient())
    with observability.trace("planner.ok", metadata={"day": "2026-03-10", "empty": None}):
        pass

    assert events[0] == ("trace", "planner.ok", {"day": "2026-03-10"})
    assert events[-1] == ("end", None)
