from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from smallsteps.core.config import PlannerConfig
from smallsteps.services import goal_decomposer
from smallsteps.services.goal_decomposer import (
    classify_domain,
    create_goal_from_text,
    decompose,
    fallback_breakdown,
    parse_breakdown,
    plan_materialization,
)
from smallsteps.services.progress import complete_work_unit

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _payload(**overrides):
    data = {
        "domain": "learning",
        "tasks": [
            {"order": 1, "title": "Orientation", "estimated_total_minutes": 30},
            {"order": 2, "title": "Core study", "estimated_total_minutes": 60},
            {"order": 3, "title": "Review", "estimated_total_minutes": 20},
        ],
        "work_units": [
            {"task_order": 1, "title": "Skim the syllabus", "estimated_minutes": 15, "kind": "explore", "capability_id": "orient"},
            {"task_order": 1, "title": "Pick a textbook", "estimated_minutes": 15, "kind": "study", "capability_id": "pick"},
            {"task_order": 2, "title": "Read chapter one", "estimated_minutes": 45, "kind": "study", "capability_id": "read"},
            {"task_order": 2, "title": "Skim the syllabus again", "estimated_minutes": 10, "capability_id": "orient"},
            {"task_order": 3, "title": "Self quiz", "estimated_minutes": 20, "kind": "review", "capability_id": "quiz"},
        ],
    }
    data.update(overrides)
    return data


class FakeClient:
    """Returns queued responses; exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        content = response if isinstance(response, str) else json.dumps(response)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_classify_domain_by_keywords() -> None:
    assert classify_domain("Learn Spanish before summer") == "learning"
    assert classify_domain("Run a 5k") == "fitness"
    assert classify_domain("Ship my python app") == "programming"
    assert classify_domain("Tidy the garage") == "general"


def test_fallback_breakdown_is_deterministic() -> None:
    first = fallback_breakdown("Tidy the garage")
    second = fallback_breakdown("Tidy the garage")

    assert first == second
    assert [task.title for task in first.tasks] == [
        "Getting Started",
        "Building Momentum",
        "Deepening Practice",
        "Completion",
    ]
    assert len(first.work_units) == 8
    assert first.work_units[0].capability_id == "general:getting-started:1"
    for task in first.tasks:
        assert task.estimated_total_minutes == sum(unit.estimated_minutes for unit in first.units_for(task.order))


def test_parse_breakdown_reports_issues() -> None:
    assert parse_breakdown(json.dumps(_payload())).ok

    too_few = parse_breakdown(_payload(tasks=_payload()["tasks"][:2]))
    assert not too_few.ok
    assert any(issue.startswith("tasks") for issue in too_few.issues)

    dangling = _payload()
    dangling["work_units"].append({"task_order": 9, "title": "Lost", "estimated_minutes": 10})
    parsed = parse_breakdown(dangling)
    assert not parsed.ok
    assert "unknown task_order 9" in " ".join(parsed.issues)

    assert not parse_breakdown("not json").ok


def test_decompose_without_client_uses_fallback(monkeypatch) -> None:
    monkeypatch.setattr(goal_decomposer.settings, "openai_api_key", None)
    result = decompose("Tidy the garage")
    assert result.fallback_used
    assert result.attempts == 0


def test_decompose_accepts_valid_response() -> None:
    client = FakeClient(_payload())
    result = decompose("Learn statistics", client=client)

    assert result.source == "llm"
    assert result.attempts == 1
    assert len(result.breakdown.tasks) == 3
    assert client.calls[0]["response_format"] == {"type": "json_object"}


def test_decompose_retries_with_feedback() -> None:
    client = FakeClient({"tasks": []}, _payload())
    result = decompose("Learn statistics", client=client)

    assert result.source == "llm"
    assert result.attempts == 2
    assert result.issues
    retry_prompt = client.calls[1]["messages"][1]["content"]
    assert "REVIEWER FEEDBACK" in retry_prompt


def test_decompose_falls_back_after_invalid_attempts() -> None:
    client = FakeClient("{}", "{}")
    result = decompose("Learn statistics", client=client, config=PlannerConfig(decomposition_max_attempts=2))

    assert result.fallback_used
    assert result.attempts == 2
    assert result.breakdown.domain == "learning"
    assert len(client.calls) == 2


def test_decompose_survives_client_errors() -> None:
    client = FakeClient(RuntimeError("boom"), RuntimeError("boom again"))
    result = decompose("Learn statistics", client=client)

    assert result.fallback_used
    assert any("boom" in issue for issue in result.issues)


def test_create_goal_from_text_stores_breakdown(store) -> None:
    created = create_goal_from_text(store, "Learn statistics", now=NOW, client=FakeClient(_payload()))

    assert created.result.source == "llm"
    assert [task.title for task in created.tasks] == ["Orientation", "Core study", "Review"]
    capabilities = [unit.capability_id for unit in created.work_units]
    assert capabilities == ["orient", "pick", "read", "quiz"]
    assert created.tasks[0].estimated_total_minutes == 30
    assert created.tasks[1].estimated_total_minutes == 45
    assert {entry.task_id for entry in store.list_queue_entries()} == {task.id for task in created.tasks}


def test_create_goal_from_text_lifelong_is_not_queued(store, monkeypatch) -> None:
    monkeypatch.setattr(goal_decomposer.settings, "openai_api_key", None)
    created = create_goal_from_text(store, "Stretch every morning", now=NOW, lifelong=True)

    assert created.result.fallback_used
    assert len(created.tasks) == 4
    assert store.list_queue_entries() == []


def test_create_goal_from_text_rejects_blank_title(store) -> None:
    with pytest.raises(ValueError):
        create_goal_from_text(store, "   ", now=NOW, client=FakeClient())


def _colliding_payload():
    return _payload(
        work_units=[
            {"task_order": 1, "title": "Skim the syllabus", "estimated_minutes": 15, "capability_id": "x"},
            {"task_order": 2, "title": "Read chapter one", "estimated_minutes": 45, "capability_id": "y"},
            {"task_order": 3, "title": "Skim it once more", "estimated_minutes": 15, "capability_id": "x"},
        ],
    )


def test_plan_materialization_skips_tasks_left_without_units() -> None:
    breakdown = parse_breakdown(_colliding_payload()).breakdown
    planned = plan_materialization(breakdown)

    assert [draft.order for draft, _ in planned] == [1, 2]
    assert all(units for _, units in planned)


def test_create_goal_from_text_drops_emptied_task_and_keeps_the_rest(store) -> None:
    payload = _payload()
    payload["tasks"].append({"order": 4, "title": "Extra quiz", "estimated_total_minutes": 20})
    payload["work_units"].append({"task_order": 4, "title": "Quiz again", "estimated_minutes": 20, "capability_id": "quiz"})

    created = create_goal_from_text(store, "Learn statistics", now=NOW, client=FakeClient(payload))

    assert created.result.source == "llm"
    assert [task.title for task in created.tasks] == ["Orientation", "Core study", "Review"]


def test_create_goal_from_text_falls_back_when_dedup_leaves_too_few_tasks(store) -> None:
    created = create_goal_from_text(store, "Learn statistics", now=NOW, client=FakeClient(_colliding_payload()))

    assert created.result.fallback_used
    assert created.result.attempts == 1
    assert any("distinct capabilities" in issue for issue in created.result.issues)
    for task in created.tasks:
        assert store.list_work_units_by_task(task.id)

    results = [complete_work_unit(store, unit.id, now=NOW) for unit in created.work_units]
    assert results[-1].goal_drained
    assert store.get_goal(created.goal.id).status == "drained"


def test_create_goal_from_text_attaches_capacity_advice(store, monkeypatch) -> None:
    monkeypatch.setattr(goal_decomposer.settings, "openai_api_key", None)
    created = create_goal_from_text(store, "Tidy the garage", now=NOW, target_date=NOW.date() + timedelta(days=7))

    assert created.admission.allowed
    assert created.admission.pace == "standard"
    assert created.feasibility.is_feasible
    assert created.feasibility.total_task_minutes == sum(unit.estimated_total_minutes for unit in created.work_units)
    assert created.feasibility.days_available == 7

    lifelong = create_goal_from_text(store, "Stretch every morning", now=NOW, lifelong=True)
    assert lifelong.feasibility is None
