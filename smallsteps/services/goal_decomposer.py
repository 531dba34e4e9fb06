"""LLM-backed goal decomposition with a deterministic template fallback."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

import openai
from pydantic import BaseModel, Field, ValidationError, model_validator

from smallsteps.core.clock import as_utc
from smallsteps.core.config import PlannerConfig, settings
from smallsteps.core.context import bind_operation
from smallsteps.observability import log_metric, trace
from smallsteps.services.capacity import (
    AdmissionResult,
    FeasibilityResult,
    assess_goal_admission,
    assess_target_date_feasibility,
)
from smallsteps.services.store import PlannerStore
from smallsteps.services.task_queue import enqueue_task

logger = logging.getLogger(__name__)

WorkUnitKind = Literal["study", "practice", "build", "review", "explore"]


class WorkUnitDraft(BaseModel):
    """One atomic action, linked to its task by `task_order`."""

    task_order: int = Field(..., ge=1, description="`order` of the task this unit belongs to.")
    title: str = Field(..., min_length=1)
    estimated_minutes: int = Field(..., ge=5, le=240, description="Estimated minutes for one sitting.")
    kind: WorkUnitKind = "practice"
    capability_id: Optional[str] = Field(default=None, description="Stable key for the skill this unit trains.")
    first_action: Optional[str] = Field(default=None, description="The very first physical step.")
    success_signal: Optional[str] = Field(default=None, description="How the user knows it is done.")


class TaskDraft(BaseModel):
    """An effort reservoir under the goal."""

    order: int = Field(..., ge=1)
    title: str = Field(..., min_length=1)
    estimated_total_minutes: int = Field(..., ge=5)
    complexity: Optional[int] = Field(default=None, ge=1, le=3)
    phase: Optional[str] = None


class GoalBreakdown(BaseModel):
    """Tasks and work units generated for a goal."""

    domain: str = "general"
    tasks: List[TaskDraft] = Field(..., min_length=3, max_length=6)
    work_units: List[WorkUnitDraft] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_links(self) -> "GoalBreakdown":
        orders = [task.order for task in self.tasks]
        if len(set(orders)) != len(orders):
            raise ValueError("task orders must be unique")
        known = set(orders)
        for unit in self.work_units:
            if unit.task_order not in known:
                raise ValueError(f"work unit '{unit.title}' references unknown task_order {unit.task_order}")
        linked = {unit.task_order for unit in self.work_units}
        missing = sorted(known - linked)
        if missing:
            raise ValueError(f"tasks without work units: {missing}")
        return self

    def units_for(self, order: int) -> List[WorkUnitDraft]:
        return [unit for unit in self.work_units if unit.task_order == order]


@dataclass
class ParsedBreakdown:
    breakdown: Optional[GoalBreakdown] = None
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.breakdown is not None


@dataclass
class DecompositionResult:
    breakdown: GoalBreakdown
    source: str
    attempts: int = 0
    issues: List[str] = field(default_factory=list)

    @property
    def fallback_used(self) -> bool:
        return self.source == "fallback"


def parse_breakdown(payload: Any) -> ParsedBreakdown:
    """Validate raw LLM output (JSON text or dict) into a breakdown or a list of issues."""
    try:
        if isinstance(payload, (str, bytes)):
            breakdown = GoalBreakdown.model_validate_json(payload)
        else:
            breakdown = GoalBreakdown.model_validate(payload)
    except ValidationError as exc:
        issues = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
            issues.append(f"{location}: {error.get('msg')}")
        return ParsedBreakdown(issues=issues)
    return ParsedBreakdown(breakdown=breakdown)


def plan_materialization(breakdown: GoalBreakdown) -> List[Tuple[TaskDraft, List[WorkUnitDraft]]]:
    """Pair each task with the units it keeps once capability ids are deduplicated goal-wide.

    The first unit to claim a capability keeps it. A task whose units were all
    claimed earlier would never complete, so it is left out.
    """
    seen_capabilities = set()
    planned = []
    for draft in sorted(breakdown.tasks, key=lambda item: item.order):
        kept = []
        for unit_draft in breakdown.units_for(draft.order):
            capability = unit_draft.capability_id
            if capability and capability in seen_capabilities:
                logger.debug("Dropping duplicate capability %s from task %s", capability, draft.order)
                continue
            if capability:
                seen_capabilities.add(capability)
            kept.append(unit_draft)
        if not kept:
            logger.warning("Task %s (%s) lost every work unit to duplicate capabilities; skipping it", draft.order, draft.title)
            continue
        planned.append((draft, kept))
    return planned


# ----------------------------------------------------------------------
# Deterministic fallback
# ----------------------------------------------------------------------
DOMAIN_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "programming": {
        "keywords": ["code", "coding", "program", "python", "javascript", "app", "website", "api", "software", "developer", "rust", "react"],
        "phases": [
            ("Setup and Foundations", [("Install the toolchain for {goal}", "build", 20), ("Read a quick-start for {goal}", "study", 25)]),
            ("Core Concepts", [("Work through one core concept of {goal}", "study", 30), ("Write a tiny program using it", "practice", 30)]),
            ("Build Something Small", [("Sketch a mini project for {goal}", "explore", 20), ("Build the first working piece", "build", 45)]),
            ("Polish and Share", [("Review and tidy your code", "review", 30), ("Write a short README and share it", "build", 25)]),
        ],
    },
    "fitness": {
        "keywords": ["run", "running", "marathon", "gym", "workout", "fitness", "strength", "yoga", "swim", "cycling", "weight", "5k"],
        "phases": [
            ("Getting Moving", [("Lay out gear for {goal}", "practice", 10), ("Easy first session", "practice", 20)]),
            ("Building Base", [("Steady session at a talking pace", "practice", 30), ("Mobility and stretching", "practice", 15)]),
            ("Progressive Load", [("Slightly longer session", "practice", 40), ("Log how the week felt", "review", 10)]),
            ("Consolidation", [("Benchmark session for {goal}", "practice", 45), ("Plan the next block", "review", 15)]),
        ],
    },
    "learning": {
        "keywords": ["learn", "study", "course", "language", "spanish", "french", "read", "book", "exam", "history", "math", "certification"],
        "phases": [
            ("Orientation", [("Map what {goal} covers", "explore", 20), ("Pick one resource and skim it", "study", 25)]),
            ("Core Study", [("Study one section closely", "study", 30), ("Make flashcards or notes", "practice", 20)]),
            ("Practice and Recall", [("Self-quiz on the material", "practice", 20), ("Explain a topic out loud", "review", 15)]),
            ("Apply and Review", [("Use {goal} on a real example", "build", 40), ("Review weak spots", "review", 25)]),
        ],
    },
    "creative": {
        "keywords": ["write", "writing", "novel", "draw", "drawing", "paint", "music", "guitar", "piano", "song", "photo", "design"],
        "phases": [
            ("Warm Up", [("Gather references for {goal}", "explore", 15), ("Ten-minute free sketch or draft", "practice", 10)]),
            ("Skill Drills", [("Focused technique drill", "practice", 25), ("Study a piece you admire", "study", 20)]),
            ("Make the Piece", [("Rough first version of {goal}", "build", 45), ("Second pass on the weakest part", "build", 30)]),
            ("Finish and Show", [("Final polish", "review", 30), ("Share it with one person", "review", 10)]),
        ],
    },
    "business": {
        "keywords": ["business", "startup", "launch", "marketing", "sales", "client", "customers", "revenue", "product", "freelance", "brand"],
        "phases": [
            ("Discovery", [("Write down who {goal} is for", "explore", 20), ("Talk to one potential customer", "explore", 30)]),
            ("Validation", [("Draft a one-page offer", "build", 30), ("Collect feedback on the offer", "review", 20)]),
            ("First Version", [("Build the smallest usable version", "build", 45), ("Set up a simple way to get paid", "build", 30)]),
            ("Launch and Learn", [("Announce it to your network", "practice", 20), ("Review what worked", "review", 20)]),
        ],
    },
}

GENERAL_TEMPLATE: Dict[str, Any] = {
    "keywords": [],
    "phases": [
        ("Getting Started", [("Write what done looks like for {goal}", "explore", 15), ("Take the smallest first step", "practice", 20)]),
        ("Building Momentum", [("Do one focused session on {goal}", "practice", 30), ("Note what helped and what blocked you", "review", 10)]),
        ("Deepening Practice", [("Tackle the hardest part for a while", "build", 40), ("Learn one thing that makes it easier", "study", 25)]),
        ("Completion", [("Finish the remaining piece", "build", 40), ("Look back at how far you came", "review", 15)]),
    ],
}

FIRST_ACTIONS = {
    "study": "Open the material and read the first heading.",
    "practice": "Set a timer and begin the first repetition.",
    "build": "Open your workspace and create the first file or sketch.",
    "review": "Pull up what you made and list one thing to keep.",
    "explore": "Write the question you want answered at the top of a page.",
}

SUCCESS_SIGNALS = {
    "study": "You can explain the idea in two sentences.",
    "practice": "The timer ran out while you were still working.",
    "build": "Something exists now that did not before.",
    "review": "You wrote down one concrete next step.",
    "explore": "You have a short list of options to choose from.",
}


def classify_domain(goal_title: str) -> str:
    """Keyword match; longer (more specific) keywords weigh more. Unmatched goals are 'general'."""
    normalized = goal_title.lower()
    best_domain, best_score = "general", 0
    for domain, template in DOMAIN_TEMPLATES.items():
        score = sum(len(keyword) for keyword in template["keywords"] if keyword in normalized)
        if score > best_score:
            best_domain, best_score = domain, score
    return best_domain


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _goal_focus(goal_title: str) -> str:
    focus = goal_title.strip().rstrip(".!?")
    return focus[:60] if focus else "this goal"


def fallback_breakdown(goal_title: str, *, domain: Optional[str] = None) -> GoalBreakdown:
    """A fixed, deterministic breakdown built from the goal's domain template."""
    domain = domain or classify_domain(goal_title)
    template = DOMAIN_TEMPLATES.get(domain, GENERAL_TEMPLATE)
    focus = _goal_focus(goal_title)
    tasks: List[TaskDraft] = []
    units: List[WorkUnitDraft] = []
    for order, (phase, unit_templates) in enumerate(template["phases"], start=1):
        phase_units = [
            WorkUnitDraft(
                task_order=order,
                title=title.format(goal=focus),
                estimated_minutes=minutes,
                kind=kind,
                capability_id=f"{domain}:{_slug(phase)}:{index}",
                first_action=FIRST_ACTIONS[kind],
                success_signal=SUCCESS_SIGNALS[kind],
            )
            for index, (title, kind, minutes) in enumerate(unit_templates, start=1)
        ]
        tasks.append(
            TaskDraft(
                order=order,
                title=phase,
                estimated_total_minutes=sum(unit.estimated_minutes for unit in phase_units),
                complexity=min(3, 1 + (order - 1) // 2),
                phase=phase,
            )
        )
        units.extend(phase_units)
    return GoalBreakdown(domain=domain, tasks=tasks, work_units=units)


# ----------------------------------------------------------------------
# LLM path
# ----------------------------------------------------------------------
def _default_client():
    api_key = settings.openai_api_key
    return openai.OpenAI(api_key=api_key) if api_key else None


def _build_prompts(goal_title: str, context: Optional[Dict[str, Any]]) -> Tuple[str, str]:
    schema_json = json.dumps(GoalBreakdown.model_json_schema(), indent=2)
    system_prompt = (
        "You break personal goals into gentle, concrete steps for someone who gets overwhelmed easily.\n"
        "- Produce 3 to 6 tasks, ordered from easiest start to finish line.\n"
        "- Every task needs at least one work unit; each work unit fits one sitting (5 to 240 minutes).\n"
        "- Give each work unit a first physical action and a visible success signal.\n"
        "- Never give two work units the same capability_id.\n"
        "Return strictly valid JSON matching this schema:\n"
        f"{schema_json}"
    )
    user_prompt = f"Goal: {goal_title.strip()}"
    if context:
        user_prompt += f"\n\nContext:\n{json.dumps(context, indent=2, default=str)}"
    return system_prompt, user_prompt


def _request_breakdown(client, system_prompt: str, user_prompt: str, model: str) -> str:
    completion = client.chat.completions.create(
        model=model,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    )
    return completion.choices[0].message.content or "{}"


def decompose(
    goal_title: str,
    context: Optional[Dict[str, Any]] = None,
    *,
    client=None,
    config: Optional[PlannerConfig] = None,
    model: Optional[str] = None,
) -> DecompositionResult:
    """Ask the LLM for a breakdown, retrying a bounded number of times, then fall back."""
    config = config or PlannerConfig()
    client = client if client is not None else _default_client()
    if client is None:
        logger.info("OPENAI_API_KEY missing; using fallback breakdown.")
        log_metric("decompose.fallback.used", 1, {"reason": "no_client"})
        return DecompositionResult(breakdown=fallback_breakdown(goal_title), source="fallback")

    model = model or settings.openai_model
    system_prompt, base_prompt = _build_prompts(goal_title, context)
    user_prompt = base_prompt
    issues: List[str] = []
    attempts = max(1, config.decomposition_max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            with trace("goal.decompose", metadata={"attempt": attempt, "goal_title": goal_title[:200], "model": model}):
                content = _request_breakdown(client, system_prompt, user_prompt, model)
        except Exception as exc:
            logger.warning("Decomposition attempt %s failed: %s", attempt, exc)
            issues.append(f"attempt {attempt}: {exc}")
            log_metric("decompose.llm_error", 1, {"attempt": attempt})
            continue

        parsed = parse_breakdown(content)
        if parsed.ok:
            log_metric("decompose.llm_success", 1, {"attempt": attempt})
            return DecompositionResult(breakdown=parsed.breakdown, source="llm", attempts=attempt, issues=issues)

        logger.warning("Decomposition attempt %s returned an invalid breakdown: %s", attempt, parsed.issues)
        log_metric("decompose.validation_failed", 1, {"attempt": attempt})
        issues.extend(parsed.issues)
        user_prompt = (
            f"{base_prompt}\n\n"
            "### REVIEWER FEEDBACK (previous answer rejected)\n"
            + "\n".join(f"- {issue}" for issue in parsed.issues)
            + "\nReturn a fresh breakdown that fixes every issue above."
        )

    log_metric("decompose.fallback.used", 1, {"reason": "exhausted"})
    return DecompositionResult(
        breakdown=fallback_breakdown(goal_title),
        source="fallback",
        attempts=attempts,
        issues=issues,
    )


MIN_MATERIALIZED_TASKS = 3


@dataclass
class CreatedGoal:
    goal: Any
    tasks: List[Any]
    work_units: List[Any]
    result: DecompositionResult
    admission: Optional[AdmissionResult] = None
    feasibility: Optional[FeasibilityResult] = None


def _materialize(goal_title: str, result: DecompositionResult):
    """Materialization plan for `result`, swapped for the fallback when dedup leaves too few tasks."""
    planned = plan_materialization(result.breakdown)
    if len(planned) >= MIN_MATERIALIZED_TASKS or result.fallback_used:
        return result, planned
    logger.warning(
        "Only %s of %s tasks kept work units after capability dedup; using fallback breakdown",
        len(planned),
        len(result.breakdown.tasks),
    )
    log_metric("decompose.fallback.used", 1, {"reason": "dedup"})
    fallback = DecompositionResult(
        breakdown=fallback_breakdown(goal_title),
        source="fallback",
        attempts=result.attempts,
        issues=result.issues + [f"only {len(planned)} tasks kept distinct capabilities"],
    )
    return fallback, plan_materialization(fallback.breakdown)


def create_goal_from_text(
    store: PlannerStore,
    title: str,
    *,
    now: datetime,
    target_date: Optional[date] = None,
    lifelong: bool = False,
    context: Optional[Dict[str, Any]] = None,
    client=None,
    config: Optional[PlannerConfig] = None,
) -> CreatedGoal:
    """Create a goal, decompose it, and store its tasks and work units.

    Admission and target-date feasibility are assessed against the goals that
    already exist; they are advice attached to the result, never a refusal.
    """
    if not title or not title.strip():
        raise ValueError("Goal title cannot be empty")
    config = config or PlannerConfig()
    today = as_utc(now).date()
    with bind_operation("decompose"):
        result = decompose(title, context, client=client, config=config)
        result, planned = _materialize(title, result)
        with store.transaction():
            admission = assess_goal_admission(store, today=today, config=config)
            feasibility = None
            if not lifelong:
                total_minutes = sum(unit.estimated_minutes for _, drafts in planned for unit in drafts)
                feasibility = assess_target_date_feasibility(store, total_minutes, target_date, today=today, config=config)
            goal = store.create_goal(title, target_date=target_date, lifelong=lifelong, now=now)
            tasks = []
            units = []
            for draft, drafts in planned:
                task = store.create_task(
                    goal.id,
                    draft.title,
                    sum(unit.estimated_minutes for unit in drafts),
                    order=draft.order,
                    complexity=draft.complexity,
                    phase=draft.phase,
                    now=now,
                )
                tasks.append(task)
                for position, unit_draft in enumerate(drafts):
                    units.append(
                        store.create_work_unit(
                            task.id,
                            unit_draft.title,
                            unit_draft.estimated_minutes,
                            kind=unit_draft.kind,
                            capability_id=unit_draft.capability_id,
                            first_action=unit_draft.first_action,
                            success_signal=unit_draft.success_signal,
                            position=position,
                            now=now,
                        )
                    )
            for task in tasks:
                enqueue_task(store, task, goal, now=now)
        logger.info(
            "Created goal %s with %s tasks and %s work units (source=%s)",
            goal.id,
            len(tasks),
            len(units),
            result.source,
        )
        if feasibility is not None and not feasibility.is_feasible:
            logger.info("Goal %s target date looks tight: %s days needed", goal.id, feasibility.days_needed)
    return CreatedGoal(
        goal=goal,
        tasks=tasks,
        work_units=units,
        result=result,
        admission=admission,
        feasibility=feasibility,
    )
