"""Daily allocation strategies.

`MomentumSlotStrategy` hands out a count budget across goals by momentum and
fills each goal's slots earliest-first. `CapacityKnapsackStrategy` fills a
minute budget greedily by value density with a heavy-item cap and a goal
balance pass. Both are deterministic for identical inputs.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from smallsteps.core.clock import as_utc
from smallsteps.core.config import PlannerConfig
from smallsteps.services import priority
from smallsteps.services.effort import is_effectively_complete, is_heavy, remaining_minutes
from smallsteps.services.momentum import GoalMomentum, needs_attention, sort_by_momentum
from smallsteps.services.priority import NEUTRAL_QUEUE_PRIORITY, Candidate, ordering_key
from smallsteps.services.store import PlannerStore

logger = logging.getLogger(__name__)

TOP_GOAL_SHARE = 0.6
TOP_GOAL_MIN_SLOTS = 2

ENERGY_MULTIPLIERS = {1: 0.5, 2: 0.7, 3: 1.0, 4: 1.2}
LIGHT_MODE_MULTIPLIER = 0.6


@dataclass
class Selection:
    work_unit: Any
    task: Any
    goal: Any
    minutes: float
    score: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class AllocationRequest:
    goals: List[Any]
    # goal id -> incomplete (work unit, task) pairs in task order, then position
    units_by_goal: Dict[UUID, List[Tuple[Any, Any]]]
    momenta: List[GoalMomentum]
    target_count: int
    now: datetime
    config: PlannerConfig = field(default_factory=PlannerConfig)
    capacity_minutes: Optional[float] = None
    waiting_days: Dict[UUID, int] = field(default_factory=dict)
    # task id -> queue cache priority; tasks without an entry rank as neutral
    queue_priorities: Dict[UUID, float] = field(default_factory=dict)


@dataclass
class AllocationResult:
    strategy: str
    selections: List[Selection] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_minutes(self) -> float:
        return sum(selection.minutes for selection in self.selections)


class AllocationStrategy(ABC):
    name: str = "base"

    @abstractmethod
    def select(self, request: AllocationRequest) -> AllocationResult:
        raise NotImplementedError


def collect_incomplete_units(store: PlannerStore, goals: Sequence[Any]) -> Dict[UUID, List[Tuple[Any, Any]]]:
    """Incomplete work units of active tasks per goal. Goals without any are left out."""
    result: Dict[UUID, List[Tuple[Any, Any]]] = {}
    for goal in goals:
        pairs: List[Tuple[Any, Any]] = []
        for task in store.list_tasks_by_goal(goal.id):
            for unit in store.list_work_units_by_task(task.id):
                if not is_effectively_complete(unit):
                    pairs.append((unit, task))
        if pairs:
            result[goal.id] = pairs
    return result


def _selection_reason(goal, momentum: Optional[GoalMomentum], minutes: float, now: datetime) -> Optional[str]:
    if momentum is not None and needs_attention(momentum):
        return "attention"
    target = getattr(goal, "target_date", None)
    if target is not None and not goal.lifelong and (target - as_utc(now).date()).days <= 7:
        return "due-soon"
    if minutes <= 20:
        return "quick-win"
    if momentum is not None and momentum.momentum_score >= 70:
        return "momentum"
    return None


# ----------------------------------------------------------------------
# Strategy (a): momentum-weighted slots
# ----------------------------------------------------------------------
def allocate_goal_slots(ranked: Sequence[GoalMomentum], target_count: int) -> Dict[UUID, int]:
    """Split `target_count` across goals already ranked by momentum."""
    if not ranked or target_count <= 0:
        return {}
    if len(ranked) == 1:
        return {ranked[0].goal_id: target_count}

    slots = {momentum.goal_id: 0 for momentum in ranked}
    top = ranked[0]
    slots[top.goal_id] = min(target_count, max(TOP_GOAL_MIN_SLOTS, math.floor(target_count * TOP_GOAL_SHARE)))
    remaining = target_count - slots[top.goal_id]

    others = list(ranked[1:])
    others = [m for m in others if needs_attention(m)] + [m for m in others if not needs_attention(m)]
    for momentum in others:
        if remaining <= 0:
            break
        slots[momentum.goal_id] += 1
        remaining -= 1

    index = 0
    while remaining > 0:
        slots[ranked[index % len(ranked)].goal_id] += 1
        remaining -= 1
        index += 1
    return slots


def fill_slots(
    slots: Dict[UUID, int],
    ranked: Sequence[GoalMomentum],
    units_by_goal: Dict[UUID, List[Tuple[Any, Any]]],
    goals_by_id: Dict[UUID, Any],
    *,
    now: datetime,
    config: Optional[PlannerConfig] = None,
) -> List[Selection]:
    """Take each goal's earliest incomplete units; hand unused slots round-robin to goals with units left.

    At most `config.max_heavy_per_day` heavy units are taken. Once the cap is hit a
    heavy unit is passed over and the slot goes to the goal's next unit.
    """
    config = config or PlannerConfig()
    heavy_taken = 0
    cursors = {goal_id: 0 for goal_id in units_by_goal}
    taken_capabilities: Set[str] = set()
    momentum_by_goal = {m.goal_id: m for m in ranked}
    selections: List[Selection] = []

    def next_unit(goal_id: UUID) -> Optional[Tuple[Any, Any]]:
        pairs = units_by_goal.get(goal_id, [])
        while cursors.get(goal_id, 0) < len(pairs):
            unit, task = pairs[cursors[goal_id]]
            cursors[goal_id] += 1
            capability = unit.capability_id
            if capability and capability in taken_capabilities:
                continue
            if is_heavy(remaining_minutes(unit), config.heavy_threshold_minutes) and heavy_taken >= config.max_heavy_per_day:
                continue
            if capability:
                taken_capabilities.add(capability)
            return unit, task
        return None

    def take(goal_id: UUID) -> bool:
        nonlocal heavy_taken
        picked = next_unit(goal_id)
        if picked is None:
            return False
        unit, task = picked
        goal = goals_by_id[goal_id]
        minutes = remaining_minutes(unit)
        heavy_taken += int(is_heavy(minutes, config.heavy_threshold_minutes))
        selections.append(
            Selection(
                work_unit=unit,
                task=task,
                goal=goal,
                minutes=minutes,
                reason=_selection_reason(goal, momentum_by_goal.get(goal_id), minutes, now),
            )
        )
        return True

    unused = 0
    for momentum in ranked:
        wanted = slots.get(momentum.goal_id, 0)
        for _ in range(wanted):
            if not take(momentum.goal_id):
                unused += 1

    while unused > 0:
        progressed = False
        for momentum in ranked:
            if unused <= 0:
                break
            if take(momentum.goal_id):
                unused -= 1
                progressed = True
        if not progressed:
            break
    return selections


def order_by_queue_priority(
    units_by_goal: Dict[UUID, List[Tuple[Any, Any]]],
    queue_priorities: Dict[UUID, float],
) -> Dict[UUID, List[Tuple[Any, Any]]]:
    """Within equal task order, tasks the queue ranks higher come first. Otherwise order is unchanged."""
    return {
        goal_id: sorted(
            pairs,
            key=lambda pair: (
                getattr(pair[1], "order", 0) or 0,
                -queue_priorities.get(pair[1].id, NEUTRAL_QUEUE_PRIORITY),
            ),
        )
        for goal_id, pairs in units_by_goal.items()
    }


class MomentumSlotStrategy(AllocationStrategy):
    name = "momentum_slots"

    def select(self, request: AllocationRequest) -> AllocationResult:
        goals_by_id = {goal.id: goal for goal in request.goals}
        momenta = [m for m in request.momenta if m.goal_id in request.units_by_goal and m.goal_id in goals_by_id]
        ranked = sort_by_momentum(momenta)
        slots = allocate_goal_slots(ranked, request.target_count)
        units_by_goal = order_by_queue_priority(request.units_by_goal, request.queue_priorities)
        selections = fill_slots(slots, ranked, units_by_goal, goals_by_id, now=request.now, config=request.config)
        return AllocationResult(
            strategy=self.name,
            selections=selections,
            metadata={
                "target_count": request.target_count,
                "slots": {str(goal_id): count for goal_id, count in slots.items()},
            },
        )


# ----------------------------------------------------------------------
# Strategy (b): capacity knapsack
# ----------------------------------------------------------------------
def apply_capacity_adjustments(capacity_minutes: float, *, energy_level: int | None = None, mode: str | None = None) -> float:
    """Scale a base minute budget by energy (1-4) and mode ("light" shrinks it)."""
    adjusted = float(capacity_minutes)
    if energy_level is not None:
        if energy_level not in ENERGY_MULTIPLIERS:
            raise ValueError("energy_level must be between 1 and 4")
        adjusted *= ENERGY_MULTIPLIERS[energy_level]
    if mode == "light":
        adjusted *= LIGHT_MODE_MULTIPLIER
    return round(adjusted, 2)


def score_candidates(request: AllocationRequest) -> List[Candidate]:
    candidates: List[Candidate] = []
    goals_by_id = {goal.id: goal for goal in request.goals}
    for goal_id, pairs in request.units_by_goal.items():
        goal = goals_by_id.get(goal_id)
        if goal is None:
            logger.warning("Skipping %s units of unknown goal %s", len(pairs), goal_id)
            continue
        for unit, task in pairs:
            minutes = remaining_minutes(unit)
            if minutes <= 0:
                continue
            candidates.append(
                Candidate(
                    work_unit=unit,
                    task=task,
                    goal=goal,
                    minutes=minutes,
                    score=priority.score(unit, task, goal, request.goals, now=request.now),
                    waiting_days=request.waiting_days.get(task.id, 0),
                    queue_priority=request.queue_priorities.get(task.id, NEUTRAL_QUEUE_PRIORITY),
                )
            )
    return candidates


def select_by_capacity(candidates: Sequence[Candidate], capacity_minutes: float, *, config: PlannerConfig) -> List[Candidate]:
    """Greedy pass in light-before-heavy, density order. Skips what does not fit; stops at max slices."""
    ordered = sorted(candidates, key=lambda c: ordering_key(c, config.heavy_threshold_minutes))
    selected: List[Candidate] = []
    capabilities: Set[str] = set()
    used = 0.0
    heavy_count = 0
    for candidate in ordered:
        if len(selected) >= config.max_slices:
            break
        capability = candidate.work_unit.capability_id
        if capability and capability in capabilities:
            continue
        heavy = is_heavy(candidate.minutes, config.heavy_threshold_minutes)
        if used + candidate.minutes > capacity_minutes:
            continue
        if heavy and heavy_count >= config.max_heavy_per_day:
            continue
        selected.append(candidate)
        used += candidate.minutes
        heavy_count += int(heavy)
        if capability:
            capabilities.add(capability)
    return selected


def ensure_goal_balance(
    selected: Sequence[Candidate],
    candidates: Sequence[Candidate],
    capacity_minutes: float,
    *,
    config: PlannerConfig,
    goal_ids: Sequence[UUID] | None = None,
) -> List[Candidate]:
    """Give each unrepresented goal its cheapest eligible unit when it fits or the plan is under the floor."""
    result = list(selected)
    represented = {c.goal_id for c in result}
    chosen_ids = {c.work_unit.id for c in result}
    capabilities = {c.work_unit.capability_id for c in result if c.work_unit.capability_id}
    order = list(goal_ids) if goal_ids is not None else list(dict.fromkeys(c.goal_id for c in candidates))

    for goal_id in order:
        if goal_id in represented or len(result) >= config.max_slices:
            continue
        heavy_count = sum(1 for c in result if is_heavy(c.minutes, config.heavy_threshold_minutes))
        eligible = [
            c
            for c in candidates
            if c.goal_id == goal_id
            and c.work_unit.id not in chosen_ids
            and not (c.work_unit.capability_id and c.work_unit.capability_id in capabilities)
            and not (is_heavy(c.minutes, config.heavy_threshold_minutes) and heavy_count >= config.max_heavy_per_day)
        ]
        if not eligible:
            continue
        cheapest = min(eligible, key=lambda c: (c.minutes, ordering_key(c, config.heavy_threshold_minutes)))
        used = sum(c.minutes for c in result)
        if used + cheapest.minutes <= capacity_minutes or len(result) < config.min_slices:
            result.append(cheapest)
            represented.add(goal_id)
            chosen_ids.add(cheapest.work_unit.id)
            if cheapest.work_unit.capability_id:
                capabilities.add(cheapest.work_unit.capability_id)
            logger.debug("Balance pass added %s for goal %s", cheapest.work_unit.id, goal_id)
    return result


class CapacityKnapsackStrategy(AllocationStrategy):
    name = "capacity_knapsack"

    def select(self, request: AllocationRequest) -> AllocationResult:
        config = request.config
        capacity = request.capacity_minutes if request.capacity_minutes is not None else config.default_capacity_minutes
        candidates = score_candidates(request)
        chosen = select_by_capacity(candidates, capacity, config=config)
        chosen = ensure_goal_balance(
            chosen,
            candidates,
            capacity,
            config=config,
            goal_ids=[goal.id for goal in request.goals],
        )
        # Presentation order: gentlest first.
        chosen = sorted(chosen, key=lambda c: (c.minutes, ordering_key(c, config.heavy_threshold_minutes)))
        momentum_by_goal = {m.goal_id: m for m in request.momenta}
        selections = [
            Selection(
                work_unit=c.work_unit,
                task=c.task,
                goal=c.goal,
                minutes=c.minutes,
                score=c.score,
                reason=_selection_reason(c.goal, momentum_by_goal.get(c.goal_id), c.minutes, request.now),
            )
            for c in chosen
        ]
        return AllocationResult(
            strategy=self.name,
            selections=selections,
            metadata={
                "capacity_minutes": capacity,
                "candidates": len(candidates),
                "used_minutes": sum(c.minutes for c in chosen),
            },
        )


STRATEGIES: Dict[str, AllocationStrategy] = {
    MomentumSlotStrategy.name: MomentumSlotStrategy(),
    CapacityKnapsackStrategy.name: CapacityKnapsackStrategy(),
}


def get_strategy(name: str) -> AllocationStrategy:
    try:
        return STRATEGIES[name]
    except KeyError as exc:
        raise ValueError(f"Unknown allocation strategy: {name}") from exc


def task_is_done(store: PlannerStore, task) -> bool:
    """A task is done when its own minutes cross the threshold or every one of its units does."""
    if is_effectively_complete(task):
        return True
    units = store.list_work_units_by_task(task.id)
    return bool(units) and all(is_effectively_complete(unit) for unit in units)


def check_goal_completion(store: PlannerStore, goal, *, now: datetime | None = None) -> bool:
    """Drain a non-lifelong goal once every active task is effectively complete."""
    if goal is None or goal.lifelong or goal.status != "active":
        return False
    tasks = store.list_tasks_by_goal(goal.id)
    if not tasks or not all(task_is_done(store, task) for task in tasks):
        return False
    store.set_goal_status(goal, "drained", now=now)
    store.delete_queue_entries_for_goal(goal.id)
    logger.info("Goal %s drained; all tasks effectively complete", goal.id)
    return True
