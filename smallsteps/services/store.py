"""Store adapter over the SQLAlchemy session.

Every service talks to the database through `PlannerStore`. The adapter keeps
ordering stable (goals by creation, tasks by `order`, work units by
`position`), performs cascade deletes children first, and exposes
`transaction()` so read-modify-write units either commit together or not at
all.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smallsteps.core.clock import utcnow
from smallsteps.core.errors import RecordNotFoundError, StoreUnavailableError
from smallsteps.db.models.daily_allocation import DailyAllocation
from smallsteps.db.models.daily_completion import DailyCompletion
from smallsteps.db.models.goal import GOAL_STATUSES, Goal
from smallsteps.db.models.planner_settings import PLANNER_SETTINGS_ID, PlannerSettings
from smallsteps.db.models.task import Task
from smallsteps.db.models.task_queue_entry import TaskQueueEntry
from smallsteps.db.models.work_unit import WORK_UNIT_KINDS, WorkUnit

logger = logging.getLogger(__name__)

_GOAL_FIELDS = {"title", "target_date", "lifelong", "status", "last_worked_at", "completed_at"}
_TASK_FIELDS = {
    "title",
    "estimated_total_minutes",
    "completed_minutes",
    "order",
    "complexity",
    "phase",
    "skip_count",
    "last_skipped_at",
    "effort_level",
}
_WORK_UNIT_FIELDS = {
    "title",
    "estimated_total_minutes",
    "completed_minutes",
    "kind",
    "capability_id",
    "first_action",
    "success_signal",
    "position",
    "skip_count",
    "last_skipped_at",
    "last_completed_at",
}


def _check_minutes(estimated: float | None, completed: float | None = 0) -> None:
    if estimated is not None and estimated < 0:
        raise ValueError("estimated_total_minutes cannot be negative")
    if completed is not None and completed < 0:
        raise ValueError("completed_minutes cannot be negative")


def _apply(record, fields: dict, allowed: set) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unsupported fields for {type(record).__name__}: {sorted(unknown)}")
    for key, value in fields.items():
        setattr(record, key, value)


class PlannerStore:
    """Typed access to goals, tasks, work units, and planner state."""

    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["PlannerStore"]:
        """Commit on success, roll back on failure. Nested blocks join the outer one."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store operation failed: %s", exc)
            raise StoreUnavailableError(
                "The planner store is unavailable right now.",
                hint="Your data is safe; try again in a moment.",
            ) from exc
        except Exception:
            if self._depth == 1:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1

    def flush(self) -> None:
        self.db.flush()

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        return self.db.get(Goal, goal_id)

    def require_goal(self, goal_id: UUID) -> Goal:
        goal = self.get_goal(goal_id)
        if goal is None:
            raise RecordNotFoundError(f"Goal {goal_id} not found")
        return goal

    def list_goals(self) -> List[Goal]:
        return self.db.query(Goal).order_by(Goal.created_at.asc(), Goal.id.asc()).all()

    def list_active_goals(self) -> List[Goal]:
        return (
            self.db.query(Goal)
            .filter(Goal.status == "active")
            .order_by(Goal.created_at.asc(), Goal.id.asc())
            .all()
        )

    def create_goal(
        self,
        title: str,
        *,
        target_date: date | None = None,
        lifelong: bool = False,
        status: str = "active",
        now: datetime | None = None,
    ) -> Goal:
        if status not in GOAL_STATUSES:
            raise ValueError(f"Unknown goal status: {status}")
        if lifelong and status == "drained":
            raise ValueError("A lifelong goal cannot be drained")
        stamp = now or utcnow()
        goal = Goal(
            title=title.strip(),
            target_date=target_date,
            lifelong=lifelong,
            status=status,
            created_at=stamp,
            updated_at=stamp,
        )
        self.db.add(goal)
        self.db.flush()
        return goal

    def update_goal(self, goal_id: UUID, **fields) -> Goal:
        goal = self.require_goal(goal_id)
        if fields.get("status") is not None:
            self._check_goal_status(goal, fields["status"], lifelong=fields.get("lifelong", goal.lifelong))
        _apply(goal, fields, _GOAL_FIELDS | {"lifelong"})
        self.db.flush()
        return goal

    def set_goal_status(self, goal: Goal, status: str, *, now: datetime | None = None) -> Goal:
        self._check_goal_status(goal, status, lifelong=goal.lifelong)
        goal.status = status
        if status == "drained":
            goal.completed_at = now or utcnow()
        self.db.flush()
        return goal

    @staticmethod
    def _check_goal_status(goal: Goal, status: str, *, lifelong: bool) -> None:
        if status not in GOAL_STATUSES:
            raise ValueError(f"Unknown goal status: {status}")
        if lifelong and status == "drained":
            raise ValueError(f"Lifelong goal {goal.id} cannot be drained")

    def delete_goal(self, goal_id: UUID) -> None:
        goal = self.require_goal(goal_id)
        task_ids = [row[0] for row in self.db.query(Task.id).filter(Task.goal_id == goal_id).all()]
        if task_ids:
            self.db.query(WorkUnit).filter(WorkUnit.task_id.in_(task_ids)).delete()
        self.db.query(TaskQueueEntry).filter(TaskQueueEntry.goal_id == goal_id).delete()
        self.db.query(Task).filter(Task.goal_id == goal_id).delete()
        self.db.delete(goal)
        self.db.flush()
        self.db.expire_all()
        logger.info("Deleted goal %s with %s tasks", goal_id, len(task_ids))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def get_task(self, task_id: UUID) -> Optional[Task]:
        return self.db.get(Task, task_id)

    def require_task(self, task_id: UUID) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise RecordNotFoundError(f"Task {task_id} not found")
        return task

    def list_tasks_by_goal(self, goal_id: UUID, *, include_inactive: bool = False) -> List[Task]:
        query = self.db.query(Task).filter(Task.goal_id == goal_id)
        if not include_inactive:
            query = query.filter(Task.lifecycle == "active")
        return query.order_by(Task.order.asc(), Task.created_at.asc(), Task.id.asc()).all()

    def create_task(
        self,
        goal_id: UUID,
        title: str,
        estimated_total_minutes: int,
        *,
        order: int | None = None,
        complexity: int | None = None,
        phase: str | None = None,
        effort_level: str | None = None,
        completed_minutes: float = 0.0,
        now: datetime | None = None,
    ) -> Task:
        self.require_goal(goal_id)
        _check_minutes(estimated_total_minutes, completed_minutes)
        if complexity is not None and complexity not in (1, 2, 3):
            raise ValueError("complexity must be 1, 2 or 3")
        if order is None:
            order = self.db.query(Task).filter(Task.goal_id == goal_id).count()
        stamp = now or utcnow()
        task = Task(
            goal_id=goal_id,
            title=title.strip(),
            estimated_total_minutes=estimated_total_minutes,
            completed_minutes=min(completed_minutes, estimated_total_minutes),
            order=order,
            complexity=complexity,
            phase=phase,
            effort_level=effort_level,
            lifecycle="active",
            skip_count=0,
            created_at=stamp,
            updated_at=stamp,
        )
        self.db.add(task)
        self.db.flush()
        return task

    def update_task(self, task_id: UUID, **fields) -> Task:
        task = self.require_task(task_id)
        _check_minutes(fields.get("estimated_total_minutes"), fields.get("completed_minutes"))
        _apply(task, fields, _TASK_FIELDS)
        self.db.flush()
        return task

    def archive_task(self, task_id: UUID, *, now: datetime | None = None) -> Task:
        task = self.require_task(task_id)
        task.lifecycle = "archived"
        task.archived_at = now or utcnow()
        self.delete_queue_entry(task_id)
        self.db.flush()
        return task

    def restore_task(self, task_id: UUID) -> Task:
        task = self.require_task(task_id)
        task.lifecycle = "active"
        task.archived_at = None
        self.db.flush()
        return task

    def delete_task(self, task_id: UUID, *, hard: bool = False) -> None:
        """Mark a task deleted, or remove it with its work units when `hard`."""
        task = self.require_task(task_id)
        self.delete_queue_entry(task_id)
        if not hard:
            task.lifecycle = "deleted"
            self.db.flush()
            return
        self.db.query(WorkUnit).filter(WorkUnit.task_id == task_id).delete()
        self.db.delete(task)
        self.db.flush()

    # ------------------------------------------------------------------
    # Work units
    # ------------------------------------------------------------------
    def get_work_unit(self, work_unit_id: UUID) -> Optional[WorkUnit]:
        return self.db.get(WorkUnit, work_unit_id)

    def require_work_unit(self, work_unit_id: UUID) -> WorkUnit:
        unit = self.get_work_unit(work_unit_id)
        if unit is None:
            raise RecordNotFoundError(f"Work unit {work_unit_id} not found")
        return unit

    def list_work_units_by_task(self, task_id: UUID) -> List[WorkUnit]:
        return (
            self.db.query(WorkUnit)
            .filter(WorkUnit.task_id == task_id)
            .order_by(WorkUnit.position.asc(), WorkUnit.created_at.asc(), WorkUnit.id.asc())
            .all()
        )

    def list_work_units_by_goal(self, goal_id: UUID, *, include_inactive: bool = False) -> List[WorkUnit]:
        """Units of a goal in task order, then position."""
        query = self.db.query(WorkUnit).join(Task, WorkUnit.task_id == Task.id).filter(Task.goal_id == goal_id)
        if not include_inactive:
            query = query.filter(Task.lifecycle == "active")
        return query.order_by(
            Task.order.asc(),
            Task.id.asc(),
            WorkUnit.position.asc(),
            WorkUnit.created_at.asc(),
            WorkUnit.id.asc(),
        ).all()

    def create_work_unit(
        self,
        task_id: UUID,
        title: str,
        estimated_total_minutes: int,
        *,
        kind: str = "practice",
        capability_id: str | None = None,
        first_action: str | None = None,
        success_signal: str | None = None,
        position: int | None = None,
        completed_minutes: float = 0.0,
        now: datetime | None = None,
    ) -> WorkUnit:
        self.require_task(task_id)
        _check_minutes(estimated_total_minutes, completed_minutes)
        if kind not in WORK_UNIT_KINDS:
            raise ValueError(f"Unknown work unit kind: {kind}")
        if position is None:
            position = self.db.query(WorkUnit).filter(WorkUnit.task_id == task_id).count()
        stamp = now or utcnow()
        unit = WorkUnit(
            task_id=task_id,
            title=title.strip(),
            estimated_total_minutes=estimated_total_minutes,
            completed_minutes=min(completed_minutes, estimated_total_minutes),
            kind=kind,
            capability_id=capability_id,
            first_action=first_action,
            success_signal=success_signal,
            position=position,
            skip_count=0,
            created_at=stamp,
            updated_at=stamp,
        )
        self.db.add(unit)
        self.db.flush()
        return unit

    def update_work_unit(self, work_unit_id: UUID, **fields) -> WorkUnit:
        unit = self.require_work_unit(work_unit_id)
        _check_minutes(fields.get("estimated_total_minutes"), fields.get("completed_minutes"))
        if "kind" in fields and fields["kind"] not in WORK_UNIT_KINDS:
            raise ValueError(f"Unknown work unit kind: {fields['kind']}")
        _apply(unit, fields, _WORK_UNIT_FIELDS)
        self.db.flush()
        return unit

    def delete_work_unit(self, work_unit_id: UUID) -> None:
        unit = self.require_work_unit(work_unit_id)
        self.db.delete(unit)
        self.db.flush()

    # ------------------------------------------------------------------
    # Task queue cache
    # ------------------------------------------------------------------
    def get_queue_entry(self, task_id: UUID) -> Optional[TaskQueueEntry]:
        return self.db.get(TaskQueueEntry, task_id)

    def list_queue_entries(self) -> List[TaskQueueEntry]:
        return self.db.query(TaskQueueEntry).order_by(TaskQueueEntry.queued_at.asc(), TaskQueueEntry.task_id.asc()).all()

    def save_queue_entry(self, entry: TaskQueueEntry) -> TaskQueueEntry:
        merged = self.db.merge(entry)
        self.db.flush()
        return merged

    def delete_queue_entry(self, task_id: UUID) -> bool:
        deleted = self.db.query(TaskQueueEntry).filter(TaskQueueEntry.task_id == task_id).delete()
        self.db.flush()
        return bool(deleted)

    def delete_queue_entries_for_goal(self, goal_id: UUID) -> int:
        deleted = self.db.query(TaskQueueEntry).filter(TaskQueueEntry.goal_id == goal_id).delete()
        self.db.flush()
        return deleted

    def clear_queue(self) -> int:
        deleted = self.db.query(TaskQueueEntry).delete()
        self.db.flush()
        self.db.expire_all()
        return deleted

    # ------------------------------------------------------------------
    # Daily allocations and completion history
    # ------------------------------------------------------------------
    def get_allocation(self, day: date, *, for_update: bool = False) -> Optional[DailyAllocation]:
        query = self.db.query(DailyAllocation).filter(DailyAllocation.day == day)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def save_allocation(
        self,
        day: date,
        *,
        work_unit_ids: Sequence[str],
        planned_ids: Sequence[str] | None = None,
        completed_count: int | None = None,
        strategy: str | None = None,
        planned_minutes: float | None = None,
    ) -> DailyAllocation:
        allocation = self.get_allocation(day, for_update=True)
        if allocation is None:
            allocation = DailyAllocation(day=day, work_unit_ids=[], planned_ids=[], completed_count=0, planned_minutes=0.0)
            self.db.add(allocation)
        allocation.work_unit_ids = [str(value) for value in work_unit_ids]
        if planned_ids is not None:
            allocation.planned_ids = [str(value) for value in planned_ids]
        if completed_count is not None:
            allocation.completed_count = completed_count
        if strategy is not None:
            allocation.strategy = strategy
        if planned_minutes is not None:
            allocation.planned_minutes = planned_minutes
        self.db.flush()
        return allocation

    def list_allocations(self, start: date, end: date) -> List[DailyAllocation]:
        """Allocations with `start <= day < end`, oldest first."""
        return (
            self.db.query(DailyAllocation)
            .filter(DailyAllocation.day >= start, DailyAllocation.day < end)
            .order_by(DailyAllocation.day.asc())
            .all()
        )

    def list_unrecorded_allocations(self, before: date) -> List[DailyAllocation]:
        return (
            self.db.query(DailyAllocation)
            .filter(DailyAllocation.day < before, DailyAllocation.recorded_at.is_(None))
            .order_by(DailyAllocation.day.asc())
            .all()
        )

    def get_completion(self, day: date) -> Optional[DailyCompletion]:
        return self.db.get(DailyCompletion, day)

    def upsert_completion(self, day: date, planned: int, completed: int) -> DailyCompletion:
        record = self.get_completion(day)
        if record is None:
            record = DailyCompletion(day=day)
            self.db.add(record)
        record.planned = planned
        record.completed = completed
        record.completion_rate = (completed / planned) if planned > 0 else 0.0
        self.db.flush()
        return record

    def list_completions(self, start: date, end: date) -> List[DailyCompletion]:
        return (
            self.db.query(DailyCompletion)
            .filter(DailyCompletion.day >= start, DailyCompletion.day <= end)
            .order_by(DailyCompletion.day.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Planner settings
    # ------------------------------------------------------------------
    def get_planner_settings(self, *, for_update: bool = False, default_target: int = 3) -> PlannerSettings:
        query = self.db.query(PlannerSettings).filter(PlannerSettings.id == PLANNER_SETTINGS_ID)
        if for_update:
            query = query.with_for_update()
        row = query.first()
        if row is None:
            row = PlannerSettings(id=PLANNER_SETTINGS_ID, target_work_units=default_target)
            self.db.add(row)
            self.db.flush()
        return row
