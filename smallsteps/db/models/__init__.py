"""ORM models exposed for metadata discovery."""
from smallsteps.db.models.daily_allocation import DailyAllocation
from smallsteps.db.models.daily_completion import DailyCompletion
from smallsteps.db.models.goal import Goal
from smallsteps.db.models.planner_settings import PlannerSettings
from smallsteps.db.models.task import Task
from smallsteps.db.models.task_queue_entry import TaskQueueEntry
from smallsteps.db.models.work_unit import WorkUnit

__all__ = [
    "DailyAllocation",
    "DailyCompletion",
    "Goal",
    "PlannerSettings",
    "Task",
    "TaskQueueEntry",
    "WorkUnit",
]
