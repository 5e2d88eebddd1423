"""
Tasks — задачи рассылки: хранилище, реестр с защитой от дубликатов, scheduler.
"""

from botdash.tasks.models import (
    ExecutionResult,
    GroupOutcome,
    Task,
    TaskPatch,
    TaskSpec,
    TaskStatus,
)
from botdash.tasks.registry import ReconcileAction, TaskRegistry
from botdash.tasks.scheduler import TaskScheduler
from botdash.tasks.store import TaskStore

__all__ = [
    "ExecutionResult",
    "GroupOutcome",
    "ReconcileAction",
    "Task",
    "TaskPatch",
    "TaskRegistry",
    "TaskScheduler",
    "TaskSpec",
    "TaskStatus",
    "TaskStore",
]
