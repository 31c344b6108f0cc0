"""Scheduled task system: models, persistence, execution, and scheduling."""

from holo_scheduler.scheduler.engine import SchedulerEngine, TaskEvent
from holo_scheduler.scheduler.executor import HandlerExecutor
from holo_scheduler.scheduler.locks import ExecutionLocks
from holo_scheduler.scheduler.models import ScheduledTask, TaskResult
from holo_scheduler.scheduler.store import SqliteTaskStore, TaskStore

__all__ = [
    "ExecutionLocks",
    "HandlerExecutor",
    "ScheduledTask",
    "SchedulerEngine",
    "SqliteTaskStore",
    "TaskEvent",
    "TaskResult",
    "TaskStore",
]
