"""Error taxonomy for the scheduled task engine."""


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class ValidationError(SchedulerError):
    """A task creation request is malformed. Surfaced to the caller, never retried."""


class NotFoundError(SchedulerError):
    """An operation referenced an unknown task id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ExecutorError(SchedulerError):
    """The executor failed to run a task. Drives the retry policy."""


class TaskTimeoutError(ExecutorError):
    """A task exceeded its soft timeout or was left stuck in ``running``."""


class PersistenceError(SchedulerError):
    """A task store read or write failed.

    The current dispatch cycle for the affected task is abandoned and the
    task is picked up again on the next cycle.
    """
