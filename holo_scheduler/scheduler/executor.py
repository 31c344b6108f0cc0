"""Executor contract and the handler-registry implementation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from holo_scheduler.errors import ExecutorError

if TYPE_CHECKING:
    from holo_scheduler.scheduler.models import ScheduledTask

logger = logging.getLogger(__name__)

# Handler signature: async (payload) -> result
TaskHandler = Callable[[Any], Awaitable[Any]]


@runtime_checkable
class Executor(Protocol):
    """Performs the actual work of a task.

    Returns a JSON-serialisable result or raises. Any exception is treated
    by the engine as an executor failure and drives the retry policy.
    """

    async def execute(self, task: ScheduledTask) -> Any:
        ...


class HandlerExecutor:
    """Executes tasks by dispatching on ``task_type`` to registered handlers.

    Usage::

        executor = HandlerExecutor()

        @executor.handler("data_extraction")
        async def extract(payload: dict) -> dict:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, TaskHandler] = {}

    def handler(self, task_type: str) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator to register an async function as the handler for *task_type*."""

        def decorator(fn: TaskHandler) -> TaskHandler:
            self.register(task_type, fn)
            return fn

        return decorator

    def register(self, task_type: str, fn: TaskHandler) -> None:
        self._handlers[task_type] = fn
        logger.info("Registered task handler: %s", task_type)

    def get(self, task_type: str) -> TaskHandler | None:
        return self._handlers.get(task_type)

    @property
    def task_types(self) -> list[str]:
        """All task types with a registered handler."""
        return list(self._handlers)

    async def execute(self, task: ScheduledTask) -> Any:
        handler = self._handlers.get(task.task_type)
        if handler is None:
            msg = f"Unknown task type: {task.task_type}"
            raise ExecutorError(msg)

        logger.info("Executing task: '%s' (%s) type=%s", task.name, task.id, task.task_type)
        try:
            return await handler(task.payload)
        except ExecutorError:
            raise
        except Exception as exc:
            msg = str(exc) or type(exc).__name__
            raise ExecutorError(msg) from exc
