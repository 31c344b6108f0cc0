"""ExecutionLocks: per-task execution locks shared by every dispatch driver."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ExecutionLocks:
    """Non-blocking registry of task ids that are currently executing.

    One instance is shared by the foreground engine and the background
    runner's engine so the same task id never runs twice at once. All
    callers run on one event loop, so acquisition is a plain set check with
    no await in between.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, task_id: str) -> bool:
        """Take the lock for *task_id*. Returns False if it is already held."""
        if task_id in self._held:
            logger.debug("Execution lock busy: %s", task_id)
            return False
        self._held.add(task_id)
        return True

    def release(self, task_id: str) -> None:
        """Release the lock for *task_id*. Releasing twice is an error."""
        if task_id not in self._held:
            msg = f"Execution lock for {task_id} is not held"
            raise RuntimeError(msg)
        self._held.discard(task_id)

    def is_held(self, task_id: str) -> bool:
        return task_id in self._held

    @property
    def held(self) -> frozenset[str]:
        return frozenset(self._held)

    def __len__(self) -> int:
        return len(self._held)
