"""BackgroundRunner: keeps tasks dispatching without a foreground client.

The runner owns a SchedulerEngine over its WorkerTaskStore. Wake events
(``background-agent-sync`` / ``background-agent-periodic``) call the engine's
``tick()``; clients talk to it over a MessageChannel. Every resolved attempt
is persisted under ``task-results`` / ``task-errors`` and broadcast to all
connected clients.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from holo_scheduler.config import settings
from holo_scheduler.errors import PersistenceError
from holo_scheduler.scheduler.models import (
    OnceSchedule,
    ScheduledTask,
    TaskStatus,
    parse_timestamp,
)
from holo_scheduler.worker.messages import (
    ExecuteTask,
    GetStatus,
    GetTasks,
    LoadState,
    Message,
    PersistState,
    ScheduleTask,
    StateResponse,
    StatusResponse,
    TaskCompleted,
    TaskFailed,
    TasksResponse,
)

if TYPE_CHECKING:
    from holo_scheduler.scheduler.engine import SchedulerEngine, TaskEvent
    from holo_scheduler.worker.channel import ClientConnection, MessageChannel
    from holo_scheduler.worker.storage import WorkerTaskStore

logger = logging.getLogger(__name__)

SYNC_TAG = "background-agent-sync"
PERIODIC_TAG = "background-agent-periodic"
WAKE_TAGS = frozenset({SYNC_TAG, PERIODIC_TAG})

STATE_KEY = "background-agent-state"
RESULTS_KEY = "task-results"
ERRORS_KEY = "task-errors"

_PERIODIC_JOB_ID = "background-agent-periodic"


class BackgroundRunner:
    """Drives a SchedulerEngine from wake events and client messages.

    Args:
        engine: Engine bound to *store*; shares ExecutionLocks with any
            foreground engine in the same process.
        store: The worker-owned store (also holds results, errors and state).
        channel: Message channel to bind to; the runner becomes its handler.
        wake_seconds: Period of the background-agent-periodic wake.
    """

    def __init__(
        self,
        engine: SchedulerEngine,
        store: WorkerTaskStore,
        channel: MessageChannel,
        *,
        wake_seconds: float | None = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._channel = channel
        self._wake_seconds = wake_seconds or settings.background_wake_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False
        self._tasks_processed = 0
        self._last_wake_at: datetime | None = None
        self._outcomes_lock = asyncio.Lock()
        self._handlers: dict[str, Callable[[Any], Awaitable[Message | None]]] = {
            ExecuteTask.type: self._handle_execute,
            ScheduleTask.type: self._handle_schedule,
            GetStatus.type: self._handle_get_status,
            GetTasks.type: self._handle_get_tasks,
            PersistState.type: self._handle_persist_state,
            LoadState.type: self._handle_load_state,
        }

        channel.bind(self.handle_message)
        engine.add_listener(self._on_task_event)

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Arm the periodic wake and run an initial sync wake."""
        if self._running:
            return
        self._scheduler.add_job(
            self.wake,
            trigger=IntervalTrigger(seconds=self._wake_seconds),
            args=[PERIODIC_TAG],
            id=_PERIODIC_JOB_ID,
            name="Background periodic wake",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Background runner started (wake every %ss)", self._wake_seconds)
        await self.wake(SYNC_TAG)

    async def stop(self) -> None:
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Background runner stopped")

    async def wake(self, tag: str) -> int:
        """Handle a wake event. Returns the number of attempts dispatched."""
        if tag not in WAKE_TAGS:
            logger.debug("Ignoring unknown wake tag: %s", tag)
            return 0
        self._last_wake_at = self._engine.now()
        ran = await self._engine.tick()
        if ran:
            logger.info("Wake %s processed %d background task(s)", tag, ran)
        return ran

    # -- Messages --------------------------------------------------------------

    async def handle_message(self, message: Message, sender: ClientConnection) -> Message | None:
        """Handle one client message; returns the reply for request kinds."""
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning("Runner ignored %s from %s", message.type, sender.id)
            return None
        return await handler(message)

    async def _handle_execute(self, message: ExecuteTask) -> None:
        task = self._adopt(message.task)
        if task is None:
            return
        existing = await self._store.get_task(task.id)
        if existing is None:
            task.next_run_at = self._engine.now()
            await self._store.put_task(task)
        elif not self._accepts(existing):
            return
        logger.info("Executing background task: %s", task.id)
        if not await self._engine.run_task_now(task.id):
            logger.info("Background task %s is not scheduled; not executed", task.id)

    async def _handle_schedule(self, message: ScheduleTask) -> None:
        task = self._adopt(message.task)
        if task is None:
            return
        try:
            at = parse_timestamp(message.scheduled_for, self._engine.tz)
        except ValueError:
            logger.warning("Rejected SCHEDULE_TASK for %s: bad scheduledFor", task.id)
            return
        existing = await self._store.get_task(task.id)
        if existing is not None:
            if not self._accepts(existing):
                return
            if existing.is_recurring or existing.status != TaskStatus.SCHEDULED:
                logger.info(
                    "Background task %s is a %s %s task; SCHEDULE_TASK ignored",
                    task.id,
                    existing.status,
                    existing.schedule.kind,
                )
                return
            task = existing
        task.schedule = OnceSchedule(at=at)
        task.next_run_at = at
        await self._store.put_task(task)

        logger.info("Scheduling background task: %s for %s", task.id, at.isoformat())
        if at > self._engine.now():
            self._scheduler.add_job(
                self.wake,
                trigger=DateTrigger(run_date=at),
                args=[SYNC_TAG],
                id=f"scheduled-{task.id}",
                replace_existing=True,
                misfire_grace_time=None,
            )
        else:
            await self.wake(SYNC_TAG)

    async def _handle_get_status(self, message: GetStatus) -> StatusResponse:
        status = await self._engine.get_status()
        status.update(
            {
                "isRunning": self._running,
                "tasksProcessed": self._tasks_processed,
                "lastWakeAt": self._last_wake_at.isoformat() if self._last_wake_at else None,
                "connectedClients": len(self._channel.clients),
            }
        )
        return StatusResponse(status=status)

    async def _handle_get_tasks(self, message: GetTasks) -> TasksResponse:
        tasks = await self._store.list_tasks()
        return TasksResponse(
            tasks=[t.to_dict() for t in tasks],
            results=await self._store.get_value(RESULTS_KEY, {}),
            errors=await self._store.get_value(ERRORS_KEY, {}),
        )

    async def _handle_persist_state(self, message: PersistState) -> None:
        try:
            await self._store.set_value(STATE_KEY, message.state)
        except PersistenceError:
            logger.exception("Failed to persist agent state")
            return
        logger.info("Agent state persisted")

    async def _handle_load_state(self, message: LoadState) -> StateResponse:
        try:
            state = await self._store.get_value(STATE_KEY)
        except PersistenceError:
            logger.exception("Failed to load agent state")
            state = None
        return StateResponse(state=state)

    def _adopt(self, data: dict[str, Any]) -> ScheduledTask | None:
        """Parse a client task dict into a fresh, dispatchable task."""
        try:
            task = ScheduledTask.from_dict(data, self._engine.tz)
        except (KeyError, TypeError, ValueError):
            logger.warning("Rejected malformed task from client", exc_info=True)
            return None
        task.status = TaskStatus.SCHEDULED
        task.attempt_count = 0
        task.started_at = None
        return task

    @staticmethod
    def _accepts(existing: ScheduledTask) -> bool:
        """Whether a client request may act on a task the worker already holds.

        A stored task keeps its own lifecycle: requests never revive a
        terminal task or touch one that is mid-attempt.
        """
        if existing.status == TaskStatus.RUNNING:
            logger.info("Background task %s is already running; request ignored", existing.id)
            return False
        if existing.is_terminal:
            logger.info("Background task %s is %s; request ignored", existing.id, existing.status)
            return False
        return True

    # -- Outcomes --------------------------------------------------------------

    async def _on_task_event(self, event: TaskEvent) -> None:
        self._tasks_processed += 1
        result = event.result
        ended = result.occurrence_ended_at.isoformat()
        if result.succeeded:
            await self._store_outcome(
                RESULTS_KEY, event.task.id, {"result": result.result, "completedAt": ended}
            )
            self._channel.broadcast(TaskCompleted(task_id=event.task.id, result=result.result))
        else:
            await self._store_outcome(
                ERRORS_KEY, event.task.id, {"error": result.error, "failedAt": ended}
            )
            self._channel.broadcast(TaskFailed(task_id=event.task.id, error=result.error))

    async def _store_outcome(self, key: str, task_id: str, entry: dict[str, Any]) -> None:
        async with self._outcomes_lock:
            try:
                outcomes = await self._store.get_value(key, {})
                outcomes[task_id] = entry
                await self._store.set_value(key, outcomes)
            except PersistenceError:
                logger.exception("Could not persist %s for %s", key, task_id)
