"""SchedulerEngine: task lifecycle, dispatch, and retry policy.

``tick()`` is the single dispatch entry point. The foreground driver is an
APScheduler interval job started by ``start()``; the background runner calls
the same ``tick()`` on its wake events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from holo_scheduler.config import settings
from holo_scheduler.errors import (
    ExecutorError,
    PersistenceError,
    TaskTimeoutError,
    ValidationError,
)
from holo_scheduler.scheduler.calculator import add_months, next_occurrence, parse_time_of_day
from holo_scheduler.scheduler.locks import ExecutionLocks
from holo_scheduler.scheduler.models import (
    DailySchedule,
    NotificationEvent,
    NotificationSettings,
    OnceSchedule,
    Outcome,
    Priority,
    Schedule,
    ScheduledTask,
    TaskResult,
    TaskStatus,
    make_task_id,
    schedule_from_dict,
    utcnow,
)

if TYPE_CHECKING:
    from holo_scheduler.notifications.notifier import Notifier
    from holo_scheduler.scheduler.executor import Executor
    from holo_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

POLL_JOB_ID = "dispatch-due-tasks"

# Smallest step past an occurrence, so inclusive schedules move forward.
_TICK = timedelta(microseconds=1)


@dataclass
class TaskEvent:
    """Lifecycle event emitted after every resolved attempt.

    ``kind`` is ``"completed"`` for a successful attempt and ``"failed"``
    for a failed one.
    """

    kind: str
    task: ScheduledTask
    result: TaskResult


TaskListener = Callable[[TaskEvent], Awaitable[None]]


class SchedulerEngine:
    """Owns the task lifecycle and dispatches due tasks to the executor.

    Args:
        store: TaskStore for persistence.
        executor: Executor that runs task payloads.
        notifier: Optional notifier informed of task outcomes.
        locks: Execution locks, shared with every other engine that may
            dispatch the same task ids.
        timezone: IANA timezone for ``daily`` schedules (default from settings).
        clock: Callable returning the current aware UTC datetime.
        max_concurrency: Max attempts executing at once (default from settings).
        task_timeout_seconds: Soft timeout per attempt; also the window after
            which a task stuck in ``running`` is reclaimed.
        poll_seconds: Interval of the foreground dispatch job.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: Executor,
        *,
        notifier: Notifier | None = None,
        locks: ExecutionLocks | None = None,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
        max_concurrency: int | None = None,
        task_timeout_seconds: float | None = None,
        poll_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._notifier = notifier
        self._locks = locks if locks is not None else ExecutionLocks()
        self._timezone = timezone or settings.scheduler_timezone
        self._tz = ZoneInfo(self._timezone)
        self._clock = clock or utcnow
        self._max_concurrency = max_concurrency or settings.max_concurrent_tasks
        self._semaphore = asyncio.Semaphore(self._max_concurrency)
        self._task_timeout = task_timeout_seconds or settings.task_timeout_seconds
        self._poll_seconds = poll_seconds or settings.scheduler_poll_seconds
        self._write_lock = asyncio.Lock()
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._listeners: list[TaskListener] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def locks(self) -> ExecutionLocks:
        return self._locks

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock()

    def add_listener(self, listener: TaskListener) -> None:
        """Register an async callback for every resolved attempt."""
        self._listeners.append(listener)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the foreground dispatch job."""
        if self._running:
            return
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._poll_seconds, timezone=self._timezone),
            id=POLL_JOB_ID,
            name="Dispatch due tasks",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        tasks = await self._store.list_tasks(TaskStatus.SCHEDULED)
        logger.info(
            "Scheduler started with %d scheduled task(s) (tz=%s, poll=%ss)",
            len(tasks),
            self._timezone,
            self._poll_seconds,
        )

    async def stop(self) -> None:
        """Shut down the dispatch job. In-flight attempts finish on their own."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    # -- Task creation ---------------------------------------------------------

    async def create_scheduled_task(
        self,
        *,
        name: str,
        description: str,
        task_type: str,
        payload: Any,
        schedule: Schedule | dict[str, Any] | None,
        priority: Priority | str | None = None,
        max_retries: int = 3,
        retry_delay_seconds: int = 30,
        notifications: NotificationSettings | dict[str, Any] | None = None,
    ) -> str:
        """Validate, persist, and return the id of a new ``scheduled`` task.

        Raises ValidationError for missing or malformed fields.
        """
        missing = [
            field
            for field, value in (("name", name), ("description", description), ("type", task_type))
            if not isinstance(value, str) or not value.strip()
        ]
        if payload is None:
            missing.append("payload")
        if not schedule:
            missing.append("schedule")
        if missing:
            msg = f"Missing required fields: {', '.join(missing)}"
            raise ValidationError(msg)

        task_schedule = self._coerce_schedule(schedule)
        try:
            task_priority = Priority.parse(priority)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        _require_non_negative_int("maxRetries", max_retries)
        _require_non_negative_int("retryDelay", retry_delay_seconds)

        if isinstance(notifications, NotificationSettings):
            task_notifications = notifications
        else:
            task_notifications = NotificationSettings.from_dict(notifications)

        now = self._clock()
        next_run = next_occurrence(task_schedule, now - _TICK, self._tz)
        if next_run is None:
            if not isinstance(task_schedule, OnceSchedule):
                msg = "Schedule has no occurrences left"
                raise ValidationError(msg)
            # Elapsed one-off: due immediately, exactly once.
            next_run = task_schedule.at

        task = ScheduledTask(
            id=make_task_id(),
            name=name,
            description=description,
            task_type=task_type,
            payload=payload,
            schedule=task_schedule,
            priority=task_priority,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
            notifications=task_notifications,
            status=TaskStatus.SCHEDULED,
            next_run_at=next_run,
            created_at=now,
        )
        await self._store.put_task(task)
        logger.info(
            "Scheduled task created: '%s' (%s) type=%s next=%s",
            task.name,
            task.id,
            task.task_type,
            next_run.isoformat(),
        )
        return task.id

    async def create_daily_task(
        self,
        name: str,
        description: str,
        task_type: str,
        payload: Any,
        duration_days: int | None = None,
        time_of_day: str = "09:00",
        *,
        duration_weeks: int | None = None,
        duration_months: int | None = None,
        duration_years: int | None = None,
        priority: Priority | str | None = None,
        max_retries: int = 3,
        retry_delay_seconds: int = 30,
        notifications: dict[str, Any] | None = None,
    ) -> str:
        """Create a ``daily`` task running from now for the given duration.

        Days and weeks are added first, then calendar months and years; a
        month step lands on the last day of a shorter month.
        """
        days = (duration_days or 0) + 7 * (duration_weeks or 0)
        months = (duration_months or 0) + 12 * (duration_years or 0)
        if days < 0 or months < 0 or days + months == 0:
            msg = "Duration must be at least one day"
            raise ValidationError(msg)

        start = self._clock()
        end = add_months(start + timedelta(days=days), months)
        schedule = DailySchedule(time_of_day=time_of_day, start_date=start, end_date=end)
        merged = {"onSuccess": False, "onFailure": True, "onCompletion": True}
        merged.update(notifications or {})
        return await self.create_scheduled_task(
            name=name,
            description=description,
            task_type=task_type,
            payload=payload,
            schedule=schedule,
            priority=priority,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
            notifications=merged,
        )

    async def create_finance_summary_task(self, days: int = 31, time_of_day: str = "09:00") -> str:
        """Create the daily finance summary extraction task."""
        return await self.create_daily_task(
            "Daily Finance Summary",
            f"Generate Excel summary of daily finances for {days} days",
            "data_extraction",
            {
                "source": "bank_accounts",
                "format": "excel",
                "includeCharts": True,
                "categories": ["income", "expenses", "savings", "investments"],
                "instructions": (
                    "Extract all financial transactions from the last 24 hours, "
                    "categorize them, and create an Excel summary with charts and analysis"
                ),
            },
            days,
            time_of_day,
            priority=Priority.HIGH,
            notifications={"onSuccess": True, "onFailure": True, "onCompletion": True},
        )

    def _coerce_schedule(self, schedule: Schedule | dict[str, Any]) -> Schedule:
        if isinstance(schedule, dict):
            try:
                schedule = schedule_from_dict(schedule, self._tz)
            except (KeyError, TypeError, ValueError) as exc:
                msg = f"Invalid schedule: {exc}"
                raise ValidationError(msg) from exc
        if isinstance(schedule, DailySchedule):
            try:
                parse_time_of_day(schedule.time_of_day)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if schedule.end_date is not None and schedule.end_date < schedule.start_date:
                msg = "Schedule endDate is before startDate"
                raise ValidationError(msg)
        elif not isinstance(schedule, OnceSchedule):
            if schedule.every_ms <= 0:
                msg = "everyMs must be a positive integer"
                raise ValidationError(msg)
        return schedule

    # -- Lifecycle transitions -------------------------------------------------

    async def pause_task(self, task_id: str) -> bool:
        """``scheduled -> paused``, keeping ``next_run_at`` as a checkpoint."""
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            if task is None or task.status != TaskStatus.SCHEDULED:
                logger.info("Pause ignored for %s (status=%s)", task_id, task and task.status)
                return False
            task.status = TaskStatus.PAUSED
            await self._store.put_task(task)
        logger.info("Task paused: '%s' (%s)", task.name, task_id)
        return True

    async def resume_task(self, task_id: str) -> bool:
        """``paused -> scheduled``. An elapsed checkpoint becomes due now."""
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            if task is None or task.status != TaskStatus.PAUSED:
                logger.info("Resume ignored for %s (status=%s)", task_id, task and task.status)
                return False
            now = self._clock()
            if task.next_run_at is None:
                task.next_run_at = next_occurrence(task.schedule, now - _TICK, self._tz) or now
            elif task.next_run_at <= now:
                task.next_run_at = now
            task.status = TaskStatus.SCHEDULED
            await self._store.put_task(task)
        logger.info("Task resumed: '%s' (%s) next=%s", task.name, task_id, task.next_run_at)
        return True

    async def cancel_task(self, task_id: str) -> bool:
        """Cancel any non-terminal task. Idempotent; False only if not found.

        A running task is marked now; its in-flight attempt is recorded when
        it finishes and the task stays cancelled.
        """
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            if task is None:
                return False
            if task.is_terminal:
                logger.debug("Cancel on terminal task %s (status=%s)", task_id, task.status)
                return True
            if task.status == TaskStatus.RUNNING:
                logger.info("Task '%s' (%s) cancelled while running", task.name, task_id)
            task.status = TaskStatus.CANCELLED
            task.next_run_at = None
            await self._store.put_task(task)
        logger.info("Task cancelled: '%s' (%s)", task.name, task_id)
        return True

    async def delete_task(self, task_id: str) -> bool:
        """Delete a terminal task and its history. Raises ValidationError otherwise."""
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            if task is None:
                return False
            if not task.is_terminal:
                msg = f"Task {task_id} is {task.status}; cancel it before deleting"
                raise ValidationError(msg)
            return await self._store.delete_task(task_id)

    # -- Queries ---------------------------------------------------------------

    async def get_scheduled_tasks(self) -> list[ScheduledTask]:
        return await self._store.list_tasks()

    async def get_scheduled_task(self, task_id: str) -> ScheduledTask | None:
        return await self._store.get_task(task_id)

    async def get_task_history(self, task_id: str, limit: int | None = None) -> list[TaskResult]:
        return await self._store.list_results(task_id, limit)

    async def get_status(self) -> dict[str, Any]:
        """Summary counters for dashboards."""
        tasks = await self._store.list_tasks()
        now = self._clock()
        by_status = {status: 0 for status in TaskStatus}
        for task in tasks:
            by_status[task.status] += 1
        upcoming = [
            t.next_run_at for t in tasks if t.status == TaskStatus.SCHEDULED and t.next_run_at
        ]
        return {
            "isRunning": self._running,
            "timezone": self._timezone,
            "totalTasks": len(tasks),
            "dueNow": sum(1 for at in upcoming if at <= now),
            "runningCount": by_status[TaskStatus.RUNNING],
            "scheduledTasks": by_status[TaskStatus.SCHEDULED],
            "pausedTasks": by_status[TaskStatus.PAUSED],
            "completedTasks": by_status[TaskStatus.COMPLETED],
            "failedTasks": by_status[TaskStatus.FAILED],
            "cancelledTasks": by_status[TaskStatus.CANCELLED],
            "totalExecutions": sum(t.total_executions for t in tasks),
            "successfulExecutions": sum(t.successful_executions for t in tasks),
            "failedExecutions": sum(t.failed_executions for t in tasks),
            "nextRunAt": min(upcoming).isoformat() if upcoming else None,
            "maxConcurrency": self._max_concurrency,
        }

    async def prune_history(self, older_than_days: int | None = None) -> int:
        """Delete run history older than the retention window."""
        days = settings.history_retention_days if older_than_days is None else older_than_days
        return await self._store.prune_results(self._clock() - timedelta(days=days))

    # -- Dispatch --------------------------------------------------------------

    async def tick(self) -> int:
        """Run one dispatch cycle. Returns the number of attempts executed."""
        now = self._clock()
        await self._reclaim_stuck(now)

        try:
            due = await self._store.list_tasks(TaskStatus.SCHEDULED, due_before=now)
        except PersistenceError:
            logger.exception("Could not list due tasks; skipping this cycle")
            return 0
        if not due:
            return 0

        due.sort(key=lambda t: (-t.priority.rank, t.next_run_at))
        logger.info("Dispatching %d due task(s)", len(due))
        ran = await asyncio.gather(*(self._dispatch(task.id) for task in due))
        return sum(1 for r in ran if r)

    async def run_task_now(self, task_id: str) -> bool:
        """Make a scheduled task due now and dispatch it immediately."""
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            if task is None or task.status != TaskStatus.SCHEDULED:
                return False
            task.next_run_at = self._clock()
            await self._store.put_task(task)
        return await self._dispatch(task_id)

    async def _dispatch(self, task_id: str) -> bool:
        if not self._locks.try_acquire(task_id):
            logger.info("Task %s is already executing; skipped", task_id)
            return False
        try:
            async with self._semaphore:
                return await self._run_attempt(task_id)
        except PersistenceError:
            logger.exception("Store failure while dispatching %s; retrying next cycle", task_id)
            return False
        finally:
            self._locks.release(task_id)

    async def _run_attempt(self, task_id: str) -> bool:
        async with self._write_lock:
            task = await self._store.get_task(task_id)
            started = self._clock()
            if task is None or task.status != TaskStatus.SCHEDULED:
                return False
            if task.next_run_at is None or task.next_run_at > started:
                return False
            task.status = TaskStatus.RUNNING
            task.attempt_count += 1
            task.started_at = started
            await self._store.put_task(task)

        logger.info(
            "Running task '%s' (%s) attempt %d/%d",
            task.name,
            task_id,
            task.attempt_count,
            task.max_retries + 1,
        )
        error: ExecutorError | None = None
        value: Any = None
        try:
            value = await asyncio.wait_for(self._executor.execute(task), timeout=self._task_timeout)
        except TimeoutError:
            error = TaskTimeoutError(f"Task exceeded its {self._task_timeout}s timeout")
        except ExecutorError as exc:
            error = exc
        except Exception as exc:
            error = ExecutorError(str(exc) or type(exc).__name__)

        result = TaskResult(
            task_id=task_id,
            outcome=Outcome.SUCCESS if error is None else Outcome.FAILURE,
            occurrence_started_at=started,
            occurrence_ended_at=self._clock(),
            attempt=task.attempt_count,
            result=value if error is None else None,
            error=str(error) if error is not None else None,
        )
        if error is not None:
            logger.warning("Task '%s' (%s) failed: %s", task.name, task_id, error)
        await self._resolve(task_id, result)
        return True

    async def _resolve(self, task_id: str, result: TaskResult) -> None:
        """Record an attempt and apply the success/retry/exhaustion transitions.

        The history entry and the new task state are written in one store
        transaction; a store failure leaves the attempt unrecorded.
        """
        events: list[NotificationEvent] = []

        def transition(task: ScheduledTask) -> None:
            now = result.occurrence_ended_at
            task.started_at = None

            if task.status == TaskStatus.CANCELLED:
                task.next_run_at = None
                logger.info("Recorded in-flight result of cancelled task %s", task_id)
            elif result.succeeded:
                events.append(NotificationEvent.SUCCESS)
                task.attempt_count = 0
                self._advance(task, now, events)
            else:
                events.append(NotificationEvent.FAILURE)
                if task.attempt_count <= task.max_retries:
                    task.status = TaskStatus.SCHEDULED
                    task.next_run_at = now + timedelta(seconds=task.retry_delay_seconds)
                    logger.info(
                        "Retrying task '%s' (%s) at %s",
                        task.name,
                        task_id,
                        task.next_run_at.isoformat(),
                    )
                else:
                    events.append(NotificationEvent.RETRY_EXHAUSTED)
                    if task.is_one_off:
                        task.status = TaskStatus.FAILED
                        task.next_run_at = None
                        logger.error("Task failed permanently: '%s' (%s)", task.name, task_id)
                    else:
                        task.attempt_count = 0
                        self._advance(task, now, events)
                        logger.warning(
                            "Task '%s' (%s) exhausted retries; moved to next occurrence",
                            task.name,
                            task_id,
                        )

        async with self._write_lock:
            task = await self._store.record_result(task_id, result, transition)
        if task is None:
            logger.warning("Task %s disappeared while running", task_id)
            return

        for event in events:
            if self._notifier is not None and task.notifications.wants(event):
                await self._notifier.notify(event, task, result)
        await self._emit(TaskEvent("completed" if result.succeeded else "failed", task, result))

    def _advance(self, task: ScheduledTask, now: datetime, events: list[NotificationEvent]) -> None:
        """Move a recurring or finished task to its next natural occurrence."""
        following = None
        if task.is_recurring:
            following = next_occurrence(task.schedule, now + _TICK, self._tz)
        if following is None:
            task.status = TaskStatus.COMPLETED
            task.next_run_at = None
            events.append(NotificationEvent.COMPLETION)
            logger.info("Task completed: '%s' (%s)", task.name, task.id)
        else:
            task.status = TaskStatus.SCHEDULED
            task.next_run_at = following

    async def _reclaim_stuck(self, now: datetime) -> None:
        """Fail attempts left ``running`` past the timeout by a torn-down host."""
        try:
            running = await self._store.list_tasks(TaskStatus.RUNNING)
        except PersistenceError:
            logger.exception("Could not list running tasks")
            return

        cutoff = now - timedelta(seconds=self._task_timeout)
        for task in running:
            if task.started_at is not None and task.started_at > cutoff:
                continue
            if not self._locks.try_acquire(task.id):
                continue
            try:
                logger.warning("Reclaiming task stuck in running: '%s' (%s)", task.name, task.id)
                error = TaskTimeoutError(
                    f"Task was still running after {self._task_timeout}s; assumed lost"
                )
                await self._resolve(
                    task.id,
                    TaskResult(
                        task_id=task.id,
                        outcome=Outcome.FAILURE,
                        occurrence_started_at=task.started_at or now,
                        occurrence_ended_at=now,
                        attempt=task.attempt_count,
                        error=str(error),
                    ),
                )
            except PersistenceError:
                logger.exception("Could not reclaim stuck task %s", task.id)
            finally:
                self._locks.release(task.id)

    async def _emit(self, event: TaskEvent) -> None:
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("Task listener failed for %s", event.task.id)


def _require_non_negative_int(field: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"{field} must be a non-negative integer"
        raise ValidationError(msg)
