"""ScheduledTask data model, schedules, and execution results."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum
from typing import Any, ClassVar
from zoneinfo import ZoneInfo


class TaskStatus(StrEnum):
    SCHEDULED = "scheduled"
    PAUSED = "paused"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Dispatch rank: higher runs first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: str | Priority | None) -> Priority:
        """Parse a priority name. ``critical`` is accepted as ``urgent``."""
        if value is None or value == "":
            return cls.MEDIUM
        if isinstance(value, Priority):
            return value
        name = str(value).strip().lower()
        if name == "critical":
            return cls.URGENT
        try:
            return cls(name)
        except ValueError:
            msg = f"Invalid priority: {value}"
            raise ValueError(msg) from None


_PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3, Priority.URGENT: 4}


class Outcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


# -- Timestamps ----------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(
    value: Any,
    tz: ZoneInfo | None = None,
    *,
    end_of_day: bool = False,
) -> datetime:
    """Coerce *value* into an aware UTC datetime.

    Accepts datetimes, ISO 8601 strings (``Z`` suffix allowed), date-only
    strings or ``date`` objects, and epoch milliseconds. Naive values are
    interpreted in *tz* (UTC when omitted). A date-only value maps to the
    start of that local day, or its last microsecond when *end_of_day*.
    """
    zone = tz or ZoneInfo("UTC")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = _day_bound(value, end_of_day)
    elif isinstance(value, bool):
        msg = f"Invalid timestamp: {value!r}"
        raise ValueError(msg)
    elif isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if len(text) == 10:
            dt = _day_bound(date.fromisoformat(text), end_of_day)
        else:
            dt = datetime.fromisoformat(text)
    else:
        msg = f"Invalid timestamp: {value!r}"
        raise ValueError(msg)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    return dt.astimezone(UTC)


def _day_bound(day: date, end_of_day: bool) -> datetime:
    if end_of_day:
        return datetime.combine(day, time.max)
    return datetime.combine(day, time.min)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dump_json(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load_json(value: str | None) -> Any:
    return json.loads(value) if value is not None else None


# -- Schedules -----------------------------------------------------------------


@dataclass(frozen=True)
class OnceSchedule:
    """Run exactly once at *at*."""

    kind: ClassVar[str] = "once"

    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "at": self.at.isoformat()}


@dataclass(frozen=True)
class DailySchedule:
    """Run every day at *time_of_day* (local ``HH:MM``) between two bounds."""

    kind: ClassVar[str] = "daily"

    time_of_day: str
    start_date: datetime
    end_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "timeOfDay": self.time_of_day,
            "startDate": self.start_date.isoformat(),
            "endDate": format_timestamp(self.end_date),
        }


@dataclass(frozen=True)
class IntervalSchedule:
    """Run every *every_ms* milliseconds starting at *start_at*."""

    kind: ClassVar[str] = "interval"

    every_ms: int
    start_at: datetime
    end_at: datetime | None = None

    @property
    def every(self) -> timedelta:
        return timedelta(milliseconds=self.every_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "everyMs": self.every_ms,
            "startAt": self.start_at.isoformat(),
            "endAt": format_timestamp(self.end_at),
        }


Schedule = OnceSchedule | DailySchedule | IntervalSchedule


def schedule_from_dict(data: dict[str, Any], tz: ZoneInfo | None = None) -> Schedule:
    """Build a schedule from its JSON form.

    Besides the ``kind``-tagged form produced by ``to_dict()``, the legacy
    ``{"frequency": "daily", "timeOfDay": ..., "startDate": ...}`` shape is
    accepted. Raises ValueError for anything else.
    """
    if not isinstance(data, dict):
        msg = "Schedule must be an object"
        raise ValueError(msg)

    kind = data.get("kind") or data.get("frequency")
    if kind == "once":
        return OnceSchedule(at=parse_timestamp(data.get("at"), tz))

    if kind == "daily":
        end = data.get("endDate")
        return DailySchedule(
            time_of_day=str(data.get("timeOfDay") or "09:00"),
            start_date=parse_timestamp(data.get("startDate") or utcnow(), tz),
            end_date=parse_timestamp(end, tz, end_of_day=True) if end else None,
        )

    if kind == "interval":
        every_ms = data.get("everyMs")
        if isinstance(every_ms, bool) or not isinstance(every_ms, int) or every_ms <= 0:
            msg = f"everyMs must be a positive integer, got {every_ms!r}"
            raise ValueError(msg)
        end = data.get("endAt")
        return IntervalSchedule(
            every_ms=every_ms,
            start_at=parse_timestamp(data.get("startAt") or utcnow(), tz),
            end_at=parse_timestamp(end, tz) if end else None,
        )

    msg = f"Unsupported schedule kind: {kind!r}"
    raise ValueError(msg)


# -- Notifications -------------------------------------------------------------


class NotificationEvent(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    RETRY_EXHAUSTED = "retry_exhausted"
    COMPLETION = "completion"


@dataclass
class NotificationSettings:
    """Which task outcomes should produce a notification.

    Attributes:
        on_success: Notify after every successful run.
        on_failure: Notify after every failed attempt.
        on_retry_exhausted: Notify when an occurrence has used up its retries.
        on_completion: Notify when the schedule finishes (task ``completed``).
        channel: Router channel name override (None -> default channel).
    """

    on_success: bool = False
    on_failure: bool = True
    on_retry_exhausted: bool = True
    on_completion: bool = False
    channel: str | None = None

    def wants(self, event: NotificationEvent) -> bool:
        """Whether *event* should produce a notification."""
        return {
            NotificationEvent.SUCCESS: self.on_success,
            NotificationEvent.FAILURE: self.on_failure,
            NotificationEvent.RETRY_EXHAUSTED: self.on_retry_exhausted,
            NotificationEvent.COMPLETION: self.on_completion,
        }[event]

    def to_dict(self) -> dict[str, Any]:
        return {
            "onSuccess": self.on_success,
            "onFailure": self.on_failure,
            "onRetryExhausted": self.on_retry_exhausted,
            "onCompletion": self.on_completion,
            "channel": self.channel,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NotificationSettings:
        data = data or {}
        defaults = cls()
        return cls(
            on_success=bool(data.get("onSuccess", defaults.on_success)),
            on_failure=bool(data.get("onFailure", defaults.on_failure)),
            on_retry_exhausted=bool(data.get("onRetryExhausted", defaults.on_retry_exhausted)),
            on_completion=bool(data.get("onCompletion", defaults.on_completion)),
            channel=data.get("channel"),
        )


# -- Results -------------------------------------------------------------------


@dataclass
class TaskResult:
    """Outcome of a single execution attempt of a task."""

    task_id: str
    outcome: Outcome
    occurrence_started_at: datetime
    occurrence_ended_at: datetime
    attempt: int = 1
    result: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def duration_ms(self) -> int:
        delta = self.occurrence_ended_at - self.occurrence_started_at
        return int(delta.total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "outcome": str(self.outcome),
            "occurrenceStartedAt": self.occurrence_started_at.isoformat(),
            "occurrenceEndedAt": self.occurrence_ended_at.isoformat(),
            "attempt": self.attempt,
            "durationMs": self.duration_ms,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskResult:
        return cls(
            task_id=data["taskId"],
            outcome=Outcome(data["outcome"]),
            occurrence_started_at=parse_timestamp(data["occurrenceStartedAt"]),
            occurrence_ended_at=parse_timestamp(data["occurrenceEndedAt"]),
            attempt=int(data.get("attempt", 1)),
            result=data.get("result"),
            error=data.get("error"),
        )

    def to_row(self) -> tuple:
        """Serialize to a tuple matching ``RESULT_COLUMNS``."""
        return (
            self.task_id,
            str(self.outcome),
            self.occurrence_started_at.isoformat(),
            self.occurrence_ended_at.isoformat(),
            self.attempt,
            _dump_json(self.result),
            self.error,
        )

    @classmethod
    def from_row(cls, row: tuple) -> TaskResult:
        return cls(
            task_id=row[0],
            outcome=Outcome(row[1]),
            occurrence_started_at=datetime.fromisoformat(row[2]),
            occurrence_ended_at=datetime.fromisoformat(row[3]),
            attempt=row[4],
            result=_load_json(row[5]),
            error=row[6],
        )


RESULT_COLUMNS = (
    "task_id",
    "outcome",
    "occurrence_started_at",
    "occurrence_ended_at",
    "attempt",
    "result",
    "error",
)


# -- Task ----------------------------------------------------------------------


@dataclass
class ScheduledTask:
    """A task to be executed on a schedule.

    Attributes:
        id: Unique identifier (UUID hex), immutable.
        name: Human-readable name.
        description: Human-readable description.
        task_type: Executor routing key (``data_extraction``, ``monitoring``, ...).
        payload: Arbitrary JSON data passed verbatim to the executor.
        schedule: When the task runs.
        priority: Dispatch ordering among simultaneously due tasks.
        max_retries: Extra attempts allowed per occurrence.
        retry_delay_seconds: Delay before each retry attempt.
        notifications: Which outcomes notify.
        status: Lifecycle state.
        attempt_count: Attempts made for the current occurrence.
        next_run_at: Next eligible dispatch time (None when terminal).
        last_run_at: When the most recent attempt finished.
        last_result: Result of the most recent successful attempt.
        last_error: Error of the most recent failed attempt.
        started_at: When the current ``running`` attempt began.
        created_at: Creation time, immutable.
    """

    id: str
    name: str
    description: str
    task_type: str
    payload: Any
    schedule: Schedule
    priority: Priority = Priority.MEDIUM
    max_retries: int = 3
    retry_delay_seconds: int = 30
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    status: TaskStatus = TaskStatus.SCHEDULED
    attempt_count: int = 0
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_result: Any = None
    last_error: str | None = None
    started_at: datetime | None = None
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = utcnow()

    # -- Convenience properties ------------------------------------------------

    @property
    def is_one_off(self) -> bool:
        return isinstance(self.schedule, OnceSchedule)

    @property
    def is_recurring(self) -> bool:
        return not self.is_one_off

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def apply_result(self, result: TaskResult) -> None:
        """Fold an execution result into the run history fields."""
        self.last_run_at = result.occurrence_ended_at
        self.total_executions += 1
        if result.succeeded:
            self.successful_executions += 1
            self.last_result = result.result
            self.last_error = None
        else:
            self.failed_executions += 1
            self.last_error = result.error

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching ``TASK_COLUMNS``."""
        return (
            self.id,
            self.name,
            self.description,
            self.task_type,
            json.dumps(self.payload),
            json.dumps(self.schedule.to_dict()),
            str(self.priority),
            self.max_retries,
            self.retry_delay_seconds,
            json.dumps(self.notifications.to_dict()),
            str(self.status),
            self.attempt_count,
            format_timestamp(self.next_run_at),
            format_timestamp(self.last_run_at),
            _dump_json(self.last_result),
            self.last_error,
            format_timestamp(self.started_at),
            self.total_executions,
            self.successful_executions,
            self.failed_executions,
            format_timestamp(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduledTask:
        """Deserialize from a row selected with ``TASK_COLUMNS``."""
        return cls(
            id=row[0],
            name=row[1],
            description=row[2],
            task_type=row[3],
            payload=json.loads(row[4]),
            schedule=schedule_from_dict(json.loads(row[5])),
            priority=Priority(row[6]),
            max_retries=row[7],
            retry_delay_seconds=row[8],
            notifications=NotificationSettings.from_dict(json.loads(row[9])),
            status=TaskStatus(row[10]),
            attempt_count=row[11],
            next_run_at=_load_timestamp(row[12]),
            last_run_at=_load_timestamp(row[13]),
            last_result=_load_json(row[14]),
            last_error=row[15],
            started_at=_load_timestamp(row[16]),
            total_executions=row[17],
            successful_executions=row[18],
            failed_executions=row[19],
            created_at=_load_timestamp(row[20]),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON form used by the HTTP API and the worker message channel."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.task_type,
            "payload": self.payload,
            "schedule": self.schedule.to_dict(),
            "priority": str(self.priority),
            "maxRetries": self.max_retries,
            "retryDelaySeconds": self.retry_delay_seconds,
            "notifications": self.notifications.to_dict(),
            "status": str(self.status),
            "attemptCount": self.attempt_count,
            "nextRunAt": format_timestamp(self.next_run_at),
            "lastRunAt": format_timestamp(self.last_run_at),
            "lastResult": self.last_result,
            "lastError": self.last_error,
            "startedAt": format_timestamp(self.started_at),
            "totalExecutions": self.total_executions,
            "successfulExecutions": self.successful_executions,
            "failedExecutions": self.failed_executions,
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], tz: ZoneInfo | None = None) -> ScheduledTask:
        """Inverse of ``to_dict()``. Missing lifecycle fields take their defaults."""

        def _ts(key: str) -> datetime | None:
            value = data.get(key)
            return parse_timestamp(value, tz) if value else None

        return cls(
            id=data.get("id") or make_task_id(),
            name=data["name"],
            description=data.get("description", ""),
            task_type=data["type"],
            payload=data.get("payload"),
            schedule=schedule_from_dict(data["schedule"], tz),
            priority=Priority.parse(data.get("priority")),
            max_retries=int(data.get("maxRetries", 3)),
            retry_delay_seconds=int(data.get("retryDelaySeconds", 30)),
            notifications=NotificationSettings.from_dict(data.get("notifications")),
            status=TaskStatus(data.get("status", TaskStatus.SCHEDULED)),
            attempt_count=int(data.get("attemptCount", 0)),
            next_run_at=_ts("nextRunAt"),
            last_run_at=_ts("lastRunAt"),
            last_result=data.get("lastResult"),
            last_error=data.get("lastError"),
            started_at=_ts("startedAt"),
            total_executions=int(data.get("totalExecutions", 0)),
            successful_executions=int(data.get("successfulExecutions", 0)),
            failed_executions=int(data.get("failedExecutions", 0)),
            created_at=_ts("createdAt"),
        )


TASK_COLUMNS = (
    "id",
    "name",
    "description",
    "task_type",
    "payload",
    "schedule",
    "priority",
    "max_retries",
    "retry_delay_seconds",
    "notifications",
    "status",
    "attempt_count",
    "next_run_at",
    "last_run_at",
    "last_result",
    "last_error",
    "started_at",
    "total_executions",
    "successful_executions",
    "failed_executions",
    "created_at",
)


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex
