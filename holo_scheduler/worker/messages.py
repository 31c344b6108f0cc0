"""Typed messages exchanged between foreground clients and the BackgroundRunner.

Every message is a frozen dataclass tagged with a ``type`` string. On the wire
(and across the in-memory channel) messages travel as plain dicts produced by
``to_dict()`` and parsed back with ``message_from_dict()``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class ExecuteTask:
    """Run *task* (a task dict) immediately."""

    type: ClassVar[str] = "EXECUTE_TASK"

    task: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "task": self.task}


@dataclass(frozen=True)
class ScheduleTask:
    """Run *task* once at *scheduled_for* (ISO 8601 or epoch ms)."""

    type: ClassVar[str] = "SCHEDULE_TASK"

    task: dict[str, Any]
    scheduled_for: str | int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "task": self.task, "scheduledFor": self.scheduled_for}


@dataclass(frozen=True)
class GetStatus:
    type: ClassVar[str] = "GET_STATUS"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class StatusResponse:
    type: ClassVar[str] = "STATUS_RESPONSE"

    status: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "status": self.status}


@dataclass(frozen=True)
class GetTasks:
    type: ClassVar[str] = "GET_TASKS"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class TasksResponse:
    """Worker-side tasks plus the results and errors kept for reconnecting clients."""

    type: ClassVar[str] = "TASKS_RESPONSE"

    tasks: list[dict[str, Any]] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tasks": self.tasks,
            "results": self.results,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class PersistState:
    type: ClassVar[str] = "PERSIST_STATE"

    state: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "state": self.state}


@dataclass(frozen=True)
class LoadState:
    type: ClassVar[str] = "LOAD_STATE"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class StateResponse:
    type: ClassVar[str] = "STATE_RESPONSE"

    state: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "state": self.state}


@dataclass(frozen=True)
class TaskCompleted:
    """Broadcast after a successful attempt."""

    type: ClassVar[str] = "TASK_COMPLETED"

    task_id: str
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id, "result": self.result}


@dataclass(frozen=True)
class TaskFailed:
    """Broadcast after a failed attempt."""

    type: ClassVar[str] = "TASK_FAILED"

    task_id: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id, "error": self.error}


Message = (
    ExecuteTask
    | ScheduleTask
    | GetStatus
    | StatusResponse
    | GetTasks
    | TasksResponse
    | PersistState
    | LoadState
    | StateResponse
    | TaskCompleted
    | TaskFailed
)


_PARSERS: dict[str, Callable[[dict[str, Any]], Message]] = {
    ExecuteTask.type: lambda d: ExecuteTask(task=d["task"]),
    ScheduleTask.type: lambda d: ScheduleTask(task=d["task"], scheduled_for=d["scheduledFor"]),
    GetStatus.type: lambda d: GetStatus(),
    StatusResponse.type: lambda d: StatusResponse(status=d["status"]),
    GetTasks.type: lambda d: GetTasks(),
    TasksResponse.type: lambda d: TasksResponse(
        tasks=d.get("tasks") or [],
        results=d.get("results") or {},
        errors=d.get("errors") or {},
    ),
    PersistState.type: lambda d: PersistState(state=d.get("state")),
    LoadState.type: lambda d: LoadState(),
    StateResponse.type: lambda d: StateResponse(state=d.get("state")),
    TaskCompleted.type: lambda d: TaskCompleted(task_id=d["taskId"], result=d.get("result")),
    TaskFailed.type: lambda d: TaskFailed(task_id=d["taskId"], error=d.get("error")),
}


def message_from_dict(data: dict[str, Any]) -> Message:
    """Parse a tagged message dict. Raises ValueError for unknown or malformed input."""
    if not isinstance(data, dict):
        msg = "Message must be an object"
        raise ValueError(msg)

    kind = data.get("type")
    parser = _PARSERS.get(kind) if isinstance(kind, str) else None
    if parser is None:
        msg = f"Unknown message type: {kind!r}"
        raise ValueError(msg)
    try:
        return parser(data)
    except KeyError as exc:
        msg = f"Message {kind} is missing field {exc.args[0]!r}"
        raise ValueError(msg) from exc
