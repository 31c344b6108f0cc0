"""HTTP API for the scheduled task engine.

Runs in the same asyncio event loop as the engine and the background runner.
Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.

All responses are ``{"success": bool, "data": ...}`` or
``{"success": false, "error": "<message>"}``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from holo_scheduler.config import settings
from holo_scheduler.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from holo_scheduler.scheduler.engine import SchedulerEngine

logger = logging.getLogger(__name__)

ENGINE_KEY: web.AppKey[SchedulerEngine] = web.AppKey("engine")

ROUTE = "/api/task-scheduler"

_REQUIRED_CREATE = ("name", "description", "type", "payload", "schedule")
_REQUIRED_DAILY = ("name", "description", "type", "payload", "duration")


def _ok(data: Any, success: bool = True) -> web.Response:
    return web.json_response({"success": success, "data": data})


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def _missing(body: dict[str, Any], fields: tuple[str, ...]) -> bool:
    return any(body.get(f) is None or body.get(f) == "" for f in fields)


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map validation failures to 400, unknown tasks to 404, anything else to 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as exc:
        logger.info("Task scheduler API rejected request: %s", exc)
        return _error(str(exc), 400)
    except NotFoundError as exc:
        logger.info("Task scheduler API: %s", exc)
        return _error("Task not found", 404)
    except Exception:
        logger.exception("Task scheduler API error: %s %s", request.method, request.path)
        return _error("Internal server error", 500)


async def _read_json(request: web.Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# -- GET ----------------------------------------------------------------------


async def _handle_get(request: web.Request) -> web.Response:
    """GET /api/task-scheduler?action=tasks|status|task|history"""
    engine = request.app[ENGINE_KEY]
    action = request.query.get("action")

    if action == "tasks":
        tasks = await engine.get_scheduled_tasks()
        return _ok([t.to_dict() for t in tasks])

    if action == "status":
        return _ok(await engine.get_status())

    if action in ("task", "history"):
        task_id = request.query.get("taskId")
        if not task_id:
            return _error("Task ID is required", 400)
        task = await engine.get_scheduled_task(task_id)
        if task is None:
            raise NotFoundError(task_id)
        if action == "task":
            return _ok(task.to_dict())
        limit = request.query.get("limit")
        if limit is not None and not limit.isdigit():
            return _error("limit must be a non-negative integer", 400)
        history = await engine.get_task_history(task_id, int(limit) if limit else None)
        return _ok([r.to_dict() for r in history])

    return _error("Invalid action", 400)


# -- POST ---------------------------------------------------------------------


def _max_retries(body: dict[str, Any]) -> int:
    value = body.get("maxRetries")
    return 3 if value is None else value


def _retry_delay(body: dict[str, Any]) -> int:
    value = body.get("retryDelaySeconds", body.get("retryDelay", 30))
    return 30 if value is None else value


_DURATION_UNITS = ("days", "weeks", "months", "years")


def _duration(value: Any) -> dict[str, int]:
    """Map ``7`` or ``{"days", "weeks", "months", "years"}`` to ``duration_*`` kwargs."""
    if isinstance(value, int) and not isinstance(value, bool):
        return {"duration_days": value}
    if isinstance(value, dict):
        unsupported = set(value) - set(_DURATION_UNITS)
        if unsupported:
            msg = f"Unsupported duration unit(s): {', '.join(sorted(unsupported))}"
            raise ValidationError(msg)
        amounts = {unit: value.get(unit) or 0 for unit in _DURATION_UNITS}
        if all(isinstance(v, int) and not isinstance(v, bool) for v in amounts.values()):
            return {f"duration_{unit}": amount for unit, amount in amounts.items()}
    msg = "duration must be a number of days or {days, weeks, months, years}"
    raise ValidationError(msg)


async def _handle_post(request: web.Request) -> web.Response:
    """POST /api/task-scheduler: create, createDaily, createFinanceSummary.

    ``createFinanceSummary`` creates a ``data_extraction`` task; it only runs
    when the executor has a handler for that type (``DATA_EXTRACTION_URL``).
    """
    engine = request.app[ENGINE_KEY]
    body = await _read_json(request)
    if body is None:
        return _error("Invalid JSON", 400)

    action = body.get("action")
    if action == "create":
        if _missing(body, _REQUIRED_CREATE):
            return _error("Missing required fields", 400)
        task_id = await engine.create_scheduled_task(
            name=body["name"],
            description=body["description"],
            task_type=body["type"],
            payload=body["payload"],
            schedule=body["schedule"],
            priority=body.get("priority"),
            max_retries=_max_retries(body),
            retry_delay_seconds=_retry_delay(body),
            notifications=body.get("notifications"),
        )
        return _ok({"taskId": task_id})

    if action == "createDaily":
        if _missing(body, _REQUIRED_DAILY):
            return _error("Missing required fields", 400)
        task_id = await engine.create_daily_task(
            body["name"],
            body["description"],
            body["type"],
            body["payload"],
            time_of_day=body.get("timeOfDay") or "09:00",
            priority=body.get("priority"),
            max_retries=_max_retries(body),
            notifications=body.get("notifications"),
            **_duration(body["duration"]),
        )
        return _ok({"taskId": task_id})

    if action == "createFinanceSummary":
        days = body.get("days", 31)
        if isinstance(days, bool) or not isinstance(days, int):
            return _error("days must be an integer", 400)
        task_id = await engine.create_finance_summary_task(days, body.get("timeOfDay") or "09:00")
        return _ok({"taskId": task_id})

    return _error("Invalid action", 400)


# -- PUT / DELETE -------------------------------------------------------------


async def _handle_put(request: web.Request) -> web.Response:
    """PUT /api/task-scheduler: pause, resume, cancel."""
    engine = request.app[ENGINE_KEY]
    body = await _read_json(request)
    if body is None:
        return _error("Invalid JSON", 400)

    task_id = body.get("taskId")
    if not task_id:
        return _error("Task ID is required", 400)

    transitions = {
        "pause": engine.pause_task,
        "resume": engine.resume_task,
        "cancel": engine.cancel_task,
    }
    transition = transitions.get(body.get("action"))
    if transition is None:
        return _error("Invalid action", 400)
    return _ok({"taskId": task_id}, success=await transition(task_id))


async def _handle_delete(request: web.Request) -> web.Response:
    """DELETE /api/task-scheduler?taskId=: cancels the task."""
    engine = request.app[ENGINE_KEY]
    task_id = request.query.get("taskId")
    if not task_id:
        return _error("Task ID is required", 400)
    return _ok({"taskId": task_id}, success=await engine.cancel_task(task_id))


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok", "scheduler": request.app[ENGINE_KEY].running})


def create_web_app(engine: SchedulerEngine) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[ENGINE_KEY] = engine
    app.router.add_get("/health", _health)
    app.router.add_get(ROUTE, _handle_get)
    app.router.add_post(ROUTE, _handle_post)
    app.router.add_put(ROUTE, _handle_put)
    app.router.add_delete(ROUTE, _handle_delete)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        engine: SchedulerEngine,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self._engine = engine
        self.host = host or settings.api_host
        self.port = settings.api_port if port is None else port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start serving the task scheduler API."""
        self._runner = web.AppRunner(create_web_app(self._engine))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Task scheduler API listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Task scheduler API stopped")
