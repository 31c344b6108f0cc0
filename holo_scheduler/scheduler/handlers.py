"""Built-in task handlers: endpoint monitoring and data extraction forwarding."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from holo_scheduler.errors import ExecutorError
from holo_scheduler.scheduler.executor import HandlerExecutor, TaskHandler
from holo_scheduler.scheduler.models import utcnow

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "holo-scheduler-monitor/1.0"
DEFAULT_CHECK_TIMEOUT = 10
DEFAULT_EXTRACTION_TIMEOUT = 120


async def monitor_endpoint(payload: dict[str, Any]) -> dict[str, Any]:
    """Check that ``targetUrl`` answers with the expected HTTP status.

    Payload keys: ``targetUrl`` (required), ``expectStatus`` (default 200),
    ``timeoutSeconds`` (default 10). Raises ExecutorError when the endpoint is
    unreachable or answers with an unexpected status.
    """
    if not isinstance(payload, dict) or not payload.get("targetUrl"):
        msg = "monitoring payload requires targetUrl"
        raise ExecutorError(msg)

    url = str(payload["targetUrl"])
    expected = int(payload.get("expectStatus", 200))
    timeout = float(payload.get("timeoutSeconds", DEFAULT_CHECK_TIMEOUT))

    started = time.monotonic()
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        ) as client:
            resp = await client.get(url)
    except httpx.TimeoutException as exc:
        msg = f"Timeout checking {url}"
        raise ExecutorError(msg) from exc
    except httpx.HTTPError as exc:
        msg = f"Request to {url} failed: {exc}"
        raise ExecutorError(msg) from exc

    elapsed_ms = int((time.monotonic() - started) * 1000)
    if resp.status_code != expected:
        msg = f"HTTP {resp.status_code} from {url} (expected {expected})"
        raise ExecutorError(msg)

    logger.info("Monitor check ok: %s (%d ms)", url, elapsed_ms)
    return {
        "targetUrl": url,
        "statusCode": resp.status_code,
        "healthy": True,
        "responseTimeMs": elapsed_ms,
        "checkedAt": utcnow().isoformat(),
    }


def extraction_forwarder(url: str, timeout: float = DEFAULT_EXTRACTION_TIMEOUT) -> TaskHandler:
    """Build a ``data_extraction`` handler that POSTs the payload to *url*.

    The extraction service answers with the extracted data as JSON, which
    becomes the task result.
    """

    async def forward(payload: Any) -> Any:
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            ) as client:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
        except httpx.TimeoutException as exc:
            msg = f"Timeout waiting for extraction service {url}"
            raise ExecutorError(msg) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"Extraction service answered HTTP {exc.response.status_code}"
            raise ExecutorError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Request to extraction service {url} failed: {exc}"
            raise ExecutorError(msg) from exc

        try:
            return resp.json()
        except ValueError as exc:
            msg = "Extraction service returned invalid JSON"
            raise ExecutorError(msg) from exc

    return forward


def create_default_executor(extraction_url: str = "") -> HandlerExecutor:
    """Build an executor with the built-in handlers registered.

    ``data_extraction`` is only handled when *extraction_url* is set; without
    it such tasks fail with "Unknown task type".
    """
    executor = HandlerExecutor()
    executor.register("monitoring", monitor_endpoint)
    if extraction_url:
        executor.register("data_extraction", extraction_forwarder(extraction_url))
    else:
        logger.warning("No extraction service configured; data_extraction tasks will fail")
    return executor
