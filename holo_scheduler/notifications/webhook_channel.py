"""Webhook implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10


class WebhookChannel:
    """Delivers notifications as JSON POSTs to a configured URL."""

    def __init__(self, url: str, *, timeout: float = _TIMEOUT_SECONDS) -> None:
        self._url = url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webhook"

    async def send(self, recipient: str, message: str) -> bool:
        return await self._post({"recipient": recipient, "message": message})

    async def send_rich(
        self,
        recipient: str,
        message: str,
        *,
        subject: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        return await self._post(
            {
                "recipient": recipient,
                "subject": subject,
                "message": message,
                "data": data or {},
            }
        )

    async def _post(self, body: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body)
        except httpx.HTTPError:
            logger.exception("Webhook notification failed: %s", self._url)
            return False

        if resp.status_code >= 400:
            logger.warning(
                "Webhook notification rejected: HTTP %d from %s", resp.status_code, self._url
            )
            return False
        return True
