"""Log implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class LogChannel:
    """Writes notifications to the application log.

    Always available, so it is the default channel when nothing else is
    configured.
    """

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    @property
    def name(self) -> str:
        return "log"

    async def send(self, recipient: str, message: str) -> bool:
        logger.log(self._level, "Notification for %s: %s", recipient, message)
        return True

    async def send_rich(
        self,
        recipient: str,
        message: str,
        *,
        subject: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        if subject:
            logger.log(self._level, "Notification for %s [%s]: %s", recipient, subject, message)
            return True
        return await self.send(recipient, message)
