"""In-memory message channel between foreground clients and the BackgroundRunner.

A client connects with ``channel.connect()``, sends requests with
``connection.request()`` (awaiting the reply), and receives broadcasts on its
own inbox queue. Messages are serialized to JSON and parsed back on every
hop, so no state is shared by reference.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable

from holo_scheduler.worker.messages import Message, message_from_dict

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message, "ClientConnection"], Awaitable[Message | None]]

_ids = itertools.count(1)


def _copy(message: Message) -> Message:
    return message_from_dict(json.loads(json.dumps(message.to_dict(), default=str)))


class ClientConnection:
    """One connected foreground context."""

    def __init__(self, channel: MessageChannel, client_id: str) -> None:
        self._channel = channel
        self.id = client_id
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def post(self, message: Message) -> Message | None:
        """Send *message* to the runner; returns its reply, if any."""
        if self._closed:
            msg = f"Connection {self.id} is closed"
            raise RuntimeError(msg)
        return await self._channel.dispatch(message, self)

    async def request(self, message: Message) -> Message:
        """Send a request that must be answered."""
        reply = await self.post(message)
        if reply is None:
            msg = f"No response to {message.type}"
            raise RuntimeError(msg)
        return reply

    def deliver(self, message: Message) -> None:
        """Queue an outbound message for this client."""
        if not self._closed:
            self._inbox.put_nowait(_copy(message))

    async def receive(self, timeout: float | None = None) -> Message:
        """Wait for the next broadcast."""
        return await asyncio.wait_for(self._inbox.get(), timeout=timeout)

    def drain(self) -> list[Message]:
        """Return every queued message without waiting."""
        messages = []
        while not self._inbox.empty():
            messages.append(self._inbox.get_nowait())
        return messages

    def close(self) -> None:
        self._closed = True
        self._channel.disconnect(self)


class MessageChannel:
    """Connects any number of clients to a single message handler."""

    def __init__(self) -> None:
        self._clients: dict[str, ClientConnection] = {}
        self._handler: MessageHandler | None = None

    def bind(self, handler: MessageHandler) -> None:
        """Attach the runner's message handler."""
        self._handler = handler

    def connect(self) -> ClientConnection:
        conn = ClientConnection(self, f"client-{next(_ids)}")
        self._clients[conn.id] = conn
        logger.debug("Client connected: %s", conn.id)
        return conn

    def disconnect(self, conn: ClientConnection) -> None:
        if self._clients.pop(conn.id, None) is not None:
            logger.debug("Client disconnected: %s", conn.id)

    @property
    def clients(self) -> list[ClientConnection]:
        return list(self._clients.values())

    async def dispatch(self, message: Message, sender: ClientConnection) -> Message | None:
        if self._handler is None:
            msg = "No runner bound to the message channel"
            raise RuntimeError(msg)
        reply = await self._handler(_copy(message), sender)
        return _copy(reply) if reply is not None else None

    def broadcast(self, message: Message) -> int:
        """Deliver *message* to every connected client. Returns the count."""
        clients = self.clients
        for conn in clients:
            conn.deliver(message)
        return len(clients)
