"""Queue-backed delivery channel between a session and one consumer.

The session pushes events synchronously through ``push``; the consumer
(an HTTP stream, the CLI) iterates asynchronously. Once the consumer goes
away the channel is closed and further pushes raise ConnectionLost, which
makes the session drop the subscription on its next delivery.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from homelab_admin.commands.errors import ConnectionLost
from homelab_admin.domain.models import CommandEvent, is_terminal_event

logger = logging.getLogger(__name__)


class EventChannel:
    """Adapts push-based session events to an async iterator."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[CommandEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: CommandEvent) -> None:
        """Enqueue an event for the consumer.

        Raises:
            ConnectionLost: If the consumer has gone away or fell too far behind.
        """
        if self._closed:
            raise ConnectionLost("Event channel is closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as e:
            self._closed = True
            raise ConnectionLost("Event channel overflowed") from e

    def close(self) -> None:
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[CommandEvent]:
        """Yield events in order, stopping after the terminal event."""
        while True:
            event = await self._queue.get()
            yield event
            if is_terminal_event(event):
                self._closed = True
                return
