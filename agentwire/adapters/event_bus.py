"""Async queue between a turn's driver task and its consumer.

The driver emits canonical events as frames are processed; the consumer
iterates them. ``close()`` ends the stream after everything already
queued; ``discard()`` is for a consumer that went away.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from agentwire.adapters.events import CanonicalEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class TurnEventBus:
    """Unbounded single-consumer queue of canonical events."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: CanonicalEvent) -> None:
        if self._closed:
            logger.debug("TurnEventBus closed, dropping %s", event.type)
            return
        self.emitted += 1
        await self._queue.put(event)

    async def consume(self) -> AsyncIterator[CanonicalEvent]:
        """Yield events as they arrive. Stops after close()."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def close(self) -> None:
        """End the stream once queued events are consumed. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def discard(self) -> None:
        """Drop pending events and stop accepting new ones."""
        self._closed = True
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
