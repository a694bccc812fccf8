"""Cooperative cancellation threaded through HTTP calls and subscriptions."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import TurnCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal for a single turn.

    ``cancel()`` is safe to call from any callback (SessionRegistry uses it
    as the entry's cancel_fn) and is idempotent. Callbacks registered with
    ``add_callback`` run once, synchronously, in registration order.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancel callback failed")

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Run *callback(reason)* on cancel, immediately if already cancelled."""
        if self._event.is_set():
            callback(self._reason or "cancelled")
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self._reason or "cancelled")

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or "cancelled"

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancellation the inner task is cancelled (aborting any in-flight
        request) and TurnCancelledError is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TurnCancelledError(self._reason or "cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Aborted call raised while cancelling", exc_info=True)
        raise TurnCancelledError(self._reason or "cancelled")
