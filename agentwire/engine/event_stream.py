"""Shared subscription to the agent server's global event feed.

One physical SSE connection (``GET {url}/global/event``) carries frames
for every session on the server. Turns subscribe by session id; each
subscription gets its own queue and delivery task so one slow or failing
handler never stalls the reader or its siblings.

There is no background reconnect. When the feed ends, every subscriber
is told through ``on_close`` and the next ``ensure_connected`` call
opens a fresh connection.
"""
from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Union

import aiohttp

from .errors import AgentWireError, ProtocolError, TransportError
from .models import StreamFrame

logger = logging.getLogger(__name__)

FrameHandler = Callable[[StreamFrame], Union[None, Awaitable[None]]]
CloseHandler = Callable[[Union[AgentWireError, None]], Union[None, Awaitable[None]]]


def parse_data_line(line: str) -> StreamFrame | None:
    """Decode one SSE line. Returns None for lines that carry no frame.

    Raises ProtocolError when a ``data:`` line holds malformed JSON.
    """
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        # event:, id:, retry: carry nothing the client needs.
        return None
    payload = line[5:].lstrip()
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProtocolError(payload, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(payload, "frame is not a JSON object")
    return StreamFrame.from_payload(data)


class _Closed:
    __slots__ = ("error",)

    def __init__(self, error: AgentWireError | None) -> None:
        self.error = error


async def _call(fn: Callable[..., Any], *args: Any) -> None:
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """One handler's view of the feed, filtered to a single session id."""

    def __init__(
        self,
        stream: GlobalEventStream,
        session_id: str,
        handler: FrameHandler,
        on_close: CloseHandler | None = None,
    ) -> None:
        self.session_id = session_id
        self._stream = stream
        self._handler = handler
        self._on_close = on_close
        self._queue: asyncio.Queue[StreamFrame | _Closed] = asyncio.Queue()
        self._active = True
        self._unsubscribed = False
        self.delivered = 0
        self._task = asyncio.create_task(
            self._deliver(), name=f"agentwire-sub-{session_id}"
        )

    @property
    def active(self) -> bool:
        return self._active

    def _push(self, frame: StreamFrame) -> None:
        if self._active:
            self._queue.put_nowait(frame)

    def _close(self, error: AgentWireError | None) -> None:
        if self._active:
            self._active = False
            self._queue.put_nowait(_Closed(error))

    async def _deliver(self) -> None:
        while True:
            item = await self._queue.get()
            if isinstance(item, _Closed):
                if self._on_close is not None:
                    try:
                        await _call(self._on_close, item.error)
                    except Exception:
                        logger.exception("on_close handler for session %s raised", self.session_id)
                return
            try:
                await _call(self._handler, item)
                self.delivered += 1
            except Exception:
                logger.exception(
                    "Handler for session %s failed on %s frame", self.session_id, item.type,
                )

    def unsubscribe(self) -> None:
        """Stop delivery. Idempotent; pending frames are dropped."""
        if self._unsubscribed:
            return
        self._unsubscribed = True
        was_active, self._active = self._active, False
        self._stream._remove(self)
        # A subscription already closed by the stream still owes its on_close.
        if was_active and not self._task.done() and asyncio.current_task() is not self._task:
            self._task.cancel()

    async def wait_closed(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class GlobalEventStream:
    """Multiplexes the global SSE feed onto per-session subscriptions."""

    def __init__(
        self,
        session_factory: Callable[[], aiohttp.ClientSession],
        connect_timeout_seconds: float = 30.0,
    ) -> None:
        self._session_factory = session_factory
        self._connect_timeout = connect_timeout_seconds
        self._url: str | None = None
        self._response: aiohttp.ClientResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._connected = False
        self._lock = asyncio.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self.frames_received = 0
        self.frames_dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def url(self) -> str | None:
        return self._url

    async def ensure_connected(self, url: str) -> None:
        """Open the feed for *url* unless it is already open.

        Concurrent callers share one connect. Switching URLs tears the
        previous connection down first.
        """
        url = url.rstrip("/")
        async with self._lock:
            if self._connected and self._url == url:
                return
            if self._reader is not None or self._response is not None:
                logger.info("Replacing event stream %s with %s", self._url, url)
                await self._teardown(None)
            await self._connect(url)

    async def _connect(self, url: str) -> None:
        endpoint = f"{url}/global/event"
        timeout = aiohttp.ClientTimeout(
            total=None, connect=self._connect_timeout, sock_read=None,
        )
        try:
            response = await self._session_factory().get(
                endpoint, headers={"Accept": "text/event-stream"}, timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportError(endpoint, "connect timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(endpoint, str(exc) or type(exc).__name__) from exc
        if response.status != 200:
            response.release()
            raise TransportError(endpoint, f"HTTP {response.status}")
        self._url = url
        self._response = response
        self._connected = True
        self._reader = asyncio.create_task(
            self._read_loop(response), name="agentwire-event-reader"
        )
        logger.info("Event stream connected to %s", endpoint)

    async def _read_loop(self, response: aiohttp.ClientResponse) -> None:
        error: AgentWireError | None = None
        pending: list[str] = []
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            # Split lines by hand; tool outputs exceed aiohttp's readline limit.
            async for chunk in response.content.iter_any():
                buffer += decoder.decode(chunk)
                while "\n" in buffer:
                    raw_line, buffer = buffer.split("\n", 1)
                    pending = self._feed_line(raw_line.rstrip("\r"), pending)
            buffer += decoder.decode(b"", final=True)
            if buffer:
                pending = self._feed_line(buffer.rstrip("\r"), pending)
            self._drop_pending(pending)
            logger.info("Event stream %s ended", self._url)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = TransportError(f"{self._url}/global/event", str(exc) or type(exc).__name__)
            logger.warning("Event stream read failed: %s", error)
        except Exception as exc:
            logger.exception("Event stream reader crashed")
            error = TransportError(f"{self._url}/global/event", f"reader crashed: {exc}")
        self._disconnect(error)

    def _feed_line(self, line: str, pending: list[str]) -> list[str]:
        """Consume one line; return the ``data:`` payloads still incomplete.

        Every ``data:`` line is tried as a whole frame first, so frames sent
        one per line are dispatched without waiting for a blank line. Lines
        that do not parse alone are joined with the following ones until
        they do, or dropped at the next blank line.
        """
        if not line:
            self._drop_pending(pending)
            return []
        if not line.startswith("data:"):
            return pending
        payload = line[5:].lstrip()
        if not payload:
            return pending
        if pending:
            frame = self._parse(pending + [payload])
            if frame is not None:
                self._dispatch(frame)
                return []
        frame = self._parse([payload])
        if frame is None:
            return pending + [payload]
        self._drop_pending(pending)
        self._dispatch(frame)
        return []

    @staticmethod
    def _parse(payloads: list[str]) -> StreamFrame | None:
        try:
            return parse_data_line("data: " + "\n".join(payloads))
        except ProtocolError:
            return None

    def _drop_pending(self, pending: list[str]) -> None:
        if not pending:
            return
        try:
            parse_data_line("data: " + "\n".join(pending))
        except ProtocolError as exc:
            self.frames_dropped += 1
            logger.warning("Skipping malformed frame: %s", exc)

    def _dispatch(self, frame: StreamFrame) -> None:
        self.frames_received += 1
        subscribers = self._subscriptions.get(frame.session_id or "")
        if not subscribers:
            logger.debug("No subscriber for %s frame (session %s)", frame.type, frame.session_id)
            return
        for sub in list(subscribers):
            sub._push(frame)

    def subscribe(
        self,
        session_id: str,
        handler: FrameHandler,
        on_close: CloseHandler | None = None,
    ) -> Subscription:
        """Deliver frames for *session_id* to *handler*, in arrival order.

        Subscribing while the feed is down closes the subscription at once,
        so its on_close still fires.
        """
        sub = Subscription(self, session_id, handler, on_close)
        if not self._connected:
            logger.warning("Subscribed to session %s while the event stream is down", session_id)
            sub._close(None)
            return sub
        self._subscriptions.setdefault(session_id, []).append(sub)
        logger.debug("Subscribed to session %s (%d handlers)",
                     session_id, len(self._subscriptions[session_id]))
        return sub

    def _remove(self, sub: Subscription) -> None:
        subscribers = self._subscriptions.get(sub.session_id)
        if not subscribers:
            return
        if sub in subscribers:
            subscribers.remove(sub)
        if not subscribers:
            del self._subscriptions[sub.session_id]

    def subscriber_count(self, session_id: str | None = None) -> int:
        if session_id is not None:
            return len(self._subscriptions.get(session_id, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def _disconnect(self, error: AgentWireError | None) -> None:
        self._connected = False
        if self._response is not None:
            self._response.release()
            self._response = None
        subscriptions, self._subscriptions = self._subscriptions, {}
        for subs in subscriptions.values():
            for sub in subs:
                sub._close(error)
        if subscriptions:
            logger.info("Event stream closed; notified %d session(s)", len(subscriptions))

    async def _teardown(self, error: AgentWireError | None) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self._disconnect(error)

    async def close(self) -> None:
        """Tear down the connection and every delivery task."""
        async with self._lock:
            tasks = [sub._task for subs in self._subscriptions.values() for sub in subs]
            await self._teardown(None)
            self._url = None
        if tasks:
            # Let on_close handlers run before returning.
            await asyncio.gather(*tasks, return_exceptions=True)
