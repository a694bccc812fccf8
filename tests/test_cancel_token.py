from __future__ import annotations

import asyncio

import pytest

from agentwire.engine.cancel import CancelToken
from agentwire.engine.errors import TurnCancelledError


def test_cancel_is_idempotent_and_keeps_first_reason() -> None:
    token = CancelToken()
    seen: list[str] = []
    token.add_callback(seen.append)
    token.cancel("superseded")
    token.cancel("user")
    assert token.cancelled
    assert token.reason == "superseded"
    assert seen == ["superseded"]


def test_callback_after_cancel_runs_immediately() -> None:
    token = CancelToken()
    token.cancel()
    seen: list[str] = []
    token.add_callback(seen.append)
    assert seen == ["cancelled"]
    with pytest.raises(TurnCancelledError):
        token.raise_if_cancelled()


def test_failing_callback_does_not_block_others() -> None:
    token = CancelToken()
    seen: list[str] = []

    def boom(reason: str) -> None:
        raise RuntimeError(reason)

    token.add_callback(boom)
    token.add_callback(seen.append)
    token.cancel("x")
    assert seen == ["x"]


@pytest.mark.asyncio
async def test_guard_returns_result() -> None:
    async def work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await CancelToken().guard(work()) == 7


@pytest.mark.asyncio
async def test_guard_aborts_inflight_call() -> None:
    token = CancelToken()
    aborted = asyncio.Event()

    async def slow() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            aborted.set()
            raise

    asyncio.get_running_loop().call_later(0.01, token.cancel, "user")
    with pytest.raises(TurnCancelledError) as excinfo:
        await token.guard(slow())
    assert excinfo.value.reason == "user"
    assert aborted.is_set()


@pytest.mark.asyncio
async def test_guard_on_cancelled_token_never_starts_call() -> None:
    token = CancelToken()
    token.cancel()
    started = False

    async def work() -> None:
        nonlocal started
        started = True

    with pytest.raises(TurnCancelledError):
        await token.guard(work())
    assert not started


@pytest.mark.asyncio
async def test_wait_returns_reason() -> None:
    token = CancelToken()
    asyncio.get_running_loop().call_soon(token.cancel, "stop")
    assert await token.wait() == "stop"
