from __future__ import annotations

from agentwire.engine.errors import TimeoutAdvisory
from agentwire.engine.watchdog import TimeoutWatchdog


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_expires_exactly_once_after_quiet_period() -> None:
    clock = FakeClock()
    watchdog = TimeoutWatchdog(30.0, clock=clock)

    clock.now += 29.0
    assert watchdog.remaining() == 1.0
    assert watchdog.expire() is False

    clock.now += 1.0
    assert watchdog.expire() is True
    clock.now += 60.0
    assert watchdog.expire() is False
    assert watchdog.remaining() is None


def test_activity_disarms_for_rest_of_turn() -> None:
    clock = FakeClock()
    watchdog = TimeoutWatchdog(30.0, clock=clock)
    watchdog.mark_activity()
    clock.now += 300.0
    assert not watchdog.armed
    assert watchdog.expire() is False


def test_non_positive_quiet_period_disables() -> None:
    watchdog = TimeoutWatchdog(0, clock=FakeClock())
    assert watchdog.remaining() is None
    assert watchdog.expire() is False


def test_advisory_message_mentions_quiet_period() -> None:
    assert "30 seconds" in str(TimeoutAdvisory(30.0))
