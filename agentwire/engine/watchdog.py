"""Stalled-turn detection."""
from __future__ import annotations

import time
from collections.abc import Callable


class TimeoutWatchdog:
    """Fires one advisory if a turn has received nothing in its quiet period.

    Never aborts the turn. Once any frame has arrived the watchdog is
    disarmed for good, so a slow tail after partial output stays quiet.
    """

    def __init__(
        self,
        quiet_period_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._quiet_period = quiet_period_seconds
        self._clock = clock
        self._started_at = clock()
        self._received = False
        self._fired = False

    @property
    def quiet_period_seconds(self) -> float:
        return self._quiet_period

    @property
    def armed(self) -> bool:
        return self._quiet_period > 0 and not self._received and not self._fired

    def mark_activity(self) -> None:
        self._received = True

    def remaining(self) -> float | None:
        """Seconds until the advisory is due, or None when disarmed."""
        if not self.armed:
            return None
        return max(0.0, self._started_at + self._quiet_period - self._clock())

    def expire(self) -> bool:
        """Return True exactly once, when the quiet period has elapsed."""
        remaining = self.remaining()
        if remaining is None or remaining > 0:
            return False
        self._fired = True
        return True
