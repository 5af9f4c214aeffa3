"""
Monotonic clock abstractions.

All engine time is integer milliseconds. The engine never reads the
system clock directly; a Clock is injected so tests and replays can
drive time by hand.
"""

import time
from typing import Optional, Protocol


class Clock(Protocol):
    """Anything with a ``now()`` returning milliseconds."""

    def now(self) -> int:
        ...


class MonotonicClock:
    """
    Wall-anchored monotonic clock.

    Reads ``time.monotonic()`` and shifts it onto an epoch so that
    timestamps line up with the ones the platform locator stamps on
    fixes (Unix milliseconds by default).
    """

    def __init__(self, epoch_ms: Optional[int] = None):
        if epoch_ms is None:
            epoch_ms = int(time.time() * 1000)
        self._origin = time.monotonic()
        self._epoch_ms = epoch_ms

    def now(self) -> int:
        elapsed = time.monotonic() - self._origin
        return self._epoch_ms + int(elapsed * 1000)


class ManualClock:
    """Clock that only moves when told to. Used for replay and tests."""

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)

    def now(self) -> int:
        return self._now

    def set(self, ms: int):
        """Jump to an absolute time. Going backwards is refused."""
        if ms < self._now:
            raise ValueError(f"clock cannot go backwards ({ms} < {self._now})")
        self._now = int(ms)

    def advance(self, ms: int) -> int:
        """Move forward by ``ms`` and return the new time."""
        self.set(self._now + ms)
        return self._now
