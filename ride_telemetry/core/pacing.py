"""
Cadence pacing for incoming fixes.

The locator may deliver fixes in bursts or at a higher rate than the
engine wants to sample. Time is cut into fixed windows on the engine
clock; within one window only the most recent fix survives.
"""

from typing import Optional

from ride_telemetry.data.models import RawFix


class CadencePacer:
    """Collapses fixes that land in the same cadence window."""

    def __init__(self, cadence_ms: int):
        if cadence_ms <= 0:
            raise ValueError("cadence_ms must be positive")
        self.cadence_ms = cadence_ms
        self._pending: Optional[RawFix] = None
        self._pending_window: Optional[int] = None
        self.collapsed = 0

    def window_of(self, now_ms: int) -> int:
        return now_ms // self.cadence_ms

    def offer(self, fix: RawFix, now_ms: int) -> Optional[RawFix]:
        """
        Hand a fix to the pacer.

        Args:
            fix: Newly received fix
            now_ms: Engine clock at arrival

        Returns:
            The fix held from an earlier window, if this arrival closed it
        """
        window = self.window_of(now_ms)
        released = None

        if self._pending is not None:
            if window == self._pending_window:
                self.collapsed += 1
            else:
                released = self._pending

        self._pending = fix
        self._pending_window = window
        return released

    def poll(self, now_ms: int) -> Optional[RawFix]:
        """Release the held fix once its window has elapsed."""
        if self._pending is None or self.window_of(now_ms) == self._pending_window:
            return None
        return self.drain()

    def drain(self) -> Optional[RawFix]:
        """Release whatever is held, regardless of the window."""
        fix = self._pending
        self._pending = None
        self._pending_window = None
        return fix

    @property
    def has_pending(self) -> bool:
        return self._pending is not None
