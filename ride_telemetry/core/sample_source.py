"""
Sample source - admits raw locator fixes into the session path.

Fixes arrive through the locator callback, are paced to the engine
cadence and then filtered:

- malformed fixes are dropped (InvalidSample, counted)
- accuracy worse than the limit is dropped
- timestamps not after the last admitted sample are dropped
- fixes closer in time than the minimum interval are dropped
- jumps beyond the teleport distance are dropped

Admitted samples are delivered in order to a single async consumer.

The warm-up is satisfied by the first fix the locator delivers, usable or
not; a cold GPS reporting poor accuracy is still a working locator. The
warm-up deadline and the cadence windows are both measured on the
injected clock, so a ManualClock replay is independent of wall time.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol

from ride_telemetry.analysis.path_metrics import gps_signal_strength
from ride_telemetry.config import EngineConfig
from ride_telemetry.core.pacing import CadencePacer
from ride_telemetry.data.models import GeoSample, RawFix
from ride_telemetry.errors import InvalidSample, PermissionDenied, UnavailableLocator
from ride_telemetry.utils.clock import Clock
from ride_telemetry.utils.geometry import haversine_distance

logger = logging.getLogger('rideTelemetry.source')

_CLOSED = object()


class Locator(Protocol):
    """Platform location provider."""

    async def request_permission(self) -> bool:
        ...

    def on_fix(self, callback: Callable[[object], None]) -> Callable[[], None]:
        """Register a fix callback; returns a function that unsubscribes."""
        ...


@dataclass
class SourceStats:
    """Counters for the session debug channel."""
    received: int = 0
    admitted: int = 0
    invalid: int = 0
    inaccurate: int = 0
    out_of_order: int = 0
    too_soon: int = 0
    teleports: int = 0
    collapsed: int = 0
    last_signal_strength: int = 0

    @property
    def dropped(self) -> int:
        return (self.invalid + self.inaccurate + self.out_of_order +
                self.too_soon + self.teleports)


class SampleSource:
    """Filters and paces locator fixes for one recording session."""

    def __init__(self, locator: Locator, clock: Clock, config: Optional[EngineConfig] = None):
        self.locator = locator
        self.clock = clock
        self.config = config or EngineConfig()
        self.stats = SourceStats()
        self.session_id: Optional[str] = None

        self._pacer = CadencePacer(self.config.sample_cadence_ms)
        self._queue: Optional[asyncio.Queue] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pacing_task: Optional[asyncio.Task] = None
        self._last: Optional[GeoSample] = None
        self._running = False
        self._consumed = False
        self._started_at = 0
        self._warm: Optional[asyncio.Event] = None
        self._warmup_expired = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, session_id: str):
        """
        Ask for permission and begin receiving fixes.

        Raises:
            PermissionDenied: the locator refused access
        """
        if self._running:
            raise RuntimeError("sample source already started")

        granted = await self.locator.request_permission()
        if not granted:
            logger.warning("Location permission denied for session %s", session_id)
            raise PermissionDenied("location permission denied")

        self.session_id = session_id
        self._queue = asyncio.Queue()
        self._warm = asyncio.Event()
        self._started_at = self.clock.now()
        self._running = True
        self._unsubscribe = self.locator.on_fix(self._on_fix)
        self._pacing_task = asyncio.get_running_loop().create_task(self._pace())
        logger.info("Sample source started for session %s", session_id)

    def stop(self):
        """Stop receiving fixes, flush the paced fix and close the channel."""
        if not self._running:
            return
        self._running = False

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._pacing_task is not None:
            self._pacing_task.cancel()
            self._pacing_task = None

        pending = self._pacer.drain()
        if pending is not None:
            self._admit(pending)
        self.stats.collapsed = self._pacer.collapsed

        self._queue.put_nowait(_CLOSED)
        self._warm.set()
        logger.info(
            "Sample source stopped for session %s: %d admitted, %d dropped",
            self.session_id, self.stats.admitted, self.stats.dropped
        )

    def _on_fix(self, fix: object):
        """Locator callback, runs on the event loop."""
        if not self._running:
            return
        self.stats.received += 1
        self._warm.set()

        try:
            raw = RawFix.from_mapping(fix)
        except InvalidSample as e:
            self.stats.invalid += 1
            logger.debug("Invalid fix dropped: %s", e)
            return

        released = self._pacer.offer(raw, self.clock.now())
        self.stats.collapsed = self._pacer.collapsed
        if released is not None:
            self._admit(released)

    async def _pace(self):
        """Release a held fix once its cadence window has passed, and expire the warm-up."""
        config = self.config
        tick = min(config.poll_interval_ms, config.sample_cadence_ms) / 1000
        warmup_ms = config.warmup_timeout_s * 1000
        while self._running:
            await asyncio.sleep(tick)
            now = self.clock.now()
            if not self._warm.is_set() and now - self._started_at >= warmup_ms:
                self._warmup_expired = True
                self._warm.set()
            released = self._pacer.poll(now)
            if released is not None:
                self._admit(released)

    def _admit(self, fix: RawFix) -> bool:
        """Apply the admission rules and publish the sample if it passes."""
        config = self.config
        if fix.accuracy is not None:
            self.stats.last_signal_strength = gps_signal_strength(fix.accuracy)
            if fix.accuracy > config.max_accuracy_m:
                self.stats.inaccurate += 1
                logger.debug("Fix dropped, accuracy %.1fm", fix.accuracy)
                return False

        last = self._last
        if last is not None:
            if fix.t <= last.timestamp:
                self.stats.out_of_order += 1
                logger.debug("Fix dropped, timestamp %d not after %d", fix.t, last.timestamp)
                return False
            if fix.t - last.timestamp < config.min_sample_interval_ms:
                self.stats.too_soon += 1
                logger.debug("Fix dropped, only %dms after previous", fix.t - last.timestamp)
                return False
            jump = haversine_distance(last.latitude, last.longitude, fix.lat, fix.lon)
            if jump > config.teleport_distance_m:
                self.stats.teleports += 1
                logger.debug("Fix dropped, teleport of %.0fm", jump)
                return False

        sample = GeoSample.from_fix(fix)
        self._last = sample
        self.stats.admitted += 1
        self._queue.put_nowait(sample)
        return True

    async def samples(self) -> AsyncIterator[GeoSample]:
        """
        Admitted samples in admission order, until the source stops.

        Single consumer only.

        Raises:
            UnavailableLocator: the locator delivered no fix within the
                warm-up period
        """
        if self._queue is None:
            raise RuntimeError("sample source not started")
        if self._consumed:
            raise RuntimeError("sample channel already has a consumer")
        self._consumed = True

        await self._warm.wait()
        if self._warmup_expired and self.stats.received == 0:
            logger.warning(
                "No fix within %.1fs warm-up for session %s",
                self.config.warmup_timeout_s, self.session_id
            )
            raise UnavailableLocator(f"no fix within {self.config.warmup_timeout_s}s")

        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
