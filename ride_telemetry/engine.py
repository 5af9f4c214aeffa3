"""
Ride engine - records a ride and produces its TrainingSession.

Pipeline per admitted sample:

    SampleSource -> PathAccumulator -> SpeedCalculator
                 -> GaitClassifier -> GaitSegmenter

On stop (or cancel) the final segment is closed at the clock's now(),
the session aggregator builds the gait report and the record is written
to the SessionStore.

Everything runs on one event loop. Suspension points are sample arrival
and storage I/O. Cancel closes the source, so the pump finishes the
samples already admitted and then finalizes.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Mapping, Optional

from ride_telemetry.analysis.session_aggregator import aggregate
from ride_telemetry.config import EngineConfig
from ride_telemetry.core.gait_classifier import GaitClassifier
from ride_telemetry.core.gait_segmenter import GaitSegmenter
from ride_telemetry.core.path_accumulator import PathAccumulator
from ride_telemetry.core.sample_source import Locator, SampleSource, SourceStats
from ride_telemetry.core.speed_calculator import SpeedCalculator
from ride_telemetry.data.blob_store import KeyValueBlobStore
from ride_telemetry.data.models import (
    GaitLabel,
    GeoSample,
    SessionDraft,
    TrainingSession,
    generate_session_id,
)
from ride_telemetry.data.session_store import SessionStore
from ride_telemetry.errors import RecordingInProgress, UnavailableLocator
from ride_telemetry.utils.clock import Clock

logger = logging.getLogger('rideTelemetry.engine')

_END = object()


class SessionHandle:
    """
    Caller's handle on one recording session.

    Created by RideEngine.start(); do not construct directly.
    """

    def __init__(self, engine: 'RideEngine', draft: SessionDraft, source: SampleSource):
        self._engine = engine
        self._draft = draft
        self._source = source
        config = engine.config

        self._path = PathAccumulator(strict=config.debug)
        self._speed = SpeedCalculator()
        self._classifier = GaitClassifier(config.hysteresis_mps)
        self._segmenter = GaitSegmenter(
            draft.start_time, config.noise_max_duration_s, config.noise_max_distance_m
        )

        self._observer: Optional[asyncio.Queue] = None
        self._samples_taken = False
        self._closed = False
        self._cancelled = False
        self._done: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pump_task: Optional[asyncio.Task] = None

        self.locator_unavailable = False
        self.session: Optional[TrainingSession] = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._draft.id

    @property
    def recording(self) -> bool:
        return not self._done.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def stats(self) -> SourceStats:
        """Debug counters from the sample source."""
        return self._source.stats

    @property
    def current_gait(self) -> GaitLabel:
        return self._classifier.current

    @property
    def distance(self) -> float:
        return self._speed.distance

    @property
    def max_speed(self) -> float:
        return self._speed.max_speed

    def path_size(self) -> int:
        return self._path.size()

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _begin(self):
        self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self):
        try:
            try:
                # After cancel the source is already closed; what it admitted
                # before closing is still ingested
                async for sample in self._source.samples():
                    self._ingest(sample)
            except UnavailableLocator:
                self.locator_unavailable = True
                self._source.stop()
            await self._finalize()
        except Exception as e:
            logger.error("Session %s failed: %s", self.session_id, e)
            if not self._done.done():
                self._done.set_exception(e)
        finally:
            self._source.stop()
            self._closed = True
            if self._observer is not None:
                self._observer.put_nowait(_END)
            self._engine._release(self)

    def _ingest(self, sample: GeoSample):
        index = self._path.append(sample)
        if index is None:
            return
        hop = self._speed.update(sample)
        gait = self._classifier.classify(hop.speed)
        self._segmenter.push(index, sample, gait, hop.distance)
        if self._observer is not None:
            self._observer.put_nowait(sample)

    async def _finalize(self):
        draft = self._draft
        end_time = max(self._engine.clock.now(), draft.start_time)
        path = self._path.snapshot()
        duration = (end_time - draft.start_time) / 1000

        if path:
            analysis = aggregate(self._segmenter.finish(end_time))
        else:
            analysis = None

        self.session = TrainingSession(
            id=draft.id,
            user_id=draft.user_id,
            horse_id=draft.horse_id,
            horse_name=draft.horse_name,
            training_type=draft.training_type,
            start_time=draft.start_time,
            end_time=end_time,
            duration=duration,
            distance=self._speed.distance,
            average_speed=self._speed.average_speed(duration),
            max_speed=self._speed.max_speed,
            path=path,
            media=tuple(dict(m) for m in draft.media),
            gait_analysis=analysis,
        )
        logger.info(
            "Session %s finalized: %d samples, %.0fm in %.0fs%s",
            draft.id, len(path), self.session.distance, duration,
            " (cancelled)" if self._cancelled else ""
        )

        await self._engine.store.put(self.session)
        self._done.set_result(self.session)

    # -------------------------------------------------------------------------
    # Caller API
    # -------------------------------------------------------------------------

    async def samples(self) -> AsyncIterator[GeoSample]:
        """
        Admitted samples from the start of the ride, then live ones as they
        arrive. Ends when the session stops or is cancelled.

        Can only be iterated once. Nothing is buffered until it is called.
        """
        if self._samples_taken:
            raise RuntimeError("samples() is not restartable")
        self._samples_taken = True

        # Snapshot and subscribe with no suspension in between
        backlog = self._path.snapshot()
        if not self._closed:
            self._observer = asyncio.Queue()
        for sample in backlog:
            yield sample
        if self._observer is None:
            return

        while True:
            item = await self._observer.get()
            if item is _END:
                return
            yield item

    def add_media(self, item: Mapping[str, Any]):
        """Attach an opaque media object (photo, video...) to the session."""
        if not self.recording:
            raise RuntimeError("session already finalized")
        self._draft.media.append(dict(item))

    def cancel(self):
        """
        Request cancellation.

        The pipeline stops at its next suspension point, closes the final
        segment at now() and finalizes the session as stop() would.
        """
        if not self.recording:
            return
        self._cancelled = True
        self._source.stop()
        logger.info("Session %s cancel requested", self.session_id)

    async def stop(self) -> TrainingSession:
        """
        End recording and return the finalized, stored session.

        Raises:
            StorageUnavailable: the session could not be stored; the
                finalized record is still available as ``handle.session``
        """
        self._source.stop()
        return await asyncio.shield(self._done)

    async def wait(self) -> TrainingSession:
        """Wait for the session to finish without stopping it."""
        return await asyncio.shield(self._done)


class RideEngine:
    """
    Records rides from an injected locator, storing them in a blob store.

    One session may record at a time.
    """

    def __init__(self,
                 locator: Locator,
                 blob_store: KeyValueBlobStore,
                 clock: Clock,
                 config: Optional[EngineConfig] = None):
        self.locator = locator
        self.clock = clock
        self.config = config or EngineConfig()
        self.store = SessionStore(blob_store, self.config.storage_key)
        self._active: Optional[SessionHandle] = None

    @property
    def recording(self) -> bool:
        return self._active is not None

    async def start(self,
                    user_id: str,
                    horse_id: str,
                    horse_name: str,
                    training_type: str) -> SessionHandle:
        """
        Begin recording a session.

        Raises:
            RecordingInProgress: another session is still recording
            PermissionDenied: the locator refused access
        """
        if self._active is not None:
            raise RecordingInProgress(f"session {self._active.session_id} is recording")

        start_time = self.clock.now()
        draft = SessionDraft(
            id=generate_session_id(start_time),
            user_id=user_id,
            horse_id=horse_id,
            horse_name=horse_name,
            training_type=training_type,
            start_time=start_time,
        )
        source = SampleSource(self.locator, self.clock, self.config)

        # Claim the engine before the first suspension point
        handle = SessionHandle(self, draft, source)
        self._active = handle
        try:
            await source.start(draft.id)
        except BaseException:
            self._active = None
            raise

        handle._begin()
        logger.info("Recording session %s for horse %s", draft.id, horse_id)
        return handle

    def _release(self, handle: SessionHandle):
        if self._active is handle:
            self._active = None

