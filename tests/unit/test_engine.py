"""
End-to-end tests for the ride engine.
Drives a scripted locator and manual clock through whole rides and
checks the finished, stored TrainingSession.
"""

import asyncio

import pytest

from ride_telemetry.analysis.session_aggregator import analyze_path
from ride_telemetry.config import EngineConfig
from ride_telemetry.data.blob_store import MemoryBlobStore
from ride_telemetry.data.models import GaitLabel
from ride_telemetry.engine import RideEngine
from ride_telemetry.errors import (
    PermissionDenied,
    RecordingInProgress,
    StorageUnavailable,
)
from tests.fixtures.ride_test_data import (
    START_MS,
    build_fixes,
    FakeLocator,
    settle,
    straight_walk,
    trot_with_noise_bursts,
    walk_trot_walk,
    walk_with_teleport,
)


async def start(engine):
    return await engine.start('user-1', 'horse-1', 'Bramble', 'Hacking')


async def ride(engine, locator, fixes):
    handle = await start(engine)
    locator.emit_all(fixes)
    session = await handle.stop()
    return handle, session


def assert_session_consistent(session):
    """Checks every finished session must pass."""
    timestamps = [s.timestamp for s in session.path]
    assert timestamps == sorted(set(timestamps))
    assert session.end_time >= session.start_time
    assert session.duration == (session.end_time - session.start_time) / 1000
    assert session.max_speed >= session.average_speed - 1e-6

    analysis = session.gait_analysis
    if analysis is None or not analysis.segments:
        return

    segments = analysis.segments
    assert segments[0].start_index == 0
    assert segments[-1].end_index == len(session.path) - 1
    for a, b in zip(segments, segments[1:]):
        assert a.end_index + 1 == b.start_index
        assert a.end_time == b.start_time
        assert a.gait != b.gait
    assert analysis.transition_count == len(segments) - 1
    assert sum(s.duration for s in segments) == pytest.approx(session.duration)
    assert sum(s.distance for s in segments) == pytest.approx(session.distance)
    assert sum(analysis.gait_percentages.values()) == pytest.approx(100.0)


class TestRideScenarios:
    """Whole rides from start to stored record."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_empty_session(self, engine, clock):
        """Test start then stop with no fixes."""
        handle = await start(engine)
        clock.advance(10_000)
        session = await handle.stop()

        assert session.path == ()
        assert session.distance == 0
        assert session.average_speed == 0
        assert session.max_speed == 0
        assert session.duration == 10.0
        assert session.gait_analysis is None
        assert await engine.store.get(session.id) == session

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_straight_walk(self, engine, locator):
        """Test 60 fixes at 1.4 m/s give one walk segment."""
        _, session = await ride(engine, locator, straight_walk(60, 1.4))

        assert len(session.path) == 60
        assert session.duration == 59.0
        assert session.distance == pytest.approx(82.6, rel=1e-3)
        assert session.average_speed == pytest.approx(1.4, rel=1e-3)

        analysis = session.gait_analysis
        assert len(analysis.segments) == 1
        assert analysis.segments[0].gait == GaitLabel.WALK
        assert analysis.gait_percentages[GaitLabel.WALK] == 100.0
        assert analysis.predominant_gait == GaitLabel.WALK
        assert analysis.transition_count == 0
        assert_session_consistent(session)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_walk_trot_walk(self, engine, locator):
        """Test gait changes produce three segments and two transitions."""
        _, session = await ride(engine, locator, walk_trot_walk())

        analysis = session.gait_analysis
        assert [s.gait for s in analysis.segments] == [
            GaitLabel.WALK, GaitLabel.TROT, GaitLabel.WALK
        ]
        assert analysis.transition_count == 2
        assert analysis.gait_durations[GaitLabel.WALK] == 60.0
        assert analysis.gait_durations[GaitLabel.TROT] == 30.0
        assert analysis.gait_percentages[GaitLabel.WALK] == pytest.approx(66.67, abs=0.01)
        assert analysis.gait_percentages[GaitLabel.TROT] == pytest.approx(33.33, abs=0.01)
        assert session.max_speed == 3.0
        assert_session_consistent(session)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_noise_bursts_coalesced(self, engine, locator):
        """Test 2 s canter spikes inside a trot leave a single trot."""
        _, session = await ride(engine, locator, trot_with_noise_bursts())

        analysis = session.gait_analysis
        assert len(analysis.segments) == 1
        assert analysis.segments[0].gait == GaitLabel.TROT
        assert analysis.transition_count == 0
        assert analysis.gait_percentages[GaitLabel.TROT] == 100.0
        assert analysis.gait_durations[GaitLabel.CANTER] == 0.0
        assert session.max_speed == 4.7
        assert_session_consistent(session)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_teleport_skipped(self, engine, locator):
        """Test a 500 m jump is dropped without disturbing the totals."""
        handle, session = await ride(engine, locator, walk_with_teleport(30, 15))

        assert len(session.path) == 29
        assert handle.stats.teleports == 1
        assert session.distance == pytest.approx(29 * 1.4, rel=1e-3)
        assert session.gait_analysis.predominant_gait == GaitLabel.WALK
        assert_session_consistent(session)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_corrupt_store_recovers(self, locator, clock, engine_config):
        """Test a ride is stored even when the existing document is garbage."""
        blobs = MemoryBlobStore({engine_config.storage_key: b'\x00garbage{'})
        engine = RideEngine(locator, blobs, clock, engine_config)

        _, session = await ride(engine, locator, straight_walk(10))

        assert [s.id for s in await engine.store.list()] == [session.id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_single_fix(self, engine, locator, clock):
        """Test one fix gives a path but no gait segments."""
        handle = await start(engine)
        locator.emit(straight_walk(1)[0])
        clock.advance(5000)
        session = await handle.stop()

        assert len(session.path) == 1
        assert session.distance == 0
        assert session.gait_analysis.segments == ()
        assert session.gait_analysis.total_duration == 0
        assert session.gait_analysis.predominant_gait == GaitLabel.HALT

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stored_record_matches(self, engine, locator):
        """Test the stored record equals the returned one."""
        _, session = await ride(engine, locator, walk_trot_walk())
        assert await engine.store.get(session.id) == session

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_replay_matches_live_analysis(self, engine, locator):
        """Test that replaying the stored path reproduces the gait report."""
        _, session = await ride(engine, locator, trot_with_noise_bursts())
        replayed = analyze_path(session.path, session.start_time, session.end_time)
        assert replayed == session.gait_analysis

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_bad_fixes_do_not_stop_ride(self, engine, locator):
        fixes = straight_walk(10)
        handle = await start(engine)
        locator.emit_all(fixes[:5])
        locator.emit({'lat': None})
        locator.emit_all(fixes[5:])
        session = await handle.stop()

        assert len(session.path) == 10
        assert handle.stats.invalid == 1


class TestSessionLifecycle:
    """Permission, re-entrancy, cancellation and storage failures."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permission_denied(self, blob_store, clock):
        locator = FakeLocator(clock, granted=False)
        engine = RideEngine(locator, blob_store, clock)

        with pytest.raises(PermissionDenied):
            await start(engine)

        assert not engine.recording
        assert await engine.store.list() == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_recording_at_a_time(self, engine):
        """Test a second start while recording is refused."""
        handle = await start(engine)
        assert engine.recording

        with pytest.raises(RecordingInProgress):
            await start(engine)

        await handle.stop()
        assert not engine.recording

        second = await start(engine)
        assert second.session_id != handle.session_id
        await second.stop()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_session_id_format(self, engine):
        handle = await start(engine)
        session = await handle.stop()
        assert session.id.startswith(f'session_{START_MS}_')
        assert session.user_id == 'user-1'
        assert session.horse_name == 'Bramble'
        assert session.training_type == 'Hacking'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_finalizes_and_stores(self, engine, locator, clock):
        """Test cancel closes the session at now() and still stores it."""
        fixes = straight_walk(10)
        handle = await start(engine)
        locator.emit_all(fixes)
        await settle()
        clock.advance(3000)

        handle.cancel()
        session = await handle.wait()

        assert handle.cancelled
        assert not handle.recording
        assert len(session.path) == 10
        assert handle.stats.admitted == len(session.path)
        assert session.end_time == clock.now()
        assert session.gait_analysis.segments[-1].end_time == clock.now()
        assert await engine.store.get(session.id) == session
        assert not engine.recording
        assert_session_consistent(session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_after_cancel(self, engine):
        """Test stop after cancel returns the same finished session."""
        handle = await start(engine)
        handle.cancel()
        handle.cancel()
        session = await handle.stop()
        assert session is handle.session

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_warmup_timeout(self, blob_store, clock, locator):
        """Test a silent locator ends the session with an empty path."""
        config = EngineConfig(warmup_timeout_s=0.05, poll_interval_ms=10)
        engine = RideEngine(locator, blob_store, clock, config)
        handle = await start(engine)
        clock.advance(100)

        session = await asyncio.wait_for(handle.wait(), 2.0)

        assert handle.locator_unavailable
        assert session.path == ()
        assert session.gait_analysis is None
        assert await engine.store.get(session.id) == session
        assert locator.subscriber_count == 0
        assert not engine.recording

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cold_start_keeps_recording(self, blob_store, clock, locator):
        """Test poor-accuracy fixes during warm-up do not end the ride."""
        config = EngineConfig(warmup_timeout_s=1.0, poll_interval_ms=10)
        engine = RideEngine(locator, blob_store, clock, config)
        handle = await start(engine)

        locator.emit_all(build_fixes([(4, 1.4)], accuracy=80.0))
        await asyncio.sleep(0.05)
        assert handle.recording
        assert not handle.locator_unavailable

        locator.emit_all(build_fixes([(20, 1.4)], t0=START_MS + 6000))
        session = await handle.stop()

        assert len(session.path) == 21
        assert session.path[0].timestamp == START_MS + 6000
        assert handle.stats.inaccurate == 5
        assert_session_consistent(session)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pipeline_failure_releases_locator(self, engine, locator, monkeypatch):
        """Test an error while ingesting stops the source and frees the engine."""
        handle = await start(engine)

        def broken_push(*args):
            raise RuntimeError("segmenter exploded")

        monkeypatch.setattr(handle._segmenter, 'push', broken_push)
        locator.emit_all(straight_walk(3))

        with pytest.raises(RuntimeError, match="segmenter exploded"):
            await asyncio.wait_for(handle.wait(), 2.0)

        assert locator.subscriber_count == 0
        assert not handle._source.running
        assert not engine.recording

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_storage_failure_keeps_session(self, locator, clock, engine_config):
        """Test a failed write raises but leaves the record on the handle."""

        class ReadOnlyBlobStore(MemoryBlobStore):
            async def write(self, key, data):
                raise StorageUnavailable("read-only")

        engine = RideEngine(locator, ReadOnlyBlobStore(), clock, engine_config)
        handle = await start(engine)
        locator.emit_all(straight_walk(5))

        with pytest.raises(StorageUnavailable):
            await handle.stop()

        assert handle.session is not None
        assert len(handle.session.path) == 5
        assert not engine.recording


class TestLiveObservation:
    """Tests for watching a session while it records."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_samples_follow_path(self, engine, locator):
        """Test a live consumer sees exactly the admitted path."""
        handle = await start(engine)

        async def watch():
            return [sample async for sample in handle.samples()]

        watcher = asyncio.ensure_future(watch())
        await settle()
        locator.emit_all(straight_walk(20))
        session = await handle.stop()

        assert await watcher == list(session.path)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_samples_not_restartable(self, engine, locator):
        handle, session = await ride(engine, locator, straight_walk(3))

        assert [s async for s in handle.samples()] == list(session.path)
        with pytest.raises(RuntimeError):
            async for _sample in handle.samples():
                pass

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nothing_buffered_without_consumer(self, engine, locator):
        """Test samples are only queued for a consumer that subscribed."""
        handle = await start(engine)
        locator.emit_all(straight_walk(20))
        await settle()

        assert handle._observer is None
        assert handle.path_size() == 19

        late = handle.samples()
        first = await late.__anext__()
        locator.emit_all(build_fixes([(2, 1.4)], t0=START_MS + 20_000))
        session = await handle.stop()

        assert [first] + [s async for s in late] == list(session.path)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_live_counters(self, engine, locator):
        handle = await start(engine)
        locator.emit_all(walk_trot_walk()[:40])
        await settle()

        assert handle.current_gait == GaitLabel.TROT
        assert handle.path_size() == 39
        assert handle.distance > 0
        assert handle.max_speed == 3.0
        await handle.stop()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_media_attached(self, engine):
        handle = await start(engine)
        handle.add_media({'type': 'photo', 'uri': 'file:///gate.jpg'})
        session = await handle.stop()

        assert session.media == ({'type': 'photo', 'uri': 'file:///gate.jpg'},)
        with pytest.raises(RuntimeError):
            handle.add_media({'type': 'video'})
