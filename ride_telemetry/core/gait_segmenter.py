"""
Gait segmenter - turns the labelled sample stream into gait segments.

State machine:

    Idle -> Recording(gait=G) -> Recording(gait=G') -> ... -> Ended

A run opens on the first sample and on every label change, and closes on
the next change or at session end. Runs are then coalesced: short, slow
runs are GPS noise and are folded into their neighbour.

Time and distance accounting
----------------------------
The hop from sample n-1 to sample n belongs to sample n (it is the hop
its speed was measured over). A run therefore covers the time from the
end of the previous run to its own last sample, and the distance of the
hops into its samples. The first run starts at the session start and the
last one ends at the session end, so segment durations and distances add
up to the session totals.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ride_telemetry.config import NOISE_MAX_DISTANCE_M, NOISE_MAX_DURATION_S
from ride_telemetry.data.models import GaitLabel, GaitSegment, GeoSample

logger = logging.getLogger('rideTelemetry.segmenter')


@dataclass
class _Run:
    """Open (still growing) run of one gait."""
    gait: GaitLabel
    start_index: int
    end_index: int
    start_time: int
    end_time: int
    distance: float

    def to_segment(self) -> GaitSegment:
        return _make_segment(
            self.gait, self.start_time, self.end_time, self.distance,
            self.start_index, self.end_index
        )


def _make_segment(gait: GaitLabel, start_time: int, end_time: int, distance: float,
                  start_index: int, end_index: int) -> GaitSegment:
    duration = (end_time - start_time) / 1000
    return GaitSegment(
        gait=gait,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        distance=distance,
        average_speed=distance / duration if duration > 0 else 0.0,
        start_index=start_index,
        end_index=end_index,
    )


def _join(first: GaitSegment, second: GaitSegment, gait: GaitLabel) -> GaitSegment:
    return _make_segment(
        gait, first.start_time, second.end_time, first.distance + second.distance,
        first.start_index, second.end_index
    )


def coalesce_segments(segments: Sequence[GaitSegment],
                      max_duration_s: float = NOISE_MAX_DURATION_S,
                      max_distance_m: float = NOISE_MAX_DISTANCE_M) -> List[GaitSegment]:
    """
    Fold noise runs into their neighbours and fuse equal neighbours.

    A run is noise when it is shorter than ``max_duration_s`` AND covers
    less than ``max_distance_m``. Noise merges into the previous segment
    (taking its gait); leading noise merges forward into the first real
    segment. If every run is noise they fuse under the first run's gait,
    and a lone zero-duration run is dropped.

    Args:
        segments: Contiguous raw runs in path order

    Returns:
        Coalesced segments, adjacent gaits distinct
    """
    def is_noise(segment: GaitSegment) -> bool:
        return segment.duration < max_duration_s and segment.distance < max_distance_m

    result: List[GaitSegment] = []
    head: Optional[GaitSegment] = None

    for segment in segments:
        if is_noise(segment):
            if result:
                result[-1] = _join(result[-1], segment, result[-1].gait)
            elif head is None:
                head = segment
            else:
                head = _join(head, segment, head.gait)
            continue

        if head is not None:
            segment = _join(head, segment, segment.gait)
            head = None

        if result and result[-1].gait == segment.gait:
            result[-1] = _join(result[-1], segment, segment.gait)
        else:
            result.append(segment)

    if head is not None and head.duration > 0:
        result.append(head)

    return result


class GaitSegmenter:
    """Builds gait segments from samples pushed in admission order."""

    def __init__(self,
                 session_start: int,
                 noise_max_duration_s: float = NOISE_MAX_DURATION_S,
                 noise_max_distance_m: float = NOISE_MAX_DISTANCE_M):
        """
        Args:
            session_start: Milliseconds when recording began
            noise_max_duration_s: Noise duration threshold (seconds)
            noise_max_distance_m: Noise distance threshold (metres)
        """
        self.session_start = session_start
        self.noise_max_duration_s = noise_max_duration_s
        self.noise_max_distance_m = noise_max_distance_m

        self._open: Optional[_Run] = None
        self._closed: List[_Run] = []
        self._count = 0
        self.ended = False

        # Runs before coalescing, filled in by finish()
        self.raw_segments: List[GaitSegment] = []

    @property
    def current_gait(self) -> Optional[GaitLabel]:
        """Gait of the open run, None while idle."""
        return self._open.gait if self._open else None

    def closed_segments(self) -> List[GaitSegment]:
        """Runs closed so far (not coalesced)."""
        return [run.to_segment() for run in self._closed]

    def push(self, index: int, sample: GeoSample, gait: GaitLabel, hop_distance: float):
        """
        Extend the open run or close it and open a new one.

        Args:
            index: Path index of the sample
            sample: The admitted sample
            gait: Classifier output for the sample
            hop_distance: Metres from the previous sample (0 for the first)
        """
        if self.ended:
            raise RuntimeError("segmenter already finished")

        run = self._open
        if run is None:
            self._open = _Run(
                gait=gait,
                start_index=index,
                end_index=index,
                start_time=min(self.session_start, sample.timestamp),
                end_time=sample.timestamp,
                distance=hop_distance,
            )
        elif gait == run.gait:
            run.end_index = index
            run.end_time = sample.timestamp
            run.distance += hop_distance
        else:
            self._closed.append(run)
            logger.debug("Gait change %s -> %s at index %d",
                         run.gait.value, gait.value, index)
            self._open = _Run(
                gait=gait,
                start_index=index,
                end_index=index,
                start_time=run.end_time,
                end_time=sample.timestamp,
                distance=hop_distance,
            )
        self._count += 1

    def finish(self, end_time: int) -> List[GaitSegment]:
        """
        Close the final run at session end and coalesce.

        Args:
            end_time: Milliseconds when recording ended

        Returns:
            Coalesced segments (empty for an empty or single-sample path)
        """
        self.ended = True
        run = self._open
        if run is None:
            self.raw_segments = []
            return []

        if self._count == 1:
            # Nothing moved: a single halt with no duration
            self.raw_segments = [_make_segment(
                GaitLabel.HALT, run.end_time, run.end_time, 0.0,
                run.start_index, run.end_index
            )]
        else:
            run.end_time = max(end_time, run.end_time)
            self.raw_segments = [r.to_segment() for r in self._closed + [run]]

        return coalesce_segments(
            self.raw_segments, self.noise_max_duration_s, self.noise_max_distance_m
        )


def segment_path(path: Sequence[GeoSample],
                 gaits: Sequence[GaitLabel],
                 hop_distances: Sequence[float],
                 start_time: int,
                 end_time: int,
                 noise_max_duration_s: float = NOISE_MAX_DURATION_S,
                 noise_max_distance_m: float = NOISE_MAX_DISTANCE_M) -> List[GaitSegment]:
    """Run a fresh segmenter over an already labelled path."""
    if not len(path) == len(gaits) == len(hop_distances):
        raise ValueError("path, gaits and hop_distances must have equal length")

    segmenter = GaitSegmenter(start_time, noise_max_duration_s, noise_max_distance_m)
    for index, (sample, gait, hop) in enumerate(zip(path, gaits, hop_distances)):
        segmenter.push(index, sample, gait, hop)
    return segmenter.finish(end_time)
