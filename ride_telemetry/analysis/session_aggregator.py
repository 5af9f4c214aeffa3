"""
Session aggregator - gait totals for a finished session.

Runs once, after the segmenter has closed the final segment.
"""

from typing import Dict, Optional, Sequence

from ride_telemetry.config import PREDOMINANT_TIE_ORDER, EngineConfig
from ride_telemetry.core.gait_classifier import GaitClassifier
from ride_telemetry.core.gait_segmenter import segment_path
from ride_telemetry.core.speed_calculator import SpeedCalculator
from ride_telemetry.data.models import GaitAnalysis, GaitLabel, GaitSegment, GeoSample

_TIE_ORDER = [GaitLabel(name) for name in PREDOMINANT_TIE_ORDER]


def predominant_gait(gait_durations: Dict[GaitLabel, float]) -> GaitLabel:
    """
    Gait with the longest duration.

    Ties go to the gait listed first in walk, trot, canter, gallop, halt.
    With nothing recorded the answer is halt.
    """
    best = GaitLabel.HALT
    best_duration = 0.0
    for gait in _TIE_ORDER:
        duration = gait_durations.get(gait, 0.0)
        if duration > best_duration:
            best = gait
            best_duration = duration
    return best


def aggregate(segments: Sequence[GaitSegment]) -> GaitAnalysis:
    """
    Build the gait report for a list of coalesced segments.

    Deterministic: the same segments always give an identical report.

    Args:
        segments: Ordered, contiguous segments

    Returns:
        GaitAnalysis with durations, percentages and transitions
    """
    gait_durations = {gait: 0.0 for gait in GaitLabel}
    total_duration = 0.0
    for segment in segments:
        gait_durations[segment.gait] += segment.duration
        total_duration += segment.duration

    if total_duration > 0:
        gait_percentages = {
            gait: 100 * duration / total_duration
            for gait, duration in gait_durations.items()
        }
    else:
        gait_percentages = {gait: 0.0 for gait in GaitLabel}

    return GaitAnalysis(
        total_duration=total_duration,
        gait_durations=gait_durations,
        gait_percentages=gait_percentages,
        segments=tuple(segments),
        transition_count=max(0, len(segments) - 1),
        predominant_gait=predominant_gait(gait_durations),
    )


def analyze_path(path: Sequence[GeoSample],
                 start_time: int,
                 end_time: int,
                 config: Optional[EngineConfig] = None) -> Optional[GaitAnalysis]:
    """
    Replay a stored path through the whole gait pipeline.

    Produces the same report the live engine produces for the same samples
    and session window. Stored records are never rewritten by this.

    Args:
        path: Admitted samples in order
        start_time: Session start in milliseconds
        end_time: Session end in milliseconds
        config: Thresholds to use, defaults if None

    Returns:
        GaitAnalysis, or None for an empty path
    """
    if not path:
        return None
    config = config or EngineConfig()

    calculator = SpeedCalculator()
    classifier = GaitClassifier(config.hysteresis_mps)
    gaits = []
    hops = []
    for sample in path:
        hop = calculator.update(sample)
        gaits.append(classifier.classify(hop.speed))
        hops.append(hop.distance)

    segments = segment_path(
        path, gaits, hops, start_time, end_time,
        config.noise_max_duration_s, config.noise_max_distance_m
    )
    return aggregate(segments)
