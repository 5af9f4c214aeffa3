"""
Rider and horse statistics across stored sessions.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ride_telemetry.data.models import GaitLabel, TrainingSession


def _zero_gaits() -> Dict[GaitLabel, float]:
    return {gait: 0.0 for gait in GaitLabel}


@dataclass
class RideStatistics:
    """
    Totals over a set of sessions.

    Attributes:
        session_count: Number of sessions included.
        total_duration: Seconds across all sessions.
        total_distance: Metres across all sessions.
        gait_durations: Seconds per gait, summed over analysed sessions.
        gait_percentages: Share of the summed gait time per gait, 0-100.
        average_session_duration: Seconds per session.
        average_distance: Metres per session.
        favorite_training_type: Most frequent training type, None if empty.
    """
    session_count: int = 0
    total_duration: float = 0.0
    total_distance: float = 0.0
    gait_durations: Dict[GaitLabel, float] = field(default_factory=_zero_gaits)
    gait_percentages: Dict[GaitLabel, float] = field(default_factory=_zero_gaits)
    average_session_duration: float = 0.0
    average_distance: float = 0.0
    favorite_training_type: Optional[str] = None


@dataclass
class HorseStatistics(RideStatistics):
    """RideStatistics for one horse."""
    horse_name: str = ""


def filter_sessions(sessions: Iterable[TrainingSession],
                    start_ms: Optional[int] = None,
                    end_ms: Optional[int] = None) -> List[TrainingSession]:
    """Sessions whose start time falls in [start_ms, end_ms]."""
    result = []
    for session in sessions:
        if start_ms is not None and session.start_time < start_ms:
            continue
        if end_ms is not None and session.start_time > end_ms:
            continue
        result.append(session)
    return result


def _fill(stats: RideStatistics, sessions: List[TrainingSession]) -> RideStatistics:
    if not sessions:
        return stats

    stats.session_count = len(sessions)
    stats.total_duration = sum(s.duration for s in sessions)
    stats.total_distance = sum(s.distance for s in sessions)

    for session in sessions:
        if session.gait_analysis is None:
            continue
        for gait, duration in session.gait_analysis.gait_durations.items():
            stats.gait_durations[gait] += duration

    gait_total = sum(stats.gait_durations.values())
    if gait_total > 0:
        stats.gait_percentages = {
            gait: 100 * duration / gait_total
            for gait, duration in stats.gait_durations.items()
        }

    stats.average_session_duration = stats.total_duration / len(sessions)
    stats.average_distance = stats.total_distance / len(sessions)

    # Counter.most_common keeps first-seen order on ties
    counts = Counter(s.training_type for s in sessions)
    stats.favorite_training_type = counts.most_common(1)[0][0]
    return stats


def rider_statistics(sessions: Iterable[TrainingSession]) -> RideStatistics:
    """Aggregate statistics for all given sessions."""
    return _fill(RideStatistics(), list(sessions))


def horse_statistics(sessions: Iterable[TrainingSession]) -> Dict[str, HorseStatistics]:
    """
    Per-horse statistics keyed by horse id.

    The horse name is taken from the first session seen for that horse.
    """
    by_horse: Dict[str, List[TrainingSession]] = {}
    for session in sessions:
        by_horse.setdefault(session.horse_id, []).append(session)

    return {
        horse_id: _fill(HorseStatistics(horse_name=horse_sessions[0].horse_name),
                        horse_sessions)
        for horse_id, horse_sessions in by_horse.items()
    }
