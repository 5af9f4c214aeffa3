"""
Vectorised metrics over a whole path.

Used for after-the-fact summaries of stored sessions, where the full
path is available at once.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ride_telemetry.config import EARTH_RADIUS_M
from ride_telemetry.data.models import GeoSample


@dataclass(frozen=True)
class PathSummary:
    """Route statistics for a stored path."""
    sample_count: int
    distance: float               # metres
    elapsed: float                # seconds from first to last sample
    max_hop_speed: float          # m/s, derived from positions only
    average_accuracy: Optional[float]  # metres, None when no sample reports it
    signal_strength: int          # 0-5, from average accuracy


def gps_signal_strength(accuracy: Optional[float]) -> int:
    """
    Signal strength bars (0-5) for a horizontal accuracy in metres.

    Matches the bars the mobile app shows while recording.
    """
    if not accuracy:
        return 0
    if accuracy <= 5:
        return 5
    if accuracy <= 10:
        return 4
    if accuracy <= 20:
        return 3
    if accuracy <= 50:
        return 2
    if accuracy <= 100:
        return 1
    return 0


def _coords(path: Sequence[GeoSample]) -> np.ndarray:
    return np.array([(s.latitude, s.longitude) for s in path], dtype=float)


def hop_distances(path: Sequence[GeoSample]) -> np.ndarray:
    """
    Haversine distance of every hop.

    Returns:
        Array of len(path) - 1 distances in metres (empty for < 2 samples)
    """
    if len(path) < 2:
        return np.zeros(0)

    rad = np.radians(_coords(path))
    lat1, lon1 = rad[:-1, 0], rad[:-1, 1]
    lat2, lon2 = rad[1:, 0], rad[1:, 1]

    a = (np.sin((lat2 - lat1) / 2) ** 2 +
         np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2)
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def path_distance(path: Sequence[GeoSample]) -> float:
    """Total distance along the path in metres."""
    return float(np.sum(hop_distances(path)))


def average_accuracy(path: Sequence[GeoSample]) -> Optional[float]:
    """Mean reported accuracy in metres, None if no sample has one."""
    values = [s.accuracy for s in path if s.accuracy is not None]
    if not values:
        return None
    return float(np.mean(values))


def summarize_path(path: Sequence[GeoSample]) -> PathSummary:
    """Distance, elapsed time, peak hop speed and accuracy for a path."""
    distances = hop_distances(path)
    if len(path) >= 2:
        times = np.array([s.timestamp for s in path], dtype=float) / 1000
        durations = np.diff(times)
        moving = durations > 0
        speeds = distances[moving] / durations[moving]
        max_hop_speed = float(speeds.max()) if speeds.size else 0.0
        elapsed = float(times[-1] - times[0])
    else:
        max_hop_speed = 0.0
        elapsed = 0.0

    accuracy = average_accuracy(path)
    return PathSummary(
        sample_count=len(path),
        distance=float(np.sum(distances)),
        elapsed=elapsed,
        max_hop_speed=max_hop_speed,
        average_accuracy=accuracy,
        signal_strength=gps_signal_strength(accuracy),
    )
