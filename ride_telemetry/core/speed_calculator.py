"""
Incremental distance and speed calculation over admitted samples.
"""

from dataclasses import dataclass
from typing import Optional

from ride_telemetry.data.models import GeoSample
from ride_telemetry.utils.geometry import hop_distance


@dataclass(frozen=True)
class HopMetrics:
    """
    Movement from the previous sample to the current one.

    Attributes:
        distance: Haversine distance in metres (0 for the first sample).
        duration: Seconds since the previous sample (0 for the first sample).
        speed: Instantaneous speed in m/s at the current sample.
    """
    distance: float
    duration: float
    speed: float


class SpeedCalculator:
    """Keeps running distance and max speed as samples arrive."""

    def __init__(self):
        self.distance = 0.0
        self.max_speed = 0.0
        self.last_speed = 0.0
        self._previous: Optional[GeoSample] = None

    def update(self, sample: GeoSample) -> HopMetrics:
        """
        Account for a newly admitted sample.

        Reported speed is preferred when present and non-negative; otherwise
        speed is derived from the hop, or carried forward when the hop took
        no time.
        """
        previous = self._previous
        if previous is None:
            hop_m = 0.0
            hop_duration = 0.0
        else:
            hop_m = hop_distance(previous, sample)
            hop_duration = (sample.timestamp - previous.timestamp) / 1000

        if sample.speed is not None and sample.speed >= 0:
            speed = sample.speed
        elif hop_duration > 0:
            speed = hop_m / hop_duration
        else:
            speed = self.last_speed

        self.distance += hop_m
        self.max_speed = max(self.max_speed, speed)
        self.last_speed = speed
        self._previous = sample

        return HopMetrics(distance=hop_m, duration=hop_duration, speed=speed)

    def average_speed(self, total_duration_s: float) -> float:
        """Running distance over the session duration, 0 if no time passed."""
        if total_duration_s > 0:
            return self.distance / total_duration_s
        return 0.0
