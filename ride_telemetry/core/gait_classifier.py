"""
Speed to gait classification with hysteresis.

Base bands (m/s, lower bound inclusive, upper exclusive):

    halt    [0.00, 0.30)
    walk    [0.30, 2.00)
    trot    [2.00, 4.50)
    canter  [4.50, 7.50)
    gallop  [7.50, inf)

Leaving the current band needs an extra margin past its edge, so a horse
hovering on a boundary does not flap between two gaits.
"""

from typing import Sequence, Tuple

from ride_telemetry.config import GAIT_BANDS, HYSTERESIS_MPS
from ride_telemetry.data.models import GaitLabel

# Absorbs float error in band edge +/- margin sums (e.g. 0.3 - 0.2)
_EPSILON = 1e-9


class GaitClassifier:
    """Single-state machine mapping instantaneous speed to a gait."""

    def __init__(self,
                 hysteresis_mps: float = HYSTERESIS_MPS,
                 bands: Sequence[Tuple[str, float]] = GAIT_BANDS):
        if hysteresis_mps < 0:
            raise ValueError("hysteresis_mps must be >= 0")
        self.hysteresis_mps = hysteresis_mps
        self._gaits = [GaitLabel(name) for name, _ in bands]
        self._lowers = [float(lower) for _, lower in bands]
        if self._lowers != sorted(self._lowers):
            raise ValueError("gait bands must be ordered slowest first")
        self.current = GaitLabel.HALT

    def reset(self):
        """Back to halt, as at session start."""
        self.current = GaitLabel.HALT

    def bounds(self, gait: GaitLabel) -> Tuple[float, float]:
        """Lower (inclusive) and upper (exclusive) speed of a gait band."""
        i = self._gaits.index(gait)
        upper = self._lowers[i + 1] if i + 1 < len(self._lowers) else float('inf')
        return self._lowers[i], upper

    def base_gait(self, speed: float) -> GaitLabel:
        """Stateless band lookup."""
        gait = self._gaits[0]
        for candidate, lower in zip(self._gaits, self._lowers):
            if speed >= lower:
                gait = candidate
        return gait

    def classify(self, speed: float) -> GaitLabel:
        """
        Classify the newest speed, updating the held gait.

        Args:
            speed: Instantaneous speed in m/s

        Returns:
            Gait after applying hysteresis
        """
        candidate = self.base_gait(speed)
        if candidate == self.current:
            return self.current

        lower, upper = self.bounds(self.current)
        faster = self._gaits.index(candidate) > self._gaits.index(self.current)

        if faster:
            if speed >= upper + self.hysteresis_mps - _EPSILON:
                self.current = candidate
        elif speed <= lower - self.hysteresis_mps + _EPSILON:
            self.current = candidate

        return self.current
