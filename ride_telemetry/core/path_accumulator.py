"""
Path accumulator - the growing, insertion-ordered path of one session.
"""

import logging
from typing import List, Optional, Tuple

from ride_telemetry.data.models import GeoSample
from ride_telemetry.errors import InvariantViolation

logger = logging.getLogger('rideTelemetry.path')


class PathAccumulator:
    """
    Append-only store of admitted samples.

    The only writer of the in-memory path. Everyone else reads
    immutable snapshots.
    """

    def __init__(self, strict: bool = False):
        """
        Args:
            strict: Raise InvariantViolation on a non-increasing timestamp
                instead of logging and dropping the sample
        """
        self._samples: List[GeoSample] = []
        self.strict = strict
        self.dropped = 0

    def append(self, sample: GeoSample) -> Optional[int]:
        """
        Append a sample.

        Returns:
            Index of the new sample, or None if it was dropped
        """
        last = self.last_sample()
        if last is not None and sample.timestamp <= last.timestamp:
            message = (
                f"non-monotonic timestamp {sample.timestamp} after {last.timestamp}"
            )
            if self.strict:
                raise InvariantViolation(message)
            logger.error("Dropping sample: %s", message)
            self.dropped += 1
            return None

        self._samples.append(sample)
        return len(self._samples) - 1

    def size(self) -> int:
        return len(self._samples)

    def last_sample(self) -> Optional[GeoSample]:
        return self._samples[-1] if self._samples else None

    def snapshot(self) -> Tuple[GeoSample, ...]:
        return tuple(self._samples)
