"""
Configuration for the ride telemetry engine.

Contains settings for fix admission, pacing, gait bands, segment
coalescing and session storage.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Optional

logger = logging.getLogger('rideTelemetry.config')


# =============================================================================
# Sample Admission Settings
# =============================================================================

MAX_ACCURACY_M = 50.0           # Reject fixes with horizontal accuracy worse than this (metres)
                                 # The mobile app used the same 50m cut-off

MIN_SAMPLE_INTERVAL_MS = 500    # Minimum time between admitted samples (milliseconds)

TELEPORT_DISTANCE_M = 200.0     # Maximum jump from the last admitted sample (metres)
                                 # Anything further is treated as a GPS glitch

WARMUP_TIMEOUT_S = 15.0         # Time allowed for the first fix after start (seconds)


# =============================================================================
# Pacing Settings
# =============================================================================

SAMPLE_CADENCE_MS = 1000        # Sampling window length (milliseconds)
                                 # Fixes inside one window collapse to the latest

PACING_POLL_MS = 250            # Event-loop tick for releasing held fixes and checking the warm-up
                                 # Decisions use the engine clock, the tick only wakes the check


# =============================================================================
# Gait Classification Settings
# =============================================================================

# Lower bound of each gait band in m/s (inclusive). Upper bound is the
# lower bound of the next faster gait, gallop is open-ended.
GAIT_BANDS = (
    ("halt", 0.0),
    ("walk", 0.30),
    ("trot", 2.00),
    ("canter", 4.50),
    ("gallop", 7.50),
)

HYSTERESIS_MPS = 0.2            # Margin beyond a band edge before changing gait (m/s)
                                 # Suppresses flapping near boundaries

# Order used to break ties when two gaits share the longest duration
PREDOMINANT_TIE_ORDER = ("walk", "trot", "canter", "gallop", "halt")


# =============================================================================
# Segment Coalescing Settings
# =============================================================================

NOISE_MAX_DURATION_S = 3.0      # Segments shorter than this...
NOISE_MAX_DISTANCE_M = 5.0      # ...and covering less than this are treated as noise


# =============================================================================
# Storage Settings
# =============================================================================

SESSIONS_STORAGE_KEY = "training_sessions"

EARTH_RADIUS_M = 6371000


@dataclass
class EngineConfig:
    """
    Tunable parameters for one RideEngine.

    Defaults come from the module constants above. Overrides can be
    loaded from a SettingsManager under the ``ride.`` prefix, e.g.
    ``ride.warmup_timeout_s``.
    """
    max_accuracy_m: float = MAX_ACCURACY_M
    min_sample_interval_ms: int = MIN_SAMPLE_INTERVAL_MS
    teleport_distance_m: float = TELEPORT_DISTANCE_M
    warmup_timeout_s: float = WARMUP_TIMEOUT_S
    sample_cadence_ms: int = SAMPLE_CADENCE_MS
    poll_interval_ms: int = PACING_POLL_MS
    hysteresis_mps: float = HYSTERESIS_MPS
    noise_max_duration_s: float = NOISE_MAX_DURATION_S
    noise_max_distance_m: float = NOISE_MAX_DISTANCE_M
    storage_key: str = SESSIONS_STORAGE_KEY
    debug: bool = False  # Raise on invariant violations instead of dropping

    @classmethod
    def from_settings(cls, settings: Optional[Any] = None) -> 'EngineConfig':
        """
        Build a config from the ``ride`` section of a SettingsManager.

        Unknown keys and values that cannot be converted to the field type
        are logged and ignored.

        Args:
            settings: SettingsManager (or anything with ``section(name)``),
                None for defaults

        Returns:
            EngineConfig with any ``ride.*`` overrides applied
        """
        config = cls()
        if settings is None:
            return config

        known = {f.name for f in fields(cls)}
        for name, value in settings.section('ride').items():
            if name not in known:
                logger.warning("Ignoring unknown setting ride.%s", name)
                continue
            if value is None:
                continue
            default = getattr(config, name)
            try:
                value = _coerce(value, type(default))
            except (TypeError, ValueError, OverflowError):
                logger.warning("Ignoring ride.%s=%r, expected %s",
                               name, value, type(default).__name__)
                continue
            setattr(config, name, value)
        return config


def _coerce(value: Any, kind: type) -> Any:
    """Convert a JSON value to the type of a config default."""
    if kind is bool:
        if not isinstance(value, bool):
            raise TypeError(value)
        return value
    if kind in (int, float):
        # bool is an int subclass; true is not a number of milliseconds
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(value)
        return kind(value)
    if not isinstance(value, kind):
        raise TypeError(value)
    return value
