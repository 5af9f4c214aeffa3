"""
Core data structures for the ride telemetry engine.

Unit Conventions
----------------
All measurements in this module use SI units unless otherwise noted:

- Time: integer milliseconds for timestamps, seconds (float) for durations
- Distance: metres
- Speed: metres per second (m/s)
- Coordinates: decimal degrees (WGS84)

Persisted Layout
----------------
``to_dict()`` produces the camelCase JSON layout shared with the mobile
app's ``training_sessions`` document. ``from_dict()`` is strict: missing
fields or wrong types raise SchemaError so the store can quarantine the
record instead of crashing on it.
"""

import math
import random
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ride_telemetry.errors import InvalidSample, SchemaError
from ride_telemetry.utils.geometry import valid_coordinate


class GaitLabel(Enum):
    """Equine gaits, slowest first."""
    HALT = "halt"
    WALK = "walk"
    TROT = "trot"
    CANTER = "canter"
    GALLOP = "gallop"


# =============================================================================
# Schema helpers
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    """True for a real number that fits a float and is not inf or nan."""
    if not _is_number(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers are unbounded; 10**400 has no float
        return False


def _number(data: Mapping[str, Any], key: str, optional: bool = False) -> Optional[float]:
    if key not in data or data[key] is None:
        if optional:
            return None
        raise SchemaError(f"missing field '{key}'")
    value = data[key]
    if not _is_finite(value):
        raise SchemaError(f"field '{key}' must be a finite number, got {value!r}")
    return float(value)


def _integer(data: Mapping[str, Any], key: str) -> int:
    value = _number(data, key)
    if not float(value).is_integer():
        raise SchemaError(f"field '{key}' must be an integer, got {data[key]!r}")
    return int(value)


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise SchemaError(f"field '{key}' must be a string, got {value!r}")
    return value


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise SchemaError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _list(data: Mapping[str, Any], key: str) -> list:
    value = data.get(key)
    if not isinstance(value, list):
        raise SchemaError(f"field '{key}' must be an array")
    return value


def _gait(value: Any, key: str) -> GaitLabel:
    try:
        return GaitLabel(value)
    except ValueError:
        raise SchemaError(f"field '{key}' has unknown gait {value!r}") from None


def _gait_map(data: Mapping[str, Any], key: str) -> Dict[GaitLabel, float]:
    raw = _mapping(data.get(key), key)
    result = {}
    for gait in GaitLabel:
        result[gait] = _number(raw, gait.value)
    return result


# =============================================================================
# Samples
# =============================================================================

@dataclass(frozen=True)
class RawFix:
    """
    One raw observation from the platform locator, before admission.

    Attributes:
        lat: Latitude in decimal degrees.
        lon: Longitude in decimal degrees.
        t: Timestamp in milliseconds.
        accuracy: Horizontal accuracy in metres, if reported.
        speed: Ground speed in m/s, if reported. Platforms report -1
            when they have no speed; that is kept and ignored later.
    """
    lat: float
    lon: float
    t: int
    accuracy: Optional[float] = None
    speed: Optional[float] = None

    @classmethod
    def from_mapping(cls, fix: Any) -> 'RawFix':
        """
        Validate a locator payload.

        Accepts either the short keys (lat, lon, t) or the long ones
        (latitude, longitude, timestamp).

        Raises:
            InvalidSample: the payload is not a usable fix
        """
        if isinstance(fix, RawFix):
            return fix
        if not isinstance(fix, Mapping):
            raise InvalidSample(f"fix must be a mapping, got {type(fix).__name__}")

        lat = fix.get('lat', fix.get('latitude'))
        lon = fix.get('lon', fix.get('longitude'))
        t = fix.get('t', fix.get('timestamp'))
        accuracy = fix.get('accuracy')
        speed = fix.get('speed')

        for name, value in (('lat', lat), ('lon', lon), ('t', t)):
            if not _is_finite(value):
                raise InvalidSample(f"fix field '{name}' is not a finite number: {value!r}")
        if not valid_coordinate(lat, lon):
            raise InvalidSample(f"coordinate out of range: ({lat}, {lon})")
        if accuracy is not None:
            if not _is_finite(accuracy) or accuracy < 0:
                raise InvalidSample(f"invalid accuracy: {accuracy!r}")
        if speed is not None:
            if not _is_finite(speed):
                raise InvalidSample(f"invalid speed: {speed!r}")

        return cls(
            lat=float(lat),
            lon=float(lon),
            t=int(t),
            accuracy=None if accuracy is None else float(accuracy),
            speed=None if speed is None else float(speed),
        )


@dataclass(frozen=True)
class GeoSample:
    """
    One admitted GPS fix.

    Attributes:
        latitude: Latitude in decimal degrees (WGS84).
        longitude: Longitude in decimal degrees (WGS84).
        timestamp: Monotonic milliseconds since the agreed epoch.
        accuracy: Horizontal accuracy in metres, if known.
        speed: Reported ground speed in m/s, if known.
    """
    latitude: float
    longitude: float
    timestamp: int
    accuracy: Optional[float] = None
    speed: Optional[float] = None

    @classmethod
    def from_fix(cls, fix: RawFix) -> 'GeoSample':
        return cls(
            latitude=fix.lat,
            longitude=fix.lon,
            timestamp=fix.t,
            accuracy=fix.accuracy,
            speed=fix.speed,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'timestamp': self.timestamp,
        }
        if self.accuracy is not None:
            data['accuracy'] = self.accuracy
        if self.speed is not None:
            data['speed'] = self.speed
        return data

    @classmethod
    def from_dict(cls, data: Any) -> 'GeoSample':
        data = _mapping(data, "path sample")
        return cls(
            latitude=_number(data, 'latitude'),
            longitude=_number(data, 'longitude'),
            timestamp=_integer(data, 'timestamp'),
            accuracy=_number(data, 'accuracy', optional=True),
            speed=_number(data, 'speed', optional=True),
        )


# =============================================================================
# Gait analysis
# =============================================================================

@dataclass(frozen=True)
class GaitSegment:
    """
    Contiguous run of path samples sharing one gait.

    Attributes:
        gait: Gait for the whole run.
        start_time: Milliseconds when the run began (end of the previous
            run, or the session start for the first run).
        end_time: Milliseconds when the run ended.
        duration: Seconds between start_time and end_time.
        distance: Metres covered by the hops into the run's samples.
        average_speed: distance / duration, 0 when duration is 0.
        start_index: First path index in the run (inclusive).
        end_index: Last path index in the run (inclusive).
    """
    gait: GaitLabel
    start_time: int
    end_time: int
    duration: float
    distance: float
    average_speed: float
    start_index: int
    end_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gait': self.gait.value,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'duration': self.duration,
            'distance': self.distance,
            'averageSpeed': self.average_speed,
            'startIndex': self.start_index,
            'endIndex': self.end_index,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'GaitSegment':
        data = _mapping(data, "gait segment")
        segment = cls(
            gait=_gait(data.get('gait'), 'gait'),
            start_time=_integer(data, 'startTime'),
            end_time=_integer(data, 'endTime'),
            duration=_number(data, 'duration'),
            distance=_number(data, 'distance'),
            average_speed=_number(data, 'averageSpeed'),
            start_index=_integer(data, 'startIndex'),
            end_index=_integer(data, 'endIndex'),
        )
        if segment.end_index < segment.start_index:
            raise SchemaError("segment endIndex precedes startIndex")
        return segment


@dataclass(frozen=True)
class GaitAnalysis:
    """
    Gait report for a finished session.

    Attributes:
        total_duration: Seconds covered by all segments.
        gait_durations: Seconds spent in each gait (every gait present).
        gait_percentages: Share of total_duration per gait, 0-100.
        segments: Ordered, contiguous gait segments.
        transition_count: Number of gait changes (segments - 1).
        predominant_gait: Gait with the longest accumulated duration.
    """
    total_duration: float
    gait_durations: Dict[GaitLabel, float]
    gait_percentages: Dict[GaitLabel, float]
    segments: Tuple[GaitSegment, ...]
    transition_count: int
    predominant_gait: GaitLabel

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalDuration': self.total_duration,
            'gaitDurations': {g.value: self.gait_durations[g] for g in GaitLabel},
            'gaitPercentages': {g.value: self.gait_percentages[g] for g in GaitLabel},
            'segments': [s.to_dict() for s in self.segments],
            'transitionCount': self.transition_count,
            'predominantGait': self.predominant_gait.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'GaitAnalysis':
        data = _mapping(data, "gaitAnalysis")
        return cls(
            total_duration=_number(data, 'totalDuration'),
            gait_durations=_gait_map(data, 'gaitDurations'),
            gait_percentages=_gait_map(data, 'gaitPercentages'),
            segments=tuple(GaitSegment.from_dict(s) for s in _list(data, 'segments')),
            transition_count=_integer(data, 'transitionCount'),
            predominant_gait=_gait(data.get('predominantGait'), 'predominantGait'),
        )


# =============================================================================
# Sessions
# =============================================================================

def generate_session_id(start_time_ms: int, rng: Optional[random.Random] = None) -> str:
    """Session id in the app's format: session_<ms>_<9 base-36 chars>."""
    rng = rng or random
    alphabet = string.digits + string.ascii_lowercase
    suffix = ''.join(rng.choice(alphabet) for _ in range(9))
    return f"session_{start_time_ms}_{suffix}"


@dataclass(frozen=True)
class TrainingSession:
    """
    Durable record of one ride.

    Attributes:
        id: Opaque unique id.
        user_id, horse_id, horse_name: Opaque references supplied by the caller.
        training_type: Opaque training label.
        start_time: Milliseconds when recording began.
        end_time: Milliseconds when recording ended.
        duration: Seconds between start_time and end_time.
        distance: Metres along the admitted path.
        average_speed: distance / duration in m/s.
        max_speed: Highest instantaneous speed in m/s.
        path: Admitted samples in admission order.
        media: Opaque media objects attached by the caller.
        gait_analysis: Gait report, None when the session never aggregated.
    """
    id: str
    user_id: str
    horse_id: str
    horse_name: str
    training_type: str
    start_time: int
    end_time: int
    duration: float
    distance: float
    average_speed: float
    max_speed: float
    path: Tuple[GeoSample, ...] = ()
    media: Tuple[Dict[str, Any], ...] = ()
    gait_analysis: Optional[GaitAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'userId': self.user_id,
            'horseId': self.horse_id,
            'horseName': self.horse_name,
            'trainingType': self.training_type,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'duration': self.duration,
            'distance': self.distance,
            'averageSpeed': self.average_speed,
            'maxSpeed': self.max_speed,
            'path': [s.to_dict() for s in self.path],
            'media': [dict(m) for m in self.media],
        }
        if self.gait_analysis is not None:
            data['gaitAnalysis'] = self.gait_analysis.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> 'TrainingSession':
        data = _mapping(data, "session")

        media = data.get('media', [])
        if media is None:
            media = []
        if not isinstance(media, list) or not all(isinstance(m, Mapping) for m in media):
            raise SchemaError("field 'media' must be an array of objects")

        analysis = data.get('gaitAnalysis')

        return cls(
            id=_string(data, 'id'),
            user_id=_string(data, 'userId'),
            horse_id=_string(data, 'horseId'),
            horse_name=_string(data, 'horseName'),
            training_type=_string(data, 'trainingType'),
            start_time=_integer(data, 'startTime'),
            end_time=_integer(data, 'endTime'),
            duration=_number(data, 'duration'),
            distance=_number(data, 'distance'),
            average_speed=_number(data, 'averageSpeed'),
            max_speed=_number(data, 'maxSpeed'),
            path=tuple(GeoSample.from_dict(s) for s in _list(data, 'path')),
            media=tuple(dict(m) for m in media),
            gait_analysis=None if analysis is None else GaitAnalysis.from_dict(analysis),
        )


@dataclass
class SessionDraft:
    """
    Mutable header of a session while it is recording.

    Only the engine touches it; it becomes a TrainingSession on finalize.
    """
    id: str
    user_id: str
    horse_id: str
    horse_name: str
    training_type: str
    start_time: int
    media: List[Dict[str, Any]] = field(default_factory=list)
