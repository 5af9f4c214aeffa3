"""
Exception types raised by the ride telemetry engine.
"""


class RideTelemetryError(Exception):
    """Base class for all engine errors."""


class PermissionDenied(RideTelemetryError):
    """Locator access was refused. The session is not started."""


class UnavailableLocator(RideTelemetryError):
    """The locator produced no fix within the warm-up period."""


class InvalidSample(RideTelemetryError, ValueError):
    """A raw fix was malformed and could not be turned into a sample."""


class StorageUnavailable(RideTelemetryError):
    """The backing blob store rejected a read or a write."""


class CorruptStore(RideTelemetryError):
    """The stored session document could not be parsed."""


class NotFound(RideTelemetryError, LookupError):
    """No session with the requested id exists."""


class InvariantViolation(RideTelemetryError):
    """Internal ordering guarantee broken (e.g. non-monotonic timestamp)."""


class RecordingInProgress(RideTelemetryError):
    """A session is already recording on this engine."""


class SchemaError(RideTelemetryError, ValueError):
    """A persisted record does not match the expected schema."""
