"""
Spherical-earth helpers for ride paths.

Distances are great-circle metres on a sphere of EARTH_RADIUS_M. At riding
speeds and hop lengths the spherical error is far below GPS noise.
"""

import math
from typing import Tuple

from ride_telemetry.config import EARTH_RADIUS_M


def valid_coordinate(lat: float, lon: float) -> bool:
    """True when lat/lon are finite and inside the WGS84 ranges."""
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points.

    Args:
        lat1, lon1: From point (decimal degrees)
        lat2, lon2: To point (decimal degrees)

    Returns:
        Distance in metres
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(d_lon / 2) ** 2)
    # Rounding can push h a hair past 1 for antipodal points
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def hop_distance(a, b) -> float:
    """Metres between two samples carrying latitude/longitude attributes."""
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2 in degrees (0-360, 0 = north)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lon = math.radians(lon2 - lon1)

    x = math.sin(d_lon) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lon)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def point_along_bearing(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> Tuple[float, float]:
    """Destination reached from (lat, lon) after distance_m on a fixed bearing."""
    angular = distance_m / EARTH_RADIUS_M
    lat1 = math.radians(lat)
    theta = math.radians(bearing_deg)

    lat2 = math.asin(math.sin(lat1) * math.cos(angular) +
                     math.cos(lat1) * math.sin(angular) * math.cos(theta))
    lon2 = math.radians(lon) + math.atan2(
        math.sin(theta) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )

    # Normalise longitude back into [-180, 180)
    lon_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return math.degrees(lat2), lon_deg
