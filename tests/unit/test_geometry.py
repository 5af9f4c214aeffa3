"""
Unit tests for GPS geometry calculations.
Tests pure functions from ride_telemetry/utils/geometry.py with no mocking required.
"""

import math

import pytest

from ride_telemetry.config import EARTH_RADIUS_M
from ride_telemetry.data.models import GeoSample
from ride_telemetry.utils.geometry import (
    haversine_distance,
    bearing,
    hop_distance,
    point_along_bearing,
    valid_coordinate,
)


class TestHaversineDistance:
    """Tests for great circle distance calculation."""

    @pytest.mark.unit
    def test_same_point_zero_distance(self):
        """Test that distance from a point to itself is zero."""
        lat, lon = 51.5074, -0.1278  # London
        result = haversine_distance(lat, lon, lat, lon)
        assert result == 0

    @pytest.mark.unit
    def test_london_to_paris(self):
        """Test distance from London to Paris (~344 km)."""
        result = haversine_distance(51.5074, -0.1278, 48.8566, 2.3522)
        assert 340_000 < result < 350_000

    @pytest.mark.unit
    def test_short_distance(self):
        """Test a short distance (~100 metres)."""
        lat1, lon1 = 51.5074, -0.1278
        lat2, lon2 = 51.5083, -0.1278  # ~100m north

        result = haversine_distance(lat1, lon1, lat2, lon2)
        assert 95 < result < 105

    @pytest.mark.unit
    def test_symmetry(self):
        """Test that distance A->B equals distance B->A."""
        dist_ab = haversine_distance(51.5074, -0.1278, 48.8566, 2.3522)
        dist_ba = haversine_distance(48.8566, 2.3522, 51.5074, -0.1278)
        assert pytest.approx(dist_ab, rel=1e-9) == dist_ba

    @pytest.mark.unit
    def test_longitude_180(self):
        """Test distance across the international date line."""
        result = haversine_distance(0, 179, 0, -179)
        # Two degrees of longitude at the equator, ~222 km
        assert 220_000 < result < 225_000

    @pytest.mark.unit
    def test_one_degree_latitude(self):
        """Test one degree of latitude with a 6371 km earth radius."""
        result = haversine_distance(0, 0, 1, 0)
        assert result == pytest.approx(111_194.9, rel=1e-4)


class TestValidCoordinate:
    """Tests for coordinate range checks."""

    @pytest.mark.unit
    @pytest.mark.parametrize("lat, lon, valid", [
        (51.5073, -0.1657, True),
        (90.0, 180.0, True),
        (-90.0, -180.0, True),
        (90.1, 0.0, False),
        (0.0, -180.5, False),
        (float("nan"), 0.0, False),
        (0.0, float("inf"), False),
    ])
    def test_ranges(self, lat, lon, valid):
        assert valid_coordinate(lat, lon) is valid


class TestHopDistance:
    """Tests for distance between two samples."""

    @pytest.mark.unit
    def test_matches_haversine(self):
        """Test that sample distance uses the sample coordinates."""
        a = GeoSample(51.5073, -0.1657, 0)
        b = GeoSample(51.5083, -0.1657, 1000)
        assert hop_distance(a, b) == haversine_distance(51.5073, -0.1657, 51.5083, -0.1657)

    @pytest.mark.unit
    def test_antipodal(self):
        """Test antipodal points give half the circumference."""
        assert haversine_distance(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_M)


class TestBearing:
    """Tests for the initial bearing between two points."""

    @pytest.mark.unit
    @pytest.mark.parametrize("heading", [45.0, 90.0, 180.0, 270.0])
    def test_matches_projection(self, heading):
        """Test the bearing to a projected point is the heading used."""
        lat, lon = point_along_bearing(51.5073, -0.1657, heading, 250.0)
        assert bearing(51.5073, -0.1657, lat, lon) == pytest.approx(heading, abs=1e-6)

    @pytest.mark.unit
    def test_range(self):
        """Test west of north comes back in [0, 360)."""
        result = bearing(51.5073, -0.1657, 51.5083, -0.1667)
        assert 270.0 < result < 360.0


class TestPointAlongBearing:
    """Tests for projecting a point along a bearing."""

    @pytest.mark.unit
    def test_point_north_1km(self):
        """Test moving 1 km north increases latitude only."""
        lat, lon = point_along_bearing(51.5074, -0.1278, 0, 1000)
        assert lat > 51.5074
        assert lon == pytest.approx(-0.1278, abs=1e-9)
        assert haversine_distance(51.5074, -0.1278, lat, lon) == pytest.approx(1000, rel=1e-6)

    @pytest.mark.unit
    def test_round_trip_short_hop(self):
        """Test a 2.4 m hop measures back as 2.4 m."""
        lat, lon = point_along_bearing(51.5073, -0.1657, 90, 2.4)
        assert haversine_distance(51.5073, -0.1657, lat, lon) == pytest.approx(2.4, rel=1e-6)

    @pytest.mark.unit
    def test_zero_distance(self):
        """Test zero distance returns the start point."""
        lat, lon = point_along_bearing(51.5074, -0.1278, 45, 0)
        assert lat == pytest.approx(51.5074)
        assert lon == pytest.approx(-0.1278)

    @pytest.mark.unit
    def test_longitude_wraps(self):
        """Test crossing the date line stays inside [-180, 180)."""
        lat, lon = point_along_bearing(0.0, 179.9999, 90, 100)
        assert -180.0 <= lon < -179.99
