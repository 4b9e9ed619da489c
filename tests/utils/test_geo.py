"""Tests for geographic utilities."""

import math

import pytest
from wxdash.utils.geo import Point, haversine, is_coordinate


class TestPoint:
    """Tests for Point class."""

    def test_create_point(self):
        """Should create a point with lat/lon."""
        point = Point(lat=45.52, lon=-122.68)
        assert point.lat == 45.52
        assert point.lon == -122.68
        assert point.elevation is None

    def test_distance_to(self):
        """Should calculate distance in km between two points."""
        portland = Point(lat=45.52, lon=-122.68)
        seattle = Point(lat=47.61, lon=-122.33)
        # Portland to Seattle is approximately 233 km
        assert 225 < portland.distance_to(seattle) < 240

    def test_miles_to(self):
        """Should calculate distance in statute miles."""
        portland = Point(lat=45.52, lon=-122.68)
        seattle = Point(lat=47.61, lon=-122.33)
        assert 140 < portland.miles_to(seattle) < 150


class TestHaversine:
    """Tests for haversine distance calculation."""

    def test_same_point(self):
        """Should return 0 for same point."""
        assert haversine(45.52, -122.68, 45.52, -122.68) == 0.0

    def test_known_distance(self):
        """Should calculate known distance correctly."""
        # New York to Los Angeles: approximately 3940 km
        distance = haversine(40.7128, -74.0060, 34.0522, -118.2437)
        assert 3900 < distance < 4000

    def test_short_distance(self):
        """Should handle short distances accurately."""
        # 1 degree latitude is approximately 111 km
        distance = haversine(39.0, -105.0, 40.0, -105.0)
        assert 110 < distance < 112


class TestIsCoordinate:
    """Tests for is_coordinate."""

    @pytest.mark.parametrize("value", [0, 45.52, -122.68, -0.0])
    def test_finite_numbers(self, value):
        assert is_coordinate(value) is True

    @pytest.mark.parametrize("value", [None, "45.52", True, math.nan, math.inf])
    def test_rejected(self, value):
        assert is_coordinate(value) is False
