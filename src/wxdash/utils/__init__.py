"""Shared utilities for wxdash."""

from .geo import EARTH_RADIUS_KM, EARTH_RADIUS_MILES, Point, haversine, is_coordinate

__all__ = [
    "Point",
    "haversine",
    "is_coordinate",
    "EARTH_RADIUS_KM",
    "EARTH_RADIUS_MILES",
]
