"""Geographic utilities and constants."""

import math
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_MILES = 3959.0


@dataclass
class Point:
    """Geographic point with optional elevation."""

    lat: float
    lon: float
    elevation: float | None = None

    def distance_to(self, other: "Point") -> float:
        """Calculate distance in km to another point using Haversine formula."""
        return haversine(self.lat, self.lon, other.lat, other.lon)

    def miles_to(self, other: "Point") -> float:
        """Calculate distance in statute miles to another point."""
        return haversine(
            self.lat, self.lon, other.lat, other.lon, radius=EARTH_RADIUS_MILES
        )


def haversine(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    radius: float = EARTH_RADIUS_KM,
) -> float:
    """Calculate the great circle distance between two points.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)
        radius: Earth radius in the desired output unit (default km)

    Returns:
        Distance in the unit of ``radius``
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))

    return radius * c


def is_coordinate(value) -> bool:
    """True for finite int/float values (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
