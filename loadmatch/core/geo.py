"""
Great-circle distance helpers.
"""

import math
from typing import Any, Union

EARTH_RADIUS_KM = 6371.0

Point = Union[tuple[float, float], Any]


def _coords(point: Point) -> tuple[float, float]:
    """Accept (lat, lon) tuples or anything with latitude/longitude attributes."""
    if isinstance(point, (tuple, list)):
        lat, lon = point
        return float(lat), float(lon)
    return float(point.latitude), float(point.longitude)


def distance_km(a: Point, b: Point) -> float:
    """
    Haversine distance between two points in kilometres.

    Args:
        a: (latitude, longitude) in decimal degrees, or a Location
        b: (latitude, longitude) in decimal degrees, or a Location

    Returns:
        Distance in km along the Earth's surface
    """
    lat1, lon1 = _coords(a)
    lat2, lon2 = _coords(b)

    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    # Rounding can push h just past 1 for antipodal points
    h = min(1.0, h)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c
