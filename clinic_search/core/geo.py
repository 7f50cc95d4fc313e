"""Great-circle distance helpers used by geospatial search."""

from __future__ import annotations

import math
from typing import Optional

from clinic_search.models import Coordinate

EARTH_RADIUS_KM = 6371.0


def is_valid_coordinate(point: Optional[Coordinate]) -> bool:
    return point is not None and point.is_valid


def distance_km(a: Optional[Coordinate], b: Optional[Coordinate]) -> Optional[float]:
    """Haversine distance in kilometres, or ``None`` when either point is invalid."""
    if not is_valid_coordinate(a) or not is_valid_coordinate(b):
        return None

    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Rounding can push h just past 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def initial_bearing(a: Optional[Coordinate], b: Optional[Coordinate]) -> Optional[float]:
    """Initial compass bearing from ``a`` to ``b`` in degrees [0, 360)."""
    if not is_valid_coordinate(a) or not is_valid_coordinate(b):
        return None

    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlng = math.radians(b.lng - a.lng)

    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_distance(km: float) -> str:
    if km < 1:
        return f"{_round_half_up(km * 1000)}m"
    if km < 10:
        return f"{km:.1f}km"
    return f"{_round_half_up(km)}km"
