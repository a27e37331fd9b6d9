from __future__ import annotations

import logging
import math
from collections import namedtuple

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

Coordinate = namedtuple("Coordinate", ["latitude", "longitude"])


def _coord(value) -> Coordinate:
    if isinstance(value, Coordinate):
        return value
    if isinstance(value, dict):
        return Coordinate(float(value["latitude"]), float(value["longitude"]))
    lat, lng = value
    return Coordinate(float(lat), float(lng))


def haversine_km(a, b) -> float:
    """Great-circle distance in kilometres between two coordinates.

    Accepts ``Coordinate`` tuples, plain ``(lat, lng)`` pairs or dicts with
    ``latitude``/``longitude`` keys.
    """
    p1 = _coord(a)
    p2 = _coord(b)
    lat1 = math.radians(p1.latitude)
    lat2 = math.radians(p2.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(p2.longitude - p1.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))
    return EARTH_RADIUS_KM * c


def distance_km(a, b, maps_provider=None) -> float:
    """Provider distance when available, Haversine otherwise."""
    p1 = _coord(a)
    p2 = _coord(b)
    if maps_provider is not None:
        try:
            result = maps_provider.calculate_distance(p1, p2) or {}
            value = float(result["distance"])
            if value >= 0 and math.isfinite(value):
                return value
            raise ValueError(f"invalid distance {value}")
        except Exception as e:
            logger.warning(
                "distance_fallback_haversine provider=%s err=%s",
                getattr(maps_provider, "name", "unknown"),
                e,
            )
    return haversine_km(p1, p2)
