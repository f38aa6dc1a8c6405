"""
Great-circle distance and delivery time estimates.

Coordinates follow GeoJSON ordering, ``[longitude, latitude]``. All distances
are kilometres rounded to two decimals. These are straight-line figures; the
road estimate applies a fixed detour factor.
"""

import math
from typing import Any, Dict, Optional, Sequence

from errors import ValidationError

EARTH_RADIUS_KM = 6371
ROAD_DISTANCE_FACTOR = 1.3
MINUTES_PER_KM = 3


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 2)


def distance_from_coordinates(coordinates1: Sequence[float], coordinates2: Sequence[float]) -> float:
    if not coordinates1 or not coordinates2:
        raise ValidationError("Coordinates are required")
    lon1, lat1 = coordinates1
    lon2, lat2 = coordinates2
    return haversine_km(lat1, lon1, lat2, lon2)


def estimated_road_distance(coordinates1: Sequence[float], coordinates2: Sequence[float]) -> float:
    straight = distance_from_coordinates(coordinates1, coordinates2)
    return round(straight * ROAD_DISTANCE_FACTOR, 2)


def estimated_time_minutes(distance_km: float) -> int:
    return math.ceil(distance_km * MINUTES_PER_KM)


def distance_category(distance_km: float) -> str:
    if distance_km <= 2:
        return "close"
    if distance_km <= 5:
        return "medium"
    if distance_km <= 10:
        return "far"
    return "very_far"


def _coordinates(location: Optional[Dict[str, Any]]):
    coords = (location or {}).get("coordinates")
    if not coords:
        raise ValidationError("Location is missing")
    return coords


def delivery_distance(courier_location: Dict[str, Any], consumer_location: Dict[str, Any]) -> Dict[str, Any]:
    """Distance, ETA and category between a courier and a delivery point."""
    origin = _coordinates(courier_location)
    target = _coordinates(consumer_location)
    road = estimated_road_distance(origin, target)
    return {
        "straight_distance_km": distance_from_coordinates(origin, target),
        "estimated_road_distance_km": road,
        "estimated_time_minutes": estimated_time_minutes(road),
        "distance_category": distance_category(road),
    }


def restaurant_to_consumer_distance(restaurant_location: Dict[str, Any], consumer_location: Dict[str, Any]) -> Dict[str, Any]:
    road = estimated_road_distance(_coordinates(restaurant_location), _coordinates(consumer_location))
    return {"distance_km": road, "estimated_delivery_time_minutes": estimated_time_minutes(road)}
