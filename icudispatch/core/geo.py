"""
Great-circle distance helpers used to rank beds and pickup requests.

Coordinates follow the GeoJSON order used everywhere in the system: [lng, lat].
"""

import math
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from icudispatch.core.errors import InvalidCoordinates

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")
LngLat = Tuple[float, float]


def validate_coordinates(coordinates: Optional[Sequence]) -> LngLat:
    """
    Validate a [lng, lat] pair and return it as floats.

    Raises:
        InvalidCoordinates: if the value is not a finite, in-range pair
    """
    if coordinates is None or isinstance(coordinates, (str, bytes)):
        raise InvalidCoordinates(coordinates=coordinates)
    try:
        values = list(coordinates)
    except TypeError:
        raise InvalidCoordinates(coordinates=coordinates)
    if len(values) != 2:
        raise InvalidCoordinates(coordinates=values)
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
        raise InvalidCoordinates(coordinates=values)

    lng, lat = float(values[0]), float(values[1])
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise InvalidCoordinates(coordinates=values)
    if not (-180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0):
        raise InvalidCoordinates("Longitude or latitude out of range", coordinates=values)
    return lng, lat


def haversine_km(origin: LngLat, target: LngLat) -> float:
    """Distance in kilometres between two [lng, lat] points."""
    lng1, lat1 = origin
    lng2, lat2 = target
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_eta_minutes(distance_km: float, speed_kmh: float = 40.0) -> int:
    """Rough travel time in whole minutes, never below one."""
    if speed_kmh <= 0:
        raise ValueError("speed_kmh must be positive")
    return max(1, int(math.ceil(distance_km / speed_kmh * 60)))


def rank_by_distance(
    items: Iterable[T],
    origin: Optional[LngLat],
    coords_of: Callable[[T], Optional[LngLat]]
) -> List[Tuple[T, Optional[float]]]:
    """
    Order items by distance from origin, nearest first.

    Items without coordinates (or every item, when origin is None) keep their
    relative order and go last with a distance of None.
    """
    located: List[Tuple[T, float]] = []
    unlocated: List[Tuple[T, Optional[float]]] = []

    for item in items:
        coords = coords_of(item) if origin is not None else None
        if coords is None:
            unlocated.append((item, None))
        else:
            located.append((item, haversine_km(origin, coords)))

    located.sort(key=lambda pair: pair[1])
    return [(item, round(dist, 3)) for item, dist in located] + unlocated
