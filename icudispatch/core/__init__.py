"""
Core package for the ICU dispatch backend.
"""

from .config import Config
from .event_bus import EventBus, get_event_bus, create_event_id
from .geo import haversine_km, rank_by_distance, validate_coordinates, estimate_eta_minutes

__all__ = [
    "Config",
    "EventBus",
    "get_event_bus",
    "create_event_id",
    "haversine_km",
    "rank_by_distance",
    "validate_coordinates",
    "estimate_eta_minutes"
]
