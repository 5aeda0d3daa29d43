"""
Distance, ETA and coordinate validation.
"""

import math

import pytest

from icudispatch.core.errors import InvalidCoordinates
from icudispatch.core.geo import (
    EARTH_RADIUS_KM,
    estimate_eta_minutes,
    haversine_km,
    rank_by_distance,
    validate_coordinates
)


def test_haversine_known_distance():
    """Cairo to Alexandria is roughly 180 km."""
    distance = haversine_km((31.2357, 30.0444), (29.9187, 31.2001))
    assert 175 < distance < 185


def test_haversine_zero_and_symmetry():
    a = (31.2, 30.0)
    b = (-0.1276, 51.5072)
    assert haversine_km(a, a) == 0
    assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))


def test_haversine_uses_earth_radius():
    # A quarter of a meridian
    assert haversine_km((0, 0), (0, 90)) == pytest.approx(math.pi * EARTH_RADIUS_KM / 2)


@pytest.mark.parametrize("value", [
    None,
    "31.2,30.0",
    [31.2],
    [31.2, 30.0, 5],
    [True, 30.0],
    ["31.2", "30.0"],
    [float("nan"), 30.0],
    [float("inf"), 30.0],
    [181, 30.0],
    [31.2, -91],
])
def test_validate_coordinates_rejects(value):
    with pytest.raises(InvalidCoordinates):
        validate_coordinates(value)


def test_validate_coordinates_returns_floats():
    assert validate_coordinates([31, 30]) == (31.0, 30.0)
    assert validate_coordinates((-180, 90)) == (-180.0, 90.0)


def test_eta_rounds_up_with_minimum():
    assert estimate_eta_minutes(0) == 1
    assert estimate_eta_minutes(10, speed_kmh=40) == 15
    assert estimate_eta_minutes(10.1, speed_kmh=40) == 16
    with pytest.raises(ValueError):
        estimate_eta_minutes(5, speed_kmh=0)


def test_rank_by_distance_orders_and_keeps_unlocated():
    items = [
        {"name": "far", "at": (29.9187, 31.2001)},
        {"name": "nowhere", "at": None},
        {"name": "near", "at": (31.24, 30.05)},
        {"name": "also-nowhere", "at": None},
    ]
    ranked = rank_by_distance(items, (31.2357, 30.0444), lambda i: i["at"])

    assert [item["name"] for item, _ in ranked] == ["near", "far", "nowhere", "also-nowhere"]
    assert ranked[0][1] < ranked[1][1]
    assert ranked[2][1] is None and ranked[3][1] is None


def test_rank_without_origin_keeps_order():
    items = [3, 1, 2]
    ranked = rank_by_distance(items, None, lambda i: (i, i))
    assert ranked == [(3, None), (1, None), (2, None)]
