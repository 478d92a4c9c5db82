"""Great-circle distance, bearing and destination on a spherical Earth.

Points are ``(lon, lat)`` in degrees, matching GeoJSON positions. The sphere
uses the mean Earth radius, matching the overlay grids drawn by the map
client.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

MEAN_EARTH_RADIUS_M = 6371008.8


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Haversine great-circle distance between two points, in meters."""
    lat1 = math.radians(a[1])
    lat2 = math.radians(b[1])
    dlat = lat2 - lat1
    dlon = math.radians(b[0] - a[0])
    h = (
        math.sin(dlat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    )
    return 2.0 * MEAN_EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def bearing(a: Sequence[float], b: Sequence[float]) -> float:
    """Initial great-circle bearing from ``a`` to ``b`` (degrees, -180..180)."""
    lat1 = math.radians(a[1])
    lat2 = math.radians(b[1])
    dlon = math.radians(b[0] - a[0])
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(
        lat2
    ) * math.cos(dlon)
    return math.degrees(math.atan2(y, x))


def destination(
    origin: Sequence[float], distance_m: float, bearing_deg: float
) -> tuple[float, float]:
    """Point reached from ``origin`` after ``distance_m`` along a bearing.

    Returns:
        Destination as ``(lon, lat)`` degrees.
    """
    lon1 = math.radians(origin[0])
    lat1 = math.radians(origin[1])
    theta = math.radians(bearing_deg)
    delta = distance_m / MEAN_EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta)
        + math.cos(lat1) * math.sin(delta) * math.cos(theta)
    )
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    return math.degrees(lon2), math.degrees(lat2)
