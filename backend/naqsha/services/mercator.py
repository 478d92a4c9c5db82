"""Metric translation of geographic coordinates through Web-Mercator.

Spherical Web-Mercator (EPSG:3857) is used as a locally flat, meter-based
space: each ``[lon, lat]`` position is projected, offset by ``(dx, dy)``
meters and unprojected again.

Two offsets are computed here. ``compass_offset`` turns a distance in feet
and a compass direction into a Mercator offset for a shift.
``restoring_offset`` aligns the south-west corner of the current extent
with a recorded baseline using an equirectangular approximation (a constant
111320 m per degree). The two are not unified, so a reset does
not exactly undo a sequence of shifts.

Example:
    >>> from naqsha.services import mercator
    >>> dx, dy = mercator.compass_offset(328.08, "East")
    >>> shifted = mercator.shift_collection(collection, dx, dy)
"""

from __future__ import annotations

import copy
import enum
import logging
import math
from typing import Any

from naqsha.db import models as db_models

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6378137.0
FEET_TO_METERS = 0.3048
METERS_PER_DEGREE = 111320.0
MAX_LATITUDE = 85.05112878


class CompassDirection(enum.StrEnum):
    NORTH = "North"
    SOUTH = "South"
    EAST = "East"
    WEST = "West"


def project(lon: float, lat: float) -> tuple[float, float]:
    """Project ``(lon, lat)`` degrees to Web-Mercator ``(x, y)`` meters.

    Latitudes beyond the Web-Mercator limit of ±85.05112878° are clamped to
    it, so polar positions project to a finite y.
    """
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    x = lon * math.pi * EARTH_RADIUS_M / 180.0
    y = math.log(math.tan((90.0 + lat) * math.pi / 360.0)) * EARTH_RADIUS_M
    return x, y


def unproject(x: float, y: float) -> tuple[float, float]:
    """Invert ``project``: Web-Mercator meters back to ``(lon, lat)``."""
    lon = x * 180.0 / (math.pi * EARTH_RADIUS_M)
    lat = (360.0 / math.pi) * math.atan(math.exp(y / EARTH_RADIUS_M)) - 90.0
    return lon, lat


def compass_offset(
    distance_feet: float, direction: str
) -> tuple[float, float]:
    """Convert a distance in feet and a compass direction to meters.

    East/West move along x, North/South along y. An unrecognised direction
    yields a zero offset rather than an error.

    Args:
        distance_feet: Distance to move, in feet.
        direction: One of "North", "South", "East" or "West".

    Returns:
        Signed ``(dx, dy)`` offset in meters.

    Raises:
        ValueError: If the distance is infinite or NaN.
    """
    meters = float(distance_feet) * FEET_TO_METERS
    if not math.isfinite(meters):
        raise ValueError(f"Shift distance must be finite, got {distance_feet!r}")
    try:
        compass = CompassDirection(direction)
    except ValueError:
        logger.warning(
            "Unrecognised shift direction; applying zero offset",
            extra={"extra": {"direction": direction}},
        )
        return 0.0, 0.0

    match compass:
        case CompassDirection.EAST:
            return meters, 0.0
        case CompassDirection.WEST:
            return -meters, 0.0
        case CompassDirection.NORTH:
            return 0.0, meters
        case CompassDirection.SOUTH:
            return 0.0, -meters


def restoring_offset(
    current: db_models.Bounds, baseline: db_models.Bounds
) -> tuple[float, float]:
    """Offset that moves the current south-west corner onto the baseline's.

    Uses the equirectangular approximation, with the longitude scale taken
    at the current south-west latitude.

    Returns:
        ``(dx, dy)`` offset in meters.

    Raises:
        ValueError: If either extent holds non-finite coordinates.
    """
    cur_lat, cur_lng = current.south_west
    base_lat, base_lng = baseline.south_west
    if not all(math.isfinite(v) for v in (cur_lat, cur_lng, base_lat, base_lng)):
        raise ValueError("Restoring offset is not finite")
    meters_y = (base_lat - cur_lat) * METERS_PER_DEGREE
    meters_x = (
        (base_lng - cur_lng)
        * METERS_PER_DEGREE
        * math.cos(cur_lat * math.pi / 180.0)
    )
    if not (math.isfinite(meters_x) and math.isfinite(meters_y)):
        raise ValueError("Restoring offset is not finite")
    return meters_x, meters_y


def shift_position(
    position: db_models.Position, dx: float, dy: float
) -> db_models.Position:
    """Shift one position, keeping any ordinates beyond lon/lat."""
    x, y = project(position[0], position[1])
    lon, lat = unproject(x + dx, y + dy)
    return (lon, lat, *position[2:])


def _shift_ring(
    ring: db_models.Ring, dx: float, dy: float
) -> db_models.Ring:
    return [shift_position(p, dx, dy) for p in ring]


def _is_position(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) >= 2
        and isinstance(value[0], (int, float))
        and isinstance(value[1], (int, float))
    )


def _shift_nested(coordinates: Any, dx: float, dy: float) -> Any:
    """Shift an untyped coordinate array of any nesting depth."""
    if _is_position(coordinates):
        return list(shift_position(tuple(coordinates), dx, dy))
    if isinstance(coordinates, (list, tuple)):
        return [_shift_nested(c, dx, dy) for c in coordinates]
    return coordinates


def shift_geometry(
    geometry: db_models.Geometry | None, dx: float, dy: float
) -> db_models.Geometry | None:
    """Return a copy of ``geometry`` moved by ``(dx, dy)`` Mercator meters."""
    match geometry:
        case None:
            return None
        case db_models.Polygon(rings=rings, extra=extra):
            return db_models.Polygon(
                tuple(_shift_ring(r, dx, dy) for r in rings),
                copy.deepcopy(extra),
            )
        case db_models.MultiPolygon(polygons=polygons, extra=extra):
            return db_models.MultiPolygon(
                tuple(
                    tuple(_shift_ring(r, dx, dy) for r in polygon)
                    for polygon in polygons
                ),
                copy.deepcopy(extra),
            )
        case db_models.GeometryCollection(geometries=members, extra=extra):
            return db_models.GeometryCollection(
                tuple(shift_geometry(g, dx, dy) for g in members),
                copy.deepcopy(extra),
            )
        case db_models.OtherGeometry(
            type=geom_type, coordinates=coords, extra=extra
        ):
            return db_models.OtherGeometry(
                geom_type, _shift_nested(coords, dx, dy), copy.deepcopy(extra)
            )
    raise TypeError(f"Unsupported geometry: {geometry!r}")


def shift_collection(
    collection: db_models.FeatureCollection, dx: float, dy: float
) -> db_models.FeatureCollection:
    """Return a copy of ``collection`` with every geometry shifted."""
    return db_models.FeatureCollection(
        features=tuple(
            f.with_geometry(shift_geometry(f.geometry, dx, dy))
            for f in collection.features
        ),
        extra=collection.extra,
    )
