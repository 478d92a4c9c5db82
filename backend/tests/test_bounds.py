"""Tests for bounding box extraction.

Covers the axis-order contract (``[lon, lat]`` in, ``[lat, lng]`` out),
MultiPolygon flattening, the None result for empty input and the
independence of the result from feature and ring order.
"""

from __future__ import annotations

from naqsha.db import models as db_models
from naqsha.services import bounds as bounds_service


def _polygon(*rings: list[tuple[float, float]]) -> db_models.Feature:
    return db_models.Feature(geometry=db_models.Polygon(tuple(rings)))


RING_A = [(71.0, 30.0), (71.001, 30.0), (71.001, 30.001), (71.0, 30.0)]
RING_B = [(72.5, 29.5), (72.6, 29.5), (72.6, 29.7), (72.5, 29.5)]


def test_bounds_in_lat_lng_order() -> None:
    """Longitude is read from position[0] and returned second."""
    collection = db_models.FeatureCollection(features=(_polygon(RING_A),))
    bounds = bounds_service.bounds_of(collection)
    assert bounds is not None
    assert bounds.to_list() == [[30.0, 71.0], [30.001, 71.001]]


def test_bounds_cover_multipolygons() -> None:
    """MultiPolygon rings are flattened two levels."""
    multi = db_models.Feature(
        geometry=db_models.MultiPolygon(((RING_A,), (RING_B,)))
    )
    bounds = bounds_service.bounds_of(
        db_models.FeatureCollection(features=(multi,))
    )
    assert bounds is not None
    assert bounds.south_west == (29.5, 71.0)
    assert bounds.north_east == (30.001, 72.6)


def test_bounds_absent_for_empty_collection() -> None:
    """No features means no bounds rather than an error."""
    assert bounds_service.bounds_of(db_models.FeatureCollection()) is None


def test_bounds_absent_without_polygon_coordinates() -> None:
    """Null geometries and non-polygon types contribute nothing."""
    collection = db_models.FeatureCollection(
        features=(
            db_models.Feature(geometry=None),
            db_models.Feature(
                geometry=db_models.OtherGeometry("Point", [71.0, 30.0])
            ),
            _polygon(),
        )
    )
    assert bounds_service.bounds_of(collection) is None


def test_bounds_independent_of_order() -> None:
    """Reordering features or rings does not change the bounds."""
    forward = db_models.FeatureCollection(
        features=(_polygon(RING_A, RING_B), _polygon(RING_B))
    )
    backward = db_models.FeatureCollection(
        features=(_polygon(RING_B), _polygon(RING_B, RING_A))
    )
    assert bounds_service.bounds_of(forward) == bounds_service.bounds_of(
        backward
    )
