"""Bounding box extraction over Polygon and MultiPolygon features.

Polygon geometry is flattened one level (rings to positions) and
MultiPolygon geometry two levels (polygons to rings to positions). Other
geometry types and features without geometry do not contribute.

Positions are read in GeoJSON order (``position[0]`` is longitude,
``position[1]`` latitude) and the resulting bounds are returned in
``[lat, lng]`` order.

Example:
    >>> from naqsha.services.bounds import bounds_of
    >>> bounds = bounds_of(collection)
    >>> bounds.to_list() if bounds else None
    [[30.0, 71.0], [30.001, 71.001]]
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from naqsha.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterator


def _positions(
    geometry: db_models.Geometry | None,
) -> Iterator[db_models.Position]:
    match geometry:
        case db_models.Polygon(rings=rings):
            for ring in rings:
                yield from ring
        case db_models.MultiPolygon(polygons=polygons):
            for polygon in polygons:
                for ring in polygon:
                    yield from ring
        case _:
            return


def bounds_of(
    collection: db_models.FeatureCollection,
) -> db_models.Bounds | None:
    """Compute the extent of all polygon coordinates in a collection.

    Args:
        collection: Feature collection to measure.

    Returns:
        Bounds in ``[lat, lng]`` order, or None when the collection has no
        features or no polygon coordinates.
    """
    lats: list[float] = []
    lngs: list[float] = []
    for feature in collection.features:
        for position in _positions(feature.geometry):
            lngs.append(position[0])
            lats.append(position[1])

    if not lats:
        return None

    return db_models.Bounds(
        south_west=(min(lats), min(lngs)),
        north_east=(max(lats), max(lngs)),
    )
