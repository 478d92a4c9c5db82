"""Data models for stored feature collections, baselines and overlays.

Geometry is represented as a tagged variant rather than untyped nested
lists: a ``Polygon`` holds rings, a ``MultiPolygon`` holds polygons, a
``GeometryCollection`` holds member geometries, and any other GeoJSON
geometry type is carried as ``OtherGeometry`` with its raw coordinate
array. Foreign members such as ``bbox`` are kept in ``extra`` at every
level. Positions keep GeoJSON axis order ``[lon, lat, ...]``
while ``Bounds`` are expressed in ``[lat, lng]`` order, matching the map
client that consumes them.

Example:
    Parse a stored GeoJSON document and read it back:
        >>> from naqsha.db.models import FeatureCollection
        >>> collection = FeatureCollection.from_geojson({
        ...     "type": "FeatureCollection",
        ...     "features": [{
        ...         "type": "Feature",
        ...         "properties": {"Murabba_No": "12"},
        ...         "geometry": {
        ...             "type": "Polygon",
        ...             "coordinates": [[[71.0, 30.0], [71.001, 30.0],
        ...                              [71.001, 30.001], [71.0, 30.0]]],
        ...         },
        ...     }],
        ... })
        >>> collection.to_geojson()["features"][0]["geometry"]["type"]
        'Polygon'
"""

from __future__ import annotations

import copy
import dataclasses
import datetime
from typing import Any, Literal

Position = tuple[float, ...]
Ring = list[Position]
LonLat = tuple[float, float]
OverlaySource = Literal["named", "procedural"]


def _position(raw: Any) -> Position:
    """Convert a raw GeoJSON position into a tuple of floats."""
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        raise ValueError(f"Invalid position: {raw!r}")

    return tuple(float(v) for v in raw)


def _ring(raw: Any) -> Ring:
    return [_position(p) for p in raw]


def _extra(raw: dict[str, Any], known: tuple[str, ...]) -> dict[str, Any]:
    """Foreign members of a GeoJSON object, such as ``bbox``."""
    return {k: copy.deepcopy(v) for k, v in raw.items() if k not in known}


@dataclasses.dataclass(frozen=True)
class Polygon:
    """Polygon geometry: an ordered sequence of rings."""

    rings: tuple[Ring, ...]
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    type: Literal["Polygon"] = dataclasses.field(default="Polygon", init=False)

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "Polygon",
            **copy.deepcopy(self.extra),
            "coordinates": [[list(p) for p in ring] for ring in self.rings],
        }


@dataclasses.dataclass(frozen=True)
class MultiPolygon:
    """MultiPolygon geometry: an ordered sequence of polygon ring lists."""

    polygons: tuple[tuple[Ring, ...], ...]
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    type: Literal["MultiPolygon"] = dataclasses.field(
        default="MultiPolygon", init=False
    )

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "MultiPolygon",
            **copy.deepcopy(self.extra),
            "coordinates": [
                [[list(p) for p in ring] for ring in polygon]
                for polygon in self.polygons
            ],
        }


@dataclasses.dataclass(frozen=True)
class OtherGeometry:
    """Any other GeoJSON geometry, kept with its raw coordinate array."""

    type: str
    coordinates: Any
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": self.type,
            **copy.deepcopy(self.extra),
            "coordinates": copy.deepcopy(self.coordinates),
        }


@dataclasses.dataclass(frozen=True)
class GeometryCollection:
    """GeometryCollection: member geometries, each parsed like a top level one."""

    geometries: tuple[Geometry, ...]
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    type: Literal["GeometryCollection"] = dataclasses.field(
        default="GeometryCollection", init=False
    )

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "GeometryCollection",
            **copy.deepcopy(self.extra),
            "geometries": [g.to_geojson() for g in self.geometries],
        }


Geometry = Polygon | MultiPolygon | GeometryCollection | OtherGeometry


def geometry_from_geojson(raw: dict[str, Any] | None) -> Geometry | None:
    """Build a tagged geometry from a GeoJSON geometry mapping.

    Members other than ``type`` and ``coordinates`` (or ``geometries``) are
    kept in ``extra`` and written back unchanged.

    Args:
        raw: GeoJSON geometry object, or None for a feature without geometry.

    Returns:
        Polygon, MultiPolygon, GeometryCollection or OtherGeometry; None
        when ``raw`` is None.

    Raises:
        ValueError: If the mapping has no type or malformed coordinates.
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid geometry: {raw!r}")

    geom_type = raw.get("type")
    coordinates = raw.get("coordinates")
    if not geom_type:
        raise ValueError("Geometry is missing its type")

    if geom_type == "GeometryCollection":
        members = [geometry_from_geojson(g) for g in raw.get("geometries") or []]
        return GeometryCollection(
            tuple(g for g in members if g is not None),
            _extra(raw, ("type", "geometries")),
        )

    extra = _extra(raw, ("type", "coordinates"))
    if geom_type == "Polygon":
        return Polygon(
            tuple(_ring(ring) for ring in coordinates or []), extra
        )
    if geom_type == "MultiPolygon":
        return MultiPolygon(
            tuple(
                tuple(_ring(ring) for ring in polygon)
                for polygon in coordinates or []
            ),
            extra,
        )

    return OtherGeometry(str(geom_type), copy.deepcopy(coordinates), extra)


@dataclasses.dataclass(frozen=True)
class Feature:
    """A GeoJSON feature: geometry plus arbitrary properties.

    Attributes:
        geometry: Tagged geometry, or None.
        properties: Feature properties.
        id: Optional feature identifier.
        extra: Foreign members (``bbox``...) preserved on round trip.
    """

    geometry: Geometry | None
    properties: dict[str, Any] = dataclasses.field(default_factory=dict)
    id: str | int | None = None
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_geojson(cls, raw: dict[str, Any]) -> Feature:
        """Parse a GeoJSON Feature mapping.

        Raises:
            ValueError: If the feature or its geometry is malformed.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid feature: {raw!r}")

        return cls(
            geometry=geometry_from_geojson(raw.get("geometry")),
            properties=copy.deepcopy(raw.get("properties") or {}),
            id=raw.get("id"),
            extra=_extra(raw, ("type", "geometry", "properties", "id")),
        )

    def to_geojson(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": "Feature",
            **copy.deepcopy(self.extra),
            "properties": copy.deepcopy(self.properties),
            "geometry": self.geometry.to_geojson() if self.geometry else None,
        }
        if self.id is not None:
            result["id"] = self.id
        return result

    def with_geometry(self, geometry: Geometry | None) -> Feature:
        """Return a copy of the feature with its geometry replaced."""
        return dataclasses.replace(
            self,
            geometry=geometry,
            properties=copy.deepcopy(self.properties),
            extra=copy.deepcopy(self.extra),
        )



@dataclasses.dataclass(frozen=True)
class FeatureCollection:
    """An ordered collection of features.

    Attributes:
        features: Features in stored order.
        extra: Additional top-level members (``name``, ``crs``...) that are
            preserved unchanged on round trip.
    """

    features: tuple[Feature, ...] = ()
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_geojson(cls, raw: dict[str, Any]) -> FeatureCollection:
        """Parse a GeoJSON FeatureCollection mapping.

        Raises:
            ValueError: If the mapping is not a FeatureCollection.
        """
        if raw.get("type") != "FeatureCollection":
            raise ValueError(
                f"Expected a FeatureCollection, got {raw.get('type')!r}"
            )

        return cls(
            features=tuple(
                Feature.from_geojson(f) for f in raw.get("features") or []
            ),
            extra=_extra(raw, ("type", "features")),
        )

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "FeatureCollection",
            **copy.deepcopy(self.extra),
            "features": [f.to_geojson() for f in self.features],
        }


@dataclasses.dataclass(frozen=True)
class CollectionKey:
    """Identity of a stored feature collection."""

    tehsil: str
    mauza: str

    def __str__(self) -> str:
        return f"{self.tehsil}/{self.mauza}"


@dataclasses.dataclass(frozen=True)
class Bounds:
    """Geographic extent as south-west and north-east ``(lat, lng)`` corners."""

    south_west: tuple[float, float]
    north_east: tuple[float, float]

    @classmethod
    def from_list(cls, raw: list[list[float]]) -> Bounds:
        """Build bounds from ``[[minLat, minLng], [maxLat, maxLng]]``."""
        (min_lat, min_lng), (max_lat, max_lng) = raw
        return cls(
            (float(min_lat), float(min_lng)),
            (float(max_lat), float(max_lng)),
        )

    def to_list(self) -> list[list[float]]:
        return [list(self.south_west), list(self.north_east)]


@dataclasses.dataclass(frozen=True)
class OverlayCorners:
    """The four ``[lon, lat]`` vertices of a source quadrilateral."""

    top_left: LonLat
    top_right: LonLat
    bottom_right: LonLat
    bottom_left: LonLat


@dataclasses.dataclass
class OverlayLayer:
    """A generated or precomputed overlay grid held in the active set.

    Attributes:
        id: Unique identifier of the layer (UUID string).
        collection: The overlay cells.
        source: "named" for a precomputed overlay, "procedural" otherwise.
        key: Cell identifier the overlay was requested for, if any.
        created_at: Creation timestamp, which orders eviction.
    """

    id: str
    collection: FeatureCollection
    source: OverlaySource
    key: str | None = None
    created_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )
