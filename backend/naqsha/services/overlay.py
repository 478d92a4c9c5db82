"""Overlay grids subdividing a cadastral square into smaller cells.

A square ("Murabba") is subdivided into ``matrix_size`` x ``matrix_size``
cells ("Killa"). Cells are laid out from the square's top-left corner using
great-circle destinations along the bearings of its top and left edges, so
the grid follows the square's orientation even when it is not axis-aligned.

Before computing a grid, a precomputed overlay keyed by the square's number
may be fetched; curated overlays take precedence over the generic grid. The
order is modelled as a list of resolution strategies tried in turn until
one produces a layer.

Generated layers are kept in a bounded FIFO set: once the limit is reached,
adding a layer evicts the oldest one by creation time.

Example:
    >>> from naqsha.db import models
    >>> from naqsha.services import overlay
    >>> corners = models.OverlayCorners(
    ...     top_left=(71.0, 30.0045),
    ...     top_right=(71.0052, 30.0045),
    ...     bottom_right=(71.0052, 30.0),
    ...     bottom_left=(71.0, 30.0),
    ... )
    >>> grid = overlay.generate_overlay(corners)
    >>> len(grid.features)
    25
"""

from __future__ import annotations

import collections
import functools
import json
import logging
import uuid
from typing import TYPE_CHECKING, Protocol

from naqsha.core import config, errors
from naqsha.db import models as db_models
from naqsha.services import geodesy

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Sequence

    from naqsha.services import remote

logger = logging.getLogger(__name__)

DEFAULT_MATRIX_SIZE = 5
DEFAULT_MAX_ACTIVE = 4


def default_template(
    matrix_size: int = DEFAULT_MATRIX_SIZE,
) -> db_models.FeatureCollection:
    """Template labelling cells "1".."N²" under the ``Killa`` property."""
    return db_models.FeatureCollection(
        features=tuple(
            db_models.Feature(geometry=None, properties={"Killa": str(i + 1)})
            for i in range(matrix_size * matrix_size)
        )
    )


def load_template(path: pathlib.Path) -> db_models.FeatureCollection:
    """Load an overlay template from a GeoJSON file.

    Only the features' properties are used; their geometry is replaced when
    a grid is generated.
    """
    with path.open(encoding="utf-8") as fh:
        return db_models.FeatureCollection.from_geojson(json.load(fh))


def corners_from_feature(
    feature: db_models.Feature,
) -> db_models.OverlayCorners:
    """Read overlay corners from the first ring of a square feature.

    Vertices 0..3 of the outer ring are taken as top-left, top-right,
    bottom-right and bottom-left, which is how cadastral squares are
    digitised. For a MultiPolygon the first polygon is used.

    Raises:
        ValueError: If the feature is not polygonal or its ring has fewer
            than four vertices.
    """
    match feature.geometry:
        case db_models.Polygon(rings=rings) if rings:
            ring = rings[0]
        case db_models.MultiPolygon(polygons=polygons) if (
            polygons and polygons[0]
        ):
            ring = polygons[0][0]
        case _:
            raise ValueError("Overlay source feature must be a polygon")

    if len(ring) < 4:
        raise ValueError("Overlay source ring needs at least four vertices")

    tl, tr, br, bl = ((p[0], p[1]) for p in ring[:4])
    return db_models.OverlayCorners(tl, tr, br, bl)


def generate_overlay(
    corners: db_models.OverlayCorners,
    template: db_models.FeatureCollection | None = None,
    matrix_size: int = DEFAULT_MATRIX_SIZE,
) -> db_models.FeatureCollection:
    """Subdivide a quadrilateral into a grid of closed cell rings.

    Cell ``i`` sits at row ``i // matrix_size`` and column
    ``i % matrix_size``. Its origin is reached from the top-left corner by
    moving ``col * cell_width`` along the top edge bearing and then
    ``row * cell_height`` along the left edge bearing. The template is not
    modified; its properties are copied onto the new cells by position.

    Args:
        corners: Vertices of the source quadrilateral.
        template: Cell labels; defaults to ``default_template``.
        matrix_size: Cells per side.

    Returns:
        A new collection of ``matrix_size²`` Polygon features, each a closed
        five-point ring.

    Raises:
        ValueError: If the template does not hold exactly ``matrix_size²``
            features.
    """
    if template is None:
        template = default_template(matrix_size)
    cell_count = matrix_size * matrix_size
    if len(template.features) != cell_count:
        raise ValueError(
            f"Overlay template needs {cell_count} features, "
            f"got {len(template.features)}"
        )

    top_left = corners.top_left
    width = geodesy.distance(top_left, corners.top_right)
    height = geodesy.distance(top_left, corners.bottom_left)
    cell_width = width / matrix_size
    cell_height = height / matrix_size
    bearing_top = geodesy.bearing(top_left, corners.top_right)
    bearing_left = geodesy.bearing(top_left, corners.bottom_left)

    cells = []
    for index, feature in enumerate(template.features):
        row, col = divmod(index, matrix_size)
        origin = geodesy.destination(
            geodesy.destination(top_left, col * cell_width, bearing_top),
            row * cell_height,
            bearing_left,
        )
        cell_top_right = geodesy.destination(origin, cell_width, bearing_top)
        cell_bottom_right = geodesy.destination(
            cell_top_right, cell_height, bearing_left
        )
        cell_bottom_left = geodesy.destination(
            origin, cell_height, bearing_left
        )
        ring: db_models.Ring = [
            origin,
            cell_top_right,
            cell_bottom_right,
            cell_bottom_left,
            origin,
        ]
        cells.append(feature.with_geometry(db_models.Polygon((ring,))))

    return db_models.FeatureCollection(
        features=tuple(cells), extra=template.extra
    )


class OverlayStrategy(Protocol):
    """One way of producing an overlay; returns None to defer to the next."""

    async def resolve(
        self, corners: db_models.OverlayCorners, key: str | None
    ) -> db_models.OverlayLayer | None: ...


class NamedOverlayStrategy(OverlayStrategy):
    """Use a precomputed overlay fetched by cell identifier, if available."""

    def __init__(
        self,
        resolver: remote.NamedOverlayResolverProtocol,
        base_location: str | None,
    ) -> None:
        self.resolver = resolver
        self.base_location = base_location

    async def resolve(
        self, corners: db_models.OverlayCorners, key: str | None
    ) -> db_models.OverlayLayer | None:
        if not self.base_location or not key:
            return None

        try:
            collection = await self.resolver.fetch_named_overlay(
                self.base_location, key
            )
        except errors.FetchFailure as exc:
            logger.info(
                "Named overlay unavailable; falling back",
                extra={"extra": {"key": key, "reason": str(exc)}},
            )
            return None

        return db_models.OverlayLayer(
            id=str(uuid.uuid4()),
            collection=collection,
            source="named",
            key=key,
        )


class ProceduralOverlayStrategy(OverlayStrategy):
    """Compute the grid from the corners; never defers."""

    def __init__(
        self,
        template: db_models.FeatureCollection | None = None,
        matrix_size: int = DEFAULT_MATRIX_SIZE,
    ) -> None:
        self.template = template
        self.matrix_size = matrix_size

    async def resolve(
        self, corners: db_models.OverlayCorners, key: str | None
    ) -> db_models.OverlayLayer | None:
        return db_models.OverlayLayer(
            id=str(uuid.uuid4()),
            collection=generate_overlay(
                corners, self.template, self.matrix_size
            ),
            source="procedural",
            key=key,
        )


class OverlayResolver:
    """Tries overlay strategies in order and returns the first result."""

    def __init__(self, strategies: Sequence[OverlayStrategy]) -> None:
        self.strategies = list(strategies)

    async def resolve(
        self, corners: db_models.OverlayCorners, key: str | None = None
    ) -> db_models.OverlayLayer:
        for strategy in self.strategies:
            layer = await strategy.resolve(corners, key)
            if layer is not None:
                return layer

        raise LookupError("No overlay strategy produced a layer")


async def resolve_or_generate_overlay(
    corners: db_models.OverlayCorners,
    base_location: str | None = None,
    key: str | None = None,
    resolver: remote.NamedOverlayResolverProtocol | None = None,
    template: db_models.FeatureCollection | None = None,
    matrix_size: int = DEFAULT_MATRIX_SIZE,
) -> db_models.OverlayLayer:
    """Fetch the named overlay for ``key`` if possible, else generate one.

    Args:
        corners: Vertices of the source square.
        base_location: Base URL of precomputed overlays, if any.
        key: Cell identifier such as the square's Murabba number.
        resolver: Named overlay fetcher; without one only the procedural
            grid is used.
        template: Cell labels for the procedural grid.
        matrix_size: Cells per side of the procedural grid.

    Returns:
        The resolved overlay layer.
    """
    strategies: list[OverlayStrategy] = []
    if resolver is not None:
        strategies.append(NamedOverlayStrategy(resolver, base_location))
    strategies.append(ProceduralOverlayStrategy(template, matrix_size))
    return await OverlayResolver(strategies).resolve(corners, key)


class OverlayRetention:
    """Bounded FIFO set of active overlay layers.

    Only creation order matters: reading a layer does not move it, and the
    layer added first is the one evicted once ``max_active`` is exceeded.
    """

    def __init__(self, max_active: int = DEFAULT_MAX_ACTIVE) -> None:
        if max_active < 1:
            raise ValueError("max_active must be at least 1")
        self.max_active = max_active
        self._layers: collections.deque[db_models.OverlayLayer] = (
            collections.deque()
        )

    def add(
        self, layer: db_models.OverlayLayer
    ) -> db_models.OverlayLayer | None:
        """Add a layer, evicting and returning the oldest one when full."""
        evicted = None
        if len(self._layers) >= self.max_active:
            evicted = self._layers.popleft()
            logger.info(
                "Evicted overlay layer",
                extra={"extra": {"id": evicted.id, "key": evicted.key}},
            )
        self._layers.append(layer)
        return evicted

    def active(self) -> list[db_models.OverlayLayer]:
        """Active layers, oldest first."""
        return list(self._layers)

    def get(self, layer_id: str) -> db_models.OverlayLayer | None:
        return next(
            (layer for layer in self._layers if layer.id == layer_id), None
        )

    def clear(self) -> None:
        self._layers.clear()

    def __len__(self) -> int:
        return len(self._layers)


@functools.lru_cache
def get_overlay_retention() -> OverlayRetention:
    """Process-wide active overlay set sized from settings."""
    return OverlayRetention(config.get_settings().max_active_overlays)
