"""Tests for overlay grid generation, resolution and retention.

Covers the procedural grid (cell count, closed rings, cell size, template
handling), reading corners from a square feature, the named-then-procedural
resolution order with fallback on fetch failure, and FIFO eviction of active
layers.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest

from naqsha.core import errors
from naqsha.db import models as db_models
from naqsha.services import geodesy, overlay

if TYPE_CHECKING:
    import pathlib


def _square_corners(side_m: float = 500.0) -> db_models.OverlayCorners:
    top_left = (71.0, 30.0)
    top_right = geodesy.destination(top_left, side_m, 90.0)
    bottom_left = geodesy.destination(top_left, side_m, 180.0)
    bottom_right = geodesy.destination(top_right, side_m, 180.0)
    return db_models.OverlayCorners(
        top_left, top_right, bottom_right, bottom_left
    )


class FakeResolver:
    """Named overlay resolver returning a canned result or failure."""

    def __init__(
        self, result: db_models.FeatureCollection | None = None
    ) -> None:
        self.result = result
        self.calls: list[tuple[str, str]] = []

    async def fetch_named_overlay(
        self, base_location: str, key: str
    ) -> db_models.FeatureCollection:
        self.calls.append((base_location, key))
        if self.result is None:
            raise errors.FetchFailure(f"{base_location}/{key}", "HTTP 404")
        return self.result


def test_generate_overlay_default_grid() -> None:
    """A 5x5 grid yields 25 closed five-point rings labelled by Killa."""
    grid = overlay.generate_overlay(_square_corners())
    assert len(grid.features) == 25
    for index, feature in enumerate(grid.features):
        assert feature.properties == {"Killa": str(index + 1)}
        assert isinstance(feature.geometry, db_models.Polygon)
        ring = feature.geometry.rings[0]
        assert len(ring) == 5
        assert ring[0] == ring[-1]


def test_generate_overlay_cell_size() -> None:
    """Cells of a 500 m square are about 100 m on each side."""
    grid = overlay.generate_overlay(_square_corners(500.0))
    for feature in grid.features:
        assert isinstance(feature.geometry, db_models.Polygon)
        ring = feature.geometry.rings[0]
        assert geodesy.distance(ring[0], ring[1]) == pytest.approx(
            100.0, rel=0.01
        )
        assert geodesy.distance(ring[0], ring[3]) == pytest.approx(
            100.0, rel=0.01
        )


def test_generate_overlay_row_major_layout() -> None:
    """Cell 1 starts at the top-left corner and cell 6 one row below."""
    corners = _square_corners()
    grid = overlay.generate_overlay(corners)
    first = grid.features[0].geometry
    sixth = grid.features[5].geometry
    assert isinstance(first, db_models.Polygon)
    assert isinstance(sixth, db_models.Polygon)
    assert first.rings[0][0][0] == pytest.approx(corners.top_left[0])
    assert first.rings[0][0][1] == pytest.approx(corners.top_left[1])
    assert sixth.rings[0][0][0] == pytest.approx(first.rings[0][3][0])
    assert sixth.rings[0][0][1] == pytest.approx(first.rings[0][3][1])


def test_generate_overlay_does_not_mutate_template() -> None:
    """The template keeps its properties and null geometries."""
    template = overlay.default_template(3)
    overlay.generate_overlay(_square_corners(), template, matrix_size=3)
    assert all(f.geometry is None for f in template.features)
    assert template.features[0].properties == {"Killa": "1"}


def test_generate_overlay_template_size_mismatch() -> None:
    with pytest.raises(ValueError, match="25 features"):
        overlay.generate_overlay(
            _square_corners(), overlay.default_template(4), matrix_size=5
        )


def test_load_template(tmp_path: pathlib.Path) -> None:
    """A GeoJSON file supplies cell properties and extra members."""
    path = tmp_path / "killa.geojson"
    path.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "name": "Killa",
                "features": [
                    {"type": "Feature", "properties": {"Killa": "A"},
                     "geometry": None}
                ],
            }
        ),
        encoding="utf-8",
    )
    template = overlay.load_template(path)
    grid = overlay.generate_overlay(
        _square_corners(), template, matrix_size=1
    )
    assert grid.features[0].properties == {"Killa": "A"}
    assert grid.extra == {"name": "Killa"}


def test_corners_from_feature() -> None:
    """Vertices 0..3 of the outer ring become the corners in order."""
    ring = [(71.0, 30.1), (71.1, 30.1), (71.1, 30.0), (71.0, 30.0), (71.0, 30.1)]
    corners = overlay.corners_from_feature(
        db_models.Feature(geometry=db_models.Polygon((ring,)))
    )
    assert corners.top_left == (71.0, 30.1)
    assert corners.top_right == (71.1, 30.1)
    assert corners.bottom_right == (71.1, 30.0)
    assert corners.bottom_left == (71.0, 30.0)


@pytest.mark.parametrize(
    "geometry",
    [
        None,
        db_models.OtherGeometry("Point", [71.0, 30.0]),
        db_models.Polygon(([(71.0, 30.0), (71.1, 30.0), (71.0, 30.0)],)),
    ],
)
def test_corners_from_feature_rejects(
    geometry: db_models.Geometry | None,
) -> None:
    with pytest.raises(ValueError):
        overlay.corners_from_feature(db_models.Feature(geometry=geometry))


def test_named_overlay_preferred() -> None:
    """A successfully fetched overlay wins over the procedural grid."""
    named = db_models.FeatureCollection(extra={"name": "curated"})
    resolver = FakeResolver(named)
    layer = asyncio.run(
        overlay.resolve_or_generate_overlay(
            _square_corners(),
            base_location="http://overlays.local",
            key="12",
            resolver=resolver,
        )
    )
    assert layer.source == "named"
    assert layer.key == "12"
    assert layer.collection == named
    assert resolver.calls == [("http://overlays.local", "12")]


def test_named_overlay_failure_falls_back() -> None:
    """A failed fetch falls back to the generated grid."""
    resolver = FakeResolver()
    layer = asyncio.run(
        overlay.resolve_or_generate_overlay(
            _square_corners(),
            base_location="http://overlays.local",
            key="12",
            resolver=resolver,
        )
    )
    assert layer.source == "procedural"
    assert len(layer.collection.features) == 25
    assert resolver.calls


def test_named_overlay_skipped_without_key() -> None:
    """No key or base location means no remote lookup."""
    resolver = FakeResolver(db_models.FeatureCollection())
    layer = asyncio.run(
        overlay.resolve_or_generate_overlay(
            _square_corners(), base_location="http://overlays.local",
            resolver=resolver,
        )
    )
    assert layer.source == "procedural"
    assert resolver.calls == []


def test_resolver_without_strategies() -> None:
    with pytest.raises(LookupError):
        asyncio.run(overlay.OverlayResolver([]).resolve(_square_corners()))


def _layer(layer_id: str) -> db_models.OverlayLayer:
    return db_models.OverlayLayer(
        id=layer_id,
        collection=db_models.FeatureCollection(),
        source="procedural",
    )


def test_retention_evicts_oldest() -> None:
    """The fifth layer evicts the first; the set never exceeds four."""
    retention = overlay.OverlayRetention(max_active=4)
    for layer_id in ("a", "b", "c", "d"):
        assert retention.add(_layer(layer_id)) is None
    evicted = retention.add(_layer("e"))
    assert evicted is not None
    assert evicted.id == "a"
    assert len(retention) == 4
    assert [layer.id for layer in retention.active()] == ["b", "c", "d", "e"]


def test_retention_reads_do_not_refresh() -> None:
    """Looking a layer up does not protect it from eviction."""
    retention = overlay.OverlayRetention(max_active=2)
    retention.add(_layer("a"))
    retention.add(_layer("b"))
    assert retention.get("a") is not None
    evicted = retention.add(_layer("c"))
    assert evicted is not None and evicted.id == "a"
    assert retention.get("a") is None


def test_retention_clear() -> None:
    retention = overlay.OverlayRetention()
    retention.add(_layer("a"))
    retention.clear()
    assert len(retention) == 0


def test_retention_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        overlay.OverlayRetention(max_active=0)
