"""API endpoint tests for stored GeoJSON retrieval, shift and reset.

This module exercises the /api/geojson endpoints end to end through the
FastAPI application, covering:
    - Retrieval of a stored collection and its current bounds,
    - The 404 contract for unknown tehsil/mauza pairs,
    - Shift and reset round trips, including baseline recording,
    - The distinct 400 errors for "no geometry" and "no baseline",
    - Rejection of non-finite shift distances,
    - Translation of storage failures to 503.

The repository is injected through dependency overrides with the
in-memory implementation, except where the real dependency is exercised
against an unreachable database.

See Also:
    - naqsha/api/geojson.py for API implementation,
    - naqsha/services/shift.py for the shift engine.
"""

from __future__ import annotations

import psycopg2
import pytest
from fastapi import testclient

from naqsha import main
from naqsha.api import geojson as api_geojson
from naqsha.core import errors
from naqsha.db import database
from naqsha.db import models as db_models

KEY = db_models.CollectionKey("Kabirwala", "Sarai Sidhu")
BASE = "/api/geojson/Kabirwala/Sarai%20Sidhu"
RING = [[71.0, 30.0], [71.001, 30.0], [71.001, 30.001], [71.0, 30.001], [71.0, 30.0]]
DOCUMENT = {
    "type": "FeatureCollection",
    "name": "Sarai Sidhu",
    "features": [
        {
            "type": "Feature",
            "properties": {"Murabba_No": "12"},
            "geometry": {"type": "Polygon", "coordinates": [RING]},
        }
    ],
}


def _client(
    repo: database.FeatureCollectionRepositoryProtocol,
) -> testclient.TestClient:
    app = main.create_app()
    app.dependency_overrides[api_geojson._get_repo] = lambda: repo
    return testclient.TestClient(app)


def _seeded_repo() -> database.InMemoryFeatureCollectionRepository:
    repo = database.InMemoryFeatureCollectionRepository()
    repo.add(KEY, db_models.FeatureCollection.from_geojson(DOCUMENT))
    return repo


def test_get_geojson() -> None:
    """The stored document is returned with its extra members."""
    client = _client(_seeded_repo())
    response = client.get(BASE)
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "FeatureCollection"
    assert body["name"] == "Sarai Sidhu"
    assert body["features"][0]["geometry"]["coordinates"] == [RING]


def test_get_geojson_not_found() -> None:
    client = _client(database.InMemoryFeatureCollectionRepository())
    response = client.get("/api/geojson/Kabirwala/Unknown")
    assert response.status_code == 404
    assert response.json()["detail"] == "GeoJSON not found"


def test_get_bounds() -> None:
    """Bounds are reported as ``[[minLat, minLng], [maxLat, maxLng]]``."""
    client = _client(_seeded_repo())
    response = client.get(f"{BASE}/bounds")
    assert response.status_code == 200
    assert response.json() == {"bounds": [[30.0, 71.0], [30.001, 71.001]]}


def test_get_bounds_without_geometry() -> None:
    repo = database.InMemoryFeatureCollectionRepository()
    repo.add(KEY, db_models.FeatureCollection())
    response = _client(repo).get(f"{BASE}/bounds")
    assert response.status_code == 200
    assert response.json() == {"bounds": None}


def test_shift_records_baseline_and_moves() -> None:
    """A shift returns the moved collection and anchors the baseline."""
    repo = _seeded_repo()
    client = _client(repo)
    response = client.post(
        f"{BASE}/shift", json={"distance": 328.08, "direction": "East"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    first = body["data"]["features"][0]["geometry"]["coordinates"][0][0]
    assert 71.0008 < first[0] < 71.001
    assert repo.load_baseline(KEY) is not None


def test_shift_then_reset() -> None:
    """Reset after a shift moves the collection back near its origin."""
    client = _client(_seeded_repo())
    client.post(f"{BASE}/shift", json={"distance": 500, "direction": "North"})
    response = client.post(f"{BASE}/reset")
    assert response.status_code == 200
    first = response.json()["data"]["features"][0]["geometry"]["coordinates"][0][0]
    assert abs(first[1] - 30.0) < 1e-3


def test_shift_invalid_body() -> None:
    """Distance must be numeric."""
    client = _client(_seeded_repo())
    response = client.post(
        f"{BASE}/shift", json={"distance": "far", "direction": "East"}
    )
    assert response.status_code == 422


def test_shift_not_found() -> None:
    client = _client(database.InMemoryFeatureCollectionRepository())
    response = client.post(
        f"{BASE}/shift", json={"distance": 10, "direction": "East"}
    )
    assert response.status_code == 404


def test_shift_without_geometry() -> None:
    repo = database.InMemoryFeatureCollectionRepository()
    repo.add(KEY, db_models.FeatureCollection())
    response = _client(repo).post(
        f"{BASE}/shift", json={"distance": 10, "direction": "East"}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "no_geometry"


def test_reset_without_baseline() -> None:
    """Reset before any shift is rejected as a missing baseline."""
    response = _client(_seeded_repo()).post(f"{BASE}/reset")
    assert response.status_code == 400
    assert response.json()["detail"] == {
        "error": "no_baseline",
        "message": "No default bounds set",
    }


def test_storage_failure() -> None:
    """Storage errors are reported as 503."""

    class DownRepo(database.InMemoryFeatureCollectionRepository):
        def load_feature_collection(
            self, key: db_models.CollectionKey
        ) -> db_models.FeatureCollection | None:
            raise errors.PersistenceFailure("database is down")

    client = _client(DownRepo())
    assert client.get(BASE).status_code == 503
    response = client.post(
        f"{BASE}/shift", json={"distance": 10, "direction": "East"}
    )
    assert response.status_code == 503


@pytest.mark.parametrize("distance", ["Infinity", "-Infinity", "NaN"])
def test_shift_rejects_non_finite_distance(distance: str) -> None:
    """Non-finite distances are refused and leave the store untouched."""
    repo = _seeded_repo()
    client = _client(repo)
    response = client.post(
        f"{BASE}/shift",
        content=f'{{"distance": {distance}, "direction": "East"}}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 422
    assert repo.load_feature_collection(KEY).to_geojson() == DOCUMENT
    assert repo.load_baseline(KEY) is None


def test_shift_keeps_foreign_members() -> None:
    """Feature ``bbox`` and GeometryCollection members survive a shift."""
    document = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "bbox": [71.0, 30.0, 71.001, 30.001],
                "properties": {},
                "geometry": {"type": "Polygon", "coordinates": [RING]},
            },
            {
                "type": "Feature",
                "properties": {},
                "geometry": {
                    "type": "GeometryCollection",
                    "geometries": [{"type": "Point", "coordinates": [71.0, 30.0]}],
                },
            },
        ],
    }
    repo = database.InMemoryFeatureCollectionRepository()
    repo.add(KEY, db_models.FeatureCollection.from_geojson(document))
    response = _client(repo).post(
        f"{BASE}/shift", json={"distance": 100, "direction": "North"}
    )
    assert response.status_code == 200

    stored = repo.load_feature_collection(KEY).to_geojson()
    assert stored["features"][0]["bbox"] == [71.0, 30.0, 71.001, 30.001]
    members = stored["features"][1]["geometry"]["geometries"]
    assert members[0]["type"] == "Point"
    assert members[0]["coordinates"][1] > 30.0


def test_unreachable_database_is_503(monkeypatch: pytest.MonkeyPatch) -> None:
    """Connection errors while building the repository are reported as 503."""

    def fail_connect(*args: object, **kwargs: object) -> None:
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(psycopg2, "connect", fail_connect)
    client = testclient.TestClient(main.create_app())

    response = client.get(BASE)
    assert response.status_code == 503
    assert response.json() == {"detail": "Storage unavailable"}
    assert client.post(f"{BASE}/reset").status_code == 503
