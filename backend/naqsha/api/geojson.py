"""Stored GeoJSON retrieval, shift and reset API endpoints.

This module exposes the feature collections of a tehsil/mauza and the two
realignment operations surveyors apply to them. A shift moves every
coordinate by a distance in feet towards a compass direction; the first
shift records the collection's original extent. A reset moves the
collection back onto that recorded extent.

Shift and reset failures name the precondition that failed, so the client
can tell "no geometry" (nothing to move) from "no baseline" (never
shifted).

Example:
    Shift a mauza 100 m east, then restore it:
        >>> client.post(
        ...     "/api/geojson/Kabirwala/Sarai%20Sidhu/shift",
        ...     json={"distance": 328.08, "direction": "East"},
        ... )
        >>> client.post("/api/geojson/Kabirwala/Sarai%20Sidhu/reset")
"""

from __future__ import annotations

from typing import Any

import fastapi
import pydantic
from fastapi import concurrency

from naqsha.core import config, errors
from naqsha.db import database
from naqsha.db import models as db_models
from naqsha.services import bounds as bounds_service
from naqsha.services import shift as shift_service

router = fastapi.APIRouter(prefix="/api/geojson", tags=["geojson"])


class ShiftRequest(pydantic.BaseModel):
    """Body of a shift request.

    Attributes:
        distance: Distance to move, in feet. Infinity and NaN are rejected.
        direction: "North", "South", "East" or "West". Other values are
            accepted and move nothing.
    """

    distance: float = pydantic.Field(allow_inf_nan=False)
    direction: str


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.FeatureCollectionRepositoryProtocol:
    """Resolve the feature collection repository dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        FeatureCollectionRepositoryProtocol implementation
            (PostgresFeatureCollectionRepository in production).
    """
    return database.get_feature_collection_repository(settings)


def _get_engine(
    repo: database.FeatureCollectionRepositoryProtocol = fastapi.Depends(  # noqa: B008
        _get_repo
    ),
) -> shift_service.ShiftEngine:
    """Build a shift engine sharing the process-wide identity locks."""
    return shift_service.ShiftEngine(repo, shift_service.get_identity_locks())


def _translate(exc: errors.NaqshaError) -> fastapi.HTTPException:
    """Map an engine error to the HTTP error reported to the client."""
    match exc:
        case errors.CollectionNotFoundError():
            return fastapi.HTTPException(
                status_code=404, detail="GeoJSON not found"
            )
        case errors.NoGeometryError():
            return fastapi.HTTPException(
                status_code=400,
                detail={"error": "no_geometry", "message": "No geometry found"},
            )
        case errors.PreconditionError():
            return fastapi.HTTPException(
                status_code=400,
                detail={
                    "error": "no_baseline",
                    "message": "No default bounds set",
                },
            )
        case errors.PersistenceFailure():
            return fastapi.HTTPException(
                status_code=503, detail="Storage unavailable"
            )
    return fastapi.HTTPException(status_code=500, detail=str(exc))


@router.get("/{tehsil}/{mauza}")
async def get_geojson(
    tehsil: str,
    mauza: str,
    repo: database.FeatureCollectionRepositoryProtocol = fastapi.Depends(  # noqa: B008
        _get_repo
    ),
) -> dict[str, Any]:
    """Return the stored feature collection of a mauza.

    Raises:
        HTTPException: 404 if nothing is stored for the tehsil/mauza.
    """
    key = db_models.CollectionKey(tehsil, mauza)
    try:
        collection = await concurrency.run_in_threadpool(
            repo.load_feature_collection, key
        )
    except errors.PersistenceFailure as exc:
        raise _translate(exc) from exc
    if collection is None:
        raise fastapi.HTTPException(status_code=404, detail="GeoJSON not found")

    return collection.to_geojson()


@router.get("/{tehsil}/{mauza}/bounds")
async def get_geojson_bounds(
    tehsil: str,
    mauza: str,
    repo: database.FeatureCollectionRepositoryProtocol = fastapi.Depends(  # noqa: B008
        _get_repo
    ),
) -> dict[str, list[list[float]] | None]:
    """Return the current extent of a stored collection.

    Returns:
        ``{"bounds": [[minLat, minLng], [maxLat, maxLng]]}``, with None when
        the collection has no polygon coordinates.
    """
    key = db_models.CollectionKey(tehsil, mauza)
    try:
        collection = await concurrency.run_in_threadpool(
            repo.load_feature_collection, key
        )
    except errors.PersistenceFailure as exc:
        raise _translate(exc) from exc
    if collection is None:
        raise fastapi.HTTPException(status_code=404, detail="GeoJSON not found")

    bounds = bounds_service.bounds_of(collection)
    return {"bounds": bounds.to_list() if bounds else None}


@router.post("/{tehsil}/{mauza}/shift")
async def shift_geojson(
    tehsil: str,
    mauza: str,
    body: ShiftRequest,
    engine: shift_service.ShiftEngine = fastapi.Depends(_get_engine),  # noqa: B008
) -> dict[str, Any]:
    """Shift a stored collection and return it.

    Raises:
        HTTPException: 404 if the collection is missing, 400 if it has no
            geometry, 422 if the distance is not finite, 503 if storage
            fails.
    """
    key = db_models.CollectionKey(tehsil, mauza)
    try:
        collection = await engine.shift(key, body.distance, body.direction)
    except errors.NaqshaError as exc:
        raise _translate(exc) from exc
    except ValueError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc

    return {"success": True, "data": collection.to_geojson()}


@router.post("/{tehsil}/{mauza}/reset")
async def reset_geojson(
    tehsil: str,
    mauza: str,
    engine: shift_service.ShiftEngine = fastapi.Depends(_get_engine),  # noqa: B008
) -> dict[str, Any]:
    """Restore a stored collection onto its recorded baseline.

    Raises:
        HTTPException: 404 if the collection is missing, 400 if no baseline
            was recorded or it has no geometry, 503 if storage fails.
    """
    key = db_models.CollectionKey(tehsil, mauza)
    try:
        collection = await engine.reset(key)
    except errors.NaqshaError as exc:
        raise _translate(exc) from exc

    return {"success": True, "data": collection.to_geojson()}
