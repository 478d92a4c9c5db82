"""Overlay grid endpoints.

Clicking a square ("Murabba") on the map asks for its overlay of cells. The
overlay is fetched from the precomputed named overlays when one exists for
the square's number, and generated procedurally from the square's corners
otherwise. At most ``max_active_overlays`` layers are kept; the oldest is
evicted when a new one is added.
"""

from __future__ import annotations

from typing import Any

import fastapi
import pydantic

from naqsha.core import config
from naqsha.db import models as db_models
from naqsha.services import overlay as overlay_service
from naqsha.services import remote

router = fastapi.APIRouter(prefix="/api/overlays", tags=["overlays"])

LonLatPair = tuple[float, float]


class CornersModel(pydantic.BaseModel):
    top_left: LonLatPair
    top_right: LonLatPair
    bottom_right: LonLatPair
    bottom_left: LonLatPair


class OverlayRequest(pydantic.BaseModel):
    """Body of an overlay request.

    Either ``corners`` or a square ``feature`` (GeoJSON) must be given.
    ``key`` is the square's identifier, such as its Murabba number; when
    omitted it is taken from the feature's ``Murabba_No`` property.
    """

    corners: CornersModel | None = None
    feature: dict[str, Any] | None = None
    key: str | None = None

    @pydantic.model_validator(mode="after")
    def _require_source(self) -> OverlayRequest:
        if self.corners is None and self.feature is None:
            raise ValueError("corners or feature is required")
        return self


def _get_retention() -> overlay_service.OverlayRetention:
    return overlay_service.get_overlay_retention()


def _get_resolver(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> remote.NamedOverlayResolverProtocol:
    return remote.HttpNamedOverlayResolver(settings.fetch_timeout_seconds)


def _get_template(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> db_models.FeatureCollection | None:
    if settings.overlay_template_path is None:
        return None
    return overlay_service.load_template(settings.overlay_template_path)


def _corners(body: OverlayRequest) -> db_models.OverlayCorners:
    if body.corners is not None:
        return db_models.OverlayCorners(
            top_left=body.corners.top_left,
            top_right=body.corners.top_right,
            bottom_right=body.corners.bottom_right,
            bottom_left=body.corners.bottom_left,
        )

    try:
        feature = db_models.Feature.from_geojson(body.feature or {})
        return overlay_service.corners_from_feature(feature)
    except (ValueError, TypeError, AttributeError) as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc


def _overlay_key(body: OverlayRequest) -> str | None:
    """Explicit key, else the square feature's ``Murabba_No`` property."""
    if body.key is not None:
        return body.key

    properties = (body.feature or {}).get("properties")
    if isinstance(properties, dict) and properties.get("Murabba_No") is not None:
        return str(properties["Murabba_No"])
    return None


def _layer_summary(layer: db_models.OverlayLayer) -> dict[str, Any]:
    return {
        "id": layer.id,
        "source": layer.source,
        "key": layer.key,
        "created_at": layer.created_at.isoformat(),
    }


def _layer_to_dict(layer: db_models.OverlayLayer) -> dict[str, Any]:
    return {**_layer_summary(layer), "data": layer.collection.to_geojson()}


@router.post("")
async def create_overlay(
    body: OverlayRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    retention: overlay_service.OverlayRetention = fastapi.Depends(  # noqa: B008
        _get_retention
    ),
    resolver: remote.NamedOverlayResolverProtocol = fastapi.Depends(  # noqa: B008
        _get_resolver
    ),
    template: db_models.FeatureCollection | None = fastapi.Depends(  # noqa: B008
        _get_template
    ),
) -> dict[str, Any]:
    """Resolve or generate the overlay of a square and make it active.

    Returns:
        The new layer with its cells, the id of the layer evicted to make
        room (or None), and the active layer ids in creation order.

    Raises:
        HTTPException: 422 if the square feature is not a usable polygon or
            the configured template does not match the grid size.
    """
    corners = _corners(body)
    key = _overlay_key(body)
    base_location = (
        str(settings.overlay_base_url) if settings.overlay_base_url else None
    )
    try:
        layer = await overlay_service.resolve_or_generate_overlay(
            corners,
            base_location=base_location,
            key=key,
            resolver=resolver,
            template=template,
            matrix_size=settings.overlay_matrix_size,
        )
    except ValueError as exc:
        raise fastapi.HTTPException(status_code=422, detail=str(exc)) from exc

    evicted = retention.add(layer)
    return {
        "layer": _layer_to_dict(layer),
        "evicted": evicted.id if evicted else None,
        "active": [active.id for active in retention.active()],
    }


@router.get("")
async def list_overlays(
    retention: overlay_service.OverlayRetention = fastapi.Depends(  # noqa: B008
        _get_retention
    ),
) -> list[dict[str, Any]]:
    """List active overlay layers, oldest first."""
    return [_layer_summary(layer) for layer in retention.active()]


@router.get("/{layer_id}")
async def get_overlay(
    layer_id: str,
    retention: overlay_service.OverlayRetention = fastapi.Depends(  # noqa: B008
        _get_retention
    ),
) -> dict[str, Any]:
    """Return one active overlay layer with its cells.

    Raises:
        HTTPException: 404 if the layer is not (or no longer) active.
    """
    layer = retention.get(layer_id)
    if layer is None:
        raise fastapi.HTTPException(status_code=404, detail="Overlay not found")
    return _layer_to_dict(layer)


@router.delete("")
async def clear_overlays(
    retention: overlay_service.OverlayRetention = fastapi.Depends(  # noqa: B008
        _get_retention
    ),
) -> dict[str, int]:
    """Drop every active overlay layer."""
    removed = len(retention)
    retention.clear()
    return {"removed": removed}
