"""Cached raster tile endpoints for shajra (cadastral sheet) imagery.

Tiles are addressed in standard XYZ form under a tehsil and mauza and are
served from the local tile cache. A tile missing from the cache is fetched
from the remote tile source and stored. When it cannot be fetched, the
client is redirected to the remote URL directly so the map can still try
to load it, or show its error tile.

Example:
    Request a tile:
        >>> response = client.get("/tiles/Kabirwala/Sarai/18/187012/107004.png")
        >>> response.headers["X-Tile-Cache"]
        'miss'

    Drop all cached tiles after switching mauza:
        >>> client.delete("/tiles/cache").json()
        {'removed': 42}
"""

from __future__ import annotations

import urllib.parse

import fastapi
from fastapi import responses

from naqsha.core import config
from naqsha.services import remote, tile_cache

router = fastapi.APIRouter(prefix="/tiles", tags=["tiles"])


def _build_tile_url(
    base: str, tehsil: str, mauza: str, z: int, x: int, y: int
) -> str:
    """Construct the remote URL of a raster tile.

    Args:
        base: Base URL of the remote tile source.
        tehsil: Tehsil name.
        mauza: Mauza name.
        z: Zoom level.
        x: Tile X coordinate.
        y: Tile Y coordinate.

    Returns:
        ``{base}/{tehsil}/{mauza}/{z}/{x}/{y}.png`` with path segments quoted.
    """
    quote = urllib.parse.quote
    return f"{base.rstrip('/')}/{quote(tehsil)}/{quote(mauza)}/{z}/{x}/{y}.png"


def _get_tile_cache(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> tile_cache.TileCacheManager:
    """Resolve the tile cache manager dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        TileCacheManager over the filesystem blob store and the HTTP tile
        source.
    """
    return tile_cache.TileCacheManager(
        tile_cache.FileSystemBlobStore(settings.tile_cache_dir),
        remote.HttpTileSource(settings.fetch_timeout_seconds),
    )


@router.get("/{tehsil}/{mauza}/{z}/{x}/{y}.png")
async def raster_tile(
    tehsil: str,
    mauza: str,
    z: int,
    x: int,
    y: int,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    cache: tile_cache.TileCacheManager = fastapi.Depends(_get_tile_cache),  # noqa: B008
) -> fastapi.Response:
    """Serve a raster tile from the local cache, fetching it on a miss.

    Returns:
        PNG response with ``X-Tile-Cache`` set to "hit" or "miss", or a
        redirect to the remote tile URL when the tile could not be fetched.
    """
    url = _build_tile_url(str(settings.tile_base_url), tehsil, mauza, z, x, y)
    handle = await cache.get_or_fetch_tile(url)
    if handle is None:
        return responses.RedirectResponse(url)

    return responses.Response(
        content=handle.data,
        media_type="image/png",
        headers={"X-Tile-Cache": "hit" if handle.cached else "miss"},
    )


@router.delete("/cache")
async def clear_tile_cache(
    cache: tile_cache.TileCacheManager = fastapi.Depends(_get_tile_cache),  # noqa: B008
) -> dict[str, int]:
    """Remove every cached tile.

    Called by the client when the map context changes so stale imagery is
    never shown for another mauza.
    """
    return {"removed": await cache.clear_tile_cache()}
