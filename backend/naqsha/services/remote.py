"""HTTP clients for remote named overlays and raster tiles.

Both clients open a short-lived ``httpx.AsyncClient`` per request with a
bounded timeout. Every failure mode (non-success status, transport error,
timeout, undecodable payload) is raised as ``FetchFailure`` so callers can
fall back without distinguishing them.

Example:
    >>> from naqsha.services.remote import HttpTileSource
    >>> source = HttpTileSource(timeout=10.0)
    >>> png = await source.fetch_tile(
    ...     "http://tiles.local/Shajra%20Parcha/Kabirwala/Sarai/18/1/2.png"
    ... )
"""

from __future__ import annotations

import urllib.parse
from typing import Any, Protocol

import httpx

from naqsha.core import errors
from naqsha.db import models as db_models


class NamedOverlayResolverProtocol(Protocol):
    """Fetches a precomputed overlay keyed by a cell identifier."""

    async def fetch_named_overlay(
        self, base_location: str, key: str
    ) -> db_models.FeatureCollection: ...


class TileSourceProtocol(Protocol):
    """Fetches raw raster tile bytes by URL."""

    async def fetch_tile(self, url: str) -> bytes: ...


def named_overlay_url(base_location: str, key: str) -> str:
    """Build the URL of a named overlay: ``{base}/{quoted key}.geojson``."""
    name = urllib.parse.quote(key, safe="")
    return f"{base_location.rstrip('/')}/{name}.geojson"


async def _get(
    url: str,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), transport=transport
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise errors.FetchFailure(
            url, f"HTTP {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        raise errors.FetchFailure(url, str(exc) or type(exc).__name__) from exc
    return response


class HttpNamedOverlayResolver(NamedOverlayResolverProtocol):
    """Named overlay resolver backed by static GeoJSON files over HTTP."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport

    async def fetch_named_overlay(
        self, base_location: str, key: str
    ) -> db_models.FeatureCollection:
        url = named_overlay_url(base_location, key)
        response = await _get(url, self.timeout, self.transport)
        try:
            payload: Any = response.json()
            return db_models.FeatureCollection.from_geojson(payload)
        except (ValueError, TypeError, AttributeError) as exc:
            raise errors.FetchFailure(url, f"invalid GeoJSON: {exc}") from exc


class HttpTileSource(TileSourceProtocol):
    """Remote raster tile source over HTTP."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport

    async def fetch_tile(self, url: str) -> bytes:
        response = await _get(url, self.timeout, self.transport)
        return response.content
