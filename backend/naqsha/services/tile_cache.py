"""Content-addressed local cache for remotely fetched raster tiles.

Tiles are stored in a blob store keyed by their own URL. A request for a
tile is answered from the store when present; otherwise the tile is fetched
from the remote source, stored, and returned. A failed fetch yields None so
the caller can fall back to the direct remote URL or a placeholder tile.
Entries never expire; ``clear_tile_cache`` removes all of them when the map
context changes (for example when another mauza is opened).

The filesystem store names each entry after the SHA-256 digest of its key
and writes through a temporary file followed by an atomic rename, so
concurrent writers of the same tile cannot leave a torn file behind.

Example:
    >>> from naqsha.services import remote, tile_cache
    >>> cache = tile_cache.TileCacheManager(
    ...     tile_cache.FileSystemBlobStore(pathlib.Path("/tmp/tiles")),
    ...     remote.HttpTileSource(timeout=10.0),
    ... )
    >>> handle = await cache.get_or_fetch_tile(url)
    >>> png = handle.data if handle else None
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import os
import tempfile
from typing import TYPE_CHECKING, Protocol

from fastapi import concurrency

from naqsha.core import errors

if TYPE_CHECKING:
    import pathlib

    from naqsha.services import remote

logger = logging.getLogger(__name__)


def content_address(key: str) -> str:
    """Stable storage name for a cache key."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class BlobStoreProtocol(Protocol):
    """Key/value store for binary blobs shared by all tile requests."""

    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, data: bytes) -> None: ...

    def clear_all(self) -> int: ...


class InMemoryBlobStore(BlobStoreProtocol):
    """Dictionary-backed blob store for tests and local development."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._blobs.get(key)

    def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = data

    def clear_all(self) -> int:
        count = len(self._blobs)
        self._blobs.clear()
        return count

    def __len__(self) -> int:
        return len(self._blobs)


class FileSystemBlobStore(BlobStoreProtocol):
    """Blob store keeping one file per entry under a root directory."""

    SUFFIX = ".blob"

    def __init__(self, root: pathlib.Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> pathlib.Path:
        return self.root / f"{content_address(key)}{self.SUFFIX}"

    def get(self, key: str) -> bytes | None:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes) -> None:
        target = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def clear_all(self) -> int:
        removed = 0
        for path in self.root.glob(f"*{self.SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed


@dataclasses.dataclass(frozen=True)
class TileHandle:
    """A tile served from the cache or freshly fetched.

    Attributes:
        url: The tile URL, which is also its cache key.
        data: Raw tile bytes.
        cached: True when the bytes came from the blob store.
    """

    url: str
    data: bytes
    cached: bool


class TileCacheManager:
    """Get-or-fetch access to raster tiles through a blob store."""

    def __init__(
        self,
        store: BlobStoreProtocol,
        source: remote.TileSourceProtocol,
    ) -> None:
        self.store = store
        self.source = source

    async def get_or_fetch_tile(self, url: str) -> TileHandle | None:
        """Return a tile from the store, fetching and storing it on a miss.

        Args:
            url: Tile URL, used as the cache key.

        Returns:
            TileHandle with the tile bytes, or None when the tile is not
            cached and could not be fetched.
        """
        try:
            cached = await concurrency.run_in_threadpool(self.store.get, url)
        except OSError:
            logger.exception(
                "Tile cache read failed", extra={"extra": {"url": url}}
            )
            cached = None
        if cached is not None:
            logger.debug("Tile cache hit", extra={"extra": {"url": url}})
            return TileHandle(url=url, data=cached, cached=True)

        try:
            data = await self.source.fetch_tile(url)
        except errors.FetchFailure as exc:
            logger.warning(
                "Failed to fetch tile",
                extra={"extra": {"url": url, "reason": exc.reason}},
            )
            return None

        try:
            await concurrency.run_in_threadpool(self.store.put, url, data)
        except OSError:
            logger.exception(
                "Tile cache write failed", extra={"extra": {"url": url}}
            )
        else:
            logger.info("Tile cached", extra={"extra": {"url": url}})
        return TileHandle(url=url, data=data, cached=False)

    async def clear_tile_cache(self) -> int:
        """Remove every cached tile and return how many were removed."""
        removed = await concurrency.run_in_threadpool(self.store.clear_all)
        logger.info(
            "All cached tiles have been deleted",
            extra={"extra": {"removed": removed}},
        )
        return removed
