"""Shift and reset of stored feature collections.

The engine reads a collection through the persistence collaborator, moves
every coordinate by a metric offset in Web-Mercator space and saves the
result. The first shift of a collection records its current extent as the
baseline; a reset later moves the collection back so that its south-west
corner sits on that baseline again.

Each identity has its own ``asyncio.Lock``, so at most one shift or reset
per collection is in flight and the read, compute, write sequence of one
call is never interleaved with another call for the same collection.
Persistence calls run in the thread pool and their exceptions are
propagated unchanged.

Example:
    >>> from naqsha.db import database, models
    >>> from naqsha.services.shift import ShiftEngine
    >>> engine = ShiftEngine(database.InMemoryFeatureCollectionRepository())
    >>> key = models.CollectionKey("Kabirwala", "Sarai Sidhu")
    >>> shifted = await engine.shift(key, 328.08, "East")
    >>> restored = await engine.reset(key)
"""

from __future__ import annotations

import asyncio
import collections
import functools
import logging
from typing import TYPE_CHECKING

from fastapi import concurrency

from naqsha.core import errors
from naqsha.services import bounds as bounds_service
from naqsha.services import mercator

if TYPE_CHECKING:
    from naqsha.db import database
    from naqsha.db import models as db_models

logger = logging.getLogger(__name__)


class IdentityLocks:
    """One ``asyncio.Lock`` per collection identity, created on first use."""

    def __init__(self) -> None:
        self._locks: collections.defaultdict[
            db_models.CollectionKey, asyncio.Lock
        ] = collections.defaultdict(asyncio.Lock)

    def for_key(self, key: db_models.CollectionKey) -> asyncio.Lock:
        return self._locks[key]


@functools.lru_cache
def get_identity_locks() -> IdentityLocks:
    """Process-wide lock registry shared by every engine instance."""
    return IdentityLocks()


class ShiftEngine:
    """Forward shift and baseline reset over a collection repository."""

    def __init__(
        self,
        repository: database.FeatureCollectionRepositoryProtocol,
        locks: IdentityLocks | None = None,
    ) -> None:
        self.repository = repository
        self.locks = locks or IdentityLocks()

    async def _load(
        self, key: db_models.CollectionKey
    ) -> db_models.FeatureCollection:
        collection = await concurrency.run_in_threadpool(
            self.repository.load_feature_collection, key
        )
        if collection is None:
            raise errors.CollectionNotFoundError(f"GeoJSON not found: {key}")
        return collection

    async def _apply(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
        dx: float,
        dy: float,
    ) -> db_models.FeatureCollection:
        shifted = mercator.shift_collection(collection, dx, dy)
        await concurrency.run_in_threadpool(
            self.repository.save_feature_collection, key, shifted
        )
        return shifted

    async def shift(
        self,
        key: db_models.CollectionKey,
        distance_feet: float,
        direction: str,
    ) -> db_models.FeatureCollection:
        """Move a stored collection by a distance in feet along a direction.

        Records the current extent as the baseline when none exists yet.

        Args:
            key: Identity of the stored collection.
            distance_feet: Distance to move, in feet.
            direction: "North", "South", "East" or "West"; anything else
                moves nothing.

        Returns:
            The shifted collection, as persisted.

        Raises:
            CollectionNotFoundError: If no collection is stored for ``key``.
            NoGeometryError: If a baseline must be recorded but the
                collection has no polygon coordinates.
            PersistenceFailure: If loading or saving fails.
        """
        dx, dy = mercator.compass_offset(distance_feet, direction)
        async with self.locks.for_key(key):
            collection = await self._load(key)
            baseline = await concurrency.run_in_threadpool(
                self.repository.load_baseline, key
            )
            if baseline is None:
                current = bounds_service.bounds_of(collection)
                if current is None:
                    raise errors.NoGeometryError()
                await concurrency.run_in_threadpool(
                    self.repository.save_baseline, key, current
                )
                logger.info(
                    "Recorded shift baseline",
                    extra={
                        "extra": {"key": str(key), "bounds": current.to_list()}
                    },
                )

            shifted = await self._apply(key, collection, dx, dy)

        logger.info(
            "Shifted GeoJSON stored",
            extra={
                "extra": {
                    "key": str(key),
                    "distance_feet": distance_feet,
                    "direction": direction,
                    "dx": dx,
                    "dy": dy,
                }
            },
        )
        return shifted

    async def reset(
        self, key: db_models.CollectionKey
    ) -> db_models.FeatureCollection:
        """Move a stored collection back onto its recorded baseline.

        Aligns the south-west corner of the current extent with the
        baseline's using the equirectangular approximation.

        Args:
            key: Identity of the stored collection.

        Returns:
            The restored collection, as persisted.

        Raises:
            CollectionNotFoundError: If no collection is stored for ``key``.
            PreconditionError: If no baseline has been recorded.
            NoGeometryError: If the collection has no polygon coordinates.
            PersistenceFailure: If loading or saving fails.
        """
        async with self.locks.for_key(key):
            collection = await self._load(key)
            baseline = await concurrency.run_in_threadpool(
                self.repository.load_baseline, key
            )
            if baseline is None:
                raise errors.PreconditionError()

            current = bounds_service.bounds_of(collection)
            if current is None:
                raise errors.NoGeometryError()

            dx, dy = mercator.restoring_offset(current, baseline)
            restored = await self._apply(key, collection, dx, dy)

        logger.info(
            "Reset GeoJSON to baseline",
            extra={"extra": {"key": str(key), "dx": dx, "dy": dy}},
        )
        return restored
