"""Database helpers and repositories for stored feature collections."""

from __future__ import annotations

import copy
import json
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from naqsha.core import errors
from naqsha.db import models as db_models

if TYPE_CHECKING:
    from naqsha.core import config


class FeatureCollectionRepositoryProtocol(Protocol):
    """Protocol interface for loading and saving named feature collections.

    Each collection is identified by a ``CollectionKey`` (tehsil + mauza) and
    may carry a shift baseline, the original un-shifted extent recorded on
    the first shift. Implementations raise ``PersistenceFailure`` when the
    backing store cannot be reached.
    """

    def add(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> db_models.FeatureCollection: ...

    def load_feature_collection(
        self, key: db_models.CollectionKey
    ) -> db_models.FeatureCollection | None: ...

    def save_feature_collection(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> None: ...

    def load_baseline(
        self, key: db_models.CollectionKey
    ) -> db_models.Bounds | None: ...

    def save_baseline(
        self, key: db_models.CollectionKey, bounds: db_models.Bounds
    ) -> None: ...


class InMemoryFeatureCollectionRepository(FeatureCollectionRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Collections are deep-copied on the way in and out so callers never share
    state with the store. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._collections: dict[
            db_models.CollectionKey, db_models.FeatureCollection
        ] = {}
        self._baselines: dict[db_models.CollectionKey, db_models.Bounds] = {}

    def add(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> db_models.FeatureCollection:
        """Store a collection without touching its baseline.

        Args:
            key: Identity of the collection.
            collection: Collection to store.

        Returns:
            The stored collection.
        """
        self._collections[key] = copy.deepcopy(collection)
        return collection

    def load_feature_collection(
        self, key: db_models.CollectionKey
    ) -> db_models.FeatureCollection | None:
        found = self._collections.get(key)
        return copy.deepcopy(found) if found is not None else None

    def save_feature_collection(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> None:
        self._collections[key] = copy.deepcopy(collection)

    def load_baseline(
        self, key: db_models.CollectionKey
    ) -> db_models.Bounds | None:
        return self._baselines.get(key)

    def save_baseline(
        self, key: db_models.CollectionKey, bounds: db_models.Bounds
    ) -> None:
        self._baselines[key] = bounds


class PostgresFeatureCollectionRepository(FeatureCollectionRepositoryProtocol):
    """PostgreSQL-backed repository for feature collections and baselines.

    Collections live in the ``geojson`` table as JSONB documents next to an
    optional ``default_bounds`` column holding the shift baseline as
    ``[[minLat, minLng], [maxLat, maxLng]]``. The table is created on
    initialization. Driver errors are raised as ``PersistenceFailure``.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS geojson (
      tehsil TEXT NOT NULL,
      mauza TEXT NOT NULL,
      data JSONB NOT NULL,
      default_bounds JSONB,
      PRIMARY KEY (tehsil, mauza)
    );
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        try:
            return psycopg2.connect(self.settings.database_url)
        except psycopg2.Error as exc:
            raise errors.PersistenceFailure(str(exc)) from exc

    def _execute(
        self, sql: str, params: dict[str, object]
    ) -> tuple[object, ...] | None:
        """Run one statement in its own transaction and return the first row."""
        try:
            with self._connection() as conn, conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone() if cur.description else None
                conn.commit()
        except psycopg2.Error as exc:
            raise errors.PersistenceFailure(str(exc)) from exc
        return cast(tuple[object, ...] | None, row)

    def _ensure_schema(self) -> None:
        self._execute(self.CREATE_TABLE_SQL, {})

    def add(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> db_models.FeatureCollection:
        self.save_feature_collection(key, collection)
        return collection

    def load_feature_collection(
        self, key: db_models.CollectionKey
    ) -> db_models.FeatureCollection | None:
        row = self._execute(
            "SELECT data FROM geojson WHERE tehsil = %(tehsil)s "
            "AND mauza = %(mauza)s",
            self._key_params(key),
        )
        if row is None:
            return None

        return db_models.FeatureCollection.from_geojson(
            self._decode(row[0])
        )

    def save_feature_collection(
        self,
        key: db_models.CollectionKey,
        collection: db_models.FeatureCollection,
    ) -> None:
        self._execute(
            """
            INSERT INTO geojson (tehsil, mauza, data)
            VALUES (%(tehsil)s, %(mauza)s, %(data)s)
            ON CONFLICT (tehsil, mauza) DO UPDATE SET data = EXCLUDED.data;
            """,
            {
                **self._key_params(key),
                "data": psycopg2.extras.Json(collection.to_geojson()),
            },
        )

    def load_baseline(
        self, key: db_models.CollectionKey
    ) -> db_models.Bounds | None:
        row = self._execute(
            "SELECT default_bounds FROM geojson WHERE tehsil = %(tehsil)s "
            "AND mauza = %(mauza)s",
            self._key_params(key),
        )
        if row is None or row[0] is None:
            return None

        return db_models.Bounds.from_list(self._decode(row[0]))

    def save_baseline(
        self, key: db_models.CollectionKey, bounds: db_models.Bounds
    ) -> None:
        self._execute(
            "UPDATE geojson SET default_bounds = %(bounds)s "
            "WHERE tehsil = %(tehsil)s AND mauza = %(mauza)s",
            {
                **self._key_params(key),
                "bounds": psycopg2.extras.Json(bounds.to_list()),
            },
        )

    @staticmethod
    def _key_params(key: db_models.CollectionKey) -> dict[str, object]:
        return {"tehsil": key.tehsil, "mauza": key.mauza}

    @staticmethod
    def _decode(value: object) -> Any:
        """Decode a JSONB column value; psycopg2 usually pre-parses it."""
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value


def get_feature_collection_repository(
    settings: config.Settings,
) -> FeatureCollectionRepositoryProtocol:
    """Factory function to create a feature collection repository.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresFeatureCollectionRepository instance for production use.
    """
    return PostgresFeatureCollectionRepository(settings)
