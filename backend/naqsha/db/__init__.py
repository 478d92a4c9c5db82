"""Persistence interface and repository abstractions.

This package holds the data models for stored cadastral feature collections
and the repositories that load and save them together with their shift
baselines. The engine depends only on
``FeatureCollectionRepositoryProtocol``; PostgreSQL and in-memory
implementations are provided.

Example:
    Use in a service or FastAPI dependency:
        >>> from naqsha.db import database
        >>> repo = database.get_feature_collection_repository(settings)
"""
