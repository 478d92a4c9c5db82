"""Geospatial transforms, overlay generation and tile caching services."""
