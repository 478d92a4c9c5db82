"""Naqsha engine: cadastral geometry transforms and tile caching backend.

This package realigns and subdivides cadastral map geometry and serves
raster shajra tiles through a local cache:

- Shifts stored mauza feature collections by a metric offset in
  Web-Mercator space and resets them onto a recorded baseline extent
- Computes bounding boxes over Polygon and MultiPolygon features
- Subdivides a square ("Murabba") into a 5x5 grid of cells, preferring a
  precomputed named overlay when one is available
- Caches remotely fetched raster tiles in a content-addressed blob store
  and keeps a bounded FIFO set of active overlay layers

See the module docstrings for details on each component.
"""
