"""API router subpackage for the naqsha backend.

Submodules:
    - geojson: Retrieval, bounds, shift and reset of stored mauza GeoJSON.
    - overlays: Resolution, generation and retention of overlay grids.
    - tiles: Cached raster tile serving and bulk cache clearing.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
