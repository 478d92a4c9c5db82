"""FastAPI application entrypoint and configuration.

This module provides the application factory that configures logging, sets
up CORS middleware, includes the GeoJSON, overlay and tile routers, and
exposes a health check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn naqsha.main:app --reload

    Or imported and used programmatically:
        >>> from naqsha.main import app
        >>> # Use app in ASGI server
"""

import logging

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from naqsha.api import geojson, overlays, tiles
from naqsha.core import config, errors
from naqsha.core import logging as naqsha_logging

logger = logging.getLogger(__name__)


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures JSON logging at the configured level, includes the API
    routers, and adds a health check endpoint. CORS origins are configured
    from settings.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    naqsha_logging.setup_logging(settings.log_level)
    app = fastapi.FastAPI(title="Naqsha Engine", version="0.1.0")

    app.include_router(geojson.router)
    app.include_router(overlays.router)
    app.include_router(tiles.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(errors.PersistenceFailure)
    async def persistence_failure(
        request: fastapi.Request, exc: errors.PersistenceFailure
    ) -> responses.JSONResponse:
        """Report storage outages, including those raised by dependencies."""
        logger.error(
            "Storage unavailable",
            extra={"extra": {"path": request.url.path, "reason": str(exc)}},
        )
        return responses.JSONResponse(
            status_code=503, content={"detail": "Storage unavailable"}
        )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
