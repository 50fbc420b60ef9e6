"""
Main entrypoint for the REST Platform API.

This module assembles the FastAPI application, sets up logging,
registers the platform error handler and includes versioned routers.
The ``create_app`` function builds and configures the app, which is
then instantiated at module import time as ``app``, e.g.::

    uvicorn rest_platform_api.app.main:app --reload
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.v1.router import router as v1_router
from .core.config import settings
from .core.db import init_db
from .core.exceptions import PlatformError
from .core.logging_config import setup_logging


async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    """Render service errors like ``HTTPException`` responses."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    """Create and configure a FastAPI application.

    Returns
    -------
    FastAPI
        A configured FastAPI application instance.
    """
    # Logging first so that everything below can log.
    setup_logging(settings.log_level, settings.log_file or None)

    app = FastAPI(title=settings.project_name, version=settings.api_version, debug=settings.debug)
    app.add_exception_handler(PlatformError, platform_error_handler)
    app.include_router(v1_router, prefix="/api/v1")

    @app.on_event("startup")
    async def startup_event() -> None:
        # Creates the database file if needed and applies migrations.
        init_db()

    return app


# Created at import time so that uvicorn can discover it.
app = create_app()
