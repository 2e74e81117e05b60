"""
AprovaFácil Backend - Main FastAPI Application

Builds the application, wires the cache manager into ``app.state`` during
the lifespan and mounts the health and cache administration routers.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.endpoints.cache import router as cache_router
from .api.endpoints.health import router as health_router
from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .services.cache.cache_manager import CacheManager

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    cache_manager: Optional[CacheManager] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        cache_manager: Pre-built cache manager; built from settings if omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: configure logging, start and stop the cache."""
        configure_logging(settings)
        logger.info(
            "Starting AprovaFácil API",
            version=settings.SERVICE_VERSION,
            environment=settings.ENVIRONMENT,
            cache_provider=settings.CACHE_PROVIDER,
        )

        manager = cache_manager or CacheManager.from_settings(settings)
        await manager.start()
        app.state.cache_manager = manager
        app.state.startup_time = datetime.now(timezone.utc)

        try:
            yield
        finally:
            logger.info("Shutting down AprovaFácil API")
            await manager.close()
            app.state.cache_manager = None
            logger.info("Application shutdown completed")

    app = FastAPI(
        title="AprovaFácil API",
        description="AprovaFácil backend core services",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.include_router(health_router, tags=["health"])
    app.include_router(cache_router, tags=["cache-admin"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unhandled errors and return a generic 500 response."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
