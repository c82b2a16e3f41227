"""
Finboard API

FastAPI application exposing the analytics surface. On startup it builds the
service graph, creates tables and starts the recurring scheduler and (when
WORKERS_ENABLED) the in-process analytics workers.

Run:
    uvicorn api.main:app --reload
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.analytics import router as analytics_router
from finboard import __version__
from finboard.database import init_db, check_db_connection
from finboard.errors import NotFoundError, TransientStoreError, ValidationError
from finboard.services import Services, build_services
from finboard.utils.config import get_settings

# Configure logging to stdout
logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    When `services` is given the caller owns its lifecycle; otherwise the
    app builds, starts and closes its own.
    """
    app = FastAPI(
        title="Finboard Analytics",
        description="Multi-tenant finance analytics with cached dashboard views",
        version=__version__,
    )
    app.state.services = services
    app.state.owns_services = services is None

    app.include_router(analytics_router)

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"success": False, "message": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    @app.exception_handler(TransientStoreError)
    async def store_unavailable_handler(request: Request, exc: TransientStoreError):
        logger.error(f"Store unavailable on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Analytics backend temporarily unavailable"},
        )

    # ========================================================================
    # STARTUP / SHUTDOWN
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        if not app.state.owns_services:
            return

        logger.info("Initializing services...")
        services = build_services(get_settings())
        init_db(services.db_engine)
        if not check_db_connection(services.db_engine):
            logger.warning("Database connection check failed - continuing anyway")

        await services.start()
        app.state.services = services
        logger.info("Finboard API ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.owns_services and app.state.services is not None:
            await app.state.services.close()
            app.state.services = None

    # ========================================================================
    # HEALTH
    # ========================================================================

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "Finboard Analytics"}

    @app.get("/api/health")
    async def health():
        """Health check including cache and queue status."""
        services: Services = app.state.services
        cache_health = await services.cache.health_check()
        queue_stats = await services.producer.get_queue_stats()

        return {
            "status": "healthy" if cache_health["healthy"] else "degraded",
            "timestamp": datetime.utcnow().isoformat(),
            "version": __version__,
            "environment": services.settings.ENVIRONMENT,
            "cache": cache_health,
            "queue": queue_stats,
            "workers_running": services.worker.is_running,
        }

    return app


app = create_app()
