from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from paneltrack.config import settings
from paneltrack.api.v1.router import api_router
from paneltrack.core.exceptions import (
    AggregationError,
    BarcodeFormatError,
    DataIncompleteError,
    DocumentationError,
    LineConfigurationError,
    NotFoundError,
    PanelTrackError,
    SpecificationValidationError,
    StateConflictError,
    StationSequenceError,
)
from paneltrack.database import init_db, async_session_factory
from paneltrack.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    BarcodeFormatError: status.HTTP_400_BAD_REQUEST,
    LineConfigurationError: status.HTTP_400_BAD_REQUEST,
    SpecificationValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DocumentationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DataIncompleteError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StationSequenceError: status.HTTP_409_CONFLICT,
    StateConflictError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AggregationError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables
    - Start background scheduler (MO monitor, alert cleanup)
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Barcode decoding, station inspections and manufacturing order tracking for solar panel production.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(api_router)


@app.exception_handler(PanelTrackError)
async def panel_track_exception_handler(request: Request, exc: PanelTrackError):
    """Classified domain errors: kind, code and every violated rule."""
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc!r}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}/{exc.code}")

    content = exc.to_dict()
    content["path"] = str(request.url.path)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unclassified failures. Details go to the log, not the client."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "kind": "INTERNAL_ERROR",
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        },
        "jobs": get_job_status(),
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = "unavailable"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
