"""
Imprint Template Upload Service - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Storage abstraction (local + S3)
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from imprint.core.config import settings
from imprint.core.database import create_db_and_tables, engine
from imprint.core.logging import setup_logging, get_logger
from imprint.core.exceptions import register_exception_handlers
from imprint.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from imprint.api.v1 import api_v1_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    # Initialize database
    await create_db_and_tables()
    logger.info("database_initialized")

    # Set Prometheus app info
    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Upload images and run them through reusable transformation templates.

    - **Templates**: named bundles of geometry, tone, frame, watermark and output settings
    - **Uploads**: pending -> processing -> completed | failed, with per-stage timing
    - **Storage**: local filesystem or any S3-compatible bucket
    - **Observability**: Structured logging, Prometheus metrics

    ## API Versioning

    All endpoints are versioned under `/api/v1/`

    ## Pipeline Stages

    1. **Geometry** - crop, then resize by fit mode
    2. **Tone** - brightness/saturation/hue, contrast, blur, sharpen
    3. **Frame** - padded box with border, radius and drop shadow
    4. **Watermark** - text overlay
    5. **Encode** - jpeg, png, webp or avif
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Record metrics
    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    # Add timing header
    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================

# Serve locally stored results under the URL prefix LocalStorage hands out
if settings.STORAGE_BACKEND.lower() == "local" and Path(settings.LOCAL_STORAGE_PATH).exists():
    app.mount(
        settings.LOCAL_STORAGE_URL_PREFIX,
        StaticFiles(directory=settings.LOCAL_STORAGE_PATH),
        name="storage"
    )


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready():
    """Readiness check - verifies the database is reachable."""
    database_ok = True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("readiness_database_unavailable", error=str(e))
        database_ok = False

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={"ready": database_ok, "checks": {"database": database_ok}}
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "imprint.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
