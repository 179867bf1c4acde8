"""Main FastAPI application."""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest
from starlette.middleware.gzip import GZipMiddleware

from schemagrid.collaboration.realtime import CollaborationEngine
from schemagrid.collaboration.transport import ConnectionManager
from schemagrid.config import settings
from schemagrid.conversion.service import SchemaConversionService
from schemagrid.exceptions import (
    ConflictError,
    ConflictResolutionError,
    FormatError,
    NotFoundError,
    SchemaGridException,
    SecurityError,
    ValidationError,
)
from schemagrid.grid.manager import GridManager

# Metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds", "HTTP request duration", ["method", "endpoint"]
)

logger = structlog.get_logger()

ERROR_STATUS = [
    (SecurityError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (FormatError, 422),
    (ValidationError, 400),
    (ConflictResolutionError, 400),
]


def status_for(exc: SchemaGridException) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting SchemaGrid application", version=settings.app_version)
    try:
        yield
    finally:
        logger.info("Shutting down SchemaGrid application")
        for connection in list(app.state.connection_manager.connections):
            await app.state.connection_manager.disconnect(connection)
        app.state.grid_manager.destroy_all_grids()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Collaborative grid editing for schema documents",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Engines live on the app so each app (and each test) gets its own
    conversion_service = SchemaConversionService()
    grid_manager = GridManager(conversion_service)
    collaboration_engine = CollaborationEngine()
    collaboration_engine.add_change_listener(grid_manager.apply_collaboration_change)

    app.state.conversion_service = conversion_service
    app.state.grid_manager = grid_manager
    app.state.collaboration_engine = collaboration_engine
    app.state.connection_manager = ConnectionManager(collaboration_engine)

    # Configure CORS
    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=settings.cors_credentials,
            allow_methods=settings.cors_methods,
            allow_headers=settings.cors_headers,
        )

    # Compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Request logging and metrics middleware
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next) -> Response:
        start_time = time.time()

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            client_host=request.client.host if request.client else None,
        )

        response = await call_next(request)
        duration = time.time() - start_time

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
        ).inc()

        REQUEST_DURATION.labels(
            method=request.method,
            endpoint=request.url.path,
        ).observe(duration)

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            duration=duration,
        )

        return response

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": time.time(),
            "grids": len(grid_manager.grids),
            "sessions": len(collaboration_engine.get_active_sessions()),
        }

    # Metrics endpoint
    if settings.metrics_enabled:
        @app.get("/metrics")
        async def metrics():
            """Prometheus metrics endpoint."""
            return Response(
                generate_latest(),
                media_type="text/plain",
            )

    @app.exception_handler(SchemaGridException)
    async def schemagrid_exception_handler(request: Request, exc: SchemaGridException):
        """Map domain errors to JSON error bodies."""
        status_code = status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "Request failed",
            error=exc.message,
            code=exc.code,
            status_code=status_code,
            url=str(request.url),
            method=request.method,
        )
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            url=str(request.url),
            method=request.method,
            exc_info=True,
        )

        if settings.is_development:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal Server Error",
                    "detail": str(exc),
                    "type": type(exc).__name__,
                },
            )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error"},
        )

    # Include routers
    from schemagrid.collaboration.routes import router as collaboration_router
    from schemagrid.collaboration.routes import ws_router
    from schemagrid.conversion.routes import router as schemas_router
    from schemagrid.grid.routes import router as grids_router

    app.include_router(schemas_router, prefix="/api/v1", tags=["Schemas"])
    app.include_router(grids_router, prefix="/api/v1", tags=["Grids"])
    app.include_router(collaboration_router, prefix="/api/v1", tags=["Collaboration"])
    app.include_router(ws_router, tags=["Collaboration"])

    return app


# Create the app instance
app = create_app()
