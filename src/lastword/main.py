"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS for the
cross-origin widget, Sentry, error handlers for the engine's typed errors,
lifespan events for database initialization, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.lastword.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.lastword.api.v1.router import router as v1_router
from src.lastword.config import get_settings
from src.lastword.core.database import close_db, init_db
from src.lastword.core.errors import LastwordError, ProviderError
from src.lastword.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.lastword.core.redis import close_redis
from src.lastword.core.tasks import drain_background_tasks

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and Sentry on startup, drain and close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    logger.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    # Let in-flight insight persistence and notifications finish.
    await drain_background_tasks()
    await close_redis()
    await close_db()
    logger.info("app.stopped")


async def lastword_error_handler(request: Request, exc: LastwordError) -> JSONResponse:
    """Render engine errors as ``{"error": message}`` with their status code."""
    if isinstance(exc, ProviderError):
        logger.error(
            "provider.request_failed",
            path=request.url.path,
            status_code=exc.status_code,
            upstream_status=exc.upstream_status,
            error=str(exc),
        )
    else:
        logger.info("request.rejected", path=request.url.path, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Lastword API",
        version="0.1.0",
        description="AI exit interviews with structured churn insights",
        lifespan=lifespan,
    )

    app.add_exception_handler(LastwordError, lastword_error_handler)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware (widget is embedded on customer sites)
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["authorization", "x-api-key", "content-type"],
        expose_headers=["X-Insight-Id", "X-Request-ID"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
