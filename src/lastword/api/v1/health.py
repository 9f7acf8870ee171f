"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.lastword.config import get_settings
from src.lastword.core.database import get_engine
from src.lastword.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database, Redis, and provider key configuration. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok", "providers": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    # The primary key is required; the secondary only enables fallback.
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        checks["providers"] = "no_primary_key"
    elif not settings.GEMINI_API_KEY:
        checks["providers"] = "no_fallback"

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies DB and Redis connectivity and provider keys.

    Returns 200 if all pass, 503 if any critical dependency fails.
    """
    checks = await _check_dependencies()
    all_healthy = (
        checks.get("database") == "ok"
        and checks.get("redis") == "ok"
        and checks.get("providers") in ("ok", "no_fallback")
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
