"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from database import engine

router = APIRouter()

REQUIRED_PROVIDER_SETTINGS = (
    "CNPJA_API_KEY",
    "CNPJWS_API_KEY",
    "ABACATEPAY_API_KEY",
    "ABACATEPAY_WEBHOOK_SECRET",
)


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "rate_limit_backend": settings.RATE_LIMIT_BACKEND,
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except (SQLAlchemyError, OSError) as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    if settings.RATE_LIMIT_BACKEND == "redis":
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except (RedisError, OSError) as e:
            # Rate limiting falls back to local counters.
            health_status["redis"] = f"down: {str(e)}"
    else:
        health_status["redis"] = "disabled"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: required provider credentials are configured."""
    missing = [name for name in REQUIRED_PROVIDER_SETTINGS if not str(getattr(settings, name, "") or "").strip()]

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Liveness probe."""
    return {"alive": True}
