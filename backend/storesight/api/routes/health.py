"""
Health check routes.

Unauthenticated. The SPA's service-status monitor polls /api/health/summary.
Redis is optional, so an unconfigured Redis counts as healthy for the
summary status.
"""

import logging
import os
import time
from typing import Any, Dict

from fastapi import APIRouter
from sqlalchemy import text

from storesight.database.session import get_engine, is_database_configured
from storesight.platform.redis_cache import RedisClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])

APPLICATION_NAME = "storesight-backend"


def check_database() -> Dict[str, Any]:
    if not is_database_configured():
        return {"status": "unhealthy", "error": "Database not configured"}

    started = time.monotonic()
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database health check failed", extra={"error": str(e)})
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "response_time_ms": round((time.monotonic() - started) * 1000, 1),
    }


def check_redis() -> Dict[str, Any]:
    if not os.getenv("REDIS_URL"):
        return {"status": "disabled", "backend": "memory"}

    client = RedisClient()
    if not client.ping():
        return {"status": "unhealthy", "backend": client.backend}
    return {"status": "healthy", "backend": client.backend}


def overall_status(database: Dict[str, Any], redis_status: Dict[str, Any]) -> str:
    if database.get("status") == "healthy" and redis_status.get("status") in ("healthy", "disabled"):
        return "healthy"
    return "degraded"


@router.get("/summary")
async def health_summary():
    database = check_database()
    redis_status = check_redis()
    return {
        "application": APPLICATION_NAME,
        "timestamp": int(time.time() * 1000),
        "status": overall_status(database, redis_status),
        "database": database,
        "redis": redis_status,
    }


@router.get("/database")
async def database_health():
    return check_database()


@router.get("/redis")
async def redis_health():
    return check_redis()
