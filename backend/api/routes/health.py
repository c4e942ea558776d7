"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.config import get_settings
from infrastructure.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        return True
    except TimeoutError:
        logger.error("Health check DB timeout")
    except SQLAlchemyError as e:
        logger.error("Health check DB error: %s", e)
    return False


async def _redis_status() -> str:
    if not settings.redis_url:
        return "not_configured"
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.redis_url)
        await asyncio.wait_for(r.ping(), timeout=2.0)
        await r.aclose()
        return "ok"
    except Exception as e:
        logger.warning("Health check Redis error: %s", e)
        return "degraded"


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness probe; Redis being down is tolerated."""
    db_ok = await _database_ok(db)
    return {
        "ready": db_ok,
        "database": "ok" if db_ok else "unavailable",
        "redis": await _redis_status(),
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/live")
async def liveness_check():
    """Liveness probe."""
    return {"alive": True}
