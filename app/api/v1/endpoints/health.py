"""
Health check endpoints
"""

import logging
from typing import Any
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from redis.exceptions import RedisError

from app.core.database import get_session
from app.core.redis import get_redis
from app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "staynest-api"}


@router.get("/ready")
async def readiness(db: AsyncSession = Depends(get_session)) -> Any:
    """
    Kubernetes readiness probe - checks the record store and, when locks
    are distributed, Redis
    """
    checks = {"database": False, "api": True}

    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = result.scalar() == 1
    except SQLAlchemyError as e:
        logger.warning(f"Readiness: database check failed: {e}")

    if settings.PAYMENT_LOCK_BACKEND == "redis":
        checks["redis"] = False
        try:
            client = await get_redis()
            await client.ping()
            checks["redis"] = True
        except (RedisError, OSError) as e:
            logger.warning(f"Readiness: redis check failed: {e}")

    all_healthy = all(checks.values())
    body = {
        "status": "ready" if all_healthy else "not ready",
        "checks": checks,
        "version": settings.APP_VERSION
    }
    return JSONResponse(status_code=200 if all_healthy else 503, content=body)
