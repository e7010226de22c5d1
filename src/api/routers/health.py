"""Liveness and dependency status."""
import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from core.redis import get_redis_client


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Overall status plus the state of each backing service."""

    status: Literal["healthy", "degraded"]
    database: Literal["healthy", "unhealthy"]
    redis: Literal["connected", "unavailable"]
    # Where change events are delivered: across processes via Redis, or in this process only
    realtime: Literal["redis", "local"]


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_database_check_failed")
        return False
    return True


async def _redis_ok() -> bool:
    redis_client = get_redis_client()
    return redis_client is not None and await redis_client.ping()


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_async_session)) -> HealthResponse:
    """
    Report database and Redis reachability.

    Losing Redis does not make the service unhealthy: change events are then
    delivered only to sessions connected to this process.
    """
    database_ok = await _database_ok(db)
    redis_ok = await _redis_ok()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database="healthy" if database_ok else "unhealthy",
        redis="connected" if redis_ok else "unavailable",
        realtime="redis" if redis_ok else "local",
    )
