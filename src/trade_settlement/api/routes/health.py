"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by container healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from trade_settlement.infrastructure.database.engine import get_session_factory
from trade_settlement.infrastructure.redis_client import get_redis, redis_available
from trade_settlement.logging_config import get_logger
from trade_settlement.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "not_configured"

    try:
        session_factory = getattr(request.app.state, "session_factory", None)
        session_factory = session_factory or get_session_factory()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = "unhealthy"
        logger.error("health.db_check_failed", error=str(exc))

    if redis_available():
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = "unhealthy"
            logger.error("health.redis_check_failed", error=str(exc))

    # Redis is optional; only the database decides ok vs degraded
    overall = "ok" if db_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
    )
