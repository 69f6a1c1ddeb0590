"""Health check endpoint.

Verifies connectivity to the database, Redis, and the settlement backend,
and returns structured status. Used by load balancers and monitoring.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from secure_swap.logging_config import get_logger
from secure_swap.schemas.trade import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check the database, Redis, and the settlement backend."""
    db_status = "unknown"
    redis_status = "unknown"
    settlement_status = "unknown"

    # Check database
    try:
        from secure_swap.infrastructure.database.engine import get_engine

        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    # Check Redis (optional; only the idempotency cache depends on it)
    try:
        from secure_swap.infrastructure.redis_client import get_redis

        redis = get_redis()
        await redis.ping()
        redis_status = "healthy"
    except RuntimeError:
        redis_status = "disabled"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.error("health.redis_check_failed", error=str(exc))

    # Check settlement backend
    executor = getattr(request.app.state, "executor", None)
    if executor is not None:
        try:
            settlement_status = "healthy" if await executor.ping() else "unhealthy"
        except Exception as exc:
            settlement_status = f"unhealthy: {exc}"
            logger.error("health.settlement_check_failed", error=str(exc))

    healthy = db_status == "healthy" and settlement_status == "healthy"
    overall = "ok" if healthy and redis_status in ("healthy", "disabled") else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        settlement=settlement_status,
    )
