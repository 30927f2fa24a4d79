"""Health check endpoint.

Verifies database connectivity and reports the configured gateway mode.
Used by container healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from escrow_settlement import __version__
from escrow_settlement.api.deps import get_app_settings
from escrow_settlement.config import Settings  # noqa: TC001
from escrow_settlement.infrastructure.database.engine import get_engine
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its database.",
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    db_status = "unknown"
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    return HealthResponse(
        status="ok" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        gateway_mode=settings.gateway_mode,
    )
