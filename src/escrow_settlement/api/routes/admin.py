"""Operator endpoints.

    POST /api/v1/admin/payments/expire-stale

Meant to be called from a scheduler (cron, Kubernetes CronJob).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from escrow_settlement.api.deps import get_payment_orchestrator
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.payment import ExpireStaleResponse
from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator  # noqa: TC001

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])
logger = get_logger(__name__)


@router.post(
    "/payments/expire-stale",
    response_model=ExpireStaleResponse,
    summary="Expire payment links older than the configured window",
)
async def expire_stale_payments(
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> ExpireStaleResponse:
    expired = await orchestrator.expire_stale_payments()
    logger.info("admin.expire_stale", expired=expired)
    return ExpireStaleResponse(expired=expired)
