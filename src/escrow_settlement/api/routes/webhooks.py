"""Gateway webhook endpoint.

    POST /api/v1/webhooks/gateway

The raw body is read before any parsing because the signature covers the
exact bytes the gateway sent. Status codes tell the gateway what to do:
200 for anything it should stop retrying (applied, duplicate, unknown link
id, ignored, deferred), 401 for a bad signature, 5xx for local failures it
should redeliver.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from escrow_settlement.api.deps import get_app_settings, get_webhook_reconciler
from escrow_settlement.config import Settings  # noqa: TC001
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.payment import WebhookAckResponse
from escrow_settlement.services.webhook_reconciler import WebhookReconciler  # noqa: TC001

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post(
    "/gateway",
    response_model=WebhookAckResponse,
    summary="Receive a payment gateway notification",
)
async def receive_gateway_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
    settings: Settings = Depends(get_app_settings),
) -> WebhookAckResponse:
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    result = await reconciler.handle(raw_body, signature)

    logger.info("webhook.acknowledged", event_id=result.event_id, outcome=result.outcome.value)
    return WebhookAckResponse(event_id=result.event_id, outcome=result.outcome)
