"""Simulated payment gateway for local development and demos.

Issues fake hosted-link URLs without any network call. Settlement is then
driven by posting signed webhooks (see `build_signed_webhook`), exactly as
the real gateway would.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from datetime import UTC, datetime
from typing import Any

from escrow_settlement.domain.exceptions import GatewayUnavailableError
from escrow_settlement.domain.gateway_protocol import (
    PAID_LINK_STATUS,
    PaymentLink,
    PaymentLinkRequest,
)
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)


class SimulatedGateway:
    """PaymentGateway that fabricates links and remembers what it issued."""

    def __init__(self, base_url: str = "https://payments.local/link") -> None:
        self._base_url = base_url.rstrip("/")
        self.issued: dict[str, PaymentLinkRequest] = {}
        self.statuses: dict[str, str] = {}

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        self.issued[request.link_id] = request
        self.statuses.setdefault(request.link_id, "ACTIVE")
        logger.info(
            "gateway.link_created",
            link_id=request.link_id,
            amount=request.amount,
            simulated=True,
        )
        return PaymentLink(link_id=request.link_id, link_url=self._url(request.link_id))

    async def get_payment_link(self, link_id: str) -> PaymentLink:
        if link_id not in self.issued:
            raise GatewayUnavailableError(f"Simulated gateway never issued link {link_id}")
        return PaymentLink(
            link_id=link_id, link_url=self._url(link_id), status=self.statuses[link_id]
        )

    def mark_paid(self, link_id: str) -> None:
        """Record that the payer completed the hosted page for ``link_id``."""
        self.statuses[link_id] = PAID_LINK_STATUS

    def _url(self, link_id: str) -> str:
        return f"{self._base_url}/{link_id}"

    async def aclose(self) -> None:
        self.issued.clear()
        self.statuses.clear()


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest the gateway puts in the signature header."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def build_signed_webhook(
    secret: str,
    link_id: str,
    event_type: str = "payment_link.paid",
    amount: int | None = None,
    event_id: str | None = None,
) -> tuple[bytes, str]:
    """Return (body, signature) for a gateway-style webhook delivery."""
    data: dict[str, Any] = {"link_id": link_id}
    if amount is not None:
        data["amount"] = amount
    if event_type == "payment_link.paid":
        data["payment_time"] = datetime.now(UTC).isoformat()
    body = json.dumps(
        {
            "event_id": event_id or f"evt_{uuid.uuid4().hex}",
            "event_type": event_type,
            "data": data,
        }
    ).encode()
    return body, sign_payload(body, secret)
