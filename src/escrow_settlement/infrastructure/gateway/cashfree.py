"""Cashfree payment-link client.

Issues hosted payment links through the Cashfree PG "links" API and reads
their status back. The link id is generated locally and sent with the
request, so a retried call that the gateway already accepted is answered
with 409 and resolved by fetching the existing link instead of issuing a
second one.

Transport failures (timeouts, connection resets) are retried with tenacity
exponential backoff. Anything still failing surfaces as
GatewayUnavailableError, which the orchestrator records and the API maps to
a retryable 503.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from escrow_settlement.domain.exceptions import GatewayUnavailableError
from escrow_settlement.domain.gateway_protocol import PaymentLink, PaymentLinkRequest
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_settlement.config import Settings

logger = get_logger(__name__)


def _major_units(amount: int) -> float:
    """Cashfree expects rupees with two decimals; the ledger stores paise."""
    return float(Decimal(amount) / 100)


class CashfreeGateway:
    """PaymentGateway implementation backed by Cashfree hosted links."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    @classmethod
    def from_settings(cls, settings: Settings) -> CashfreeGateway:
        """Build a gateway with its own pooled client (closed via `aclose`)."""
        client = httpx.AsyncClient(
            base_url=settings.gateway_api_url,
            timeout=settings.gateway_timeout_seconds,
        )
        return cls(client, settings)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-version": self._settings.gateway_api_version,
            "x-client-id": self._settings.gateway_client_id,
            "x-client-secret": self._settings.gateway_client_secret,
            "Content-Type": "application/json",
        }

    def _build_body(self, request: PaymentLinkRequest) -> dict[str, Any]:
        return {
            "link_id": request.link_id,
            "link_amount": _major_units(request.amount),
            "link_currency": request.currency,
            "link_purpose": request.purpose,
            "customer_details": {"customer_id": request.customer_id},
            "link_notify": {"send_sms": False, "send_email": True},
            "link_meta": {
                **request.meta,
                "return_url": self._settings.gateway_return_url,
            },
        }

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, retrying transport errors only."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.gateway_max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._client.request(
                        method, url, headers=self._headers(), **kwargs
                    )
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            logger.error(
                "gateway.unreachable",
                url=url,
                attempts=self._settings.gateway_max_attempts,
                error=str(cause),
            )
            raise GatewayUnavailableError(f"Payment gateway unreachable: {cause}") from cause
        raise GatewayUnavailableError("Payment gateway request was not attempted")

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        response = await self._send("POST", "/links", json=self._build_body(request))

        if response.status_code == 409:
            logger.info("gateway.link_exists", link_id=request.link_id)
            response = await self._send("GET", f"/links/{request.link_id}")

        if response.status_code >= 400:
            logger.error(
                "gateway.link_rejected",
                link_id=request.link_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayUnavailableError(
                f"Payment gateway rejected link creation (status {response.status_code})"
            )

        link = self._parse_link(response.json(), request.link_id)
        if not link.link_url:
            raise GatewayUnavailableError("Payment gateway response missing link_url")

        logger.info(
            "gateway.link_created",
            link_id=request.link_id,
            amount=request.amount,
            status=link.status,
        )
        return link

    async def get_payment_link(self, link_id: str) -> PaymentLink:
        """Read-only status lookup; the sweep uses it before expiring a link."""
        response = await self._send("GET", f"/links/{link_id}")
        if response.status_code >= 400:
            logger.warning(
                "gateway.link_lookup_failed",
                link_id=link_id,
                status_code=response.status_code,
            )
            raise GatewayUnavailableError(
                f"Payment gateway link lookup failed (status {response.status_code})"
            )
        return self._parse_link(response.json(), link_id)

    @staticmethod
    def _parse_link(data: dict[str, Any], link_id: str) -> PaymentLink:
        return PaymentLink(
            link_id=data.get("link_id", link_id),
            link_url=data.get("link_url") or "",
            status=data.get("link_status", "ACTIVE"),
        )
