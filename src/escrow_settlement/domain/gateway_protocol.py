"""Payment Gateway Protocol.

Defines the outbound operations the engine needs from a payment gateway:
"create a hosted payment link" and "look up a link's current status". This
is a Protocol (structural subtyping) so the Cashfree client, the simulated
gateway and test fakes only need to match the shape.

Inbound settlement notifications arrive separately as webhooks; see
domain/gateway_events.py. A status lookup never settles a payment by
itself; only a webhook credits the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

PAID_LINK_STATUS = "PAID"


@dataclass(frozen=True)
class PaymentLinkRequest:
    """Input to a gateway link creation.

    Attributes:
        link_id: Locally generated id, echoed back in every webhook for this link.
        amount: Amount in minor units.
        currency: ISO currency code.
        purpose: Human-readable line shown on the hosted payment page.
        customer_id: The paying client.
        meta: Extra fields the gateway stores alongside the link.
    """

    link_id: str
    amount: int
    currency: str
    purpose: str
    customer_id: str
    meta: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentLink:
    """A link as the gateway reports it (ACTIVE, PAID, EXPIRED, CANCELLED)."""

    link_id: str
    link_url: str
    status: str = "ACTIVE"

    @property
    def is_paid(self) -> bool:
        return self.status.upper() == PAID_LINK_STATUS


@runtime_checkable
class PaymentGateway(Protocol):
    """Protocol that all gateway clients must satisfy.

    Concrete implementations:
        - infrastructure/gateway/cashfree.py   (hosted links over HTTPS)
        - infrastructure/gateway/simulated.py  (local fake links)

    Implementations raise GatewayUnavailableError when a link cannot be
    issued or looked up; they must never be called inside an open database
    transaction.
    """

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        ...

    async def get_payment_link(self, link_id: str) -> PaymentLink:
        ...
