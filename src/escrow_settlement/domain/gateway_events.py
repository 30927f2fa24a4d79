"""Gateway webhook payloads parsed into a closed set of event variants.

Wire format:
    {
        "event_id": "evt_123",
        "event_type": "payment_link.paid",
        "data": {"link_id": "...", "amount": 50000, "payment_time": "..."}
    }

Anything the reconciler cannot act on (unknown event type, missing link id,
non-JSON body) becomes ``Unrecognized`` so it is still recorded and
acknowledged instead of being retried forever by the gateway.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

PAID_EVENT = "payment_link.paid"
EXPIRED_EVENT = "payment_link.expired"
CANCELLED_EVENT = "payment_link.cancelled"


class _GatewayEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1, max_length=128)


class LinkPaid(_GatewayEventBase):
    kind: Literal["paid"] = "paid"
    link_id: str = Field(..., min_length=1)
    amount: int | None = Field(default=None, ge=0)
    payment_time: str | None = None


class LinkExpired(_GatewayEventBase):
    kind: Literal["expired"] = "expired"
    link_id: str = Field(..., min_length=1)


class LinkCancelled(_GatewayEventBase):
    kind: Literal["cancelled"] = "cancelled"
    link_id: str = Field(..., min_length=1)


class Unrecognized(_GatewayEventBase):
    kind: Literal["unrecognized"] = "unrecognized"
    event_type: str | None = None
    link_id: str | None = None
    reason: str = "unsupported event type"


GatewayEvent = LinkPaid | LinkExpired | LinkCancelled | Unrecognized


def _fallback_event_id(raw_body: bytes) -> str:
    """Deterministic id for bodies without one, so redeliveries still dedupe."""
    return "body-" + hashlib.sha256(raw_body).hexdigest()[:48]


def decode_payload(raw_body: bytes) -> dict[str, Any] | None:
    """Decode a webhook body to a JSON object, or None if it is not one."""
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def parse_gateway_event(raw_body: bytes) -> GatewayEvent:
    """Parse a raw webhook body into one of the GatewayEvent variants.

    Never raises for bad input; malformed bodies yield ``Unrecognized``.
    """
    payload = decode_payload(raw_body)
    if payload is None:
        return Unrecognized(event_id=_fallback_event_id(raw_body), reason="body is not a JSON object")

    event_id = payload.get("event_id")
    if not isinstance(event_id, str) or not event_id or len(event_id) > 128:
        event_id = _fallback_event_id(raw_body)

    event_type = payload.get("event_type")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    link_id = data.get("link_id")

    try:
        if event_type == PAID_EVENT:
            return LinkPaid(
                event_id=event_id,
                link_id=link_id,
                amount=data.get("amount"),
                payment_time=data.get("payment_time"),
            )
        if event_type == EXPIRED_EVENT:
            return LinkExpired(event_id=event_id, link_id=link_id)
        if event_type == CANCELLED_EVENT:
            return LinkCancelled(event_id=event_id, link_id=link_id)
    except ValidationError as exc:
        return Unrecognized(
            event_id=event_id,
            event_type=str(event_type),
            link_id=link_id if isinstance(link_id, str) else None,
            reason=f"invalid {event_type} payload: {exc.error_count()} error(s)",
        )

    return Unrecognized(
        event_id=event_id,
        event_type=str(event_type) if event_type is not None else None,
        link_id=link_id if isinstance(link_id, str) else None,
    )
