"""Pydantic schemas for payments and gateway webhooks."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from escrow_settlement.domain.enums import PaymentPhase, ReconcileOutcome


class RequestPaymentRequest(BaseModel):
    phase: PaymentPhase
    requested_by: str = Field(default="SYSTEM", max_length=64)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: uuid.UUID
    phase: str
    amount: int
    status: str
    external_link_id: str
    link_url: str | None
    failure_reason: str | None
    created_at: datetime
    paid_at: datetime | None


class WebhookAckResponse(BaseModel):
    """Returned for every delivery the gateway should stop retrying."""

    received: bool = True
    event_id: str
    outcome: ReconcileOutcome


class ExpireStaleResponse(BaseModel):
    expired: int
