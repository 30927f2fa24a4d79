"""Pydantic schemas for the wallet and payout APIs."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


class WalletSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    freelancer_id: str
    available_balance: int
    total_earned: int
    total_paid_out: int
    pending_payouts: int


class WalletEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entry_type: str
    amount: int
    gross_amount: int | None
    fee_amount: int | None
    fee_percent: Decimal | None
    payment_id: uuid.UUID | None
    payout_id: uuid.UUID | None
    description: str | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


class SubmitPayoutRequest(BaseModel):
    freelancer_id: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    bank_account_number: str = Field(..., pattern=r"^\d{9,18}$")
    bank_ifsc_code: str = Field(
        ...,
        pattern=r"^[A-Za-z]{4}0[A-Za-z0-9]{6}$",
        examples=["HDFC0001234"],
    )
    account_holder_name: str = Field(..., min_length=2, max_length=120)


class RejectPayoutRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)


class PayoutResponse(BaseModel):
    """Payout details. The account number is masked to its last four digits."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    freelancer_id: str
    amount: int
    status: str
    bank_account_number: str
    bank_ifsc_code: str
    account_holder_name: str
    rejection_reason: str | None
    created_at: datetime
    approved_at: datetime | None
    completed_at: datetime | None

    @field_serializer("bank_account_number")
    def _mask_account(self, value: str) -> str:
        return f"{'*' * max(len(value) - 4, 0)}{value[-4:]}"
