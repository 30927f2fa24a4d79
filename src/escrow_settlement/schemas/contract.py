"""Pydantic schemas for the contracts API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to keep the API and database layers apart.
Signature blobs are accepted but never echoed back; responses only say who
has signed.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from escrow_settlement.domain.enums import SignatoryParty
from escrow_settlement.domain.exceptions import InvalidSplitPolicyError
from escrow_settlement.domain.split_policy import phase_breakdown, validate_split_policy

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateContractRequest(BaseModel):
    """Request body for creating a contract from an accepted proposal."""

    client_id: str = Field(..., min_length=1, max_length=64)
    freelancer_id: str = Field(..., min_length=1, max_length=64)
    job_id: str = Field(..., min_length=1, max_length=64)
    proposal_id: str | None = Field(default=None, max_length=64)
    title: str = Field(..., min_length=3, max_length=200, examples=["Landing page redesign"])
    total_amount: int = Field(
        ...,
        gt=0,
        description="Contract total in minor currency units (paise for INR)",
        examples=[100000],
    )
    split_policy: dict[str, int] | None = Field(
        default=None,
        description=(
            "Phase -> integer percentage summing to 100. Must include upfront "
            'and completion, may include milestone. Example: {"upfront": 30, '
            '"milestone": 30, "completion": 40}. Defaults to the platform policy.'
        ),
    )
    duration_days: int | None = Field(default=None, gt=0, le=3650)

    @field_validator("split_policy")
    @classmethod
    def _check_split_policy(cls, value: dict[str, int] | None) -> dict[str, int] | None:
        if value is None:
            return value
        try:
            return validate_split_policy(value)
        except InvalidSplitPolicyError as exc:
            raise ValueError(exc.message) from exc


class SignContractRequest(BaseModel):
    """Request body for one party's signature."""

    party: SignatoryParty
    signature_blob: str = Field(
        ...,
        min_length=1,
        max_length=200_000,
        description="Opaque signature payload (e.g. a base64 data URL of a drawn signature)",
    )


class RaiseDisputeRequest(BaseModel):
    reason: str = Field(..., min_length=5, max_length=2000)
    raised_by: str = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ContractResponse(BaseModel):
    """Full contract details."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: str
    freelancer_id: str
    job_id: str
    proposal_id: str | None
    title: str
    total_amount: int
    currency: str
    split_policy: dict[str, int]
    status: str
    client_signed_at: datetime | None
    freelancer_signed_at: datetime | None
    duration_days: int | None
    expected_end_at: datetime | None
    dispute_reason: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @computed_field
    @property
    def phase_amounts(self) -> dict[str, int]:
        return phase_breakdown(self.total_amount, self.split_policy)


class SignContractResponse(BaseModel):
    contract: ContractResponse
    recorded: bool = Field(description="False when the identical signature was already stored")
    became_signed: bool
    payment_url: str | None = Field(
        default=None,
        description="Upfront payment link, issued when this signature completed the contract",
    )


class ContractStatusResponse(BaseModel):
    """Lightweight status check response."""

    contract_id: str
    status: str
    display_label: str
    signed_by: list[str]
    paid_phases: list[str]
    allowed_events: list[str]


class ContractEventResponse(BaseModel):
    """A single audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata_json: dict | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime
