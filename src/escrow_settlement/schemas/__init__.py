"""Pydantic API schemas."""

from escrow_settlement.schemas.common import ErrorResponse, HealthResponse
from escrow_settlement.schemas.contract import (
    ContractEventResponse,
    ContractResponse,
    ContractStatusResponse,
    CreateContractRequest,
    RaiseDisputeRequest,
    SignContractRequest,
    SignContractResponse,
)
from escrow_settlement.schemas.payment import (
    ExpireStaleResponse,
    PaymentResponse,
    RequestPaymentRequest,
    WebhookAckResponse,
)
from escrow_settlement.schemas.wallet import (
    PayoutResponse,
    RejectPayoutRequest,
    SubmitPayoutRequest,
    WalletEntryResponse,
    WalletSummaryResponse,
)

__all__ = [
    "ContractEventResponse",
    "ContractResponse",
    "ContractStatusResponse",
    "CreateContractRequest",
    "ErrorResponse",
    "ExpireStaleResponse",
    "HealthResponse",
    "PaymentResponse",
    "PayoutResponse",
    "RaiseDisputeRequest",
    "RejectPayoutRequest",
    "RequestPaymentRequest",
    "SignContractRequest",
    "SignContractResponse",
    "SubmitPayoutRequest",
    "WalletEntryResponse",
    "WalletSummaryResponse",
    "WebhookAckResponse",
]
