"""Domain layer: pure business rules with no framework or database imports."""

from escrow_settlement.domain.enums import (
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
    PayoutStatus,
    ReconcileOutcome,
    SignatoryParty,
    WalletEntryType,
)
from escrow_settlement.domain.exceptions import (
    ContractNotFoundError,
    InvalidStateTransitionError,
    SettlementError,
)
from escrow_settlement.domain.gateway_protocol import (
    PaymentGateway,
    PaymentLink,
    PaymentLinkRequest,
)
from escrow_settlement.domain.state_machine import (
    ContractStateMachine,
    PayoutStateMachine,
    validate_transition,
)

__all__ = [
    "ContractStatus",
    "EventType",
    "PaymentPhase",
    "PaymentStatus",
    "PayoutStatus",
    "ReconcileOutcome",
    "SignatoryParty",
    "WalletEntryType",
    "SettlementError",
    "ContractNotFoundError",
    "InvalidStateTransitionError",
    "ContractStateMachine",
    "PayoutStateMachine",
    "validate_transition",
    "PaymentGateway",
    "PaymentLink",
    "PaymentLinkRequest",
]
