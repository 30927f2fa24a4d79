"""Domain enumerations for the settlement engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ContractStatus(enum.StrEnum):
    """Lifecycle states of a freelance contract.

    Transitions are enforced by ContractStateMachine.
    See domain/state_machine.py for the transition table.
    """

    PENDING_SIGNATURES = "pending_signatures"
    SIGNED = "signed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class SignatoryParty(enum.StrEnum):
    """The two parties whose signatures a contract needs."""

    CLIENT = "client"
    FREELANCER = "freelancer"


class PaymentPhase(enum.StrEnum):
    """Escrow phases a contract's total is split across."""

    UPFRONT = "upfront"
    MILESTONE = "milestone"
    COMPLETION = "completion"


class PaymentStatus(enum.StrEnum):
    """Local lifecycle of a gateway-backed payment."""

    CREATED = "created"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED)


IN_FLIGHT_PAYMENT_STATUSES = (PaymentStatus.CREATED, PaymentStatus.PENDING)


class WalletEntryType(enum.StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class PayoutStatus(enum.StrEnum):
    """Lifecycle of a freelancer withdrawal request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ReconcileOutcome(enum.StrEnum):
    """What the webhook reconciler did with one delivery."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNKNOWN_PAYMENT = "unknown_payment"
    IGNORED = "ignored"
    DEFERRED = "deferred"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the contract_events table.

    Every lifecycle step produces exactly one event. This is the
    append-only trail used when a settlement is questioned.
    """

    # Contract lifecycle
    CONTRACT_CREATED = "CONTRACT_CREATED"
    SIGNATURE_RECORDED = "SIGNATURE_RECORDED"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    WORK_STARTED = "WORK_STARTED"
    CONTRACT_COMPLETED = "CONTRACT_COMPLETED"
    DISPUTE_RAISED = "DISPUTE_RAISED"

    # Payments
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    PAYMENT_LINK_FAILED = "PAYMENT_LINK_FAILED"
    PAYMENT_SETTLED = "PAYMENT_SETTLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"

    # Reconciliation anomalies
    CONTRACT_ADVANCE_DEFERRED = "CONTRACT_ADVANCE_DEFERRED"
    DUPLICATE_SETTLEMENT = "DUPLICATE_SETTLEMENT"
