"""SQLAlchemy 2.0 ORM models for the settlement engine.

Seven tables:
    1. contracts         - Signed agreements between a client and a freelancer.
    2. contract_events   - Append-only audit log of every lifecycle step.
    3. payments          - Gateway-backed payments, one or more per phase.
    4. webhook_receipts  - Every gateway event id ever processed (dedupe key).
    5. wallets           - One lock-anchor row per freelancer.
    6. wallet_entries    - Append-only credits and debits; balance is their sum.
    7. payout_requests   - Freelancer withdrawal requests.

Design decisions:
    - UUIDs as primary keys (generic Uuid type, native on PostgreSQL).
    - Integer minor units for money (no floating point rounding errors).
    - JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
    - CHECK constraints on status columns and amounts.
    - Partial unique indexes guarantee one paid and one in-flight payment
      per (contract, phase) even under concurrent requests.
    - wallet_entries.payment_id and payout_id are unique so a payment can be
      credited, and a payout debited, at most once.
    - contract_events and wallet_entries are append-only.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. contracts
# ---------------------------------------------------------------------------
class Contract(Base):
    """An agreement between a client and a freelancer for one job."""

    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Parties & Origin ---
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    freelancer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    proposal_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Accepted proposal this contract was created from",
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # --- Financials ---
    total_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Contract total in minor currency units",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    split_policy: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        comment='Phase -> integer percentage, e.g. {"upfront": 50, "completion": 50}',
    )

    # --- Signatures ---
    client_signature: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    client_signed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    freelancer_signature: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    freelancer_signed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default="pending_signatures",
        comment="Current lifecycle state (guarded by ContractStateMachine)",
    )
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    # --- Schedule ---
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    expected_end_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        comment="Set when the contract becomes signed: signed_at + duration_days",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_signatures', 'signed', 'in_progress', "
            "'completed', 'disputed')",
            name="ck_contract_valid_status",
        ),
        CheckConstraint("total_amount > 0", name="ck_contract_positive_amount"),
        CheckConstraint(
            "duration_days IS NULL OR duration_days > 0",
            name="ck_contract_positive_duration",
        ),
        Index("idx_contract_status", "status"),
        Index("idx_contract_client", "client_id"),
        Index("idx_contract_freelancer", "freelancer_id"),
        Index("idx_contract_created_at", "created_at"),
    )

    def signature_for(self, party: str) -> str | None:
        return self.client_signature if party == "client" else self.freelancer_signature

    @property
    def is_fully_signed(self) -> bool:
        return self.client_signature is not None and self.freelancer_signature is not None

    def __repr__(self) -> str:
        return (
            f"<Contract id={self.id} status={self.status} "
            f"total={self.total_amount} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 2. contract_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class ContractEvent(Base):
    """Immutable audit record of one step in a contract's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "contract_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., CONTRACT_SIGNED, PAYMENT_SETTLED)",
    )
    old_status: Mapped[str | None] = mapped_column(String(24), nullable=True)
    new_status: Mapped[str] = mapped_column(String(24), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (party id, GATEWAY or SYSTEM)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_contract", "contract_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContractEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 3. payments
# ---------------------------------------------------------------------------
class Payment(Base):
    """One gateway payment link for one phase of a contract.

    `amount` never changes after insert. Status moves to paid, failed or
    expired only through the webhook reconciler, the expiry sweep, or the
    orchestrator when link creation fails.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contracts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    phase: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # --- Gateway linkage ---
    external_link_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Link id sent to the gateway; every webhook references it",
    )
    link_url: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="created")
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('created', 'pending', 'paid', 'failed', 'expired')",
            name="ck_payment_valid_status",
        ),
        CheckConstraint(
            "phase IN ('upfront', 'milestone', 'completion')",
            name="ck_payment_valid_phase",
        ),
        CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        Index("idx_payment_contract", "contract_id"),
        Index("idx_payment_status", "status"),
        Index(
            "uq_payment_paid_per_phase",
            "contract_id",
            "phase",
            unique=True,
            postgresql_where=text("status = 'paid'"),
            sqlite_where=text("status = 'paid'"),
        ),
        Index(
            "uq_payment_in_flight_per_phase",
            "contract_id",
            "phase",
            unique=True,
            postgresql_where=text("status IN ('created', 'pending')"),
            sqlite_where=text("status IN ('created', 'pending')"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment id={self.id} contract={self.contract_id} phase={self.phase} "
            f"status={self.status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 4. webhook_receipts
# ---------------------------------------------------------------------------
class WebhookReceipt(Base):
    """A gateway event id that has been processed.

    Inserted in the same transaction as the event's effects, so a receipt
    exists if and only if those effects were committed.
    """

    __tablename__ = "webhook_receipts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_link_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    outcome: Mapped[str] = mapped_column(String(24), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_receipt_link", "external_link_id"),)

    def __repr__(self) -> str:
        return f"<WebhookReceipt event_id={self.event_id} outcome={self.outcome}>"


# ---------------------------------------------------------------------------
# 5. wallets (lock anchor)
# ---------------------------------------------------------------------------
class Wallet(Base):
    """Per-freelancer row that payout debits lock (see WalletRepository.lock).

    Holds no balance; the balance is always derived from wallet_entries.
    """

    __tablename__ = "wallets"

    freelancer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Wallet freelancer={self.freelancer_id}>"


# ---------------------------------------------------------------------------
# 6. wallet_entries (Append-Only Ledger)
# ---------------------------------------------------------------------------
class WalletEntry(Base):
    """One credit (settled payment, net of fee) or debit (approved payout)."""

    __tablename__ = "wallet_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    freelancer_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallets.freelancer_id", ondelete="RESTRICT"),
        nullable=False,
    )
    entry_type: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Net amount moved into (credit) or out of (debit) the wallet",
    )

    # --- Credit breakdown ---
    gross_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=None)
    fee_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=None)
    fee_percent: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True, default=None
    )

    # --- Source (exactly one of these is set) ---
    payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
        default=None,
    )
    payout_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("payout_requests.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
        default=None,
    )

    description: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("entry_type IN ('credit', 'debit')", name="ck_entry_valid_type"),
        CheckConstraint("amount > 0", name="ck_entry_positive_amount"),
        CheckConstraint(
            "(entry_type = 'credit' AND payment_id IS NOT NULL AND payout_id IS NULL) OR "
            "(entry_type = 'debit' AND payout_id IS NOT NULL AND payment_id IS NULL)",
            name="ck_entry_single_source",
        ),
        Index("idx_entry_freelancer", "freelancer_id"),
        Index("idx_entry_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WalletEntry id={self.id} freelancer={self.freelancer_id} "
            f"{self.entry_type} {self.amount}>"
        )


# ---------------------------------------------------------------------------
# 7. payout_requests
# ---------------------------------------------------------------------------
class PayoutRequest(Base):
    """A freelancer's request to withdraw part of their available balance."""

    __tablename__ = "payout_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    freelancer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="pending",
        comment="Current lifecycle state (guarded by PayoutStateMachine)",
    )

    # --- Destination ---
    bank_account_number: Mapped[str] = mapped_column(String(34), nullable=False)
    bank_ifsc_code: Mapped[str] = mapped_column(String(11), nullable=False)
    account_holder_name: Mapped[str] = mapped_column(String(120), nullable=False)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="ck_payout_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_payout_positive_amount"),
        Index("idx_payout_freelancer", "freelancer_id"),
        Index("idx_payout_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayoutRequest id={self.id} freelancer={self.freelancer_id} "
            f"status={self.status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Contract, Payment, PayoutRequest):
    event.listen(_model, "before_update", _set_updated_at)
