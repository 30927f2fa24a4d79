"""Initial schema: contracts, audit log, payments, webhook receipts, wallets, payouts.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("freelancer_id", sa.String(length=64), nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("proposal_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("split_policy", JSONType, nullable=False),
        sa.Column("client_signature", sa.Text(), nullable=True),
        sa.Column("client_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("freelancer_signature", sa.Text(), nullable=True),
        sa.Column("freelancer_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("expected_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending_signatures', 'signed', 'in_progress', "
            "'completed', 'disputed')",
            name="ck_contract_valid_status",
        ),
        sa.CheckConstraint("total_amount > 0", name="ck_contract_positive_amount"),
        sa.CheckConstraint(
            "duration_days IS NULL OR duration_days > 0",
            name="ck_contract_positive_duration",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_contract_status", "contracts", ["status"])
    op.create_index("idx_contract_client", "contracts", ["client_id"])
    op.create_index("idx_contract_freelancer", "contracts", ["freelancer_id"])
    op.create_index("idx_contract_created_at", "contracts", ["created_at"])

    op.create_table(
        "contract_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("old_status", sa.String(length=24), nullable=True),
        sa.Column("new_status", sa.String(length=24), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_event_contract", "contract_events", ["contract_id"])
    op.create_index("idx_event_type", "contract_events", ["event_type"])
    op.create_index("idx_event_created_at", "contract_events", ["created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=False),
        sa.Column("phase", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("external_link_id", sa.String(length=64), nullable=False),
        sa.Column("link_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('created', 'pending', 'paid', 'failed', 'expired')",
            name="ck_payment_valid_status",
        ),
        sa.CheckConstraint(
            "phase IN ('upfront', 'milestone', 'completion')",
            name="ck_payment_valid_phase",
        ),
        sa.CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_link_id"),
    )
    op.create_index("idx_payment_contract", "payments", ["contract_id"])
    op.create_index("idx_payment_status", "payments", ["status"])
    op.create_index(
        "uq_payment_paid_per_phase",
        "payments",
        ["contract_id", "phase"],
        unique=True,
        postgresql_where=sa.text("status = 'paid'"),
        sqlite_where=sa.text("status = 'paid'"),
    )
    op.create_index(
        "uq_payment_in_flight_per_phase",
        "payments",
        ["contract_id", "phase"],
        unique=True,
        postgresql_where=sa.text("status IN ('created', 'pending')"),
        sqlite_where=sa.text("status IN ('created', 'pending')"),
    )

    op.create_table(
        "webhook_receipts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=True),
        sa.Column("external_link_id", sa.String(length=64), nullable=True),
        sa.Column("payload", JSONType, nullable=True),
        sa.Column("outcome", sa.String(length=24), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("idx_receipt_link", "webhook_receipts", ["external_link_id"])

    op.create_table(
        "wallets",
        sa.Column("freelancer_id", sa.String(length=64), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("freelancer_id"),
    )

    op.create_table(
        "payout_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("freelancer_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("bank_account_number", sa.String(length=34), nullable=False),
        sa.Column("bank_ifsc_code", sa.String(length=11), nullable=False),
        sa.Column("account_holder_name", sa.String(length=120), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="ck_payout_valid_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_payout_positive_amount"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_payout_freelancer", "payout_requests", ["freelancer_id"])
    op.create_index("idx_payout_status", "payout_requests", ["status"])

    op.create_table(
        "wallet_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("freelancer_id", sa.String(length=64), nullable=False),
        sa.Column("entry_type", sa.String(length=8), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("gross_amount", sa.BigInteger(), nullable=True),
        sa.Column("fee_amount", sa.BigInteger(), nullable=True),
        sa.Column("fee_percent", sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column("payment_id", sa.Uuid(), nullable=True),
        sa.Column("payout_id", sa.Uuid(), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("entry_type IN ('credit', 'debit')", name="ck_entry_valid_type"),
        sa.CheckConstraint("amount > 0", name="ck_entry_positive_amount"),
        sa.CheckConstraint(
            "(entry_type = 'credit' AND payment_id IS NOT NULL AND payout_id IS NULL) OR "
            "(entry_type = 'debit' AND payout_id IS NOT NULL AND payment_id IS NULL)",
            name="ck_entry_single_source",
        ),
        sa.ForeignKeyConstraint(
            ["freelancer_id"], ["wallets.freelancer_id"], ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payout_id"], ["payout_requests.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id"),
        sa.UniqueConstraint("payout_id"),
    )
    op.create_index("idx_entry_freelancer", "wallet_entries", ["freelancer_id"])
    op.create_index("idx_entry_created_at", "wallet_entries", ["created_at"])


def downgrade() -> None:
    op.drop_table("wallet_entries")
    op.drop_table("payout_requests")
    op.drop_table("wallets")
    op.drop_table("webhook_receipts")
    op.drop_table("payments")
    op.drop_table("contract_events")
    op.drop_table("contracts")
