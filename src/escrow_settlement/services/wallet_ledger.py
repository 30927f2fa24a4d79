"""Wallet Ledger: freelancer earnings as an append-only list of entries.

There is no stored balance. Available balance is always
sum(credits) - sum(debits), computed inside the caller's transaction, so it
can never drift from the entries that justify it.

Credits come from settled payments (net of the platform fee); debits come
from approved payouts. Unique payment_id / payout_id columns make a second
credit for the same payment, or a second debit for the same payout,
impossible at the database level.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from escrow_settlement.domain.enums import PayoutStatus, WalletEntryType
from escrow_settlement.infrastructure.database.orm_models import WalletEntry
from escrow_settlement.infrastructure.database.repositories import (
    PayoutRepository,
    WalletRepository,
)
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class WalletSummary:
    freelancer_id: str
    available_balance: int
    total_earned: int
    total_paid_out: int
    pending_payouts: int


def calculate_platform_fee(gross_amount: int, fee_percent: Decimal) -> int:
    """Fee in minor units: gross * pct / 100, rounded half-up."""
    fee = (Decimal(gross_amount) * Decimal(fee_percent) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return int(fee)


def credit_freelancer(
    freelancer_id: str,
    payment_id: uuid.UUID,
    gross_amount: int,
    fee_percent: Decimal,
) -> WalletEntry:
    """Build the credit entry for a settled payment. Pure; nothing is persisted."""
    fee = calculate_platform_fee(gross_amount, fee_percent)
    return WalletEntry(
        freelancer_id=freelancer_id,
        entry_type=WalletEntryType.CREDIT.value,
        amount=gross_amount - fee,
        gross_amount=gross_amount,
        fee_amount=fee,
        fee_percent=Decimal(fee_percent),
        payment_id=payment_id,
        description=f"Payment {payment_id} settled ({fee_percent}% platform fee)",
    )


def debit_for_payout(freelancer_id: str, payout_id: uuid.UUID, amount: int) -> WalletEntry:
    return WalletEntry(
        freelancer_id=freelancer_id,
        entry_type=WalletEntryType.DEBIT.value,
        amount=amount,
        payout_id=payout_id,
        description=f"Payout {payout_id} approved",
    )


async def post_entry(session: AsyncSession, entry: WalletEntry, currency: str) -> WalletEntry:
    """Persist an entry, creating the freelancer's wallet row on first use."""
    repo = WalletRepository(session)
    await repo.get_or_create(entry.freelancer_id, currency)
    entry = await repo.add_entry(entry)
    logger.info(
        "wallet.entry_posted",
        freelancer_id=entry.freelancer_id,
        entry_type=entry.entry_type,
        amount=entry.amount,
        payment_id=str(entry.payment_id) if entry.payment_id else None,
        payout_id=str(entry.payout_id) if entry.payout_id else None,
    )
    return entry


async def get_available_balance(session: AsyncSession, freelancer_id: str) -> int:
    """Sum of credits minus sum of debits, read in the caller's transaction."""
    repo = WalletRepository(session)
    credits = await repo.sum_entries(freelancer_id, WalletEntryType.CREDIT)
    debits = await repo.sum_entries(freelancer_id, WalletEntryType.DEBIT)
    return credits - debits


async def get_wallet_summary(session: AsyncSession, freelancer_id: str) -> WalletSummary:
    wallets = WalletRepository(session)
    payouts = PayoutRepository(session)
    credits = await wallets.sum_entries(freelancer_id, WalletEntryType.CREDIT)
    debits = await wallets.sum_entries(freelancer_id, WalletEntryType.DEBIT)
    return WalletSummary(
        freelancer_id=freelancer_id,
        available_balance=credits - debits,
        total_earned=credits,
        total_paid_out=debits,
        pending_payouts=await payouts.sum_by_status(freelancer_id, PayoutStatus.PENDING),
    )


async def get_wallet_history(
    session: AsyncSession, freelancer_id: str, limit: int = 100
) -> list[WalletEntry]:
    """Ledger entries, newest first."""
    return await WalletRepository(session).list_entries(freelancer_id, limit=limit)
