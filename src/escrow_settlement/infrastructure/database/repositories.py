"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Methods that take ``for_update=True`` issue ``SELECT ... FOR UPDATE`` so the
row stays locked until the caller's transaction ends. SQLite ignores the
clause and a deferred transaction only takes its write lock on the first
write, so two transactions can read the same row before either writes.
The unique indexes still hold there; payout debits take the wallet lock
with a write (``WalletRepository.lock``), and signing re-checks both
signatures when a party replays its own.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from escrow_settlement.domain.enums import (
    IN_FLIGHT_PAYMENT_STATUSES,
    PaymentStatus,
    PayoutStatus,
    WalletEntryType,
)
from escrow_settlement.infrastructure.database.orm_models import (
    Contract,
    ContractEvent,
    Payment,
    PayoutRequest,
    Wallet,
    WalletEntry,
    WebhookReceipt,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.domain.enums import ContractStatus, EventType, PaymentPhase


class ContractRepository:
    """Data access for contracts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, contract: Contract) -> Contract:
        self._session.add(contract)
        await self._session.flush()
        return contract

    async def get_by_id(
        self, contract_id: uuid.UUID, *, for_update: bool = False
    ) -> Contract | None:
        """Fetch a contract by its UUID, optionally locking the row."""
        stmt = select(Contract).where(Contract.id == contract_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_party(self, party_id: str) -> list[Contract]:
        """Fetch every contract where the id is the client or the freelancer."""
        result = await self._session.execute(
            select(Contract)
            .where((Contract.client_id == party_id) | (Contract.freelancer_id == party_id))
            .order_by(Contract.created_at.desc())
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        contract: Contract,
        new_status: ContractStatus,
    ) -> Contract:
        """Update the status of a contract (call AFTER state machine validation)."""
        contract.status = new_status.value
        contract.updated_at = datetime.now(UTC)
        await self._session.flush()
        return contract


class EventRepository:
    """Data access for the append-only contract audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        contract_id: uuid.UUID,
        event_type: EventType,
        old_status: ContractStatus | None,
        new_status: ContractStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> ContractEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = ContractEvent(
            contract_id=contract_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_contract(self, contract_id: uuid.UUID) -> list[ContractEvent]:
        """Fetch all events for a contract in chronological order."""
        result = await self._session.execute(
            select(ContractEvent)
            .where(ContractEvent.contract_id == contract_id)
            .order_by(ContractEvent.created_at.asc())
        )
        return list(result.scalars().all())


class PaymentRepository:
    """Data access for gateway payments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, payment: Payment) -> Payment:
        """Insert a payment; a partial unique index race raises IntegrityError here."""
        self._session.add(payment)
        await self._session.flush()
        return payment

    async def get_by_id(
        self, payment_id: uuid.UUID, *, for_update: bool = False
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_link_id(
        self, external_link_id: str, *, for_update: bool = False
    ) -> Payment | None:
        """Resolve the payment a gateway event refers to."""
        stmt = select(Payment).where(Payment.external_link_id == external_link_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_contract(self, contract_id: uuid.UUID) -> list[Payment]:
        """Fetch all payments for a contract, oldest first."""
        result = await self._session.execute(
            select(Payment)
            .where(Payment.contract_id == contract_id)
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def find_for_phase(
        self,
        contract_id: uuid.UUID,
        phase: PaymentPhase,
        statuses: Sequence[PaymentStatus],
    ) -> Payment | None:
        """Return one payment for the phase in any of the given statuses."""
        result = await self._session.execute(
            select(Payment)
            .where(
                Payment.contract_id == contract_id,
                Payment.phase == phase.value,
                Payment.status.in_([s.value for s in statuses]),
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_stale_in_flight(self, cutoff: datetime) -> list[Payment]:
        """Fetch created/pending payments issued before the cutoff, oldest first."""
        result = await self._session.execute(
            select(Payment)
            .where(
                Payment.status.in_([s.value for s in IN_FLIGHT_PAYMENT_STATUSES]),
                Payment.created_at < cutoff,
            )
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        payment: Payment,
        new_status: PaymentStatus,
        *,
        failure_reason: str | None = None,
    ) -> Payment:
        """Update the status of a payment (call AFTER checking PAYMENT_TRANSITIONS)."""
        now = datetime.now(UTC)
        payment.status = new_status.value
        payment.updated_at = now
        if new_status is PaymentStatus.PAID:
            payment.paid_at = now
            payment.failure_reason = None
        elif failure_reason is not None:
            payment.failure_reason = failure_reason
        await self._session.flush()
        return payment


class WebhookReceiptRepository:
    """Data access for processed gateway event ids."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, event_id: str) -> bool:
        result = await self._session.execute(
            select(WebhookReceipt.id).where(WebhookReceipt.event_id == event_id)
        )
        return result.first() is not None

    async def record(
        self,
        event_id: str,
        event_type: str | None,
        external_link_id: str | None,
        payload: dict | None,
        outcome: str,
    ) -> WebhookReceipt:
        """Insert the receipt; a concurrent duplicate raises IntegrityError here."""
        receipt = WebhookReceipt(
            event_id=event_id,
            event_type=event_type,
            external_link_id=external_link_id,
            payload=payload,
            outcome=outcome,
            processed=True,
        )
        self._session.add(receipt)
        await self._session.flush()
        return receipt

    async def set_outcome(self, receipt: WebhookReceipt, outcome: str) -> WebhookReceipt:
        receipt.outcome = outcome
        await self._session.flush()
        return receipt

    async def get_by_event_id(self, event_id: str) -> WebhookReceipt | None:
        result = await self._session.execute(
            select(WebhookReceipt).where(WebhookReceipt.event_id == event_id)
        )
        return result.scalar_one_or_none()


class WalletRepository:
    """Data access for wallets and the append-only wallet ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, freelancer_id: str, *, for_update: bool = False) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.freelancer_id == freelancer_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock(self, freelancer_id: str) -> Wallet | None:
        """Lock the wallet row before reading its balance for a debit.

        The no-op UPDATE takes the row lock on PostgreSQL and the database
        write lock on SQLite, where ``FOR UPDATE`` is ignored. Balance reads
        that follow see every debit committed before the lock was granted.
        """
        await self._session.execute(
            update(Wallet)
            .where(Wallet.freelancer_id == freelancer_id)
            .values(currency=Wallet.currency)
            .execution_options(synchronize_session=False)
        )
        return await self.get(freelancer_id, for_update=True)

    async def get_or_create(self, freelancer_id: str, currency: str) -> Wallet:
        """Return the freelancer's wallet row, inserting it on first credit."""
        wallet = await self.get(freelancer_id)
        if wallet is None:
            wallet = Wallet(freelancer_id=freelancer_id, currency=currency)
            self._session.add(wallet)
            await self._session.flush()
        return wallet

    async def add_entry(self, entry: WalletEntry) -> WalletEntry:
        """Append a credit or debit. Unique payment_id/payout_id reject repeats."""
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def sum_entries(self, freelancer_id: str, entry_type: WalletEntryType) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.sum(WalletEntry.amount), 0)).where(
                WalletEntry.freelancer_id == freelancer_id,
                WalletEntry.entry_type == entry_type.value,
            )
        )
        return int(result.scalar_one())

    async def list_entries(self, freelancer_id: str, limit: int = 100) -> list[WalletEntry]:
        """Fetch the freelancer's ledger entries, newest first."""
        result = await self._session.execute(
            select(WalletEntry)
            .where(WalletEntry.freelancer_id == freelancer_id)
            .order_by(WalletEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class PayoutRepository:
    """Data access for payout requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, payout: PayoutRequest) -> PayoutRequest:
        self._session.add(payout)
        await self._session.flush()
        return payout

    async def get_by_id(
        self, payout_id: uuid.UUID, *, for_update: bool = False
    ) -> PayoutRequest | None:
        stmt = select(PayoutRequest).where(PayoutRequest.id == payout_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_freelancer(self, freelancer_id: str) -> list[PayoutRequest]:
        result = await self._session.execute(
            select(PayoutRequest)
            .where(PayoutRequest.freelancer_id == freelancer_id)
            .order_by(PayoutRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def sum_by_status(self, freelancer_id: str, status: PayoutStatus) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.sum(PayoutRequest.amount), 0)).where(
                PayoutRequest.freelancer_id == freelancer_id,
                PayoutRequest.status == status.value,
            )
        )
        return int(result.scalar_one())

    async def update_status(self, payout: PayoutRequest, new_status: PayoutStatus) -> PayoutRequest:
        """Update the status of a payout (call AFTER state machine validation)."""
        now = datetime.now(UTC)
        payout.status = new_status.value
        payout.updated_at = now
        if new_status is PayoutStatus.APPROVED:
            payout.approved_at = now
        elif new_status is PayoutStatus.COMPLETED:
            payout.completed_at = now
        await self._session.flush()
        return payout
