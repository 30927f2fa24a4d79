"""Payout Service: freelancer withdrawal requests against the wallet ledger.

Submitting a request only checks the live balance. Approval is where money
moves: the payout row and the freelancer's wallet row are locked, the
balance is re-read under the lock, and the debit entry is written in the
same transaction as the status change. Two approvals for the same
freelancer therefore serialize, and the balance can never go negative.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.enums import PayoutStatus
from escrow_settlement.domain.exceptions import (
    InsufficientBalanceError,
    InvalidPayoutAmountError,
    InvalidStateTransitionError,
    PayoutNotFoundError,
)
from escrow_settlement.domain.state_machine import PayoutStateMachine
from escrow_settlement.infrastructure.database.orm_models import PayoutRequest
from escrow_settlement.infrastructure.database.repositories import (
    PayoutRepository,
    WalletRepository,
)
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services import wallet_ledger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class PayoutService:
    """Manages payout requests. Never commits; the caller owns the transaction."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._payout_repo = PayoutRepository(session)
        self._wallet_repo = WalletRepository(session)

    async def submit_payout(
        self,
        freelancer_id: str,
        amount: int,
        bank_account_number: str,
        bank_ifsc_code: str,
        account_holder_name: str,
    ) -> PayoutRequest:
        """Create a pending payout request.

        Raises:
            InvalidPayoutAmountError: Below the configured minimum.
            InsufficientBalanceError: More than the current available balance.
        """
        minimum = self._settings.payout_minimum_amount
        if amount < minimum:
            raise InvalidPayoutAmountError(amount, minimum)

        available = await wallet_ledger.get_available_balance(self._session, freelancer_id)
        if amount > available:
            logger.info(
                "payout.rejected_insufficient",
                freelancer_id=freelancer_id,
                requested=amount,
                available=available,
            )
            raise InsufficientBalanceError(amount, available)

        payout = await self._payout_repo.create(
            PayoutRequest(
                freelancer_id=freelancer_id,
                amount=amount,
                status=PayoutStatus.PENDING.value,
                bank_account_number=bank_account_number,
                bank_ifsc_code=bank_ifsc_code.upper(),
                account_holder_name=account_holder_name,
            )
        )
        logger.info(
            "payout.submitted",
            payout_id=str(payout.id),
            freelancer_id=freelancer_id,
            amount=amount,
            bank_account_number=bank_account_number,
        )
        return payout

    async def approve_payout(self, payout_id: uuid.UUID) -> PayoutRequest:
        """Approve a pending payout and debit the wallet atomically.

        Raises:
            PayoutNotFoundError: Unknown payout.
            InvalidStateTransitionError: Payout is not pending.
            InsufficientBalanceError: Balance fell below the amount since
                submission; the request stays pending.
        """
        payout = await self._get_payout_or_raise(payout_id, for_update=True)
        self._fire_transition(payout, "approve")

        wallet = await self._wallet_repo.lock(payout.freelancer_id)
        available = 0
        if wallet is not None:
            available = await wallet_ledger.get_available_balance(
                self._session, payout.freelancer_id
            )
        if payout.amount > available:
            logger.warning(
                "payout.approval_insufficient",
                payout_id=str(payout_id),
                requested=payout.amount,
                available=available,
            )
            raise InsufficientBalanceError(payout.amount, available)

        debit = wallet_ledger.debit_for_payout(payout.freelancer_id, payout.id, payout.amount)
        await wallet_ledger.post_entry(self._session, debit, wallet.currency)
        await self._payout_repo.update_status(payout, PayoutStatus.APPROVED)

        logger.info(
            "payout.approved",
            payout_id=str(payout_id),
            freelancer_id=payout.freelancer_id,
            amount=payout.amount,
            balance_after=available - payout.amount,
        )
        return payout

    async def reject_payout(self, payout_id: uuid.UUID, reason: str) -> PayoutRequest:
        payout = await self._get_payout_or_raise(payout_id, for_update=True)
        self._fire_transition(payout, "reject")
        payout.rejection_reason = reason
        await self._payout_repo.update_status(payout, PayoutStatus.REJECTED)
        logger.info("payout.rejected", payout_id=str(payout_id), reason=reason)
        return payout

    async def complete_payout(self, payout_id: uuid.UUID) -> PayoutRequest:
        """Mark an approved payout as transferred to the bank account."""
        payout = await self._get_payout_or_raise(payout_id, for_update=True)
        self._fire_transition(payout, "complete")
        await self._payout_repo.update_status(payout, PayoutStatus.COMPLETED)
        logger.info("payout.completed", payout_id=str(payout_id))
        return payout

    async def get_payout(self, payout_id: uuid.UUID) -> PayoutRequest:
        return await self._get_payout_or_raise(payout_id)

    async def list_payouts(self, freelancer_id: str) -> list[PayoutRequest]:
        return await self._payout_repo.list_by_freelancer(freelancer_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_payout_or_raise(
        self, payout_id: uuid.UUID, *, for_update: bool = False
    ) -> PayoutRequest:
        payout = await self._payout_repo.get_by_id(payout_id, for_update=for_update)
        if payout is None:
            raise PayoutNotFoundError(str(payout_id))
        return payout

    def _fire_transition(self, payout: PayoutRequest, event_name: str) -> None:
        sm = PayoutStateMachine(current_status=payout.status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(payout.status, event_name) from err
