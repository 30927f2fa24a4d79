"""Tests for PayoutService: balance checks and approval debits."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from escrow_settlement.domain.enums import PaymentPhase, PayoutStatus
from escrow_settlement.domain.exceptions import (
    InsufficientBalanceError,
    InvalidPayoutAmountError,
    InvalidStateTransitionError,
    PayoutNotFoundError,
)
from escrow_settlement.infrastructure.database.orm_models import PayoutRequest
from escrow_settlement.services import wallet_ledger
from escrow_settlement.services.payout_service import PayoutService

BANK = {
    "bank_account_number": "123456789012",
    "bank_ifsc_code": "hdfc0001234",
    "account_holder_name": "Asha Rao",
}


@pytest.fixture
def submit(session_factory, settings):
    async def _submit(amount: int, freelancer_id: str = "freelancer-1"):
        async with session_factory() as session:
            payout = await PayoutService(session, settings).submit_payout(
                freelancer_id=freelancer_id, amount=amount, **BANK
            )
            await session.commit()
        return payout

    return _submit


async def _run(session_factory, settings, method: str, *args):
    async with session_factory() as session:
        result = await getattr(PayoutService(session, settings), method)(*args)
        await session.commit()
    return result


async def _balance(session_factory) -> int:
    async with session_factory() as session:
        return await wallet_ledger.get_available_balance(session, "freelancer-1")


class TestSubmitPayout:
    async def test_more_than_balance_is_rejected(
        self, in_progress_contract, submit, session_factory
    ) -> None:
        await in_progress_contract(total_amount=1000)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await submit(600)

        assert exc_info.value.available == 450
        assert await _balance(session_factory) == 450

    async def test_below_minimum(self, in_progress_contract, submit) -> None:
        await in_progress_contract()
        with pytest.raises(InvalidPayoutAmountError):
            await submit(10)

    async def test_submit_does_not_debit(
        self, in_progress_contract, submit, session_factory
    ) -> None:
        await in_progress_contract(total_amount=1000)
        payout = await submit(400)

        assert payout.status == PayoutStatus.PENDING
        assert payout.bank_ifsc_code == "HDFC0001234"
        assert await _balance(session_factory) == 450


class TestApprovePayout:
    async def test_approval_debits_wallet(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        payout = await submit(400)

        approved = await _run(session_factory, settings, "approve_payout", payout.id)

        assert approved.status == PayoutStatus.APPROVED
        assert approved.approved_at is not None
        assert await _balance(session_factory) == 50

    async def test_two_approvals_cannot_overdraw(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        first = await submit(300)
        second = await submit(300)

        await _run(session_factory, settings, "approve_payout", first.id)
        with pytest.raises(InsufficientBalanceError):
            await _run(session_factory, settings, "approve_payout", second.id)

        assert await _balance(session_factory) == 150
        still_pending = await _run(session_factory, settings, "get_payout", second.id)
        assert still_pending.status == PayoutStatus.PENDING

    async def test_cannot_approve_twice(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        payout = await submit(100)
        await _run(session_factory, settings, "approve_payout", payout.id)
        with pytest.raises(InvalidStateTransitionError):
            await _run(session_factory, settings, "approve_payout", payout.id)
        assert await _balance(session_factory) == 350

    async def test_unknown_payout(self, session_factory, settings) -> None:
        with pytest.raises(PayoutNotFoundError):
            await _run(session_factory, settings, "approve_payout", uuid.uuid4())


class TestRejectAndComplete:
    async def test_reject_keeps_balance(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        payout = await submit(100)

        rejected = await _run(
            session_factory, settings, "reject_payout", payout.id, "bank details mismatch"
        )

        assert rejected.status == PayoutStatus.REJECTED
        assert rejected.rejection_reason == "bank details mismatch"
        assert await _balance(session_factory) == 450

    async def test_complete_requires_approval(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        payout = await submit(100)
        with pytest.raises(InvalidStateTransitionError):
            await _run(session_factory, settings, "complete_payout", payout.id)

        await _run(session_factory, settings, "approve_payout", payout.id)
        completed = await _run(session_factory, settings, "complete_payout", payout.id)
        assert completed.status == PayoutStatus.COMPLETED
        assert completed.completed_at is not None

    async def test_pending_payouts_in_summary(
        self, in_progress_contract, submit, session_factory
    ) -> None:
        await in_progress_contract(total_amount=1000)
        await submit(100)
        await submit(150)
        async with session_factory() as session:
            summary = await wallet_ledger.get_wallet_summary(session, "freelancer-1")
        assert summary.pending_payouts == 250
        assert summary.available_balance == 450


class TestConcurrentApprovals:
    async def test_simultaneous_approvals_cannot_overdraw(
        self, in_progress_contract, submit, session_factory, settings
    ) -> None:
        await in_progress_contract(total_amount=1000)
        first = await submit(300)
        second = await submit(300)

        results = await asyncio.gather(
            _run(session_factory, settings, "approve_payout", first.id),
            _run(session_factory, settings, "approve_payout", second.id),
            return_exceptions=True,
        )

        approved = [r for r in results if isinstance(r, PayoutRequest)]
        refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(approved) == 1
        assert len(refused) == 1
        assert await _balance(session_factory) == 150

    async def test_balance_stays_non_negative_with_credit_in_flight(
        self, in_progress_contract, orchestrator, deliver, submit, session_factory, settings
    ) -> None:
        contract = await in_progress_contract(total_amount=1000)
        completion = await orchestrator.request_payment(contract.id, PaymentPhase.COMPLETION)
        payouts = [await submit(300), await submit(300), await submit(300)]

        results = await asyncio.gather(
            deliver(completion.external_link_id),
            *(_run(session_factory, settings, "approve_payout", p.id) for p in payouts),
            return_exceptions=True,
        )

        approvals = results[1:]
        assert all(
            isinstance(r, PayoutRequest | InsufficientBalanceError) for r in approvals
        ), approvals
        approved = sum(isinstance(r, PayoutRequest) for r in approvals)
        balance = await _balance(session_factory)
        assert balance >= 0
        assert balance == 900 - 300 * approved
