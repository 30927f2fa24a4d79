"""Tests for the wallet ledger: fees, credits and derived balances."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from escrow_settlement.config import Settings
from escrow_settlement.domain.enums import PaymentPhase
from escrow_settlement.services import wallet_ledger


class TestPlatformFee:
    @pytest.mark.parametrize(
        ("gross", "pct", "fee"),
        [
            (500, Decimal("10"), 50),
            (1005, Decimal("10"), 101),  # 100.5 rounds half-up
            (1004, Decimal("10"), 100),
            (999, Decimal("2.5"), 25),
            (1000, Decimal("0"), 0),
        ],
    )
    def test_fee(self, gross: int, pct: Decimal, fee: int) -> None:
        assert wallet_ledger.calculate_platform_fee(gross, pct) == fee

    def test_credit_is_net_of_fee(self) -> None:
        entry = wallet_ledger.credit_freelancer("f-1", uuid.uuid4(), 500, Decimal("10"))
        assert entry.entry_type == "credit"
        assert entry.amount == 450
        assert entry.fee_amount == 50
        assert entry.gross_amount == 500

    @pytest.mark.parametrize("gross", [1, 2, 3, 7])
    def test_highest_allowed_fee_leaves_positive_credit(self, gross: int) -> None:
        entry = wallet_ledger.credit_freelancer("f-1", uuid.uuid4(), gross, Decimal("49.99"))
        assert entry.amount >= 1
        assert entry.amount + entry.fee_amount == gross

    @pytest.mark.parametrize("pct", [Decimal("50"), Decimal("75")])
    def test_fee_of_half_or_more_is_rejected(self, pct: Decimal) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, platform_fee_percent=pct)


class TestBalances:
    async def test_empty_wallet(self, session_factory) -> None:
        async with session_factory() as session:
            summary = await wallet_ledger.get_wallet_summary(session, "nobody")
        assert summary.available_balance == 0
        assert summary.total_earned == 0
        assert summary.pending_payouts == 0

    async def test_summary_after_settlement(self, in_progress_contract, session_factory) -> None:
        await in_progress_contract(total_amount=1000)
        async with session_factory() as session:
            summary = await wallet_ledger.get_wallet_summary(session, "freelancer-1")
        assert summary.available_balance == 450
        assert summary.total_earned == 450
        assert summary.total_paid_out == 0

    async def test_payment_cannot_be_credited_twice(
        self, signed_contract, orchestrator, session_factory
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        async with session_factory() as session:
            first = wallet_ledger.credit_freelancer("freelancer-1", payment.id, 500, Decimal("10"))
            await wallet_ledger.post_entry(session, first, "INR")
            await session.commit()

        async with session_factory() as session:
            second = wallet_ledger.credit_freelancer("freelancer-1", payment.id, 500, Decimal("10"))
            with pytest.raises(IntegrityError):
                await wallet_ledger.post_entry(session, second, "INR")
