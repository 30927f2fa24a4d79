"""Tests for WebhookReconciler: exactly-once settlement of gateway events.

These tests verify that:
    1. A paid event credits the wallet net of fee and advances the contract.
    2. Redelivered events are acknowledged without a second credit.
    3. Unknown link ids and bad signatures change nothing.
    4. Late, out-of-order and conflicting events are handled explicitly.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from escrow_settlement.domain.enums import (
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
    ReconcileOutcome,
)
from escrow_settlement.domain.exceptions import WebhookUnauthorizedError
from escrow_settlement.domain.gateway_events import CANCELLED_EVENT, EXPIRED_EVENT
from escrow_settlement.infrastructure.database.repositories import WebhookReceiptRepository
from escrow_settlement.infrastructure.gateway.simulated import sign_payload
from escrow_settlement.services import wallet_ledger
from escrow_settlement.services.contract_service import ContractService
from escrow_settlement.services.webhook_reconciler import verify_signature


async def _balance(session_factory, freelancer_id: str = "freelancer-1") -> int:
    async with session_factory() as session:
        return await wallet_ledger.get_available_balance(session, freelancer_id)


async def _payment_status(session_factory, contract_id) -> list[str]:
    async with session_factory() as session:
        return [p.status for p in await ContractService(session).list_payments(contract_id)]


async def _event_types(session_factory, contract_id) -> list[str]:
    async with session_factory() as session:
        return [e.event_type for e in await ContractService(session).get_events(contract_id)]


class TestPaidEvent:
    async def test_upfront_settlement(
        self, signed_contract, orchestrator, deliver, session_factory, load_contract
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        result = await deliver(payment.external_link_id, amount=500, event_id="evt_up")

        assert result.outcome is ReconcileOutcome.APPLIED
        assert result.credited_amount == 450
        assert await _balance(session_factory) == 450
        assert await _payment_status(session_factory, contract.id) == ["paid"]
        assert (await load_contract(contract.id)).status == ContractStatus.IN_PROGRESS

    async def test_fee_breakdown_on_entry(
        self, in_progress_contract, session_factory
    ) -> None:
        await in_progress_contract(total_amount=1000)
        async with session_factory() as session:
            (entry,) = await wallet_ledger.get_wallet_history(session, "freelancer-1")
        assert entry.gross_amount == 500
        assert entry.fee_amount == 50
        assert entry.amount == 450

    async def test_completion_settles_contract(
        self, in_progress_contract, orchestrator, deliver, session_factory, load_contract
    ) -> None:
        contract = await in_progress_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.COMPLETION)

        result = await deliver(payment.external_link_id, amount=500)

        assert result.outcome is ReconcileOutcome.APPLIED
        assert (await load_contract(contract.id)).status == ContractStatus.COMPLETED
        assert await _balance(session_factory) == 900

    async def test_notifies_both_parties(
        self, signed_contract, orchestrator, deliver, notifier
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id)

        recipients = {recipient for recipient, kind, _ in notifier.sent if kind == "payment_settled"}
        assert recipients == {"client-1", "freelancer-1"}

    async def test_amount_mismatch_still_settles_stored_amount(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        result = await deliver(payment.external_link_id, amount=999)
        assert result.outcome is ReconcileOutcome.APPLIED
        assert await _balance(session_factory) == 450


class TestIdempotency:
    async def test_same_event_twice_credits_once(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        first = await deliver(payment.external_link_id, event_id="evt_dup")
        second = await deliver(payment.external_link_id, event_id="evt_dup")

        assert first.outcome is ReconcileOutcome.APPLIED
        assert second.outcome is ReconcileOutcome.DUPLICATE
        assert await _balance(session_factory) == 450

    async def test_new_event_id_for_paid_payment(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        await deliver(payment.external_link_id, event_id="evt_a")
        again = await deliver(payment.external_link_id, event_id="evt_b")

        assert again.outcome is ReconcileOutcome.DUPLICATE
        assert await _balance(session_factory) == 450

    async def test_receipt_records_outcome(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id, event_id="evt_receipt")

        async with session_factory() as session:
            receipt = await WebhookReceiptRepository(session).get_by_event_id("evt_receipt")
        assert receipt.outcome == "applied"
        assert receipt.external_link_id == payment.external_link_id
        assert receipt.event_type == "payment_link.paid"


class TestUnknownPayment:
    async def test_unknown_link_changes_nothing(self, deliver, session_factory) -> None:
        result = await deliver("lnk_upf_does_not_exist", event_id="evt_unknown")

        assert result.outcome is ReconcileOutcome.UNKNOWN_PAYMENT
        async with session_factory() as session:
            assert not await WebhookReceiptRepository(session).exists("evt_unknown")
        assert await _balance(session_factory) == 0


class TestSignature:
    async def test_bad_signature_is_rejected(self, reconciler, session_factory) -> None:
        body = json.dumps({"event_id": "evt_forged", "event_type": "payment_link.paid"}).encode()
        with pytest.raises(WebhookUnauthorizedError):
            await reconciler.handle(body, sign_payload(body, "wrong-secret"))

        async with session_factory() as session:
            assert not await WebhookReceiptRepository(session).exists("evt_forged")

    async def test_missing_signature(self, reconciler) -> None:
        with pytest.raises(WebhookUnauthorizedError, match="missing signature"):
            await reconciler.handle(b"{}", None)

    def test_verify_accepts_uppercase_hex(self) -> None:
        body = b'{"event_id": "e"}'
        verify_signature(body, sign_payload(body, "s").upper(), "s")


class TestUnrecognizedEvents:
    async def test_unknown_type_is_ignored_and_recorded(
        self, reconciler, settings, session_factory
    ) -> None:
        body = json.dumps(
            {"event_id": "evt_refund", "event_type": "refund.created", "data": {}}
        ).encode()
        result = await reconciler.handle(body, sign_payload(body, settings.webhook_secret))

        assert result.outcome is ReconcileOutcome.IGNORED
        async with session_factory() as session:
            receipt = await WebhookReceiptRepository(session).get_by_event_id("evt_refund")
        assert receipt.outcome == "ignored"

    async def test_malformed_body_is_ignored(self, reconciler, settings) -> None:
        body = b"<xml>not json</xml>"
        result = await reconciler.handle(body, sign_payload(body, settings.webhook_secret))
        assert result.outcome is ReconcileOutcome.IGNORED
        assert result.event_id.startswith("body-")

        again = await reconciler.handle(body, sign_payload(body, settings.webhook_secret))
        assert again.outcome is ReconcileOutcome.DUPLICATE


class TestFailureEvents:
    async def test_expired_event(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        result = await deliver(payment.external_link_id, event_type=EXPIRED_EVENT)

        assert result.outcome is ReconcileOutcome.APPLIED
        assert await _payment_status(session_factory, contract.id) == ["expired"]
        assert EventType.PAYMENT_EXPIRED in await _event_types(session_factory, contract.id)

    async def test_cancelled_event(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id, event_type=CANCELLED_EVENT)
        assert await _payment_status(session_factory, contract.id) == ["failed"]

    async def test_failure_after_paid_is_ignored(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract()
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id)

        result = await deliver(payment.external_link_id, event_type=EXPIRED_EVENT)

        assert result.outcome is ReconcileOutcome.IGNORED
        assert await _payment_status(session_factory, contract.id) == ["paid"]


class TestLateAndConflictingEvents:
    async def test_late_paid_after_local_expiry(
        self, signed_contract, orchestrator, deliver, session_factory, load_contract
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await orchestrator.expire_stale_payments(now=datetime.now(UTC) + timedelta(hours=2))

        result = await deliver(payment.external_link_id)

        assert result.outcome is ReconcileOutcome.APPLIED
        assert await _payment_status(session_factory, contract.id) == ["paid"]
        assert (await load_contract(contract.id)).status == ContractStatus.IN_PROGRESS

    async def test_second_payment_for_paid_phase_is_flagged(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        first = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await orchestrator.expire_stale_payments(now=datetime.now(UTC) + timedelta(hours=2))
        second = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        await deliver(first.external_link_id)
        result = await deliver(second.external_link_id)

        assert result.outcome is ReconcileOutcome.DUPLICATE
        assert await _balance(session_factory) == 450
        assert EventType.DUPLICATE_SETTLEMENT in await _event_types(session_factory, contract.id)

    async def test_payment_on_disputed_contract_is_deferred(
        self, signed_contract, orchestrator, deliver, session_factory, load_contract
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        async with session_factory() as session:
            await ContractService(session).mark_disputed(contract.id, "client went silent", "f")
            await session.commit()

        result = await deliver(payment.external_link_id)

        assert result.outcome is ReconcileOutcome.DEFERRED
        assert result.credited_amount == 450
        assert (await load_contract(contract.id)).status == ContractStatus.DISPUTED
        assert EventType.CONTRACT_ADVANCE_DEFERRED in await _event_types(
            session_factory, contract.id
        )

    async def test_payment_status_pending_after_issue(
        self, signed_contract, orchestrator, session_factory
    ) -> None:
        contract = await signed_contract()
        await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        assert await _payment_status(session_factory, contract.id) == [PaymentStatus.PENDING]


class TestConcurrentDelivery:
    async def test_simultaneous_duplicates_credit_once(
        self, signed_contract, orchestrator, deliver, session_factory
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)

        results = await asyncio.gather(
            deliver(payment.external_link_id, event_id="evt_race"),
            deliver(payment.external_link_id, event_id="evt_race"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["applied", "duplicate"]
        assert await _balance(session_factory) == 450

    async def test_receipt_insert_race_is_a_duplicate(
        self, signed_contract, orchestrator, deliver, session_factory, monkeypatch
    ) -> None:
        contract = await signed_contract(total_amount=1000)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id, event_id="evt_late_check")

        # The second delivery looked before the first one committed.
        async def _not_seen(self, event_id: str) -> bool:
            return False

        monkeypatch.setattr(WebhookReceiptRepository, "exists", _not_seen)
        result = await deliver(payment.external_link_id, event_id="evt_late_check")

        assert result.outcome is ReconcileOutcome.DUPLICATE
        assert await _balance(session_factory) == 450
        assert await _payment_status(session_factory, contract.id) == ["paid"]
