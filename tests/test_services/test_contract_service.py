"""Tests for ContractService: creation, signatures, advancement and disputes."""

from __future__ import annotations

import uuid

import pytest

from escrow_settlement.domain.enums import (
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
    SignatoryParty,
)
from escrow_settlement.domain.exceptions import (
    ContractNotFoundError,
    DuplicateSignatureError,
    InvalidSplitPolicyError,
    InvalidStateTransitionError,
)
from escrow_settlement.infrastructure.database.orm_models import Contract, Payment
from escrow_settlement.services.contract_service import ContractService


async def _event_types(session_factory, contract_id) -> list[str]:
    async with session_factory() as session:
        events = await ContractService(session).get_events(contract_id)
    return [e.event_type for e in events]


class TestCreateContract:
    async def test_defaults_to_platform_split(self, make_contract) -> None:
        contract = await make_contract(total_amount=1000)
        assert contract.status == ContractStatus.PENDING_SIGNATURES
        assert contract.split_policy == {"upfront": 50, "completion": 50}
        assert contract.currency == "INR"

    async def test_records_creation_event(self, make_contract, session_factory) -> None:
        contract = await make_contract()
        assert await _event_types(session_factory, contract.id) == [EventType.CONTRACT_CREATED]

    async def test_rejects_bad_policy(self, make_contract) -> None:
        with pytest.raises(InvalidSplitPolicyError):
            await make_contract(split_policy={"upfront": 70, "completion": 70})

    async def test_rejects_zero_percent_phase(self, make_contract) -> None:
        with pytest.raises(InvalidSplitPolicyError, match="must be positive"):
            await make_contract(split_policy={"upfront": 0, "completion": 100})

    async def test_rejects_total_too_small_for_split(self, make_contract, session_factory) -> None:
        with pytest.raises(InvalidSplitPolicyError, match="upfront"):
            await make_contract(total_amount=1)
        async with session_factory() as session:
            assert await ContractService(session).list_contracts("client-1") == []

    async def test_smallest_total_for_even_split(self, make_contract) -> None:
        contract = await make_contract(total_amount=2)
        assert contract.total_amount == 2


class TestRecordSignature:
    async def test_first_signature_keeps_pending(self, make_contract, session_factory) -> None:
        contract = await make_contract()
        async with session_factory() as session:
            result = await ContractService(session).record_signature(
                contract.id, SignatoryParty.CLIENT, "sig-a"
            )
            await session.commit()

        assert result.recorded is True
        assert result.became_signed is False
        assert result.contract.status == ContractStatus.PENDING_SIGNATURES
        assert result.contract.client_signed_at is not None

    async def test_second_signature_signs_contract(
        self, make_contract, sign_contract, session_factory
    ) -> None:
        contract = await make_contract(duration_days=14)
        signed = await sign_contract(contract.id)

        assert signed.status == ContractStatus.SIGNED
        assert signed.expected_end_at is not None
        assert await _event_types(session_factory, contract.id) == [
            EventType.CONTRACT_CREATED,
            EventType.SIGNATURE_RECORDED,
            EventType.SIGNATURE_RECORDED,
            EventType.CONTRACT_SIGNED,
        ]

    async def test_identical_signature_is_idempotent(
        self, make_contract, session_factory
    ) -> None:
        contract = await make_contract()
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.record_signature(contract.id, SignatoryParty.FREELANCER, "same")
            replay = await svc.record_signature(contract.id, SignatoryParty.FREELANCER, "same")
            await session.commit()

        assert replay.recorded is False
        assert replay.became_signed is False
        events = await _event_types(session_factory, contract.id)
        assert events.count(EventType.SIGNATURE_RECORDED) == 1

    async def test_replayed_second_signature_does_not_resign(
        self, make_contract, sign_contract, session_factory
    ) -> None:
        contract = await make_contract()
        await sign_contract(contract.id)
        async with session_factory() as session:
            replay = await ContractService(session).record_signature(
                contract.id, SignatoryParty.FREELANCER, "freelancer-signature"
            )
        assert replay.became_signed is False
        assert replay.contract.status == ContractStatus.SIGNED

    async def test_replay_signs_contract_left_with_both_signatures(
        self, make_contract, session_factory
    ) -> None:
        contract = await make_contract()
        # Two writers that each stored one signature without seeing the other.
        async with session_factory() as session:
            row = await session.get(Contract, contract.id)
            row.client_signature = "client-signature"
            row.freelancer_signature = "freelancer-signature"
            await session.commit()

        async with session_factory() as session:
            replay = await ContractService(session).record_signature(
                contract.id, SignatoryParty.CLIENT, "client-signature"
            )
            await session.commit()

        assert replay.recorded is False
        assert replay.became_signed is True
        assert replay.contract.status == ContractStatus.SIGNED
        events = await _event_types(session_factory, contract.id)
        assert events.count(EventType.CONTRACT_SIGNED) == 1

    async def test_different_signature_is_rejected(self, make_contract, session_factory) -> None:
        contract = await make_contract()
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.record_signature(contract.id, SignatoryParty.CLIENT, "first")
            with pytest.raises(DuplicateSignatureError):
                await svc.record_signature(contract.id, SignatoryParty.CLIENT, "second")

    async def test_unknown_contract(self, session_factory) -> None:
        async with session_factory() as session:
            with pytest.raises(ContractNotFoundError):
                await ContractService(session).record_signature(
                    uuid.uuid4(), SignatoryParty.CLIENT, "sig"
                )

    async def test_new_blob_on_disputed_contract_is_duplicate(
        self, signed_contract, session_factory
    ) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.mark_disputed(contract.id, "scope changed", "client-1")
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(DuplicateSignatureError):
                await ContractService(session).record_signature(
                    contract.id, SignatoryParty.CLIENT, "another"
                )


class TestAdvanceOnPayment:
    async def test_upfront_starts_work(self, signed_contract, session_factory) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            advanced = await ContractService(session).advance_on_payment(
                contract.id, PaymentPhase.UPFRONT
            )
            await session.commit()
        assert advanced.status == ContractStatus.IN_PROGRESS

    async def test_completion_before_upfront_is_rejected(
        self, signed_contract, session_factory
    ) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            with pytest.raises(InvalidStateTransitionError):
                await ContractService(session).advance_on_payment(
                    contract.id, PaymentPhase.COMPLETION
                )

    async def test_milestone_keeps_in_progress(self, signed_contract, session_factory) -> None:
        contract = await signed_contract(
            split_policy={"upfront": 30, "milestone": 30, "completion": 40}
        )
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.advance_on_payment(contract.id, PaymentPhase.UPFRONT)
            advanced = await svc.advance_on_payment(contract.id, PaymentPhase.MILESTONE)
            await session.commit()
        assert advanced.status == ContractStatus.IN_PROGRESS

    async def test_completion_settles_contract(self, signed_contract, session_factory) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.advance_on_payment(contract.id, PaymentPhase.UPFRONT)
            done = await svc.advance_on_payment(contract.id, PaymentPhase.COMPLETION)
            await session.commit()
        assert done.status == ContractStatus.COMPLETED
        assert done.completed_at is not None

    async def test_upfront_applies_earlier_completion(
        self, signed_contract, session_factory
    ) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            session.add(
                Payment(
                    contract_id=contract.id,
                    phase=PaymentPhase.COMPLETION.value,
                    amount=500,
                    external_link_id="lnk_com_early",
                    status=PaymentStatus.PAID.value,
                )
            )
            await session.commit()

        async with session_factory() as session:
            advanced = await ContractService(session).advance_on_payment(
                contract.id, PaymentPhase.UPFRONT
            )
            await session.commit()

        assert advanced.status == ContractStatus.COMPLETED
        events = await _event_types(session_factory, contract.id)
        assert events[-2:] == [EventType.WORK_STARTED, EventType.CONTRACT_COMPLETED]


class TestDisputes:
    async def test_dispute_signed_contract(self, signed_contract, session_factory) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            disputed = await ContractService(session).mark_disputed(
                contract.id, "scope changed", "client-1"
            )
            await session.commit()
        assert disputed.status == ContractStatus.DISPUTED
        assert disputed.dispute_reason == "scope changed"

    async def test_cannot_dispute_unsigned(self, make_contract, session_factory) -> None:
        contract = await make_contract()
        async with session_factory() as session:
            with pytest.raises(InvalidStateTransitionError):
                await ContractService(session).mark_disputed(contract.id, "too early", "client-1")


class TestStatus:
    async def test_awaiting_one_party(self, make_contract, session_factory) -> None:
        contract = await make_contract()
        async with session_factory() as session:
            svc = ContractService(session)
            await svc.record_signature(contract.id, SignatoryParty.CLIENT, "sig")
            status = await svc.get_status(contract.id)
        assert status["display_label"] == "awaiting freelancer signature"
        assert status["signed_by"] == ["client"]
        assert status["allowed_events"] == ["both_signed"]

    async def test_signed_awaits_upfront(self, signed_contract, session_factory) -> None:
        contract = await signed_contract()
        async with session_factory() as session:
            status = await ContractService(session).get_status(contract.id)
        assert status["display_label"] == "awaiting upfront payment"
        assert status["paid_phases"] == []

    async def test_list_contracts_for_either_party(self, make_contract, session_factory) -> None:
        await make_contract(client_id="c-9", freelancer_id="f-9")
        await make_contract(client_id="c-8", freelancer_id="f-9")
        async with session_factory() as session:
            svc = ContractService(session)
            assert len(await svc.list_contracts("f-9")) == 2
            assert len(await svc.list_contracts("c-9")) == 1
