"""Contract Service: business logic for the contract lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access)
    - Event log (audit trail)

The service never commits. REST routes commit once the unit of work is done;
the webhook reconciler calls `advance_on_payment` inside its own transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.enums import (
    IN_FLIGHT_PAYMENT_STATUSES,
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
    SignatoryParty,
)
from escrow_settlement.domain.exceptions import (
    ContractNotFoundError,
    DuplicateSignatureError,
    InvalidStateTransitionError,
)
from escrow_settlement.domain.split_policy import validate_phase_amounts, validate_split_policy
from escrow_settlement.domain.state_machine import (
    PHASE_SETTLEMENT_EVENTS,
    ContractStateMachine,
)
from escrow_settlement.infrastructure.database.orm_models import Contract
from escrow_settlement.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    PaymentRepository,
)
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.infrastructure.database.orm_models import ContractEvent, Payment

logger = get_logger(__name__)


@dataclass(frozen=True)
class SignatureResult:
    """Outcome of `record_signature`.

    `became_signed` is True only on the call that collected the second
    signature; the caller then requests the upfront payment after commit.
    """

    contract: Contract
    recorded: bool
    became_signed: bool


class ContractService:
    """Manages the contract lifecycle."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._contract_repo = ContractRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Contract Creation
    # ------------------------------------------------------------------

    async def create_contract(
        self,
        client_id: str,
        freelancer_id: str,
        job_id: str,
        title: str,
        total_amount: int,
        split_policy: dict[str, int] | None = None,
        duration_days: int | None = None,
        proposal_id: str | None = None,
    ) -> Contract:
        """Create a contract in pending_signatures from an accepted proposal."""
        policy = validate_split_policy(split_policy or self._settings.default_split_policy)
        validate_phase_amounts(total_amount, policy)

        contract = Contract(
            client_id=client_id,
            freelancer_id=freelancer_id,
            job_id=job_id,
            proposal_id=proposal_id,
            title=title,
            total_amount=total_amount,
            currency=self._settings.currency,
            split_policy=policy,
            duration_days=duration_days,
            status=ContractStatus.PENDING_SIGNATURES.value,
        )
        contract = await self._contract_repo.create(contract)

        await self._event_repo.record(
            contract_id=contract.id,
            event_type=EventType.CONTRACT_CREATED,
            old_status=None,
            new_status=ContractStatus.PENDING_SIGNATURES,
            actor=client_id,
            metadata={"job_id": job_id, "proposal_id": proposal_id, "split_policy": policy},
        )

        logger.info(
            "contract.created",
            contract_id=str(contract.id),
            total_amount=total_amount,
            split_policy=policy,
        )
        return contract

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    async def record_signature(
        self,
        contract_id: uuid.UUID,
        party: SignatoryParty,
        signature_blob: str,
    ) -> SignatureResult:
        """Store one party's signature; sign the contract once both are present.

        Re-submitting the identical signature is a no-op. A party may not
        replace a signature it already gave.
        """
        contract = await self._get_contract_or_raise(contract_id, for_update=True)

        existing = contract.signature_for(party.value)
        if existing is not None:
            if existing == signature_blob:
                logger.info(
                    "contract.signature_replayed",
                    contract_id=str(contract_id),
                    party=party.value,
                )
                # Both signatures stored by racing writers that each saw one.
                if (
                    contract.is_fully_signed
                    and contract.status == ContractStatus.PENDING_SIGNATURES
                ):
                    await self._complete_signing(contract, datetime.now(UTC))
                    return SignatureResult(contract=contract, recorded=False, became_signed=True)
                return SignatureResult(contract=contract, recorded=False, became_signed=False)
            raise DuplicateSignatureError(str(contract_id), party.value)

        if contract.status != ContractStatus.PENDING_SIGNATURES:
            raise InvalidStateTransitionError(contract.status, f"sign:{party.value}")

        now = datetime.now(UTC)
        if party is SignatoryParty.CLIENT:
            contract.client_signature = signature_blob
            contract.client_signed_at = now
        else:
            contract.freelancer_signature = signature_blob
            contract.freelancer_signed_at = now
        await self._session.flush()

        await self._event_repo.record(
            contract_id=contract.id,
            event_type=EventType.SIGNATURE_RECORDED,
            old_status=ContractStatus.PENDING_SIGNATURES,
            new_status=ContractStatus.PENDING_SIGNATURES,
            actor=contract.client_id if party is SignatoryParty.CLIENT else contract.freelancer_id,
            metadata={"party": party.value},
        )
        logger.info("contract.signature_recorded", contract_id=str(contract_id), party=party.value)

        if not contract.is_fully_signed:
            return SignatureResult(contract=contract, recorded=True, became_signed=False)

        await self._complete_signing(contract, now)
        return SignatureResult(contract=contract, recorded=True, became_signed=True)

    async def _complete_signing(self, contract: Contract, now: datetime) -> None:
        """Move a contract holding both signatures to `signed`."""
        self._fire_transition(contract, "both_signed")
        if contract.duration_days:
            contract.expected_end_at = now + timedelta(days=contract.duration_days)
        await self._contract_repo.update_status(contract, ContractStatus.SIGNED)

        await self._event_repo.record(
            contract_id=contract.id,
            event_type=EventType.CONTRACT_SIGNED,
            old_status=ContractStatus.PENDING_SIGNATURES,
            new_status=ContractStatus.SIGNED,
            actor="SYSTEM",
        )
        logger.info("contract.signed", contract_id=str(contract.id))

    # ------------------------------------------------------------------
    # Payment-driven advancement (called by the webhook reconciler)
    # ------------------------------------------------------------------

    async def advance_on_payment(
        self,
        contract_id: uuid.UUID,
        phase: PaymentPhase,
    ) -> Contract:
        """Move the contract forward after a phase's payment settled.

        Raises:
            InvalidStateTransitionError: If the contract is not in the state
                this phase settles from (out-of-order or late webhook).
        """
        contract = await self._get_contract_or_raise(contract_id, for_update=True)
        old_status = ContractStatus(contract.status)

        self._fire_transition(contract, PHASE_SETTLEMENT_EVENTS[phase])

        if phase is PaymentPhase.UPFRONT:
            await self._contract_repo.update_status(contract, ContractStatus.IN_PROGRESS)
            await self._event_repo.record(
                contract_id=contract.id,
                event_type=EventType.WORK_STARTED,
                old_status=old_status,
                new_status=ContractStatus.IN_PROGRESS,
                actor="SYSTEM",
            )
            logger.info("contract.work_started", contract_id=str(contract_id))
            await self._apply_deferred_completion(contract)

        elif phase is PaymentPhase.COMPLETION:
            await self._complete(contract, old_status)

        else:
            logger.info("contract.milestone_settled", contract_id=str(contract_id))

        return contract

    async def _apply_deferred_completion(self, contract: Contract) -> None:
        """Finish a contract whose completion payment settled before the upfront one."""
        settled = await self._payment_repo.find_for_phase(
            contract.id, PaymentPhase.COMPLETION, [PaymentStatus.PAID]
        )
        if settled is None:
            return
        self._fire_transition(contract, "completion_settled")
        logger.info(
            "contract.deferred_completion_applied",
            contract_id=str(contract.id),
            payment_id=str(settled.id),
        )
        await self._complete(contract, ContractStatus.IN_PROGRESS)

    async def _complete(self, contract: Contract, old_status: ContractStatus) -> None:
        contract.completed_at = datetime.now(UTC)
        await self._contract_repo.update_status(contract, ContractStatus.COMPLETED)
        await self._event_repo.record(
            contract_id=contract.id,
            event_type=EventType.CONTRACT_COMPLETED,
            old_status=old_status,
            new_status=ContractStatus.COMPLETED,
            actor="SYSTEM",
        )
        logger.info("contract.completed", contract_id=str(contract.id))

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def mark_disputed(
        self,
        contract_id: uuid.UUID,
        reason: str,
        raised_by: str,
    ) -> Contract:
        """Flag a contract as disputed. Terminal; resolution happens elsewhere."""
        contract = await self._get_contract_or_raise(contract_id, for_update=True)
        old_status = ContractStatus(contract.status)

        self._fire_transition(contract, "raise_dispute")
        contract.dispute_reason = reason
        await self._contract_repo.update_status(contract, ContractStatus.DISPUTED)

        await self._event_repo.record(
            contract_id=contract.id,
            event_type=EventType.DISPUTE_RAISED,
            old_status=old_status,
            new_status=ContractStatus.DISPUTED,
            actor=raised_by,
            metadata={"reason": reason},
        )

        logger.info("contract.dispute_raised", contract_id=str(contract_id), by=raised_by)
        return contract

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_contract(self, contract_id: uuid.UUID) -> Contract:
        """Get a contract or raise."""
        return await self._get_contract_or_raise(contract_id)

    async def list_contracts(self, party_id: str) -> list[Contract]:
        return await self._contract_repo.list_for_party(party_id)

    async def get_status(self, contract_id: uuid.UUID) -> dict:
        """Get contract status with allowed events and a display label."""
        contract = await self._get_contract_or_raise(contract_id)
        payments = await self._payment_repo.get_by_contract(contract_id)
        sm = ContractStateMachine(current_status=contract.status)
        return {
            "contract_id": str(contract.id),
            "status": contract.status,
            "display_label": self._display_label(contract, payments),
            "signed_by": [
                party.value
                for party in SignatoryParty
                if contract.signature_for(party.value) is not None
            ],
            "paid_phases": sorted(
                p.phase for p in payments if p.status == PaymentStatus.PAID
            ),
            "allowed_events": sm.get_allowed_events(),
        }

    async def get_events(self, contract_id: uuid.UUID) -> list[ContractEvent]:
        """Get audit trail."""
        await self._get_contract_or_raise(contract_id)
        return await self._event_repo.get_by_contract(contract_id)

    async def list_payments(self, contract_id: uuid.UUID) -> list[Payment]:
        await self._get_contract_or_raise(contract_id)
        return await self._payment_repo.get_by_contract(contract_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _display_label(contract: Contract, payments: list[Payment]) -> str:
        status = ContractStatus(contract.status)
        if status is ContractStatus.PENDING_SIGNATURES:
            missing = [
                party.value
                for party in SignatoryParty
                if contract.signature_for(party.value) is None
            ]
            if len(missing) == 1:
                return f"awaiting {missing[0]} signature"
            return "awaiting signature"
        if status is ContractStatus.COMPLETED:
            return "paid"
        if status is ContractStatus.DISPUTED:
            return "disputed"
        if any(p.status in IN_FLIGHT_PAYMENT_STATUSES for p in payments):
            return "payment pending"
        if status is ContractStatus.SIGNED:
            return "awaiting upfront payment"
        return "work in progress"

    async def _get_contract_or_raise(
        self, contract_id: uuid.UUID, *, for_update: bool = False
    ) -> Contract:
        contract = await self._contract_repo.get_by_id(contract_id, for_update=for_update)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def _fire_transition(self, contract: Contract, event_name: str) -> None:
        """Validate and fire a state machine transition.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = ContractStateMachine(current_status=contract.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(contract.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(contract.status, event_name) from err
