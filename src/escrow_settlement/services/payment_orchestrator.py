"""Payment Orchestrator: turns a contract phase into a hosted payment link.

`request_payment` runs in three steps so no database transaction is ever
held open across the network call to the gateway:

    1. Tx1: lock the contract, check the phase can be paid, reserve a
       Payment row in `created` with a locally generated link id, commit.
    2. Call the gateway (bounded timeout, retried by the client).
    3. Tx2: store the link URL and move the row to `pending`; if the
       gateway failed, mark the row `failed` instead and raise
       GatewayUnavailableError so the caller can simply retry.

The partial unique index on in-flight payments makes Tx1 safe under
concurrent requests: the loser gets PaymentInFlightError.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.enums import (
    IN_FLIGHT_PAYMENT_STATUSES,
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
)
from escrow_settlement.domain.exceptions import (
    AlreadyPaidError,
    ContractNotFoundError,
    GatewayUnavailableError,
    InvalidSplitPolicyError,
    InvalidStateTransitionError,
    PaymentInFlightError,
    TransactionConflictError,
)
from escrow_settlement.domain.gateway_protocol import PaymentLinkRequest
from escrow_settlement.domain.split_policy import PHASE_REQUIRED_STATUS, phase_amount
from escrow_settlement.domain.state_machine import can_transition_payment
from escrow_settlement.infrastructure.database.orm_models import Payment
from escrow_settlement.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    PaymentRepository,
)
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_settlement.domain.gateway_protocol import PaymentGateway
    from escrow_settlement.infrastructure.database.orm_models import Contract

logger = get_logger(__name__)


IN_FLIGHT_INDEX = "uq_payment_in_flight_per_phase"


def _is_in_flight_violation(exc: IntegrityError) -> bool:
    """True when ``exc`` came from the one-in-flight-payment-per-phase index.

    PostgreSQL names the index; SQLite only names the indexed columns, and
    the only unique index on ``(contract_id, phase)`` a `created` row can hit
    is the in-flight one.
    """
    message = str(exc.orig)
    return IN_FLIGHT_INDEX in message or "payments.contract_id, payments.phase" in message


def new_link_id(phase: PaymentPhase) -> str:
    """Gateway link id: short, unique, and readable in gateway dashboards."""
    return f"lnk_{phase.value[:3]}_{uuid.uuid4().hex}"


class PaymentOrchestrator:
    """Issues payment links for contract phases and sweeps stale ones."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Request a payment
    # ------------------------------------------------------------------

    async def request_payment(
        self,
        contract_id: uuid.UUID,
        phase: PaymentPhase,
        *,
        actor: str = "SYSTEM",
    ) -> Payment:
        """Reserve a payment for the phase, issue its link, and return it.

        Raises:
            ContractNotFoundError: Unknown contract.
            AlreadyPaidError: The phase already has a paid payment.
            PaymentInFlightError: The phase already has a created/pending payment.
            InvalidStateTransitionError: The contract is not in the phase's status.
            InvalidSplitPolicyError: The contract's policy has no such phase.
            GatewayUnavailableError: The link could not be issued (retryable).
            TransactionConflictError: The payment row was rejected by the database.
        """
        payment, contract = await self._reserve(contract_id, phase, actor)
        log = logger.bind(
            contract_id=str(contract_id),
            payment_id=str(payment.id),
            phase=phase.value,
            link_id=payment.external_link_id,
        )

        link_request = PaymentLinkRequest(
            link_id=payment.external_link_id,
            amount=payment.amount,
            currency=contract.currency,
            purpose=f"{contract.title} ({phase.value} payment)",
            customer_id=contract.client_id,
            meta={"contract_id": str(contract.id), "phase": phase.value},
        )
        try:
            link = await self._gateway.create_payment_link(link_request)
        except Exception as exc:
            log.warning("payment.link_failed", error=str(exc))
            await self._record_link_failure(payment.id, str(exc))
            if isinstance(exc, GatewayUnavailableError):
                raise
            raise GatewayUnavailableError(f"Payment link creation failed: {exc}") from exc

        payment = await self._record_link_issued(payment.id, link.link_url)
        log.info("payment.link_issued", amount=payment.amount)
        return payment

    async def _reserve(
        self, contract_id: uuid.UUID, phase: PaymentPhase, actor: str
    ) -> tuple[Payment, Contract]:
        """Tx1: validate and insert the `created` payment row."""
        async with self._session_factory() as session, session.begin():
            contracts = ContractRepository(session)
            payments = PaymentRepository(session)

            contract = await contracts.get_by_id(contract_id, for_update=True)
            if contract is None:
                raise ContractNotFoundError(str(contract_id))

            if await payments.find_for_phase(contract.id, phase, [PaymentStatus.PAID]):
                raise AlreadyPaidError(str(contract_id), phase.value)
            if await payments.find_for_phase(contract.id, phase, IN_FLIGHT_PAYMENT_STATUSES):
                raise PaymentInFlightError(str(contract_id), phase.value)

            required = PHASE_REQUIRED_STATUS[phase]
            if contract.status != required:
                raise InvalidStateTransitionError(contract.status, f"request_{phase.value}_payment")

            amount = phase_amount(contract.total_amount, contract.split_policy, phase)
            if amount <= 0:
                raise InvalidSplitPolicyError(
                    f"Phase '{phase.value}' of contract {contract_id} has nothing due"
                )
            payment = Payment(
                contract_id=contract.id,
                phase=phase.value,
                amount=amount,
                external_link_id=new_link_id(phase),
                status=PaymentStatus.CREATED.value,
            )
            try:
                await payments.create(payment)
            except IntegrityError as exc:
                if _is_in_flight_violation(exc):
                    raise PaymentInFlightError(str(contract_id), phase.value) from exc
                logger.error(
                    "payment.reserve_rejected",
                    contract_id=str(contract_id),
                    phase=phase.value,
                    error=str(exc.orig),
                )
                raise TransactionConflictError(
                    f"Payment for phase '{phase.value}' could not be reserved"
                ) from exc

            await EventRepository(session).record(
                contract_id=contract.id,
                event_type=EventType.PAYMENT_REQUESTED,
                old_status=ContractStatus(contract.status),
                new_status=ContractStatus(contract.status),
                actor=actor,
                metadata={
                    "payment_id": str(payment.id),
                    "phase": phase.value,
                    "amount": amount,
                    "link_id": payment.external_link_id,
                },
            )
            logger.info(
                "payment.requested",
                contract_id=str(contract_id),
                payment_id=str(payment.id),
                phase=phase.value,
                amount=amount,
            )
        return payment, contract

    async def _record_link_issued(self, payment_id: uuid.UUID, link_url: str) -> Payment:
        """Tx2 (success): store the URL; `created` becomes `pending`."""
        async with self._session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await payments.get_by_id(payment_id, for_update=True)
            payment.link_url = link_url
            if payment.status == PaymentStatus.CREATED:
                await payments.update_status(payment, PaymentStatus.PENDING)
            else:
                # A webhook or the sweep got here first; keep its status.
                await session.flush()
        return payment

    async def _record_link_failure(self, payment_id: uuid.UUID, reason: str) -> None:
        """Tx2 (failure): `created` becomes `failed` so the phase can be retried."""
        async with self._session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await payments.get_by_id(payment_id, for_update=True)
            if payment.status != PaymentStatus.CREATED:
                return
            await payments.update_status(
                payment, PaymentStatus.FAILED, failure_reason=reason[:500]
            )
            contract = await ContractRepository(session).get_by_id(payment.contract_id)
            await EventRepository(session).record(
                contract_id=payment.contract_id,
                event_type=EventType.PAYMENT_LINK_FAILED,
                old_status=ContractStatus(contract.status),
                new_status=ContractStatus(contract.status),
                actor="SYSTEM",
                metadata={"payment_id": str(payment.id), "reason": reason[:500]},
            )

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def expire_stale_payments(self, now: datetime | None = None) -> int:
        """Expire created/pending payments older than the link expiry window.

        Each stale link is first looked up at the gateway, outside any
        transaction. Links the gateway reports as paid are left alone for
        their webhook to settle; a failed lookup does not block expiry.
        Returns the number of payments expired. A `paid` webhook arriving
        later still settles an expired payment.
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self._settings.payment_link_expiry_minutes)

        async with self._session_factory() as session:
            stale = await PaymentRepository(session).list_stale_in_flight(cutoff)
        if not stale:
            return 0

        to_expire = [p.id for p in stale if not await self._paid_at_gateway(p)]

        expired = 0
        async with self._session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            contracts = ContractRepository(session)
            events = EventRepository(session)

            for payment_id in to_expire:
                payment = await payments.get_by_id(payment_id, for_update=True)
                # A webhook may have settled or failed it since the lookup.
                if not can_transition_payment(PaymentStatus(payment.status), PaymentStatus.EXPIRED):
                    continue
                await payments.update_status(
                    payment, PaymentStatus.EXPIRED, failure_reason="link expired"
                )
                contract = await contracts.get_by_id(payment.contract_id)
                await events.record(
                    contract_id=payment.contract_id,
                    event_type=EventType.PAYMENT_EXPIRED,
                    old_status=ContractStatus(contract.status),
                    new_status=ContractStatus(contract.status),
                    actor="SYSTEM",
                    metadata={"payment_id": str(payment.id), "source": "sweep"},
                )
                expired += 1

        logger.info(
            "payment.stale_expired",
            count=expired,
            skipped=len(stale) - len(to_expire),
            cutoff=cutoff.isoformat(),
        )
        return expired

    async def _paid_at_gateway(self, payment: Payment) -> bool:
        try:
            link = await self._gateway.get_payment_link(payment.external_link_id)
        except GatewayUnavailableError as exc:
            logger.warning(
                "payment.sweep_lookup_failed",
                payment_id=str(payment.id),
                link_id=payment.external_link_id,
                error=exc.message,
            )
            return False
        if link.is_paid:
            logger.info(
                "payment.sweep_skipped_paid",
                payment_id=str(payment.id),
                link_id=payment.external_link_id,
            )
        return link.is_paid
