"""Webhook Reconciler: applies gateway settlement notifications exactly once.

Gateways deliver webhooks at least once, out of order, and sometimes long
after the fact. Each delivery is handled as:

    authenticate -> parse -> deduplicate -> resolve payment -> apply -> commit

Everything a delivery changes (the receipt, the payment status, the wallet
credit, the contract transition and the audit events) is written in ONE
transaction. If anything fails, all of it rolls back, the gateway sees a
5xx and redelivers, and the redelivery starts from a clean slate.

Lock order is contract -> payment, the same order the payment orchestrator
uses, so settlement and new payment requests cannot deadlock.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.enums import (
    ContractStatus,
    EventType,
    PaymentPhase,
    PaymentStatus,
    ReconcileOutcome,
)
from escrow_settlement.domain.exceptions import (
    InvalidStateTransitionError,
    UnknownPaymentError,
    WebhookUnauthorizedError,
)
from escrow_settlement.domain.gateway_events import (
    CANCELLED_EVENT,
    EXPIRED_EVENT,
    PAID_EVENT,
    LinkCancelled,
    LinkExpired,
    LinkPaid,
    Unrecognized,
    decode_payload,
    parse_gateway_event,
)
from escrow_settlement.domain.state_machine import can_transition_payment
from escrow_settlement.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    PaymentRepository,
    WebhookReceiptRepository,
)
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services import wallet_ledger
from escrow_settlement.services.contract_service import ContractService
from escrow_settlement.services.notifications import dispatch

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from structlog.stdlib import BoundLogger

    from escrow_settlement.domain.gateway_events import GatewayEvent
    from escrow_settlement.infrastructure.database.orm_models import Contract, Payment
    from escrow_settlement.services.notifications import Notifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    event_id: str
    payment_id: uuid.UUID | None = None
    contract_id: uuid.UUID | None = None
    credited_amount: int | None = None


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    """Check the HMAC-SHA256 hex digest of the raw body in constant time.

    Raises:
        WebhookUnauthorizedError: Missing or mismatching signature.
    """
    if not signature:
        raise WebhookUnauthorizedError("missing signature")
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookUnauthorizedError("signature mismatch")


class WebhookReconciler:
    """Turns one authenticated gateway delivery into ledger effects."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._notifier = notifier

    async def handle(self, raw_body: bytes, signature: str | None) -> ReconcileResult:
        """Authenticate, parse and reconcile one delivery.

        Returns a result for every delivery the gateway should stop retrying
        (including duplicates and unknown link ids). Raises only for bad
        signatures and local failures.
        """
        verify_signature(raw_body, signature, self._settings.webhook_secret)
        event = parse_gateway_event(raw_body)
        payload = decode_payload(raw_body)
        log = logger.bind(event_id=event.event_id, kind=event.kind)

        async with self._session_factory() as session:
            result = await self._reconcile(session, event, payload, log)

        if result.credited_amount is not None:
            await self._notify_settled(result)
        return result

    async def _reconcile(
        self,
        session: AsyncSession,
        event: GatewayEvent,
        payload: dict | None,
        log: BoundLogger,
    ) -> ReconcileResult:
        receipts = WebhookReceiptRepository(session)

        if await receipts.exists(event.event_id):
            await session.rollback()
            log.info("webhook.duplicate")
            return ReconcileResult(ReconcileOutcome.DUPLICATE, event.event_id)

        try:
            receipt = await receipts.record(
                event_id=event.event_id,
                event_type=_receipt_event_type(event),
                external_link_id=event.link_id,
                payload=payload,
                outcome=ReconcileOutcome.APPLIED.value,
            )
        except IntegrityError:
            # A concurrent delivery of the same event committed first.
            await session.rollback()
            log.info("webhook.duplicate", concurrent=True)
            return ReconcileResult(ReconcileOutcome.DUPLICATE, event.event_id)

        if isinstance(event, Unrecognized):
            await receipts.set_outcome(receipt, ReconcileOutcome.IGNORED.value)
            await session.commit()
            log.info("webhook.ignored", event_type=event.event_type, reason=event.reason)
            return ReconcileResult(ReconcileOutcome.IGNORED, event.event_id)

        try:
            payment, contract = await self._resolve(session, event.link_id)
        except UnknownPaymentError as exc:
            await session.rollback()
            log.warning("webhook.unknown_payment", link_id=exc.external_link_id)
            return ReconcileResult(ReconcileOutcome.UNKNOWN_PAYMENT, event.event_id)

        log = log.bind(payment_id=str(payment.id), contract_id=str(contract.id))
        if isinstance(event, LinkPaid):
            result = await self._apply_paid(session, event, payment, contract, log)
        else:
            result = await self._apply_failure(session, event, payment, contract, log)

        await receipts.set_outcome(receipt, result.outcome.value)
        await session.commit()
        return result

    async def _resolve(self, session: AsyncSession, link_id: str) -> tuple[Payment, Contract]:
        """Find the payment by link id and lock its contract, then the payment."""
        payments = PaymentRepository(session)
        payment = await payments.get_by_link_id(link_id)
        if payment is None:
            raise UnknownPaymentError(link_id)
        contract = await ContractRepository(session).get_by_id(
            payment.contract_id, for_update=True
        )
        payment = await payments.get_by_id(payment.id, for_update=True)
        return payment, contract

    # ------------------------------------------------------------------
    # payment_link.paid
    # ------------------------------------------------------------------

    async def _apply_paid(
        self,
        session: AsyncSession,
        event: LinkPaid,
        payment: Payment,
        contract: Contract,
        log: BoundLogger,
    ) -> ReconcileResult:
        payments = PaymentRepository(session)
        events = EventRepository(session)
        phase = PaymentPhase(payment.phase)
        status = ContractStatus(contract.status)

        if payment.status == PaymentStatus.PAID:
            log.info("webhook.payment_already_paid")
            return ReconcileResult(
                ReconcileOutcome.DUPLICATE, event.event_id, payment.id, contract.id
            )

        settled = await payments.find_for_phase(contract.id, phase, [PaymentStatus.PAID])
        if settled is not None:
            # Money arrived twice for one phase; keep the first, flag the second.
            await events.record(
                contract_id=contract.id,
                event_type=EventType.DUPLICATE_SETTLEMENT,
                old_status=status,
                new_status=status,
                actor="GATEWAY",
                metadata={
                    "payment_id": str(payment.id),
                    "settled_payment_id": str(settled.id),
                    "phase": phase.value,
                    "amount": payment.amount,
                    "event_id": event.event_id,
                },
            )
            log.error("webhook.duplicate_settlement", settled_payment_id=str(settled.id))
            return ReconcileResult(
                ReconcileOutcome.DUPLICATE, event.event_id, payment.id, contract.id
            )

        if event.amount is not None and event.amount != payment.amount:
            log.warning(
                "webhook.amount_mismatch",
                reported_amount=event.amount,
                stored_amount=payment.amount,
            )

        await payments.update_status(payment, PaymentStatus.PAID)
        credit = wallet_ledger.credit_freelancer(
            freelancer_id=contract.freelancer_id,
            payment_id=payment.id,
            gross_amount=payment.amount,
            fee_percent=self._settings.platform_fee_percent,
        )
        credit = await wallet_ledger.post_entry(session, credit, contract.currency)

        await events.record(
            contract_id=contract.id,
            event_type=EventType.PAYMENT_SETTLED,
            old_status=status,
            new_status=status,
            actor="GATEWAY",
            metadata={
                "payment_id": str(payment.id),
                "phase": phase.value,
                "amount": payment.amount,
                "credited": credit.amount,
                "fee": credit.fee_amount,
                "event_id": event.event_id,
            },
        )

        outcome = ReconcileOutcome.APPLIED
        try:
            await ContractService(session, self._settings).advance_on_payment(contract.id, phase)
        except InvalidStateTransitionError as exc:
            outcome = ReconcileOutcome.DEFERRED
            await events.record(
                contract_id=contract.id,
                event_type=EventType.CONTRACT_ADVANCE_DEFERRED,
                old_status=status,
                new_status=ContractStatus(contract.status),
                actor="SYSTEM",
                metadata={"payment_id": str(payment.id), "phase": phase.value, "reason": exc.message},
            )
            log.warning("webhook.advance_deferred", status=contract.status, phase=phase.value)

        log.info(
            "webhook.payment_settled",
            amount=payment.amount,
            credited=credit.amount,
            outcome=outcome.value,
        )
        return ReconcileResult(outcome, event.event_id, payment.id, contract.id, credit.amount)

    # ------------------------------------------------------------------
    # payment_link.expired / payment_link.cancelled
    # ------------------------------------------------------------------

    async def _apply_failure(
        self,
        session: AsyncSession,
        event: LinkExpired | LinkCancelled,
        payment: Payment,
        contract: Contract,
        log: BoundLogger,
    ) -> ReconcileResult:
        if isinstance(event, LinkExpired):
            target, event_type, reason = (
                PaymentStatus.EXPIRED,
                EventType.PAYMENT_EXPIRED,
                "link expired at gateway",
            )
        else:
            target, event_type, reason = (
                PaymentStatus.FAILED,
                EventType.PAYMENT_FAILED,
                "link cancelled at gateway",
            )

        current = PaymentStatus(payment.status)
        if current is PaymentStatus.PAID or not can_transition_payment(current, target):
            log.info("webhook.failure_ignored", payment_status=current.value, target=target.value)
            return ReconcileResult(
                ReconcileOutcome.IGNORED, event.event_id, payment.id, contract.id
            )

        await PaymentRepository(session).update_status(payment, target, failure_reason=reason)
        status = ContractStatus(contract.status)
        await EventRepository(session).record(
            contract_id=contract.id,
            event_type=event_type,
            old_status=status,
            new_status=status,
            actor="GATEWAY",
            metadata={"payment_id": str(payment.id), "event_id": event.event_id},
        )
        log.info("webhook.payment_closed", payment_status=target.value)
        return ReconcileResult(ReconcileOutcome.APPLIED, event.event_id, payment.id, contract.id)

    async def _notify_settled(self, result: ReconcileResult) -> None:
        async with self._session_factory() as session:
            contract = await ContractRepository(session).get_by_id(result.contract_id)
        if contract is None:
            return
        await dispatch(
            self._notifier,
            contract.freelancer_id,
            f"Payment received for '{contract.title}': {result.credited_amount} credited",
            kind="payment_settled",
        )
        await dispatch(
            self._notifier,
            contract.client_id,
            f"Your payment for '{contract.title}' was received",
            kind="payment_settled",
        )


def _receipt_event_type(event: GatewayEvent) -> str:
    if isinstance(event, Unrecognized):
        return (event.event_type or "unrecognized")[:64]
    return {
        "paid": PAID_EVENT,
        "expired": EXPIRED_EVENT,
        "cancelled": CANCELLED_EVENT,
    }[event.kind]
