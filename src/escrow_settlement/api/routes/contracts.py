"""Contract REST API routes.

Routes:
    POST   /api/v1/contracts                   Create a contract from an accepted proposal
    GET    /api/v1/contracts?party_id=...      List a party's contracts
    GET    /api/v1/contracts/{id}              Get contract details
    GET    /api/v1/contracts/{id}/status       Lightweight status check
    GET    /api/v1/contracts/{id}/events       Audit trail
    GET    /api/v1/contracts/{id}/payments     Payments issued for the contract
    POST   /api/v1/contracts/{id}/sign         Record one party's signature
    POST   /api/v1/contracts/{id}/payments     Request a phase payment link
    POST   /api/v1/contracts/{id}/dispute      Flag the contract as disputed

Mutating routes commit before returning. The payment link for a freshly
signed contract is requested only after the signature has committed, so a
gateway outage can never undo a signature.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI

from escrow_settlement.api.deps import (
    get_app_settings,
    get_db_session,
    get_notifier,
    get_payment_orchestrator,
)
from escrow_settlement.config import Settings  # noqa: TC001
from escrow_settlement.domain.enums import PaymentPhase
from escrow_settlement.domain.exceptions import SettlementError
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.contract import (
    ContractEventResponse,
    ContractResponse,
    ContractStatusResponse,
    CreateContractRequest,
    RaiseDisputeRequest,
    SignContractRequest,
    SignContractResponse,
)
from escrow_settlement.schemas.payment import PaymentResponse, RequestPaymentRequest
from escrow_settlement.services.contract_service import ContractService
from escrow_settlement.services.notifications import Notifier, dispatch  # noqa: TC001
from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator  # noqa: TC001

router = APIRouter(prefix="/api/v1/contracts", tags=["Contracts"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / list
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ContractResponse,
    status_code=201,
    summary="Create a contract from an accepted proposal",
)
async def create_contract(
    request: CreateContractRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    svc = ContractService(session, settings)
    contract = await svc.create_contract(
        client_id=request.client_id,
        freelancer_id=request.freelancer_id,
        job_id=request.job_id,
        title=request.title,
        total_amount=request.total_amount,
        split_policy=request.split_policy,
        duration_days=request.duration_days,
        proposal_id=request.proposal_id,
    )
    await session.commit()
    return ContractResponse.model_validate(contract)


@router.get(
    "",
    response_model=list[ContractResponse],
    summary="List contracts where the party is client or freelancer",
)
async def list_contracts(
    party_id: str = Query(..., min_length=1, max_length=64),
    session: AsyncSession = Depends(get_db_session),
) -> list[ContractResponse]:
    contracts = await ContractService(session).list_contracts(party_id)
    return [ContractResponse.model_validate(c) for c in contracts]


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/sign",
    response_model=SignContractResponse,
    summary="Record a party's signature",
)
async def sign_contract(
    contract_id: uuid.UUID,
    request: SignContractRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> SignContractResponse:
    """Store a signature. When both parties have signed, the upfront link is issued."""
    svc = ContractService(session, settings)
    result = await svc.record_signature(contract_id, request.party, request.signature_blob)
    await session.commit()

    payment_url = None
    if result.became_signed:
        contract = result.contract
        for recipient in (contract.client_id, contract.freelancer_id):
            await dispatch(
                notifier, recipient, f"Contract '{contract.title}' is signed", kind="contract_signed"
            )
        if settings.auto_request_upfront_payment:
            try:
                payment = await orchestrator.request_payment(contract_id, PaymentPhase.UPFRONT)
                payment_url = payment.link_url
            except SettlementError as exc:
                # The signature stands; the client can request the link again.
                logger.warning(
                    "contract.upfront_request_failed",
                    contract_id=str(contract_id),
                    code=exc.code,
                    error=exc.message,
                )

    return SignContractResponse(
        contract=ContractResponse.model_validate(result.contract),
        recorded=result.recorded,
        became_signed=result.became_signed,
        payment_url=payment_url,
    )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/payments",
    response_model=PaymentResponse,
    status_code=201,
    summary="Request a payment link for a contract phase",
)
async def request_payment(
    contract_id: uuid.UUID,
    request: RequestPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> PaymentResponse:
    payment = await orchestrator.request_payment(
        contract_id, request.phase, actor=request.requested_by
    )
    return PaymentResponse.model_validate(payment)


@router.get(
    "/{contract_id}/payments",
    response_model=list[PaymentResponse],
    summary="List a contract's payments",
)
async def list_payments(
    contract_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> list[PaymentResponse]:
    payments = await ContractService(session).list_payments(contract_id)
    return [PaymentResponse.model_validate(p) for p in payments]


# ---------------------------------------------------------------------------
# Dispute
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/dispute",
    response_model=ContractResponse,
    summary="Flag a contract as disputed",
)
async def raise_dispute(
    contract_id: uuid.UUID,
    request: RaiseDisputeRequest,
    session: AsyncSession = Depends(get_db_session),
) -> ContractResponse:
    contract = await ContractService(session).mark_disputed(
        contract_id, reason=request.reason, raised_by=request.raised_by
    )
    await session.commit()
    return ContractResponse.model_validate(contract)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "/{contract_id}",
    response_model=ContractResponse,
    summary="Get contract details",
)
async def get_contract(
    contract_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> ContractResponse:
    contract = await ContractService(session).get_contract(contract_id)
    return ContractResponse.model_validate(contract)


@router.get(
    "/{contract_id}/status",
    response_model=ContractStatusResponse,
    summary="Get contract status, display label and allowed events",
)
async def get_contract_status(
    contract_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> ContractStatusResponse:
    status = await ContractService(session).get_status(contract_id)
    return ContractStatusResponse(**status)


@router.get(
    "/{contract_id}/events",
    response_model=list[ContractEventResponse],
    summary="Get the contract's audit trail",
)
async def get_contract_events(
    contract_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> list[ContractEventResponse]:
    events = await ContractService(session).get_events(contract_id)
    return [ContractEventResponse.model_validate(e) for e in events]
