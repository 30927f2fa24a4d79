"""Payout request routes.

Routes:
    POST /api/v1/payouts                     Submit a withdrawal request
    GET  /api/v1/payouts?freelancer_id=...   List a freelancer's requests
    GET  /api/v1/payouts/{id}                Get one request
    POST /api/v1/payouts/{id}/approve        Approve and debit the wallet
    POST /api/v1/payouts/{id}/reject         Reject a pending request
    POST /api/v1/payouts/{id}/complete       Confirm the bank transfer
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI

from escrow_settlement.api.deps import get_app_settings, get_db_session, get_notifier
from escrow_settlement.config import Settings  # noqa: TC001
from escrow_settlement.schemas.wallet import (
    PayoutResponse,
    RejectPayoutRequest,
    SubmitPayoutRequest,
)
from escrow_settlement.services.notifications import Notifier, dispatch  # noqa: TC001
from escrow_settlement.services.payout_service import PayoutService

router = APIRouter(prefix="/api/v1/payouts", tags=["Payouts"])


@router.post(
    "",
    response_model=PayoutResponse,
    status_code=201,
    summary="Submit a payout request",
)
async def submit_payout(
    request: SubmitPayoutRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> PayoutResponse:
    payout = await PayoutService(session, settings).submit_payout(
        freelancer_id=request.freelancer_id,
        amount=request.amount,
        bank_account_number=request.bank_account_number,
        bank_ifsc_code=request.bank_ifsc_code,
        account_holder_name=request.account_holder_name,
    )
    await session.commit()
    return PayoutResponse.model_validate(payout)


@router.get(
    "",
    response_model=list[PayoutResponse],
    summary="List a freelancer's payout requests",
)
async def list_payouts(
    freelancer_id: str = Query(..., min_length=1, max_length=64),
    session: AsyncSession = Depends(get_db_session),
) -> list[PayoutResponse]:
    payouts = await PayoutService(session).list_payouts(freelancer_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.get(
    "/{payout_id}",
    response_model=PayoutResponse,
    summary="Get a payout request",
)
async def get_payout(
    payout_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> PayoutResponse:
    payout = await PayoutService(session).get_payout(payout_id)
    return PayoutResponse.model_validate(payout)


@router.post(
    "/{payout_id}/approve",
    response_model=PayoutResponse,
    summary="Approve a payout and debit the wallet",
)
async def approve_payout(
    payout_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutResponse:
    payout = await PayoutService(session).approve_payout(payout_id)
    await session.commit()
    await dispatch(
        notifier,
        payout.freelancer_id,
        f"Your payout of {payout.amount} was approved",
        kind="payout_approved",
    )
    return PayoutResponse.model_validate(payout)


@router.post(
    "/{payout_id}/reject",
    response_model=PayoutResponse,
    summary="Reject a pending payout",
)
async def reject_payout(
    payout_id: uuid.UUID,
    request: RejectPayoutRequest,
    session: AsyncSession = Depends(get_db_session),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutResponse:
    payout = await PayoutService(session).reject_payout(payout_id, request.reason)
    await session.commit()
    await dispatch(
        notifier,
        payout.freelancer_id,
        f"Your payout of {payout.amount} was rejected: {request.reason}",
        kind="payout_rejected",
    )
    return PayoutResponse.model_validate(payout)


@router.post(
    "/{payout_id}/complete",
    response_model=PayoutResponse,
    summary="Mark an approved payout as transferred",
)
async def complete_payout(
    payout_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> PayoutResponse:
    payout = await PayoutService(session).complete_payout(payout_id)
    await session.commit()
    return PayoutResponse.model_validate(payout)
