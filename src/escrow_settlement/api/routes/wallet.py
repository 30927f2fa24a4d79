"""Freelancer wallet routes.

Routes:
    GET /api/v1/wallets/{freelancer_id}          Balance summary
    GET /api/v1/wallets/{freelancer_id}/entries  Ledger history, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI

from escrow_settlement.api.deps import get_db_session
from escrow_settlement.schemas.wallet import WalletEntryResponse, WalletSummaryResponse
from escrow_settlement.services import wallet_ledger

router = APIRouter(prefix="/api/v1/wallets", tags=["Wallet"])


@router.get(
    "/{freelancer_id}",
    response_model=WalletSummaryResponse,
    summary="Get a freelancer's balance summary",
)
async def get_wallet(
    freelancer_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> WalletSummaryResponse:
    summary = await wallet_ledger.get_wallet_summary(session, freelancer_id)
    return WalletSummaryResponse.model_validate(summary)


@router.get(
    "/{freelancer_id}/entries",
    response_model=list[WalletEntryResponse],
    summary="Get a freelancer's ledger entries",
)
async def get_wallet_entries(
    freelancer_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> list[WalletEntryResponse]:
    entries = await wallet_ledger.get_wallet_history(session, freelancer_id, limit=limit)
    return [WalletEntryResponse.model_validate(e) for e in entries]
