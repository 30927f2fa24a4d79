"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the session factory (for services that run their own transactions), the
payment gateway client built in the lifespan, and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: TC002 - resolved by FastAPI

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.gateway_protocol import PaymentGateway  # noqa: TC001
from escrow_settlement.infrastructure.database.engine import (
    get_async_session,
    get_session_factory,
)
from escrow_settlement.services.notifications import LoggingNotifier, Notifier
from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator
from escrow_settlement.services.webhook_reconciler import WebhookReconciler

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Provide the sessionmaker for services that own their transactions."""
    return get_session_factory()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_gateway(request: Request) -> PaymentGateway:
    """Provide the gateway client constructed in the lifespan."""
    return request.app.state.gateway


def get_notifier(request: Request) -> Notifier:
    return getattr(request.app.state, "notifier", None) or LoggingNotifier()


def get_payment_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(session_factory, gateway, settings)


def get_webhook_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    settings: Settings = Depends(get_app_settings),
    notifier: Notifier = Depends(get_notifier),
) -> WebhookReconciler:
    return WebhookReconciler(session_factory, settings, notifier)
