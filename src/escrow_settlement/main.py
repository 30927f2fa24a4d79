"""FastAPI application entry point for the settlement engine.

Lifecycle:
    1. Startup: initialize logging and the database (create tables in
       development), build the payment gateway client and the notifier.
    2. Running: serve the REST API at /api/v1/* and /health.
    3. Shutdown: close the gateway client and database connections.

The gateway client is built once here and injected into routes through
api/deps.py; nothing else constructs one.

Run with:
    uvicorn escrow_settlement.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_settlement import __version__
from escrow_settlement.config import get_settings
from escrow_settlement.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        gateway_mode=settings.gateway_mode,
    )

    # 2. Initialize database
    from escrow_settlement.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Payment gateway client and notifier
    from escrow_settlement.infrastructure.gateway import build_gateway
    from escrow_settlement.services.notifications import LoggingNotifier

    app.state.gateway = build_gateway(settings)
    app.state.notifier = LoggingNotifier()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.gateway.aclose()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Settlement Engine",
        description=(
            "Contract signatures, split escrow payments via a hosted gateway, "
            "webhook reconciliation and freelancer payouts."
        ),
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from escrow_settlement.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from escrow_settlement.api.routes.admin import router as admin_router
    from escrow_settlement.api.routes.contracts import router as contracts_router
    from escrow_settlement.api.routes.health import router as health_router
    from escrow_settlement.api.routes.payouts import router as payouts_router
    from escrow_settlement.api.routes.wallet import router as wallet_router
    from escrow_settlement.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(contracts_router)
    app.include_router(webhooks_router)
    app.include_router(wallet_router)
    app.include_router(payouts_router)
    app.include_router(admin_router)

    return app


# The app instance used by Uvicorn
app = create_app()
