"""Shared test fixtures for the settlement engine test suite.

Provides:
    - A throwaway SQLite database per test (file-backed, so the services
      that open their own sessions all see the same data)
    - A fake payment gateway that records link requests and can be told to fail
    - A recording notifier
    - Helpers that create, sign and settle contracts
    - An HTTP client wired to the FastAPI app with test dependencies
"""

from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from escrow_settlement.config import Settings
from escrow_settlement.domain.enums import PaymentPhase, SignatoryParty
from escrow_settlement.domain.gateway_events import PAID_EVENT
from escrow_settlement.domain.gateway_protocol import PaymentLink, PaymentLinkRequest
from escrow_settlement.infrastructure.database.engine import build_engine, build_session_factory
from escrow_settlement.infrastructure.database.orm_models import Base
from escrow_settlement.infrastructure.gateway.simulated import build_signed_webhook
from escrow_settlement.services.contract_service import ContractService
from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator
from escrow_settlement.services.webhook_reconciler import WebhookReconciler

WEBHOOK_SECRET = "test-webhook-secret"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeGateway:
    """PaymentGateway double: issues predictable URLs or raises `fail_with`.

    Lookups report `link_statuses[link_id]` (ACTIVE by default) or raise
    `lookup_fails_with`.
    """

    def __init__(self) -> None:
        self.requests: list[PaymentLinkRequest] = []
        self.fail_with: Exception | None = None
        self.link_statuses: dict[str, str] = {}
        self.lookups: list[str] = []
        self.lookup_fails_with: Exception | None = None

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        return PaymentLink(link_id=request.link_id, link_url=f"https://pay.test/{request.link_id}")

    async def get_payment_link(self, link_id: str) -> PaymentLink:
        self.lookups.append(link_id)
        if self.lookup_fails_with is not None:
            raise self.lookup_fails_with
        return PaymentLink(
            link_id=link_id,
            link_url=f"https://pay.test/{link_id}",
            status=self.link_statuses.get(link_id, "ACTIVE"),
        )

    async def aclose(self) -> None:
        pass


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def notify(self, recipient_id: str, message: str, kind: str = "info") -> None:
        self.sent.append((recipient_id, kind, message))


# ---------------------------------------------------------------------------
# Configuration & database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}",
        gateway_mode="simulated",
        webhook_secret=WEBHOOK_SECRET,
        platform_fee_percent=Decimal("10"),
        default_split_policy={"upfront": 50, "completion": 50},
        payout_minimum_amount=50,
        payment_link_expiry_minutes=60,
        auto_request_upfront_payment=True,
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(session_factory, gateway, settings) -> PaymentOrchestrator:
    return PaymentOrchestrator(session_factory, gateway, settings)


@pytest.fixture
def reconciler(session_factory, settings, notifier) -> WebhookReconciler:
    return WebhookReconciler(session_factory, settings, notifier)


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_contract(session_factory, settings):
    """Return an async factory that creates and commits a contract."""

    async def _make(
        total_amount: int = 1000,
        split_policy: dict[str, int] | None = None,
        client_id: str = "client-1",
        freelancer_id: str = "freelancer-1",
        duration_days: int | None = None,
    ):
        async with session_factory() as session:
            contract = await ContractService(session, settings).create_contract(
                client_id=client_id,
                freelancer_id=freelancer_id,
                job_id="job-1",
                title="Landing page redesign",
                total_amount=total_amount,
                split_policy=split_policy,
                duration_days=duration_days,
                proposal_id="proposal-1",
            )
            await session.commit()
        return contract

    return _make


@pytest.fixture
def sign_contract(session_factory, settings):
    """Return an async helper that records both signatures and commits."""

    async def _sign(contract_id):
        async with session_factory() as session:
            svc = ContractService(session, settings)
            await svc.record_signature(contract_id, SignatoryParty.CLIENT, "client-signature")
            result = await svc.record_signature(
                contract_id, SignatoryParty.FREELANCER, "freelancer-signature"
            )
            await session.commit()
        return result.contract

    return _sign


@pytest.fixture
def signed_contract(make_contract, sign_contract):
    """Return an async helper: create a contract and sign it in one call."""

    async def _signed(**kwargs):
        contract = await make_contract(**kwargs)
        return await sign_contract(contract.id)

    return _signed


@pytest.fixture
def deliver(reconciler, settings):
    """Return an async helper that sends one signed webhook to the reconciler."""

    async def _deliver(
        link_id: str,
        event_type: str = PAID_EVENT,
        amount: int | None = None,
        event_id: str | None = None,
    ):
        body, signature = build_signed_webhook(
            settings.webhook_secret, link_id, event_type, amount=amount, event_id=event_id
        )
        return await reconciler.handle(body, signature)

    return _deliver


@pytest.fixture
def load_contract(session_factory):
    async def _load(contract_id):
        async with session_factory() as session:
            return await ContractService(session).get_contract(contract_id)

    return _load


@pytest.fixture
def in_progress_contract(signed_contract, orchestrator, deliver):
    """Return an async helper that yields a contract whose upfront phase is paid."""

    async def _make(**kwargs):
        contract = await signed_contract(**kwargs)
        payment = await orchestrator.request_payment(contract.id, PaymentPhase.UPFRONT)
        await deliver(payment.external_link_id, amount=payment.amount)
        return contract

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(settings, session_factory, gateway, notifier):
    """HTTP client for the FastAPI app, backed by the test database."""
    from escrow_settlement.api.deps import (
        get_app_settings,
        get_db_session,
        get_db_session_factory,
        get_gateway,
        get_notifier,
    )
    from escrow_settlement.main import create_app

    app = create_app()

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
