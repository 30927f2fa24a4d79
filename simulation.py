#!/usr/bin/env python3
"""Escrow Settlement Engine: End-to-End Simulation.

Simulates three scenarios with ClientBot and FreelancerBot agents and a
gateway that settles by posting signed webhooks:

    Scenario 1: Happy Path
        - Client creates a 30/30/40 contract, both parties sign
        - Upfront, milestone and completion links are paid -> COMPLETED
        - Freelancer withdraws part of the wallet balance

    Scenario 2: Unreliable Gateway
        - The same webhook is delivered twice -> credited once
        - A webhook for a link we never issued -> acknowledged, no effect
        - A forged webhook -> rejected
        - A payment link expires locally, then the late "paid" still settles

    Scenario 3: Overdraw Attempt
        - Freelancer asks for more than the balance -> rejected
        - Two payouts that together exceed the balance -> second approval fails

Usage:
    # Option A: With Docker (PostgreSQL):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (throwaway SQLite file):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 1
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_settlement.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_settlement.config import get_settings  # noqa: E402
from escrow_settlement.domain.enums import PaymentPhase, SignatoryParty  # noqa: E402
from escrow_settlement.domain.exceptions import SettlementError  # noqa: E402
from escrow_settlement.infrastructure.gateway.simulated import (  # noqa: E402
    SimulatedGateway,
    build_signed_webhook,
    sign_payload,
)

# Module-level state
_engine = None
_session_factory = None
_tmpdir: tempfile.TemporaryDirectory | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the database engine and create tables."""
    global _engine, _session_factory, _tmpdir

    from escrow_settlement.infrastructure.database.engine import (
        build_engine,
        build_session_factory,
        get_engine,
        get_session_factory,
        init_db,
    )
    from escrow_settlement.infrastructure.database.orm_models import Base

    if use_sqlite:
        # A file, not :memory:, so every session sees the same database.
        _tmpdir = tempfile.TemporaryDirectory(prefix="settlement-sim-")
        db_path = Path(_tmpdir.name) / "simulation.db"
        _engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        _session_factory = build_session_factory(_engine)
        logger.info("database.sqlite_initialized", path=str(db_path))
    else:
        await init_db()
        _engine = get_engine()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _engine, _session_factory, _tmpdir

    if _tmpdir is not None:
        await _engine.dispose()
        _tmpdir.cleanup()
        _tmpdir = None
    else:
        from escrow_settlement.infrastructure.database.engine import close_db

        await close_db()
    _engine = None
    _session_factory = None


def session_factory() -> Any:
    return _session_factory


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
@dataclass
class GatewayBot:
    """Plays the payment gateway: issues links and posts signed webhooks."""

    gateway: SimulatedGateway = field(default_factory=SimulatedGateway)

    def orchestrator(self) -> Any:
        from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator

        return PaymentOrchestrator(session_factory(), self.gateway)

    def reconciler(self) -> Any:
        from escrow_settlement.services.notifications import LoggingNotifier
        from escrow_settlement.services.webhook_reconciler import WebhookReconciler

        return WebhookReconciler(session_factory(), notifier=LoggingNotifier())

    async def pay(self, link_id: str, amount: int, event_id: str | None = None) -> Any:
        self.gateway.mark_paid(link_id)
        body, signature = build_signed_webhook(
            get_settings().webhook_secret, link_id, amount=amount, event_id=event_id
        )
        result = await self.reconciler().handle(body, signature)
        logger.info(
            "🟣 GATEWAY: webhook delivered",
            link_id=link_id,
            event_id=result.event_id,
            outcome=result.outcome.value,
        )
        return result


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """Simulated client that creates contracts, signs and pays."""

    client_id: str = field(default_factory=lambda: f"client-{uuid.uuid4().hex[:6]}")

    async def create_contract(
        self,
        freelancer_id: str,
        total_amount: int,
        split_policy: dict[str, int] | None = None,
    ) -> uuid.UUID:
        from escrow_settlement.services.contract_service import ContractService

        async with session_factory()() as session:
            contract = await ContractService(session).create_contract(
                client_id=self.client_id,
                freelancer_id=freelancer_id,
                job_id=f"job-{uuid.uuid4().hex[:6]}",
                title="Marketing site rebuild",
                total_amount=total_amount,
                split_policy=split_policy,
                duration_days=30,
            )
            await session.commit()
        logger.info(
            "🔵 CLIENT: Contract created",
            contract_id=str(contract.id),
            total_amount=total_amount,
            split_policy=contract.split_policy,
        )
        return contract.id

    async def sign(self, contract_id: uuid.UUID) -> bool:
        return await _sign(contract_id, SignatoryParty.CLIENT, f"drawn-signature:{self.client_id}")

    async def request_payment(
        self, gateway: GatewayBot, contract_id: uuid.UUID, phase: PaymentPhase
    ) -> Any:
        payment = await gateway.orchestrator().request_payment(
            contract_id, phase, actor=self.client_id
        )
        logger.info(
            "🔵 CLIENT: Payment link received",
            phase=phase.value,
            amount=payment.amount,
            link_url=payment.link_url,
        )
        return payment


@dataclass
class FreelancerBot:
    """Simulated freelancer that signs contracts and withdraws earnings."""

    freelancer_id: str = field(default_factory=lambda: f"freelancer-{uuid.uuid4().hex[:6]}")

    async def sign(self, contract_id: uuid.UUID) -> bool:
        return await _sign(
            contract_id, SignatoryParty.FREELANCER, f"drawn-signature:{self.freelancer_id}"
        )

    async def balance(self) -> Any:
        from escrow_settlement.services import wallet_ledger

        async with session_factory()() as session:
            summary = await wallet_ledger.get_wallet_summary(session, self.freelancer_id)
        logger.info(
            "🟢 FREELANCER: Wallet",
            available=summary.available_balance,
            earned=summary.total_earned,
            paid_out=summary.total_paid_out,
            pending=summary.pending_payouts,
        )
        return summary

    async def withdraw(self, amount: int) -> uuid.UUID | None:
        from escrow_settlement.services.payout_service import PayoutService

        async with session_factory()() as session:
            try:
                payout = await PayoutService(session).submit_payout(
                    freelancer_id=self.freelancer_id,
                    amount=amount,
                    bank_account_number="123456789012",
                    bank_ifsc_code="HDFC0001234",
                    account_holder_name="Sim Freelancer",
                )
            except SettlementError as exc:
                logger.info("🟢 FREELANCER: Payout refused ❌", amount=amount, reason=exc.message)
                return None
            await session.commit()
        logger.info("🟢 FREELANCER: Payout requested", payout_id=str(payout.id), amount=amount)
        return payout.id


async def _sign(contract_id: uuid.UUID, party: SignatoryParty, blob: str) -> bool:
    from escrow_settlement.services.contract_service import ContractService

    async with session_factory()() as session:
        result = await ContractService(session).record_signature(contract_id, party, blob)
        await session.commit()
    logger.info(
        f"✍️  {party.value.upper()}: Signed",
        contract_id=str(contract_id),
        became_signed=result.became_signed,
    )
    return result.became_signed


async def approve_payout(payout_id: uuid.UUID) -> bool:
    """Operator approval; returns False if the balance no longer covers it."""
    from escrow_settlement.services.payout_service import PayoutService

    async with session_factory()() as session:
        try:
            payout = await PayoutService(session).approve_payout(payout_id)
        except SettlementError as exc:
            logger.info("🛡️  OPERATOR: Approval refused ❌", payout_id=str(payout_id), reason=exc.message)
            return False
        await session.commit()
    logger.info("🛡️  OPERATOR: Payout approved ✅", payout_id=str(payout_id), amount=payout.amount)
    return True


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_audit_trail(contract_id: uuid.UUID) -> None:
    """Print the audit trail for a contract."""
    from escrow_settlement.services.contract_service import ContractService

    async with session_factory()() as session:
        events = await ContractService(session).get_events(contract_id)
        status = await ContractService(session).get_status(contract_id)
    section("Audit Trail")
    for evt in events:
        arrow = f"{evt.old_status or '(none)'} -> {evt.new_status}"
        print(f"  [{evt.event_type:28s}] {arrow:40s} by {evt.actor}")
    print(f"\n  Status: {status['status']} ({status['display_label']})")
    print(f"  Paid phases: {', '.join(status['paid_phases']) or '-'}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path (30/30/40 split)")
    client, freelancer, gateway = ClientBot(), FreelancerBot(), GatewayBot()

    contract_id = await client.create_contract(
        freelancer.freelancer_id,
        total_amount=100_000,
        split_policy={"upfront": 30, "milestone": 30, "completion": 40},
    )
    await client.sign(contract_id)
    await freelancer.sign(contract_id)

    for phase in (PaymentPhase.UPFRONT, PaymentPhase.MILESTONE, PaymentPhase.COMPLETION):
        section(f"Phase: {phase.value}")
        payment = await client.request_payment(gateway, contract_id, phase)
        await gateway.pay(payment.external_link_id, payment.amount)

    summary = await freelancer.balance()
    payout_id = await freelancer.withdraw(summary.available_balance // 2)
    if payout_id is not None:
        await approve_payout(payout_id)
    await freelancer.balance()

    await print_audit_trail(contract_id)


async def scenario_2_unreliable_gateway() -> None:
    banner("SCENARIO 2: Unreliable Gateway")
    client, freelancer, gateway = ClientBot(), FreelancerBot(), GatewayBot()

    contract_id = await client.create_contract(freelancer.freelancer_id, total_amount=50_000)
    await client.sign(contract_id)
    await freelancer.sign(contract_id)

    section("Duplicate delivery")
    upfront = await client.request_payment(gateway, contract_id, PaymentPhase.UPFRONT)
    event_id = f"evt_{uuid.uuid4().hex}"
    await gateway.pay(upfront.external_link_id, upfront.amount, event_id=event_id)
    await gateway.pay(upfront.external_link_id, upfront.amount, event_id=event_id)
    await freelancer.balance()

    section("Unknown link id")
    await gateway.pay("lnk_upf_never_issued", 12_345)

    section("Forged signature")
    body, _ = build_signed_webhook("attacker-secret", upfront.external_link_id)
    try:
        await gateway.reconciler().handle(body, sign_payload(body, "attacker-secret"))
    except SettlementError as exc:
        logger.info("🟣 GATEWAY: forged webhook rejected ✅", reason=exc.message)

    section("Late payment after local expiry")
    completion = await client.request_payment(gateway, contract_id, PaymentPhase.COMPLETION)
    expired = await gateway.orchestrator().expire_stale_payments(
        now=datetime.now(UTC) + timedelta(days=2)
    )
    logger.info("🛡️  OPERATOR: Expiry sweep", expired=expired)
    await gateway.pay(completion.external_link_id, completion.amount)
    await freelancer.balance()

    await print_audit_trail(contract_id)


async def scenario_3_overdraw() -> None:
    banner("SCENARIO 3: Overdraw Attempt")
    client, freelancer, gateway = ClientBot(), FreelancerBot(), GatewayBot()

    contract_id = await client.create_contract(freelancer.freelancer_id, total_amount=1000)
    await client.sign(contract_id)
    await freelancer.sign(contract_id)
    upfront = await client.request_payment(gateway, contract_id, PaymentPhase.UPFRONT)
    await gateway.pay(upfront.external_link_id, upfront.amount)

    summary = await freelancer.balance()
    await freelancer.withdraw(summary.available_balance + 150)

    first = await freelancer.withdraw(300)
    second = await freelancer.withdraw(300)
    for payout_id in (first, second):
        if payout_id is not None:
            await approve_payout(payout_id)

    final = await freelancer.balance()
    print(f"\n  🛡️  Final available balance: {final.available_balance} (never negative)")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_unreliable_gateway,
    3: scenario_3_overdraw,
}


async def run(scenarios: list[int], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "💸" * 35)
        print("  ESCROW SETTLEMENT ENGINE: SIMULATION")
        print(f"  Database: {'SQLite (temporary file)' if use_sqlite else 'PostgreSQL'}")
        print("💸" * 35 + "\n")

        for num in scenarios:
            await SCENARIOS[num]()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Settlement Engine Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a throwaway SQLite file instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, use_sqlite=args.sqlite))
