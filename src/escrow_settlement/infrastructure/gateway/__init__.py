"""Payment gateway clients."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_settlement.infrastructure.gateway.cashfree import CashfreeGateway
from escrow_settlement.infrastructure.gateway.simulated import SimulatedGateway

if TYPE_CHECKING:
    from escrow_settlement.config import Settings


def build_gateway(settings: Settings) -> CashfreeGateway | SimulatedGateway:
    """Select the gateway client for the configured mode."""
    if settings.gateway_mode == "cashfree":
        return CashfreeGateway.from_settings(settings)
    return SimulatedGateway()


__all__ = ["CashfreeGateway", "SimulatedGateway", "build_gateway"]
