"""Split policy: how a contract's total is divided across payment phases.

A policy maps phase name to an integer percentage, e.g.
``{"upfront": 50, "completion": 50}``. It must name ``upfront`` and
``completion``, may name ``milestone``, gives every phase a positive share,
and must sum to exactly 100.

Phase amounts are computed in minor units with floor division; the
completion phase absorbs the remainder so the phases always add up to the
contract total.
"""

from __future__ import annotations

from collections.abc import Mapping

from escrow_settlement.domain.enums import ContractStatus, PaymentPhase
from escrow_settlement.domain.exceptions import InvalidSplitPolicyError

REQUIRED_PHASES = frozenset({PaymentPhase.UPFRONT, PaymentPhase.COMPLETION})

# Contract status a phase's payment may be requested from.
PHASE_REQUIRED_STATUS: dict[PaymentPhase, ContractStatus] = {
    PaymentPhase.UPFRONT: ContractStatus.SIGNED,
    PaymentPhase.MILESTONE: ContractStatus.IN_PROGRESS,
    PaymentPhase.COMPLETION: ContractStatus.IN_PROGRESS,
}


def validate_split_policy(policy: Mapping[str, int]) -> dict[str, int]:
    """Check a policy and return it normalised to plain ``{phase: pct}``.

    Raises:
        InvalidSplitPolicyError: On unknown phases, missing required phases,
            non-integer or non-positive percentages, or a sum other than 100.
    """
    known = {phase.value for phase in PaymentPhase}
    unknown = set(policy) - known
    if unknown:
        raise InvalidSplitPolicyError(f"Unknown payment phase(s): {', '.join(sorted(unknown))}")

    missing = {phase.value for phase in REQUIRED_PHASES} - set(policy)
    if missing:
        raise InvalidSplitPolicyError(
            f"Split policy must include phase(s): {', '.join(sorted(missing))}"
        )

    normalised: dict[str, int] = {}
    for phase, pct in policy.items():
        if isinstance(pct, bool) or not isinstance(pct, int):
            raise InvalidSplitPolicyError(f"Percentage for '{phase}' must be an integer")
        if pct <= 0:
            raise InvalidSplitPolicyError(f"Percentage for '{phase}' must be positive")
        normalised[phase] = pct

    total = sum(normalised.values())
    if total != 100:
        raise InvalidSplitPolicyError(f"Split policy must sum to 100, got {total}")

    return normalised


def phase_amount(total_amount: int, policy: Mapping[str, int], phase: PaymentPhase) -> int:
    """Return the minor-unit amount due for ``phase``.

    Raises:
        InvalidSplitPolicyError: If the policy does not include the phase.
    """
    if phase.value not in policy:
        raise InvalidSplitPolicyError(f"Contract has no '{phase.value}' phase")

    if phase is PaymentPhase.COMPLETION:
        others = sum(
            phase_amount(total_amount, policy, other)
            for other in PaymentPhase
            if other is not PaymentPhase.COMPLETION and other.value in policy
        )
        return total_amount - others

    return total_amount * policy[phase.value] // 100


def phase_breakdown(total_amount: int, policy: Mapping[str, int]) -> dict[str, int]:
    """Return ``{phase: amount}`` for every phase in the policy."""
    return {
        phase.value: phase_amount(total_amount, policy, phase)
        for phase in PaymentPhase
        if phase.value in policy
    }


def validate_phase_amounts(total_amount: int, policy: Mapping[str, int]) -> dict[str, int]:
    """Return the phase breakdown, rejecting totals too small for the policy.

    Raises:
        InvalidSplitPolicyError: If any phase would be due nothing.
    """
    breakdown = phase_breakdown(total_amount, policy)
    empty = sorted(phase for phase, amount in breakdown.items() if amount <= 0)
    if empty:
        raise InvalidSplitPolicyError(
            f"Total {total_amount} leaves nothing due for phase(s): {', '.join(empty)}"
        )
    return breakdown
