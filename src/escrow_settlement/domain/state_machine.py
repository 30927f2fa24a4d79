"""Lifecycle guards for contracts, payouts and payments.

Uses python-statemachine to enforce legal contract and payout transitions at
the domain level. Whatever the API or the webhook reconciler asks for, an
illegal transition (e.g. pending_signatures -> completed) raises
TransitionNotAllowed before any ORM status field is touched.

Contract transition table:
    pending_signatures -> signed       (both_signed)
    signed             -> in_progress  (upfront_settled)
    in_progress        -> in_progress  (milestone_settled)
    in_progress        -> completed    (completion_settled)
    signed             -> disputed     (raise_dispute)
    in_progress        -> disputed     (raise_dispute)

Payout transition table:
    pending  -> approved   (approve)
    pending  -> rejected   (reject)
    approved -> completed  (complete)

Payments have no named events; their allowed moves are listed in
PAYMENT_TRANSITIONS and only the orchestrator, the expiry sweep and the
webhook reconciler apply them.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from escrow_settlement.domain.enums import PaymentPhase, PaymentStatus


class _GuardMixin:
    """Start a machine at a persisted status instead of its initial state."""

    def _validate_start(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}  # type: ignore[attr-defined]
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the StrEnum)."""
        return str(self.current_state.value)  # type: ignore[attr-defined]

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]  # type: ignore[attr-defined]


class ContractStateMachine(_GuardMixin, StateMachine):
    """Guards a contract's lifecycle.

    Usage:
        sm = ContractStateMachine(current_status="signed")
        sm.upfront_settled()  # transitions to in_progress
        sm.status             # "in_progress"
    """

    # --- States ---
    pending_signatures = State("Pending signatures", value="pending_signatures", initial=True)
    signed = State("Signed", value="signed")
    in_progress = State("In progress", value="in_progress")
    completed = State("Completed", value="completed", final=True)
    disputed = State("Disputed", value="disputed", final=True)

    # --- Events / Transitions ---
    both_signed = pending_signatures.to(signed)

    upfront_settled = signed.to(in_progress)
    milestone_settled = in_progress.to.itself()
    completion_settled = in_progress.to(completed)

    raise_dispute = signed.to(disputed) | in_progress.to(disputed)

    def __init__(self, current_status: str = "pending_signatures") -> None:
        self._validate_start(current_status)
        super().__init__(start_value=current_status)


class PayoutStateMachine(_GuardMixin, StateMachine):
    """Guards a payout request's lifecycle."""

    pending = State("Pending", value="pending", initial=True)
    approved = State("Approved", value="approved")
    rejected = State("Rejected", value="rejected", final=True)
    completed = State("Completed", value="completed", final=True)

    approve = pending.to(approved)
    reject = pending.to(rejected)
    complete = approved.to(completed)

    def __init__(self, current_status: str = "pending") -> None:
        self._validate_start(current_status)
        super().__init__(start_value=current_status)


# Which contract event a settled payment of each phase fires.
PHASE_SETTLEMENT_EVENTS: dict[PaymentPhase, str] = {
    PaymentPhase.UPFRONT: "upfront_settled",
    PaymentPhase.MILESTONE: "milestone_settled",
    PaymentPhase.COMPLETION: "completion_settled",
}

# A late "paid" from the gateway wins over a local expiry: the money moved.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.CREATED: frozenset(
        {PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED}
    ),
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED}
    ),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.EXPIRED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset(),
}


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def validate_transition(
    machine_cls: type[ContractStateMachine] | type[PayoutStateMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary machine at `current_status`, fires the named event
    and returns the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
