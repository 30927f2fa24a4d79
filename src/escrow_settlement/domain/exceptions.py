"""Domain exceptions for the settlement engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

`retryable` tells the caller whether repeating the same request may succeed
(gateway outages, lock conflicts). Lifecycle and validation errors are final.
"""


class SettlementError(Exception):
    """Base exception for all domain errors."""

    retryable = False

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class NotFoundError(SettlementError):
    """Base for missing entities."""


class ContractNotFoundError(NotFoundError):
    """Raised when a contract ID does not exist."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(
            message=f"Contract not found: {contract_id}",
            code="CONTRACT_NOT_FOUND",
        )
        self.contract_id = contract_id


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(
            message=f"Payment not found: {payment_id}",
            code="PAYMENT_NOT_FOUND",
        )
        self.payment_id = payment_id


class PayoutNotFoundError(NotFoundError):
    def __init__(self, payout_id: str) -> None:
        super().__init__(
            message=f"Payout request not found: {payout_id}",
            code="PAYOUT_NOT_FOUND",
        )
        self.payout_id = payout_id


# --- State Machine Errors ---


class InvalidStateTransitionError(SettlementError):
    """Raised when an attempted lifecycle transition is not allowed.

    Example: pending_signatures -> in_progress (both parties must sign first).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Contract Errors ---


class DuplicateSignatureError(SettlementError):
    """Raised when a party that already signed submits a different signature."""

    def __init__(self, contract_id: str, party: str) -> None:
        super().__init__(
            message=f"Contract {contract_id} already signed by {party}",
            code="DUPLICATE_SIGNATURE",
        )
        self.contract_id = contract_id
        self.party = party


class InvalidSplitPolicyError(SettlementError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_SPLIT_POLICY")


# --- Payment Errors ---


class AlreadyPaidError(SettlementError):
    """Raised when a phase already has a settled payment."""

    def __init__(self, contract_id: str, phase: str) -> None:
        super().__init__(
            message=f"Phase '{phase}' of contract {contract_id} is already paid",
            code="ALREADY_PAID",
        )
        self.contract_id = contract_id
        self.phase = phase


class PaymentInFlightError(SettlementError):
    """Raised when a phase already has a payment link awaiting settlement."""

    def __init__(self, contract_id: str, phase: str) -> None:
        super().__init__(
            message=f"Phase '{phase}' of contract {contract_id} has a payment in flight",
            code="PAYMENT_IN_FLIGHT",
        )
        self.contract_id = contract_id
        self.phase = phase


class GatewayUnavailableError(SettlementError):
    """Raised when the payment gateway cannot be reached or rejects the call."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="GATEWAY_UNAVAILABLE")


# --- Webhook Errors ---


class WebhookUnauthorizedError(SettlementError):
    """Raised when a webhook's shared-secret signature does not verify."""

    def __init__(self, reason: str = "signature mismatch") -> None:
        super().__init__(
            message=f"Webhook rejected: {reason}",
            code="UNAUTHORIZED",
        )


class UnknownPaymentError(SettlementError):
    """Raised when a gateway event references a link id we never issued.

    Never surfaced to the gateway as a retry request.
    """

    def __init__(self, external_link_id: str) -> None:
        super().__init__(
            message=f"No payment for external link id: {external_link_id}",
            code="UNKNOWN_PAYMENT",
        )
        self.external_link_id = external_link_id


# --- Wallet Errors ---


class InsufficientBalanceError(SettlementError):
    """Raised when a payout exceeds the freelancer's available balance."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            message=f"Insufficient balance: requested {requested}, available {available}",
            code="INSUFFICIENT_BALANCE",
        )
        self.requested = requested
        self.available = available


class InvalidPayoutAmountError(SettlementError):
    def __init__(self, amount: int, minimum: int) -> None:
        super().__init__(
            message=f"Payout amount {amount} is below the minimum of {minimum}",
            code="INVALID_PAYOUT_AMOUNT",
        )


# --- Concurrency Errors ---


class TransactionConflictError(SettlementError):
    """Raised when a concurrent writer won a lock or unique-key race."""

    retryable = True

    def __init__(self, message: str = "Concurrent update conflict, retry the request") -> None:
        super().__init__(message=message, code="TRANSACTION_CONFLICT")
