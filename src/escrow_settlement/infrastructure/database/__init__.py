"""Database infrastructure: engine, ORM models, and repositories."""

from escrow_settlement.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from escrow_settlement.infrastructure.database.orm_models import (
    Base,
    Contract,
    ContractEvent,
    Payment,
    PayoutRequest,
    Wallet,
    WalletEntry,
    WebhookReceipt,
)
from escrow_settlement.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    PaymentRepository,
    PayoutRepository,
    WalletRepository,
    WebhookReceiptRepository,
)

__all__ = [
    "Base",
    "Contract",
    "ContractEvent",
    "Payment",
    "PayoutRequest",
    "Wallet",
    "WalletEntry",
    "WebhookReceipt",
    "ContractRepository",
    "EventRepository",
    "PaymentRepository",
    "PayoutRepository",
    "WalletRepository",
    "WebhookReceiptRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
