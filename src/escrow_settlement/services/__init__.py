"""Application services: use case orchestration."""

from escrow_settlement.services.contract_service import ContractService, SignatureResult
from escrow_settlement.services.notifications import LoggingNotifier, Notifier
from escrow_settlement.services.payment_orchestrator import PaymentOrchestrator
from escrow_settlement.services.payout_service import PayoutService
from escrow_settlement.services.webhook_reconciler import ReconcileResult, WebhookReconciler

__all__ = [
    "ContractService",
    "LoggingNotifier",
    "Notifier",
    "PaymentOrchestrator",
    "PayoutService",
    "ReconcileResult",
    "SignatureResult",
    "WebhookReconciler",
]
