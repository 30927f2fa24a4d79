"""Notification dispatch.

Notifications are fire-and-forget: they are sent only after the transaction
that caused them has committed, and a failing notifier never fails the
request that triggered it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, recipient_id: str, message: str, kind: str = "info") -> None: ...


class LoggingNotifier:
    """Default notifier: writes each notification to the structured log."""

    async def notify(self, recipient_id: str, message: str, kind: str = "info") -> None:
        logger.info("notification.sent", recipient_id=recipient_id, kind=kind, message=message)


async def dispatch(
    notifier: Notifier | None,
    recipient_id: str,
    message: str,
    kind: str = "info",
) -> bool:
    """Send one notification, best effort. Returns False if it was not delivered."""
    if notifier is None:
        return False
    try:
        await notifier.notify(recipient_id, message, kind)
    except Exception as exc:
        logger.warning(
            "notification.failed",
            recipient_id=recipient_id,
            kind=kind,
            error=str(exc),
        )
        return False
    return True
