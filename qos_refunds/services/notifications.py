"""
Refund Notifications - buyer-facing notice boundary.

SMS/email delivery lives in another service; this module defines the
interface the orchestrator calls and a log-only default.
"""

from typing import Protocol

from structlog import get_logger

from qos_refunds.models.domain import RefundNotice

logger = get_logger(__name__)


class NotificationSender(Protocol):
    """Sends the buyer a notice that a refund was issued."""

    async def send_refund_notice(self, notice: RefundNotice) -> None:
        """
        Deliver the notice.

        Callers treat any exception as a delivery failure and carry on.
        """
        ...


def format_refund_message(notice: RefundNotice) -> str:
    """Plain-text notice body shared by SMS and email channels."""
    amount = f"{notice.amount_cents / 100:.2f} {notice.currency}"
    title = notice.game_title or "your stream"
    return (
        f"We've issued a refund of {amount} for {title} due to stream quality issues. "
        "Processing takes 5-7 business days."
    )


class LoggingNotificationSender:
    """Default sender: records the notice in the structured log only."""

    async def send_refund_notice(self, notice: RefundNotice) -> None:
        logger.info(
            "refund_notice",
            purchase_id=str(notice.purchase_id),
            refund_id=str(notice.refund_id),
            has_email=notice.buyer_email is not None,
            has_phone=notice.buyer_phone_e164 is not None,
            message=format_refund_message(notice),
        )
