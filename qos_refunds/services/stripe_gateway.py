"""
Stripe Payment Processor Gateway.

NO DICTIONARIES - All data uses strongly typed models.
"""

import asyncio

import stripe
from structlog import get_logger

from qos_refunds.exceptions import ProcessorRejectedError, ProcessorUnavailableError
from qos_refunds.services.payment_gateway import ProcessorRefundResult

logger = get_logger(__name__)

# Stripe errors worth retrying: network, rate limit, 5xx.
_TRANSIENT_ERRORS: tuple[type[stripe.StripeError], ...] = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

_FAILED_REFUND_STATUSES = frozenset({"failed", "canceled"})


class StripeGateway:
    """
    Stripe implementation of PaymentProcessorGateway.

    payment_reference is the Stripe PaymentIntent ID stored on the purchase.
    """

    def __init__(self, api_key: str) -> None:
        """
        Initialize Stripe gateway.

        Args:
            api_key: Stripe secret API key
        """
        self.api_key = api_key
        stripe.api_key = api_key

    async def refund(
        self,
        payment_reference: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> ProcessorRefundResult:
        """
        Create a Stripe Refund against a PaymentIntent.

        The blocking Stripe call runs in a worker thread so callers can bound
        it with asyncio.wait_for.

        Raises:
            ProcessorUnavailableError: Connection, rate-limit or Stripe 5xx errors
            ProcessorRejectedError: Any other Stripe error, or a failed refund
        """
        logger.info(
            "creating_stripe_refund",
            payment_intent_id=payment_reference,
            amount_cents=amount_cents,
            currency=currency,
            idempotency_key=idempotency_key,
        )

        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=payment_reference,
                amount=amount_cents,
                reason="requested_by_customer",
                metadata={"source": "qos_refund_engine"},
                idempotency_key=idempotency_key,
            )
        except _TRANSIENT_ERRORS as exc:
            logger.warning(
                "stripe_refund_unavailable",
                payment_intent_id=payment_reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProcessorUnavailableError(f"Stripe unavailable: {exc}") from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_refund_rejected",
                payment_intent_id=payment_reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProcessorRejectedError(f"Stripe refund rejected: {exc}") from exc

        if refund.status in _FAILED_REFUND_STATUSES:
            logger.error(
                "stripe_refund_failed",
                refund_id=refund.id,
                status=refund.status,
                failure_reason=getattr(refund, "failure_reason", None),
            )
            raise ProcessorRejectedError(f"Stripe refund {refund.id} {refund.status}")

        logger.info(
            "stripe_refund_created",
            refund_id=refund.id,
            status=refund.status,
            amount_cents=refund.amount,
        )

        return ProcessorRefundResult(
            processor_refund_id=refund.id,
            status=refund.status,
            amount_cents=refund.amount,
            currency=(refund.currency or currency).upper(),
        )
