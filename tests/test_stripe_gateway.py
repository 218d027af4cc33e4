"""
Tests for StripeGateway.

stripe.Refund.create is patched; no network.
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from qos_refunds.exceptions import (
    PaymentProcessorError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from qos_refunds.services.stripe_gateway import StripeGateway


def create_stripe_refund(
    refund_id: str = "re_3Nabc",
    status: str = "succeeded",
    amount: int = 500,
    currency: str = "usd",
) -> MagicMock:
    """Stand-in for a stripe.Refund object."""
    refund = MagicMock()
    refund.id = refund_id
    refund.status = status
    refund.amount = amount
    refund.currency = currency
    refund.failure_reason = None
    return refund


@pytest.fixture
def gateway() -> StripeGateway:
    return StripeGateway(api_key="sk_test_fake_key")


class TestStripeGatewayRefund:
    """Tests for StripeGateway.refund()."""

    def test_init_sets_api_key(self, gateway: StripeGateway):
        """Constructor configures the stripe module."""
        assert gateway.api_key == "sk_test_fake_key"
        assert stripe.api_key == "sk_test_fake_key"

    async def test_successful_refund(self, gateway: StripeGateway):
        """A succeeded Stripe refund maps to ProcessorRefundResult."""
        with patch("stripe.Refund.create", return_value=create_stripe_refund()) as mock_create:
            result = await gateway.refund(
                payment_reference="pi_123",
                amount_cents=500,
                currency="USD",
                idempotency_key="qos-refund-abc",
            )

        assert result.processor_refund_id == "re_3Nabc"
        assert result.status == "succeeded"
        assert result.amount_cents == 500
        assert result.currency == "USD"

        kwargs = mock_create.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_123"
        assert kwargs["amount"] == 500
        assert kwargs["idempotency_key"] == "qos-refund-abc"
        assert kwargs["reason"] == "requested_by_customer"

    async def test_pending_refund_accepted(self, gateway: StripeGateway):
        """Pending refunds are accepted; Stripe finishes them asynchronously."""
        with patch("stripe.Refund.create", return_value=create_stripe_refund(status="pending")):
            result = await gateway.refund("pi_123", 500, "USD", "qos-refund-abc")

        assert result.status == "pending"

    @pytest.mark.parametrize("status", ["failed", "canceled"])
    async def test_failed_refund_rejected(self, gateway: StripeGateway, status: str):
        """Failed or canceled refunds are rejections."""
        with patch("stripe.Refund.create", return_value=create_stripe_refund(status=status)):
            with pytest.raises(ProcessorRejectedError, match=status):
                await gateway.refund("pi_123", 500, "USD", "qos-refund-abc")

    @pytest.mark.parametrize(
        "error",
        [
            stripe.APIConnectionError("connection reset"),
            stripe.RateLimitError("too many requests"),
            stripe.APIError("internal error"),
        ],
    )
    async def test_transient_errors_unavailable(self, gateway: StripeGateway, error):
        """Network, rate-limit and 5xx errors are retryable."""
        with patch("stripe.Refund.create", side_effect=error):
            with pytest.raises(ProcessorUnavailableError) as exc_info:
                await gateway.refund("pi_123", 500, "USD", "qos-refund-abc")

        assert exc_info.value.__cause__ is error

    async def test_invalid_request_rejected(self, gateway: StripeGateway):
        """Invalid requests are permanent rejections."""
        error = stripe.InvalidRequestError("No such payment_intent: 'pi_123'", "payment_intent")
        with patch("stripe.Refund.create", side_effect=error):
            with pytest.raises(ProcessorRejectedError, match="No such payment_intent"):
                await gateway.refund("pi_123", 500, "USD", "qos-refund-abc")

    async def test_errors_share_base_class(self, gateway: StripeGateway):
        """Callers can catch PaymentProcessorError for either outcome."""
        with patch("stripe.Refund.create", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(PaymentProcessorError):
                await gateway.refund("pi_123", 500, "USD", "qos-refund-abc")
