"""
Tests for exception classes.

Covers the hierarchy, typed attributes and string representations.
"""

from uuid import uuid4

import pytest

from qos_refunds.exceptions import (
    AlreadyRefundedError,
    BadRequestError,
    ConcurrencyError,
    DataIntegrityError,
    InvalidTelemetryError,
    NotEligibleError,
    NotFoundError,
    PaymentProcessorError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    RefundEngineError,
    WriteVerificationError,
)


class TestRefundEngineError:
    """Tests for base RefundEngineError."""

    def test_is_exception(self):
        """RefundEngineError is a subclass of Exception."""
        assert issubclass(RefundEngineError, Exception)

    @pytest.mark.parametrize(
        "exc_class",
        [
            NotFoundError,
            BadRequestError,
            AlreadyRefundedError,
            NotEligibleError,
            InvalidTelemetryError,
            PaymentProcessorError,
            ProcessorUnavailableError,
            ProcessorRejectedError,
            WriteVerificationError,
            DataIntegrityError,
            ConcurrencyError,
        ],
    )
    def test_everything_is_refund_engine_error(self, exc_class):
        """Every engine exception can be caught as RefundEngineError."""
        assert issubclass(exc_class, RefundEngineError)


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_attributes_and_message(self):
        """Resource kind and id are kept and rendered."""
        resource_id = uuid4()
        exc = NotFoundError("Purchase", resource_id)

        assert exc.resource == "Purchase"
        assert exc.resource_id == resource_id
        assert str(exc) == f"Purchase not found: {resource_id}"


class TestBadRequestErrors:
    """Tests for BadRequestError and its subclasses."""

    def test_already_refunded(self):
        """AlreadyRefundedError names the purchase and is a bad request."""
        purchase_id = uuid4()
        exc = AlreadyRefundedError(purchase_id)

        assert isinstance(exc, BadRequestError)
        assert exc.purchase_id == purchase_id
        assert str(exc) == f"Purchase {purchase_id} already refunded"
        assert exc.message == str(exc)

    def test_not_eligible(self):
        """NotEligibleError carries the reason."""
        purchase_id = uuid4()
        exc = NotEligibleError(purchase_id, "no refund rule matched")

        assert isinstance(exc, BadRequestError)
        assert exc.reason == "no refund rule matched"
        assert "not eligible" in str(exc)
        assert "no refund rule matched" in str(exc)


class TestInvalidTelemetryError:
    """Tests for InvalidTelemetryError."""

    def test_message(self):
        """Message is prefixed and kept verbatim on the attribute."""
        exc = InvalidTelemetryError("buffer time exceeds watch time")

        assert exc.message == "buffer time exceeds watch time"
        assert str(exc) == "Invalid telemetry summary: buffer time exceeds watch time"


class TestPaymentProcessorErrors:
    """Tests for payment processor errors."""

    def test_unavailable_is_processor_error(self):
        """Unavailable is a PaymentProcessorError."""
        exc = ProcessorUnavailableError("timeout")

        assert isinstance(exc, PaymentProcessorError)
        assert str(exc) == "Payment processor error: timeout"

    def test_rejected_is_processor_error(self):
        """Rejected is a PaymentProcessorError, distinct from unavailable."""
        exc = ProcessorRejectedError("charge already refunded")

        assert isinstance(exc, PaymentProcessorError)
        assert not isinstance(exc, ProcessorUnavailableError)
        assert exc.message == "charge already refunded"


class TestIntegrityErrors:
    """Tests for write verification and integrity errors."""

    def test_write_verification(self):
        """WriteVerificationError message format."""
        exc = WriteVerificationError("Refund not found after insert")

        assert str(exc) == "Write verification failed: Refund not found after insert"

    def test_data_integrity(self):
        """DataIntegrityError message format."""
        exc = DataIntegrityError("status mismatch")

        assert str(exc) == "Data integrity error: status mismatch"

    def test_concurrency(self):
        """ConcurrencyError names the resource."""
        exc = ConcurrencyError("Refund 123")

        assert exc.resource == "Refund 123"
        assert "Concurrent modification detected" in str(exc)
