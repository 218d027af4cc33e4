"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class RefundEngineError(Exception):
    """Base exception for all refund engine errors."""

    pass


class NotFoundError(RefundEngineError):
    """Raised when a purchase, refund or playback session doesn't exist."""

    def __init__(self, resource: str, resource_id: UUID | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class BadRequestError(RefundEngineError):
    """Raised when a request is well-formed but cannot be honoured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AlreadyRefundedError(BadRequestError):
    """Raised when a purchase already has a refund (double-refund guard)."""

    def __init__(self, purchase_id: UUID) -> None:
        self.purchase_id = purchase_id
        super().__init__(f"Purchase {purchase_id} already refunded")


class NotEligibleError(BadRequestError):
    """Raised when a refund is requested for a purchase the policy rejects."""

    def __init__(self, purchase_id: UUID, reason: str) -> None:
        self.purchase_id = purchase_id
        self.reason = reason
        super().__init__(f"Purchase {purchase_id} not eligible for refund: {reason}")


class InvalidTelemetryError(RefundEngineError):
    """Raised when a telemetry summary fails validation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid telemetry summary: {message}")


class PaymentProcessorError(RefundEngineError):
    """Raised when the payment processor call fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment processor error: {message}")


class ProcessorUnavailableError(PaymentProcessorError):
    """Processor unreachable, rate limited or timed out. Outcome may be unknown."""

    pass


class ProcessorRejectedError(PaymentProcessorError):
    """Processor refused the refund (invalid payment, already refunded upstream, ...)."""

    pass


class WriteVerificationError(RefundEngineError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(RefundEngineError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class ConcurrencyError(RefundEngineError):
    """Raised when concurrent modification detected."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")
