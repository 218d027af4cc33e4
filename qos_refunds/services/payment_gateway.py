"""
Payment Processor Gateway Protocol - Provider-agnostic refund interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ProcessorRefundResult:
    """
    Provider-agnostic refund result.

    Returned after the processor accepted a refund request.
    """

    processor_refund_id: str  # Provider-specific refund ID
    status: str
    amount_cents: int
    currency: str


class PaymentProcessorGateway(Protocol):
    """
    Payment processor protocol.

    The refund engine only ever asks a processor to refund a payment.
    Implementations must forward idempotency_key so processor-side retries
    cannot refund twice.
    """

    async def refund(
        self,
        payment_reference: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> ProcessorRefundResult:
        """
        Refund (part of) a captured payment.

        Args:
            payment_reference: Provider-specific payment ID
            amount_cents: Amount to refund in minor units
            currency: ISO 4217 currency code of the original payment
            idempotency_key: Stable key derived from the refund id

        Returns:
            Processor refund result

        Raises:
            ProcessorUnavailableError: Transient failure, safe to retry
            ProcessorRejectedError: Processor refused the refund
        """
        ...
