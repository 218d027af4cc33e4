"""
Metrics Collection with Prometheus.

Exposes refund decision and settlement metrics for monitoring.
"""

from enum import Enum

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

from qos_refunds.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    TIER = "tier"
    REASON = "reason"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class RefundMetrics:
    """
    Centralized metrics for the refund engine.

    Covers:
    - Policy evaluations (by tier and reason)
    - Refund issuance (count, amounts, rejected attempts)
    - Settlement (outcomes, processor latency)
    - Notification failures

    With METRICS_ENABLED=false the collectors are still registered but the
    record_* helpers do nothing.
    """

    def __init__(self, enabled: bool = True, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize all Prometheus metrics."""
        self.enabled = enabled

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "qos_refund_service",
            "Service information",
            registry=registry,
        )
        if enabled:
            self.service_info.info(
                {
                    "version": settings.service_version,
                    "service_name": settings.service_name,
                }
            )

        # ====================================================================
        # Evaluation Metrics
        # ====================================================================
        self.evaluations_total = Counter(
            "qos_refund_evaluations_total",
            "Total refund policy evaluations",
            [MetricLabels.TIER, MetricLabels.REASON],
            registry=registry,
        )

        # ====================================================================
        # Issuance Metrics
        # ====================================================================
        self.refunds_issued_total = Counter(
            "qos_refunds_issued_total",
            "Total refunds recorded",
            [MetricLabels.TIER],
            registry=registry,
        )

        self.refund_amount_cents = Histogram(
            "qos_refund_amount_cents",
            "Refund amounts in cents",
            buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 25000),
            registry=registry,
        )

        self.issue_rejections_total = Counter(
            "qos_refund_issue_rejections_total",
            "Refund issuance attempts rejected",
            [MetricLabels.ERROR_TYPE],
            registry=registry,
        )

        # ====================================================================
        # Settlement Metrics
        # ====================================================================
        self.settlements_total = Counter(
            "qos_refund_settlements_total",
            "Settlement attempts by outcome",
            [MetricLabels.OUTCOME],
            registry=registry,
        )

        self.settlement_duration_seconds = Histogram(
            "qos_refund_settlement_duration_seconds",
            "Payment processor refund call duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=registry,
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notification_failures_total = Counter(
            "qos_refund_notification_failures_total",
            "Buyer notifications that failed to send",
            registry=registry,
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_evaluation(self, tier: str, reason: str | None) -> None:
        """Record a policy evaluation."""
        if not self.enabled:
            return
        self.evaluations_total.labels(tier=tier, reason=reason or "none").inc()

    def record_refund_issued(self, tier: str, amount_cents: int) -> None:
        """Record a committed refund."""
        if not self.enabled:
            return
        self.refunds_issued_total.labels(tier=tier).inc()
        self.refund_amount_cents.observe(amount_cents)

    def record_issue_rejection(self, error_type: str) -> None:
        """Record a rejected issue_refund call."""
        if not self.enabled:
            return
        self.issue_rejections_total.labels(error_type=error_type).inc()

    def record_settlement(self, outcome: str, duration: float | None = None) -> None:
        """Record a settlement attempt."""
        if not self.enabled:
            return
        self.settlements_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.settlement_duration_seconds.observe(duration)

    def record_notification_failure(self) -> None:
        """Record a swallowed notification failure."""
        if not self.enabled:
            return
        self.notification_failures_total.inc()


# Global metrics instance
metrics = RefundMetrics(enabled=settings.metrics_enabled)
