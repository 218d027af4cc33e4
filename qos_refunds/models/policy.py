"""
Refund Policy Configuration - validated, immutable thresholds.

Defaults reproduce policy v1.0. Overrides come from Settings (environment)
or are passed explicitly by callers.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from qos_refunds.config import Settings


class RefundPolicyConfig(BaseModel):
    """Thresholds for the refund rule table."""

    model_config = ConfigDict(frozen=True)

    policy_version: str = Field(default="v1.0", min_length=1)

    full_refund_buffer_ratio: float = Field(default=0.20, ge=0)
    half_refund_buffer_ratio: float = Field(default=0.10, ge=0)
    full_refund_downtime_ratio: float = Field(default=0.20, ge=0)
    half_refund_downtime_ratio: float = Field(default=0.10, ge=0)

    min_watch_ms_for_fraud_gate: int = Field(default=30_000, ge=0)

    fatal_errors_for_full_refund: int = Field(default=3, ge=1)
    max_watch_ms_for_full_refund_fatal: int = Field(default=5 * 60_000, ge=0)
    max_watch_ms_for_half_refund_fatal: int = Field(default=2 * 60_000, ge=0)

    excessive_buffer_event_threshold: int = Field(default=10, ge=0)
    partial_refund_fraction: float = Field(default=0.25, gt=0, le=1)

    @model_validator(mode="after")
    def validate_tier_ordering(self) -> "RefundPolicyConfig":
        """Half-tier bands must sit below their full-tier counterparts."""
        if self.half_refund_buffer_ratio > self.full_refund_buffer_ratio:
            raise ValueError(
                "half_refund_buffer_ratio must not exceed full_refund_buffer_ratio "
                f"({self.half_refund_buffer_ratio} > {self.full_refund_buffer_ratio})"
            )
        if self.half_refund_downtime_ratio > self.full_refund_downtime_ratio:
            raise ValueError(
                "half_refund_downtime_ratio must not exceed full_refund_downtime_ratio "
                f"({self.half_refund_downtime_ratio} > {self.full_refund_downtime_ratio})"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "RefundPolicyConfig":
        """Build the policy from environment-backed settings."""
        return cls(
            policy_version=settings.refund_policy_version,
            full_refund_buffer_ratio=settings.refund_full_buffer_ratio,
            half_refund_buffer_ratio=settings.refund_half_buffer_ratio,
            full_refund_downtime_ratio=settings.refund_full_downtime_ratio,
            half_refund_downtime_ratio=settings.refund_half_downtime_ratio,
            min_watch_ms_for_fraud_gate=settings.refund_min_watch_ms,
            fatal_errors_for_full_refund=settings.refund_fatal_errors_for_full,
            max_watch_ms_for_full_refund_fatal=settings.refund_max_watch_ms_full_fatal,
            max_watch_ms_for_half_refund_fatal=settings.refund_max_watch_ms_half_fatal,
            excessive_buffer_event_threshold=settings.refund_excessive_buffer_events,
            partial_refund_fraction=settings.refund_partial_fraction,
        )


DEFAULT_REFUND_POLICY = RefundPolicyConfig()
