"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from qos_refunds.models.enums import RefundReason, RefundTier, TelemetryEventKind


@dataclass(frozen=True)
class TelemetryEvent:
    """One client-observed playback occurrence."""

    kind: TelemetryEventKind
    timestamp_ms: int
    duration_ms: int | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class TelemetrySummary:
    """
    Per-session (or summed per-purchase) playback quality summary.

    No cross-field invariant is enforced here: aggregation can legitimately
    yield buffer time above watch time. Use validate_telemetry_summary()
    before persisting or trusting a summary.
    """

    total_watch_ms: int = 0
    total_buffer_ms: int = 0
    buffer_events: int = 0
    fatal_errors: int = 0
    stream_down_ms: int = 0
    startup_latency_ms: int | None = None

    def plus(self, other: "TelemetrySummary") -> "TelemetrySummary":
        """Field-wise sum. Startup latency keeps the worst observed value."""
        latencies = [
            value
            for value in (self.startup_latency_ms, other.startup_latency_ms)
            if value is not None
        ]
        return TelemetrySummary(
            total_watch_ms=self.total_watch_ms + other.total_watch_ms,
            total_buffer_ms=self.total_buffer_ms + other.total_buffer_ms,
            buffer_events=self.buffer_events + other.buffer_events,
            fatal_errors=self.fatal_errors + other.fatal_errors,
            stream_down_ms=self.stream_down_ms + other.stream_down_ms,
            startup_latency_ms=max(latencies) if latencies else None,
        )


EMPTY_TELEMETRY = TelemetrySummary()


@dataclass(frozen=True)
class RefundDecision:
    """Outcome of the refund policy for one purchase."""

    eligible: bool
    amount_cents: int
    tier: RefundTier
    reason_code: RefundReason | None
    applied_rule: RefundReason | None
    buffer_ratio: float
    downtime_ratio: float
    policy_version: str

    def __post_init__(self) -> None:
        """Validate decision consistency."""
        if self.amount_cents < 0:
            raise ValueError(f"Refund amount cannot be negative: {self.amount_cents}")
        if self.eligible and self.reason_code is None:
            raise ValueError("Eligible decision requires a reason code")
        if not self.eligible and (self.amount_cents != 0 or self.reason_code is not None):
            raise ValueError("Ineligible decision must carry no amount and no reason")


@dataclass(frozen=True)
class RefundEvaluation:
    """Decision plus the purchase-level telemetry it was computed from."""

    purchase_id: UUID
    decision: RefundDecision
    telemetry: TelemetrySummary
    expected_duration_ms: int


@dataclass(frozen=True)
class RefundData:
    """Immutable refund snapshot after persistence."""

    refund_id: UUID
    purchase_id: UUID
    amount_cents: int
    currency: str
    reason_code: RefundReason
    applied_rule: RefundReason
    policy_version: str
    issued_by: str
    telemetry: TelemetrySummary
    buffer_ratio: float
    downtime_ratio: float
    processor_refund_id: str | None
    settlement_attempts: int
    last_settlement_error: str | None
    created_at: datetime
    processed_at: datetime | None

    @property
    def is_settled(self) -> bool:
        """True once the payment processor confirmed the refund."""
        return self.processed_at is not None


@dataclass(frozen=True)
class RefundNotice:
    """Everything a notification channel needs to tell the buyer."""

    purchase_id: UUID
    refund_id: UUID
    amount_cents: int
    currency: str
    reason_code: RefundReason
    buyer_email: str | None
    buyer_phone_e164: str | None
    game_title: str | None


@dataclass(frozen=True)
class SettlementFailure:
    """One refund the sweep could not settle."""

    refund_id: UUID
    error_type: str
    message: str


@dataclass(frozen=True)
class SettlementSweepResult:
    """Summary of one settle_pending() run."""

    attempted: int
    settled: int
    failures: tuple[SettlementFailure, ...] = field(default_factory=tuple)
