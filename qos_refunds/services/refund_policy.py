"""
Refund Policy Evaluator - deterministic refund decision from telemetry.

Pure: no I/O, no clock, no shared state.

The rule table is ordered. The first rule whose predicate holds decides the
outcome, so a purchase matching a full-tier rule never falls through to a
half-tier one, and half always beats partial.
"""

from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from qos_refunds.models.domain import RefundDecision, TelemetrySummary
from qos_refunds.models.enums import RefundReason, RefundTier
from qos_refunds.models.policy import DEFAULT_REFUND_POLICY, RefundPolicyConfig


@dataclass(frozen=True)
class RuleInputs:
    """Values every rule predicate sees."""

    telemetry: TelemetrySummary
    buffer_ratio: float
    downtime_ratio: float
    config: RefundPolicyConfig


@dataclass(frozen=True)
class RefundRule:
    """One row of the rule table."""

    reason: RefundReason
    tier: RefundTier
    applies: Callable[[RuleInputs], bool]


REFUND_RULES: tuple[RefundRule, ...] = (
    # Full refund
    RefundRule(
        RefundReason.FULL_BUFFER_RATIO_HIGH,
        RefundTier.FULL,
        lambda r: r.buffer_ratio > r.config.full_refund_buffer_ratio,
    ),
    RefundRule(
        RefundReason.FULL_DOWNTIME_RATIO_HIGH,
        RefundTier.FULL,
        lambda r: r.downtime_ratio > r.config.full_refund_downtime_ratio,
    ),
    RefundRule(
        RefundReason.FULL_FATAL_ERRORS_MULTIPLE,
        RefundTier.FULL,
        lambda r: (
            r.telemetry.fatal_errors >= r.config.fatal_errors_for_full_refund
            and r.telemetry.total_watch_ms < r.config.max_watch_ms_for_full_refund_fatal
        ),
    ),
    # Half refund
    RefundRule(
        RefundReason.HALF_BUFFER_RATIO_MEDIUM,
        RefundTier.HALF,
        lambda r: (
            r.config.half_refund_buffer_ratio
            < r.buffer_ratio
            <= r.config.full_refund_buffer_ratio
        ),
    ),
    RefundRule(
        RefundReason.HALF_DOWNTIME_RATIO_MEDIUM,
        RefundTier.HALF,
        lambda r: (
            r.config.half_refund_downtime_ratio
            < r.downtime_ratio
            <= r.config.full_refund_downtime_ratio
        ),
    ),
    RefundRule(
        RefundReason.HALF_FATAL_ERROR_MINIMAL_WATCH,
        RefundTier.HALF,
        lambda r: (
            r.telemetry.fatal_errors >= 1
            and r.telemetry.total_watch_ms < r.config.max_watch_ms_for_half_refund_fatal
        ),
    ),
    # Partial refund
    RefundRule(
        RefundReason.PARTIAL_EXCESSIVE_BUFFERING,
        RefundTier.PARTIAL,
        lambda r: r.telemetry.buffer_events > r.config.excessive_buffer_event_threshold,
    ),
)

_HALF = Decimal("0.5")


def buffer_ratio(telemetry: TelemetrySummary) -> float:
    """Buffered time over watched time, 0 when nothing was watched."""
    if telemetry.total_watch_ms == 0:
        return 0.0
    return telemetry.total_buffer_ms / telemetry.total_watch_ms


def downtime_ratio(telemetry: TelemetrySummary, expected_duration_ms: int) -> float:
    """Stream-down time over the programme's expected duration, 0 when unknown."""
    if expected_duration_ms == 0:
        return 0.0
    return telemetry.stream_down_ms / expected_duration_ms


def tier_amount_cents(
    tier: RefundTier, purchase_amount_cents: int, config: RefundPolicyConfig
) -> int:
    """Refund amount for a tier, rounded half-up to whole cents, capped at the purchase."""
    if tier == RefundTier.FULL:
        return purchase_amount_cents
    if tier == RefundTier.HALF:
        fraction = _HALF
    elif tier == RefundTier.PARTIAL:
        fraction = Decimal(str(config.partial_refund_fraction))
    else:
        return 0
    cents = (Decimal(purchase_amount_cents) * fraction).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return min(int(cents), purchase_amount_cents)


def evaluate(
    purchase_amount_cents: int,
    telemetry: TelemetrySummary,
    expected_duration_ms: int,
    config: RefundPolicyConfig | None = None,
) -> RefundDecision:
    """
    Decide whether a purchase earns a quality refund, and how much.

    Args:
        purchase_amount_cents: What the buyer paid
        telemetry: Purchase-level telemetry (all sessions summed)
        expected_duration_ms: Scheduled programme duration
        config: Thresholds; defaults to policy v1.0

    Returns:
        RefundDecision (eligible=False when the fraud gate trips or no rule matches)
    """
    if purchase_amount_cents < 0:
        raise ValueError(f"Purchase amount cannot be negative: {purchase_amount_cents}")

    config = config or DEFAULT_REFUND_POLICY
    inputs = RuleInputs(
        telemetry=telemetry,
        buffer_ratio=buffer_ratio(telemetry),
        downtime_ratio=downtime_ratio(telemetry, expected_duration_ms),
        config=config,
    )

    # Fraud gate: barely-started viewing never earns a quality refund
    if telemetry.total_watch_ms < config.min_watch_ms_for_fraud_gate:
        return not_eligible(config.policy_version, inputs.buffer_ratio, inputs.downtime_ratio)

    rule = next((rule for rule in REFUND_RULES if rule.applies(inputs)), None)
    if rule is None:
        return not_eligible(config.policy_version, inputs.buffer_ratio, inputs.downtime_ratio)

    return RefundDecision(
        eligible=True,
        amount_cents=tier_amount_cents(rule.tier, purchase_amount_cents, config),
        tier=rule.tier,
        reason_code=rule.reason,
        applied_rule=rule.reason,
        buffer_ratio=inputs.buffer_ratio,
        downtime_ratio=inputs.downtime_ratio,
        policy_version=config.policy_version,
    )


def not_eligible(
    policy_version: str, buffer_ratio: float = 0.0, downtime_ratio: float = 0.0
) -> RefundDecision:
    """The 'no refund' decision, with diagnostic ratios echoed."""
    return RefundDecision(
        eligible=False,
        amount_cents=0,
        tier=RefundTier.NONE,
        reason_code=None,
        applied_rule=None,
        buffer_ratio=buffer_ratio,
        downtime_ratio=downtime_ratio,
        policy_version=policy_version,
    )


class RefundPolicyEvaluator:
    """Binds a policy configuration to evaluate()."""

    def __init__(self, config: RefundPolicyConfig | None = None) -> None:
        self.config = config or DEFAULT_REFUND_POLICY

    def evaluate(
        self,
        purchase_amount_cents: int,
        telemetry: TelemetrySummary,
        expected_duration_ms: int,
    ) -> RefundDecision:
        return evaluate(purchase_amount_cents, telemetry, expected_duration_ms, self.config)
