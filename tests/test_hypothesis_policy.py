"""
Hypothesis Property-Based Tests for the aggregator and policy evaluator.

Both are pure, so invariants are checked directly on generated inputs.
"""

from datetime import UTC, datetime

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from qos_refunds.models.domain import TelemetryEvent, TelemetrySummary
from qos_refunds.models.enums import RefundTier, TelemetryEventKind
from qos_refunds.models.policy import DEFAULT_REFUND_POLICY
from qos_refunds.services.refund_policy import evaluate
from qos_refunds.services.telemetry import aggregate_events, to_epoch_ms

# ============================================================================
# Hypothesis Strategies
# ============================================================================

SESSION_START = datetime(2026, 3, 1, 19, 0, 0, tzinfo=UTC)
T0 = to_epoch_ms(SESSION_START)

purchase_amounts = st.integers(min_value=0, max_value=1_000_000)
durations = st.integers(min_value=0, max_value=10 * 3_600_000)
counts = st.integers(min_value=0, max_value=500)
error_codes = st.sampled_from(
    ["fatal", "fatal_media_error", "stream_down", "network_glitch", "", None]
)


@st.composite
def telemetry_summaries(draw):
    """Generate non-negative purchase-level summaries."""
    return TelemetrySummary(
        total_watch_ms=draw(durations),
        total_buffer_ms=draw(durations),
        buffer_events=draw(counts),
        fatal_errors=draw(st.integers(min_value=0, max_value=20)),
        stream_down_ms=draw(durations),
        startup_latency_ms=draw(st.one_of(st.none(), st.integers(min_value=0, max_value=60_000))),
    )


@st.composite
def telemetry_events(draw):
    """Generate arbitrary, possibly malformed, events."""
    return TelemetryEvent(
        kind=draw(st.sampled_from(list(TelemetryEventKind))),
        timestamp_ms=T0 + draw(st.integers(min_value=-3_600_000, max_value=3_600_000)),
        duration_ms=draw(st.one_of(st.none(), st.integers(min_value=-60_000, max_value=600_000))),
        error_code=draw(error_codes),
    )


# ============================================================================
# Aggregator Properties
# ============================================================================


class TestAggregatorProperties:
    """Property-based tests for aggregate_events()."""

    @given(st.lists(telemetry_events(), max_size=60))
    @settings(max_examples=200)
    def test_total_and_non_negative(self, events):
        """Any event list folds to a summary with no negative field."""
        summary = aggregate_events(events, SESSION_START)

        assert summary.total_watch_ms >= 0
        assert summary.total_buffer_ms >= 0
        assert summary.buffer_events >= 0
        assert summary.fatal_errors >= 0
        assert summary.stream_down_ms >= 0
        assert summary.startup_latency_ms is None or summary.startup_latency_ms >= 0

    @given(st.lists(telemetry_events(), max_size=60))
    @settings(max_examples=100)
    def test_counts_bounded_by_events(self, events):
        """Buffer events and fatal errors never exceed the events seen."""
        summary = aggregate_events(events, SESSION_START)

        buffers = sum(1 for e in events if e.kind == TelemetryEventKind.BUFFER)
        errors = sum(1 for e in events if e.kind == TelemetryEventKind.ERROR)
        assert summary.buffer_events == buffers
        assert summary.fatal_errors <= errors

    @given(
        st.lists(
            st.integers(min_value=0, max_value=600_000), min_size=1, max_size=20
        ).map(sorted)
    )
    @settings(max_examples=100)
    def test_alternating_play_pause_credits_span(self, offsets):
        """Strictly alternating play/pause credits exactly the paired spans."""
        assume(len(offsets) % 2 == 0)
        events = [
            TelemetryEvent(
                kind=TelemetryEventKind.PLAY if i % 2 == 0 else TelemetryEventKind.PAUSE,
                timestamp_ms=T0 + offset,
            )
            for i, offset in enumerate(offsets)
        ]

        summary = aggregate_events(events, SESSION_START)

        expected = sum(offsets[i + 1] - offsets[i] for i in range(0, len(offsets), 2))
        assert summary.total_watch_ms == expected
        assert summary.startup_latency_ms == offsets[0]


# ============================================================================
# Policy Properties
# ============================================================================


class TestPolicyProperties:
    """Property-based tests for evaluate()."""

    @given(purchase_amounts, telemetry_summaries(), durations)
    @settings(max_examples=300)
    def test_amount_never_exceeds_purchase(self, amount, telemetry, expected_duration):
        """No refund ever exceeds what the buyer paid."""
        decision = evaluate(amount, telemetry, expected_duration)

        assert 0 <= decision.amount_cents <= amount

    @given(purchase_amounts, telemetry_summaries(), durations)
    @settings(max_examples=200)
    def test_eligibility_consistency(self, amount, telemetry, expected_duration):
        """Eligible decisions carry a reason; ineligible ones carry nothing."""
        decision = evaluate(amount, telemetry, expected_duration)

        if decision.eligible:
            assert decision.reason_code is not None
            assert decision.applied_rule == decision.reason_code
            assert decision.tier != RefundTier.NONE
        else:
            assert decision.amount_cents == 0
            assert decision.reason_code is None
            assert decision.tier == RefundTier.NONE

    @given(purchase_amounts, telemetry_summaries(), durations)
    @settings(max_examples=200)
    def test_fraud_gate_dominates(self, amount, telemetry, expected_duration):
        """Below the minimum watch time nothing is ever eligible."""
        assume(telemetry.total_watch_ms < DEFAULT_REFUND_POLICY.min_watch_ms_for_fraud_gate)

        assert evaluate(amount, telemetry, expected_duration).eligible is False

    @given(purchase_amounts, telemetry_summaries(), durations)
    @settings(max_examples=200)
    def test_full_tier_refunds_everything(self, amount, telemetry, expected_duration):
        """A full-tier decision refunds the whole purchase."""
        decision = evaluate(amount, telemetry, expected_duration)

        if decision.tier == RefundTier.FULL:
            assert decision.amount_cents == amount

    @given(purchase_amounts, telemetry_summaries(), durations)
    @settings(max_examples=100)
    def test_deterministic(self, amount, telemetry, expected_duration):
        """Identical inputs give identical decisions."""
        assert evaluate(amount, telemetry, expected_duration) == evaluate(
            amount, telemetry, expected_duration
        )
