"""
Refund Orchestrator - evaluate, issue and settle quality refunds.

NO DICTIONARIES - All operations use strongly typed domain models.

Refund lifecycle: absent -> created (processed_at NULL) -> settled
(processed_at set). Both transitions are one-way. The database enforces the
double-refund guard: uq_refunds_purchase_id plus a purchase row lock on
issue, a refund row lock plus a conditional update on settle.
"""

import asyncio
import time
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from qos_refunds.config import Settings, get_settings
from qos_refunds.db.models import Purchase, Refund
from qos_refunds.db.repositories import (
    EntitlementRepository,
    GameRepository,
    PlaybackSessionRepository,
    PurchaseRepository,
    RefundRepository,
    refund_to_domain,
)
from qos_refunds.exceptions import (
    AlreadyRefundedError,
    BadRequestError,
    ConcurrencyError,
    DataIntegrityError,
    NotEligibleError,
    NotFoundError,
    PaymentProcessorError,
    ProcessorUnavailableError,
    RefundEngineError,
    WriteVerificationError,
)
from qos_refunds.models.domain import (
    EMPTY_TELEMETRY,
    RefundData,
    RefundEvaluation,
    RefundNotice,
    SettlementFailure,
    SettlementSweepResult,
    TelemetrySummary,
)
from qos_refunds.models.enums import PurchaseStatus, RefundReason, SettlementOutcome
from qos_refunds.models.policy import RefundPolicyConfig
from qos_refunds.observability.logging import log_context
from qos_refunds.observability.metrics import metrics
from qos_refunds.observability.tracing import trace_operation
from qos_refunds.services.notifications import LoggingNotificationSender, NotificationSender
from qos_refunds.services.payment_gateway import PaymentProcessorGateway
from qos_refunds.services.refund_policy import RefundPolicyEvaluator, not_eligible
from qos_refunds.services.telemetry import combine_summaries, validate_telemetry_summary

logger = get_logger(__name__)

_PURCHASE_UNIQUE_CONSTRAINT = "uq_refunds_purchase_id"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def settlement_idempotency_key(refund_id: UUID) -> str:
    """Processor idempotency key; stable for the lifetime of a refund."""
    return f"qos-refund-{refund_id}"


class RefundOrchestrator:
    """
    Stateful refund workflow over one AsyncSession.

    The session must be bound to the primary database for issue_refund()
    and settle_with_processor(); evaluate_eligibility() is read-only.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentProcessorGateway,
        notifier: NotificationSender | None = None,
        policy: RefundPolicyEvaluator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.notifier = notifier or LoggingNotificationSender()
        self.settings = settings or get_settings()
        self.policy = policy or RefundPolicyEvaluator(
            RefundPolicyConfig.from_settings(self.settings)
        )

        self.purchases = PurchaseRepository(session)
        self.entitlements = EntitlementRepository(session)
        self.playback_sessions = PlaybackSessionRepository(session)
        self.games = GameRepository(session)
        self.refunds = RefundRepository(session)

    # ========================================================================
    # Evaluation
    # ========================================================================

    async def evaluate_eligibility(self, purchase_id: UUID) -> RefundEvaluation:
        """
        Decide whether a purchase earns a quality refund. No writes.

        A purchase that already has a refund, or is not in 'paid' status,
        is reported ineligible without reading telemetry.

        Raises:
            NotFoundError: Purchase doesn't exist
            InvalidTelemetryError: A stored session summary is inconsistent
        """
        with trace_operation("refund.evaluate", purchase_id=str(purchase_id)):
            purchase = await self.purchases.get_by_id(purchase_id)
            if purchase is None:
                raise NotFoundError("Purchase", purchase_id)

            existing = await self.refunds.get_by_purchase_id(purchase_id)
            if existing is not None or purchase.status != PurchaseStatus.PAID.value:
                logger.info(
                    "refund_evaluation_skipped",
                    purchase_id=str(purchase_id),
                    purchase_status=purchase.status,
                    has_refund=existing is not None,
                )
                decision = not_eligible(self.policy.config.policy_version)
                metrics.record_evaluation(decision.tier.value, None)
                return RefundEvaluation(
                    purchase_id=purchase_id,
                    decision=decision,
                    telemetry=EMPTY_TELEMETRY,
                    expected_duration_ms=0,
                )

            return await self._evaluate_purchase(purchase)

    async def _evaluate_purchase(self, purchase: Purchase) -> RefundEvaluation:
        telemetry = await self._aggregate_purchase_telemetry(purchase.id)
        expected_duration_ms = await self.games.get_expected_duration_ms(
            purchase.game_id, self.settings.default_event_duration_ms
        )
        decision = self.policy.evaluate(purchase.amount_cents, telemetry, expected_duration_ms)

        reason = decision.reason_code.value if decision.reason_code else None
        metrics.record_evaluation(decision.tier.value, reason)
        logger.info(
            "refund_evaluated",
            purchase_id=str(purchase.id),
            eligible=decision.eligible,
            tier=decision.tier.value,
            reason_code=reason,
            amount_cents=decision.amount_cents,
            buffer_ratio=decision.buffer_ratio,
            downtime_ratio=decision.downtime_ratio,
            expected_duration_ms=expected_duration_ms,
        )

        return RefundEvaluation(
            purchase_id=purchase.id,
            decision=decision,
            telemetry=telemetry,
            expected_duration_ms=expected_duration_ms,
        )

    async def _aggregate_purchase_telemetry(self, purchase_id: UUID) -> TelemetrySummary:
        """Sum of every ended session's summary; zero when there is no entitlement."""
        entitlement = await self.entitlements.get_by_purchase_id(purchase_id)
        if entitlement is None:
            logger.info("refund_evaluation_no_entitlement", purchase_id=str(purchase_id))
            return EMPTY_TELEMETRY

        summaries = await self.playback_sessions.list_summaries_by_entitlement_id(
            entitlement.id
        )
        for summary in summaries:
            validate_telemetry_summary(summary)
        return combine_summaries(summaries)

    # ========================================================================
    # Issue
    # ========================================================================

    async def issue_refund(
        self,
        purchase_id: UUID,
        reason_code: RefundReason,
        telemetry: TelemetrySummary,
        applied_rule: RefundReason,
        policy_version: str,
        issued_by: str = "auto",
    ) -> RefundData:
        """
        Record a refund and flip the purchase to refunded, atomically.

        The amount and reason are recomputed from stored telemetry; the
        caller's values are only compared against that result.

        Raises:
            NotFoundError: Purchase doesn't exist
            AlreadyRefundedError: Purchase already has a refund
            NotEligibleError: Stored telemetry earns no refund
            InvalidTelemetryError: Caller or stored telemetry is inconsistent
            BadRequestError: Purchase has no payment reference
            WriteVerificationError / DataIntegrityError: Write did not stick
        """
        with (
            trace_operation("refund.issue", purchase_id=str(purchase_id)),
            log_context(purchase_id=str(purchase_id)),
        ):
            try:
                validate_telemetry_summary(telemetry)
                purchase, refund = await self._record_refund(
                    purchase_id, reason_code, telemetry, applied_rule, policy_version, issued_by
                )
            except RefundEngineError as exc:
                await self.session.rollback()
                metrics.record_issue_rejection(type(exc).__name__)
                logger.info(
                    "refund_issue_rejected",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            logger.info(
                "refund_issued",
                refund_id=str(refund.refund_id),
                amount_cents=refund.amount_cents,
                reason_code=refund.reason_code.value,
                policy_version=refund.policy_version,
                issued_by=refund.issued_by,
            )

            await self._notify_buyer(purchase, refund)
            return refund

    async def _record_refund(
        self,
        purchase_id: UUID,
        reason_code: RefundReason,
        telemetry: TelemetrySummary,
        applied_rule: RefundReason,
        policy_version: str,
        issued_by: str,
    ) -> tuple[Purchase, RefundData]:
        # Lock purchase row so concurrent issuers queue here
        purchase = await self.purchases.lock_for_update(purchase_id)
        if purchase is None:
            raise NotFoundError("Purchase", purchase_id)

        existing = await self.refunds.get_by_purchase_id(purchase_id)
        if existing is not None or purchase.status == PurchaseStatus.REFUNDED.value:
            raise AlreadyRefundedError(purchase_id)

        if purchase.status != PurchaseStatus.PAID.value:
            raise NotEligibleError(purchase_id, f"purchase status is {purchase.status}")

        if not purchase.payment_provider_payment_id:
            raise BadRequestError(f"Purchase {purchase_id} has no payment reference")

        evaluation = await self._evaluate_purchase(purchase)
        decision = evaluation.decision
        if not decision.eligible or decision.reason_code is None:
            raise NotEligibleError(purchase_id, "no refund rule matched stored telemetry")

        if (
            reason_code != decision.reason_code
            or applied_rule != decision.applied_rule
            or policy_version != decision.policy_version
            or telemetry != evaluation.telemetry
        ):
            logger.warning(
                "refund_request_mismatch",
                requested_reason=reason_code.value,
                evaluated_reason=decision.reason_code.value,
                requested_rule=applied_rule.value,
                requested_policy_version=policy_version,
                evaluated_policy_version=decision.policy_version,
                telemetry_matches=telemetry == evaluation.telemetry,
            )

        now = _utc_now()
        stored = evaluation.telemetry
        refund = Refund(
            id=uuid4(),
            purchase_id=purchase.id,
            amount_cents=decision.amount_cents,
            currency=purchase.currency,
            reason_code=decision.reason_code.value,
            applied_rule=(decision.applied_rule or decision.reason_code).value,
            policy_version=decision.policy_version,
            issued_by=issued_by,
            watch_ms=stored.total_watch_ms,
            buffer_ms=stored.total_buffer_ms,
            buffer_events=stored.buffer_events,
            fatal_errors=stored.fatal_errors,
            stream_down_ms=stored.stream_down_ms,
            buffer_ratio=decision.buffer_ratio,
            downtime_ratio=decision.downtime_ratio,
            settlement_attempts=0,
            created_at=now,
        )

        try:
            await self.refunds.create(refund)
        except IntegrityError as e:
            if _PURCHASE_UNIQUE_CONSTRAINT in str(e.orig):
                logger.warning("refund_insert_race", purchase_id=str(purchase_id))
                raise AlreadyRefundedError(purchase_id) from e
            raise DataIntegrityError(f"Refund insert failed: {e.orig}") from e

        # Verify refund was written
        verified_refund = await self.refunds.get_by_id(refund.id)
        if verified_refund is None:
            raise WriteVerificationError(f"Refund {refund.id} not found after insert")

        await self.purchases.mark_refunded(purchase, now)

        # Verify purchase was flipped
        verified_purchase = await self.purchases.get_by_id(purchase.id)
        if verified_purchase is None:
            raise WriteVerificationError(f"Purchase {purchase.id} disappeared after update")
        if verified_purchase.status != PurchaseStatus.REFUNDED.value:
            raise DataIntegrityError(
                f"Purchase status mismatch: expected refunded, got {verified_purchase.status}"
            )

        refund_data = refund_to_domain(verified_refund)

        await self.session.commit()

        metrics.record_refund_issued(decision.tier.value, decision.amount_cents)
        return purchase, refund_data

    async def _notify_buyer(self, purchase: Purchase, refund: RefundData) -> None:
        """Best effort: a failed notice never undoes a committed refund."""
        try:
            game_title = None
            if purchase.game_id is not None:
                game = await self.games.get_by_id(purchase.game_id)
                game_title = game.title if game is not None else None

            await self.notifier.send_refund_notice(
                RefundNotice(
                    purchase_id=refund.purchase_id,
                    refund_id=refund.refund_id,
                    amount_cents=refund.amount_cents,
                    currency=refund.currency,
                    reason_code=refund.reason_code,
                    buyer_email=purchase.buyer_email,
                    buyer_phone_e164=purchase.buyer_phone_e164,
                    game_title=game_title,
                )
            )
        except Exception as exc:
            metrics.record_notification_failure()
            logger.warning(
                "refund_notice_failed",
                refund_id=str(refund.refund_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    # ========================================================================
    # Settlement
    # ========================================================================

    async def settle_with_processor(self, refund_id: UUID) -> RefundData:
        """
        Execute a created refund against the payment processor, once.

        Already-settled refunds are returned unchanged without a processor
        call. On failure the attempt is recorded and the error re-raised;
        processed_at stays NULL so the refund can be retried.

        Raises:
            NotFoundError: Refund doesn't exist
            DataIntegrityError: Purchase or its payment reference is missing
            ProcessorUnavailableError: Processor unreachable or timed out
            ProcessorRejectedError: Processor refused the refund
        """
        with (
            trace_operation("refund.settle", refund_id=str(refund_id)) as span,
            log_context(refund_id=str(refund_id)),
        ):
            # Held until commit/rollback: concurrent settlers wait here
            refund = await self.refunds.lock_for_update(refund_id)
            if refund is None:
                await self.session.rollback()
                raise NotFoundError("Refund", refund_id)

            if refund.processed_at is not None:
                settled = refund_to_domain(refund)
                await self.session.rollback()
                metrics.record_settlement(SettlementOutcome.ALREADY_SETTLED.value)
                logger.info(
                    "refund_already_settled",
                    processor_refund_id=settled.processor_refund_id,
                )
                span.set_attribute("outcome", SettlementOutcome.ALREADY_SETTLED.value)
                return settled

            purchase = await self.purchases.get_by_id(refund.purchase_id)
            if purchase is None or not purchase.payment_provider_payment_id:
                error = DataIntegrityError(
                    f"Purchase {refund.purchase_id} has no payment reference"
                )
                await self._record_failure(refund, error)
                raise error

            timeout = self.settings.processor_timeout_seconds
            start_time = time.time()
            try:
                result = await asyncio.wait_for(
                    self.gateway.refund(
                        payment_reference=purchase.payment_provider_payment_id,
                        amount_cents=refund.amount_cents,
                        currency=refund.currency,
                        idempotency_key=settlement_idempotency_key(refund_id),
                    ),
                    timeout=timeout,
                )
            except TimeoutError as e:
                error = ProcessorUnavailableError(
                    f"refund call timed out after {timeout}s, outcome unknown"
                )
                await self._record_failure(refund, error, time.time() - start_time)
                raise error from e
            except PaymentProcessorError as e:
                await self._record_failure(refund, e, time.time() - start_time)
                raise
            duration = time.time() - start_time

            if result.amount_cents != refund.amount_cents:
                logger.warning(
                    "processor_refund_amount_mismatch",
                    expected_cents=refund.amount_cents,
                    processor_cents=result.amount_cents,
                )

            try:
                updated = await self.refunds.mark_processed(
                    refund_id, _utc_now(), result.processor_refund_id
                )
                if not updated:
                    raise ConcurrencyError(f"Refund {refund_id}")

                # Verify settlement was written
                await self.session.refresh(refund)
                if refund.processed_at is None:
                    raise WriteVerificationError(
                        f"Refund {refund_id} processed_at still NULL after update"
                    )
                settled = refund_to_domain(refund)
                await self.session.commit()
            except RefundEngineError:
                await self.session.rollback()
                logger.error(
                    "refund_settlement_not_recorded",
                    processor_refund_id=result.processor_refund_id,
                )
                raise

            metrics.record_settlement(SettlementOutcome.SETTLED.value, duration)
            span.set_attribute("outcome", SettlementOutcome.SETTLED.value)
            logger.info(
                "refund_settled",
                processor_refund_id=result.processor_refund_id,
                amount_cents=settled.amount_cents,
                attempts=settled.settlement_attempts,
                duration_seconds=round(duration, 3),
            )
            return settled

    async def _record_failure(
        self, refund: Refund, error: RefundEngineError, duration: float | None = None
    ) -> None:
        """Count a failed attempt and keep the refund in the created state."""
        await self.refunds.record_failed_attempt(refund, str(error))
        attempts = refund.settlement_attempts
        await self.session.commit()

        if isinstance(error, ProcessorUnavailableError):
            metrics.record_settlement(SettlementOutcome.UNAVAILABLE.value, duration)
            logger.warning(
                "refund_settlement_unavailable",
                error=str(error),
                attempts=attempts,
            )
        else:
            metrics.record_settlement(SettlementOutcome.REJECTED.value, duration)
            logger.error(
                "refund_settlement_rejected",
                error=str(error),
                error_type=type(error).__name__,
                attempts=attempts,
            )

    async def settle_pending(self, limit: int | None = None) -> SettlementSweepResult:
        """
        Settle the oldest unsettled refunds, one at a time.

        A failing refund is recorded in the result and the sweep moves on.
        """
        batch_size = limit or self.settings.settlement_batch_size
        refund_ids = await self.refunds.list_unsettled_ids(batch_size)

        settled = 0
        failures: list[SettlementFailure] = []
        for refund_id in refund_ids:
            try:
                refund = await self.settle_with_processor(refund_id)
            except RefundEngineError as exc:
                failures.append(
                    SettlementFailure(
                        refund_id=refund_id,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )
                continue
            if refund.is_settled:
                settled += 1

        logger.info(
            "refund_settlement_sweep_finished",
            attempted=len(refund_ids),
            settled=settled,
            failed=len(failures),
        )
        return SettlementSweepResult(
            attempted=len(refund_ids), settled=settled, failures=tuple(failures)
        )

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_refund_for_purchase(self, purchase_id: UUID) -> RefundData | None:
        """Refund recorded against a purchase, if any."""
        refund = await self.refunds.get_by_purchase_id(purchase_id)
        if refund is None:
            return None
        return refund_to_domain(refund)
