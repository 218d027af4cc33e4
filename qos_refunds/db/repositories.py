"""
Repositories - SQLAlchemy-backed readers and writers used by the services.

All repositories share the caller's AsyncSession, so writes made through
several of them land in one transaction. Repositories flush but never
commit; transaction boundaries belong to the services.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qos_refunds.db.models import Entitlement, Game, PlaybackSession, Purchase, Refund
from qos_refunds.models.domain import RefundData, TelemetrySummary
from qos_refunds.models.enums import PlaybackSessionState, PurchaseStatus, RefundReason


def summary_from_session(row: PlaybackSession) -> TelemetrySummary:
    """Convert an ended playback session row to a TelemetrySummary."""
    return TelemetrySummary(
        total_watch_ms=row.total_watch_ms or 0,
        total_buffer_ms=row.total_buffer_ms or 0,
        buffer_events=row.buffer_events or 0,
        fatal_errors=row.fatal_errors or 0,
        stream_down_ms=row.stream_down_ms or 0,
        startup_latency_ms=row.startup_latency_ms,
    )


def refund_to_domain(row: Refund) -> RefundData:
    """Convert ORM refund to domain model."""
    return RefundData(
        refund_id=row.id,
        purchase_id=row.purchase_id,
        amount_cents=row.amount_cents,
        currency=row.currency,
        reason_code=RefundReason(row.reason_code),
        applied_rule=RefundReason(row.applied_rule),
        policy_version=row.policy_version,
        issued_by=row.issued_by,
        telemetry=TelemetrySummary(
            total_watch_ms=row.watch_ms,
            total_buffer_ms=row.buffer_ms,
            buffer_events=row.buffer_events,
            fatal_errors=row.fatal_errors,
            stream_down_ms=row.stream_down_ms,
        ),
        buffer_ratio=row.buffer_ratio,
        downtime_ratio=row.downtime_ratio,
        processor_refund_id=row.processor_refund_id,
        settlement_attempts=row.settlement_attempts,
        last_settlement_error=row.last_settlement_error,
        created_at=row.created_at,
        processed_at=row.processed_at,
    )


class PurchaseRepository:
    """Reads purchases and records the refunded flip."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, purchase_id: UUID) -> Purchase | None:
        return await self.session.get(Purchase, purchase_id)

    async def lock_for_update(self, purchase_id: UUID) -> Purchase | None:
        """Load purchase with SELECT FOR UPDATE."""
        stmt = select(Purchase).where(Purchase.id == purchase_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_refunded(self, purchase: Purchase, refunded_at: datetime) -> None:
        purchase.status = PurchaseStatus.REFUNDED.value
        purchase.refunded_at = refunded_at
        await self.session.flush()


class EntitlementRepository:
    """Reads entitlements (owned by the access service)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_purchase_id(self, purchase_id: UUID) -> Entitlement | None:
        stmt = select(Entitlement).where(Entitlement.purchase_id == purchase_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class PlaybackSessionRepository:
    """Reads playback sessions and stores end-of-session summaries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_for_update(self, session_id: UUID) -> PlaybackSession | None:
        stmt = (
            select(PlaybackSession).where(PlaybackSession.id == session_id).with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_summaries_by_entitlement_id(
        self, entitlement_id: UUID
    ) -> list[TelemetrySummary]:
        """Summaries of every ended session under an entitlement."""
        stmt = (
            select(PlaybackSession)
            .where(
                PlaybackSession.entitlement_id == entitlement_id,
                PlaybackSession.state == PlaybackSessionState.ENDED.value,
            )
            .order_by(PlaybackSession.started_at)
        )
        result = await self.session.execute(stmt)
        return [summary_from_session(row) for row in result.scalars().all()]

    async def record_summary(
        self, row: PlaybackSession, summary: TelemetrySummary, ended_at: datetime
    ) -> None:
        row.state = PlaybackSessionState.ENDED.value
        row.ended_at = ended_at
        row.total_watch_ms = summary.total_watch_ms
        row.total_buffer_ms = summary.total_buffer_ms
        row.buffer_events = summary.buffer_events
        row.fatal_errors = summary.fatal_errors
        row.stream_down_ms = summary.stream_down_ms
        row.startup_latency_ms = summary.startup_latency_ms
        await self.session.flush()


class GameRepository:
    """Reads game schedules."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, game_id: UUID) -> Game | None:
        return await self.session.get(Game, game_id)

    async def get_expected_duration_ms(self, game_id: UUID | None, default_ms: int) -> int:
        """
        Scheduled duration of a game in milliseconds.

        Falls back to default_ms when the game or either bound is missing,
        or when the schedule is not a positive interval.
        """
        if game_id is None:
            return default_ms
        game = await self.get_by_id(game_id)
        if game is None or game.starts_at is None or game.ends_at is None:
            return default_ms
        duration_ms = int((game.ends_at - game.starts_at).total_seconds() * 1000)
        return duration_ms if duration_ms > 0 else default_ms


class RefundRepository:
    """Creates refunds and drives their settlement state."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, refund_id: UUID) -> Refund | None:
        return await self.session.get(Refund, refund_id)

    async def get_by_purchase_id(self, purchase_id: UUID) -> Refund | None:
        stmt = select(Refund).where(Refund.purchase_id == purchase_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_for_update(self, refund_id: UUID) -> Refund | None:
        """
        Load refund with SELECT FOR UPDATE.

        Held across the processor call so concurrent settlers of the same
        refund queue behind each other.
        """
        stmt = select(Refund).where(Refund.id == refund_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, refund: Refund) -> Refund:
        """
        Insert a refund row.

        Raises:
            IntegrityError: a refund already exists for the purchase
        """
        self.session.add(refund)
        await self.session.flush()
        return refund

    async def mark_processed(
        self, refund_id: UUID, processed_at: datetime, processor_refund_id: str
    ) -> bool:
        """
        Set processed_at only if it is still NULL.

        Returns True when this call performed the transition.
        """
        stmt = (
            update(Refund)
            .where(Refund.id == refund_id, Refund.processed_at.is_(None))
            .values(
                processed_at=processed_at,
                processor_refund_id=processor_refund_id,
                settlement_attempts=Refund.settlement_attempts + 1,
                last_settlement_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount == 1)

    async def record_failed_attempt(self, refund: Refund, error: str) -> None:
        refund.settlement_attempts = refund.settlement_attempts + 1
        refund.last_settlement_error = error
        await self.session.flush()

    async def list_unsettled_ids(self, limit: int) -> list[UUID]:
        """Oldest unsettled refunds first."""
        stmt = (
            select(Refund.id)
            .where(Refund.processed_at.is_(None))
            .order_by(Refund.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
