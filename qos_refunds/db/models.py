"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Purchases, entitlements, playback sessions and games are owned by
neighbouring services; they are mapped here only for the columns the
refund engine reads or writes. Refunds are owned by this engine.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Game(Base):
    """
    ORM model for games table.

    Supplies the scheduled window used as the expected programme duration.
    """

    __tablename__ = "games"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Game(id={self.id}, title={self.title})>"


class Purchase(Base):
    """
    ORM model for purchases table.

    status transitions to 'refunded' at most once.
    """

    __tablename__ = "purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    game_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("games.id"), nullable=True, index=True
    )

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Buyer contact (for refund notices)
    buyer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_phone_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_purchase_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'refunded')", name="ck_purchase_status"
        ),
        Index("idx_purchases_payment_id", "payment_provider_payment_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Purchase(id={self.id}, amount_cents={self.amount_cents}, "
            f"currency={self.currency}, status={self.status})>"
        )


class Entitlement(Base):
    """ORM model for entitlements table (one per purchase)."""

    __tablename__ = "entitlements"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("purchases.id"), nullable=False, unique=True
    )
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Entitlement(id={self.id}, purchase_id={self.purchase_id})>"


class PlaybackSession(Base):
    """
    ORM model for playback_sessions table.

    Telemetry columns stay NULL until the session ends.
    """

    __tablename__ = "playback_sessions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    entitlement_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("entitlements.id"), nullable=False, index=True
    )
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="started")
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_watch_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    total_buffer_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    buffer_events: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fatal_errors: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stream_down_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    startup_latency_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        CheckConstraint("state IN ('started', 'ended')", name="ck_playback_session_state"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<PlaybackSession(id={self.id}, state={self.state})>"


class Refund(Base):
    """
    ORM model for refunds table.

    At most one refund per purchase (uq_refunds_purchase_id). processed_at is
    NULL until the payment processor confirms, then written exactly once.
    """

    __tablename__ = "refunds"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("purchases.id"), nullable=False
    )

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    reason_code: Mapped[str] = mapped_column(String(64), nullable=False)
    applied_rule: Mapped[str] = mapped_column(String(64), nullable=False)
    policy_version: Mapped[str] = mapped_column(String(20), nullable=False)
    issued_by: Mapped[str] = mapped_column(String(50), nullable=False, default="auto")

    # Telemetry snapshot at decision time (explicit columns, no JSON)
    watch_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buffer_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buffer_events: Mapped[int] = mapped_column(Integer, nullable=False)
    fatal_errors: Mapped[int] = mapped_column(Integer, nullable=False)
    stream_down_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buffer_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    downtime_ratio: Mapped[float] = mapped_column(Float, nullable=False)

    # Settlement bookkeeping
    processor_refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    settlement_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_settlement_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_refund_amount_positive"),
        CheckConstraint("settlement_attempts >= 0", name="ck_refund_attempts_non_negative"),
        UniqueConstraint("purchase_id", name="uq_refunds_purchase_id"),
        Index(
            "idx_refunds_unsettled",
            "created_at",
            postgresql_where=(processed_at.is_(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Refund(id={self.id}, purchase_id={self.purchase_id}, "
            f"amount_cents={self.amount_cents}, processed_at={self.processed_at})>"
        )
