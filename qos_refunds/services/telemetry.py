"""
Telemetry Service - folds raw playback events into session summaries.

The aggregator is a pure left fold over an immutable accumulator. Watch
time is credited only for segments that run cleanly from a play to a
pause, or to the end of the stream (the session end boundary when known,
otherwise the last event). A second play without an intervening pause
starts a fresh segment and discards the unflushed one; buffer and error
events never flush the segment.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from functools import reduce
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from qos_refunds.db.repositories import PlaybackSessionRepository
from qos_refunds.exceptions import BadRequestError, InvalidTelemetryError, NotFoundError
from qos_refunds.models.domain import EMPTY_TELEMETRY, TelemetryEvent, TelemetrySummary
from qos_refunds.models.enums import PlaybackSessionState, TelemetryEventKind

logger = get_logger(__name__)

FATAL_ERROR_CODE = "fatal"
FATAL_ERROR_PREFIX = "fatal_"
STREAM_DOWN_ERROR_CODES = frozenset({"stream_down", "stream_unavailable"})


def is_fatal_error_code(code: str | None) -> bool:
    """`fatal` itself or any `fatal_*` player code."""
    if code is None:
        return False
    return code == FATAL_ERROR_CODE or code.startswith(FATAL_ERROR_PREFIX)


def to_epoch_ms(value: datetime) -> int:
    """Epoch milliseconds for an aware (or UTC-naive) datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class _FoldState:
    play_start_ms: int | None
    startup_latency_set: bool
    summary: TelemetrySummary


_INITIAL_STATE = _FoldState(play_start_ms=None, startup_latency_set=False, summary=EMPTY_TELEMETRY)


def _flush(state: _FoldState, at_ms: int) -> _FoldState:
    """Credit the open play segment up to at_ms and close it."""
    if state.play_start_ms is None:
        return state
    segment_ms = max(0, at_ms - state.play_start_ms)
    return replace(
        state,
        play_start_ms=None,
        summary=replace(
            state.summary, total_watch_ms=state.summary.total_watch_ms + segment_ms
        ),
    )


class TelemetryAggregator:
    """
    Pure event-stream aggregator.

    Total over any input: unknown kinds are ignored and negative
    intervals or durations count as zero, so every output field is >= 0.
    """

    def __init__(self, fatal_error_codes: Iterable[str] | None = None) -> None:
        # None keeps the prefix rule; an explicit set replaces it
        self.fatal_error_codes = (
            frozenset(fatal_error_codes) if fatal_error_codes is not None else None
        )

    def is_fatal(self, code: str | None) -> bool:
        if self.fatal_error_codes is None:
            return is_fatal_error_code(code)
        return code in self.fatal_error_codes

    def aggregate(
        self,
        events: Sequence[TelemetryEvent],
        session_started_at: datetime,
        ended_at_ms: int | None = None,
    ) -> TelemetrySummary:
        """
        Fold events (in delivery order) into a TelemetrySummary.

        Args:
            events: Events for one session, non-decreasing timestamps
            session_started_at: When the playback session was opened
            ended_at_ms: Session end boundary; flushes an open segment like a pause.
                Without it the last event's timestamp closes the segment.
        """
        started_ms = to_epoch_ms(session_started_at)
        state = reduce(
            lambda acc, event: self._step(acc, event, started_ms), events, _INITIAL_STATE
        )
        if ended_at_ms is not None:
            state = _flush(state, ended_at_ms)
        elif events:
            state = _flush(state, events[-1].timestamp_ms)
        return state.summary

    def _step(self, state: _FoldState, event: TelemetryEvent, started_ms: int) -> _FoldState:
        summary = state.summary

        if event.kind == TelemetryEventKind.PLAY:
            if not state.startup_latency_set:
                summary = replace(
                    summary, startup_latency_ms=max(0, event.timestamp_ms - started_ms)
                )
            return _FoldState(
                play_start_ms=event.timestamp_ms, startup_latency_set=True, summary=summary
            )

        if event.kind == TelemetryEventKind.PAUSE:
            return _flush(state, event.timestamp_ms)

        if event.kind == TelemetryEventKind.BUFFER:
            return replace(
                state,
                summary=replace(
                    summary,
                    total_buffer_ms=summary.total_buffer_ms + max(0, event.duration_ms or 0),
                    buffer_events=summary.buffer_events + 1,
                ),
            )

        if event.kind == TelemetryEventKind.ERROR:
            if self.is_fatal(event.error_code):
                summary = replace(summary, fatal_errors=summary.fatal_errors + 1)
            if event.error_code in STREAM_DOWN_ERROR_CODES:
                summary = replace(
                    summary,
                    stream_down_ms=summary.stream_down_ms + max(0, event.duration_ms or 0),
                )
            return replace(state, summary=summary)

        return state


default_aggregator = TelemetryAggregator()


def aggregate_events(
    events: Sequence[TelemetryEvent],
    session_started_at: datetime,
    ended_at_ms: int | None = None,
) -> TelemetrySummary:
    """Aggregate with the default fatal-error rule."""
    return default_aggregator.aggregate(events, session_started_at, ended_at_ms)


def validate_telemetry_summary(summary: TelemetrySummary) -> None:
    """
    Reject summaries that must not be persisted or trusted.

    Raises:
        InvalidTelemetryError: negative field, or buffer time above watch time
    """
    counters = (
        ("total_watch_ms", summary.total_watch_ms),
        ("total_buffer_ms", summary.total_buffer_ms),
        ("buffer_events", summary.buffer_events),
        ("fatal_errors", summary.fatal_errors),
        ("stream_down_ms", summary.stream_down_ms),
    )
    for name, value in counters:
        if value < 0:
            raise InvalidTelemetryError(f"{name} is negative ({value})")
    if summary.startup_latency_ms is not None and summary.startup_latency_ms < 0:
        raise InvalidTelemetryError(
            f"startup_latency_ms is negative ({summary.startup_latency_ms})"
        )
    if summary.total_buffer_ms > summary.total_watch_ms:
        raise InvalidTelemetryError(
            f"buffer time exceeds watch time ({summary.total_buffer_ms} > {summary.total_watch_ms})"
        )


def combine_summaries(summaries: Iterable[TelemetrySummary]) -> TelemetrySummary:
    """Field-wise sum of session summaries into a purchase-level summary."""
    return reduce(TelemetrySummary.plus, summaries, EMPTY_TELEMETRY)


class TelemetryService:
    """Ends playback sessions and stores their validated summaries."""

    def __init__(
        self, session: AsyncSession, aggregator: TelemetryAggregator | None = None
    ) -> None:
        self.session = session
        self.aggregator = aggregator or default_aggregator
        self.playback_sessions = PlaybackSessionRepository(session)

    async def end_session(
        self,
        session_id: UUID,
        events: Sequence[TelemetryEvent],
        ended_at: datetime | None = None,
    ) -> TelemetrySummary:
        """
        Aggregate a session's events, validate, and persist the summary.

        Raises:
            NotFoundError: Playback session doesn't exist
            BadRequestError: Session already ended
            InvalidTelemetryError: Aggregated summary failed validation
        """
        row = await self.playback_sessions.lock_for_update(session_id)
        if row is None:
            raise NotFoundError("PlaybackSession", session_id)
        if row.state == PlaybackSessionState.ENDED.value:
            raise BadRequestError(f"Playback session {session_id} already ended")

        ended_at = ended_at or datetime.now(UTC)
        summary = self.aggregator.aggregate(
            events, row.started_at, ended_at_ms=to_epoch_ms(ended_at)
        )

        try:
            validate_telemetry_summary(summary)
        except InvalidTelemetryError:
            await self.session.rollback()
            logger.warning(
                "playback_session_summary_rejected",
                session_id=str(session_id),
                total_watch_ms=summary.total_watch_ms,
                total_buffer_ms=summary.total_buffer_ms,
            )
            raise

        await self.playback_sessions.record_summary(row, summary, ended_at)
        await self.session.commit()

        logger.info(
            "playback_session_ended",
            session_id=str(session_id),
            event_count=len(events),
            total_watch_ms=summary.total_watch_ms,
            total_buffer_ms=summary.total_buffer_ms,
            buffer_events=summary.buffer_events,
            fatal_errors=summary.fatal_errors,
            stream_down_ms=summary.stream_down_ms,
        )
        return summary
