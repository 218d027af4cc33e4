"""
Enumerations shared by the ORM layer, domain models and services.
"""

from enum import Enum


class TelemetryEventKind(str, Enum):
    """Client-reported playback event kind."""

    PLAY = "play"
    PAUSE = "pause"
    BUFFER = "buffer"
    ERROR = "error"


class PurchaseStatus(str, Enum):
    """Purchase status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PlaybackSessionState(str, Enum):
    """Playback session lifecycle state."""

    STARTED = "started"
    ENDED = "ended"


class RefundTier(str, Enum):
    """Refund tier, in descending order of generosity."""

    FULL = "full"
    HALF = "half"
    PARTIAL = "partial"
    NONE = "none"


class RefundReason(str, Enum):
    """Closed set of refund reason codes. Also used as the applied rule name."""

    FULL_BUFFER_RATIO_HIGH = "full_refund_buffer_ratio_high"
    FULL_DOWNTIME_RATIO_HIGH = "full_refund_downtime_ratio_high"
    FULL_FATAL_ERRORS_MULTIPLE = "full_refund_fatal_errors_multiple"
    HALF_BUFFER_RATIO_MEDIUM = "half_refund_buffer_ratio_medium"
    HALF_DOWNTIME_RATIO_MEDIUM = "half_refund_downtime_ratio_medium"
    HALF_FATAL_ERROR_MINIMAL_WATCH = "half_refund_fatal_error_minimal_watch"
    PARTIAL_EXCESSIVE_BUFFERING = "partial_refund_excessive_buffering"


class SettlementOutcome(str, Enum):
    """Outcome label for a settlement attempt."""

    SETTLED = "settled"
    ALREADY_SETTLED = "already_settled"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
