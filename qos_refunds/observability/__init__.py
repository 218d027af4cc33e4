"""
Observability module - Logging, Metrics, and Tracing.
"""

from qos_refunds.observability.logging import get_logger, log_context, setup_logging
from qos_refunds.observability.metrics import metrics
from qos_refunds.observability.tracing import setup_tracing, shutdown_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "shutdown_tracing",
    "trace_operation",
]
