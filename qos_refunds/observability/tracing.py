"""
Distributed Tracing with OpenTelemetry.

Spans cover evaluate/issue/settle and the SQL they run. The scripts are
short-lived, so they call shutdown_tracing() to flush the batch exporter
before exit.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from qos_refunds.config import settings

_provider: TracerProvider | None = None


def setup_tracing() -> None:
    """Install an OTLP-exporting TracerProvider when TRACING_ENABLED is set."""
    global _provider
    if not settings.tracing_enabled or _provider is not None:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
        }
    )
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(_provider)


def shutdown_tracing() -> None:
    """Flush pending spans and stop the exporter."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace queries on an async engine (primary or replica)."""
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Span around one orchestrator operation.

    None attributes are skipped; non-primitive values are stringified. An
    exception marks the span as failed and propagates unchanged.

    Usage:
        with trace_operation("refund.settle", refund_id=str(refund_id)) as span:
            span.set_attribute("outcome", "settled")
    """
    tracer = trace.get_tracer("qos_refunds.operations")
    with tracer.start_as_current_span(
        operation_name, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            if value is None:
                continue
            span.set_attribute(
                key, value if isinstance(value, (str, int, float, bool)) else str(value)
            )
        try:
            yield span
        except BaseException as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
