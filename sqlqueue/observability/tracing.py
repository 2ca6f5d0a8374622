"""
OpenTelemetry tracing for queue operations.

Dequeue calls and maintenance passes open spans through ``start_span``.
Until ``setup_tracing`` installs an exporting provider those spans go to
OpenTelemetry's no-op provider, so library users who never configure
tracing pay next to nothing.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Tracer
from sqlalchemy.ext.asyncio import AsyncEngine

from sqlqueue import __version__
from sqlqueue.config import Settings, get_settings

_provider: TracerProvider | None = None
_tracer: Tracer | None = None


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Install a tracer provider exporting over OTLP.

    Only the first call installs a provider; later calls return the
    existing tracer.

    Args:
        settings: Source of the service name and collector endpoint.
        enable_console_export: Also print finished spans to stdout.

    Returns:
        Tracer: The process-wide tracer.
    """
    global _provider, _tracer

    if _tracer is not None:
        return _tracer

    settings = settings or get_settings()
    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "sqlqueue.table_prefix": settings.table_prefix,
        }
    )

    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        )
    )
    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    _tracer = trace.get_tracer(settings.otel_service_name, __version__)
    return _tracer


def shutdown_tracing() -> None:
    """Flush pending spans and stop the exporter, if one was installed."""
    global _provider, _tracer

    if _provider is not None:
        _provider.shutdown()
    _provider = None
    _tracer = None


def get_tracer() -> Tracer:
    """The configured tracer, or one from the global (possibly no-op) provider."""
    if _tracer is None:
        return trace.get_tracer("sqlqueue", __version__)
    return _tracer


@contextmanager
def start_span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Open a span named after a queue operation.

    Attributes whose value is None are skipped; sequences are joined
    with commas since span attributes must be primitive.
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                value = ",".join(str(item) for item in value)
            span.set_attribute(key, value)
        yield span


def instrument_fastapi(app: Any) -> None:
    """Trace every request handled by the inspection API."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Trace statements issued through an async engine."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
