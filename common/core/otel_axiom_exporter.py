"""
Tracing and logging bootstrap.

Spans go to Axiom over OTLP/HTTP when an Axiom token is configured; without
one the tracer provider still exists, so spans are created and dropped.
"""

from typing import Optional
import functools
import asyncio
import logging
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from common.core.config import settings

AXIOM_TRACES_ENDPOINT = "https://api.axiom.co/v1/traces"

_initialized = False
axiom_tracer: Optional[trace.Tracer] = None


def _build_exporter() -> Optional[OTLPSpanExporter]:
    if not settings.axiom_token:
        return None
    return OTLPSpanExporter(
        endpoint=AXIOM_TRACES_ENDPOINT,
        headers={
            "Authorization": f"Bearer {settings.axiom_token}",
            "X-Axiom-Dataset": settings.axiom_dataset or "",
        },
    )


def _initialize_telemetry():
    """Set up the tracer provider and root log level, once per process."""
    global _initialized, axiom_tracer

    if _initialized:
        return

    provider = TracerProvider(
        resource=Resource(
            attributes={
                SERVICE_NAME: settings.otel_service_name,
                "service.version": settings.otel_service_version,
                "deployment.environment": settings.environment.value,
            }
        )
    )
    exporter = _build_exporter()
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    axiom_tracer = trace.get_tracer(settings.otel_service_name)

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance. Ensures telemetry is initialized.
    Use this instead of logging.getLogger() directly.
    """
    if not _initialized:
        _initialize_telemetry()
    return logging.getLogger(name)


def _span_name(func, args) -> str:
    # Methods are reported as Class.method
    if args and hasattr(args[0], func.__name__):
        return f"{args[0].__class__.__name__}.{func.__name__}"
    return func.__name__


def trace_span(func):
    """Decorator that wraps a sync or async callable in a span named after it."""
    if not _initialized:
        _initialize_telemetry()

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with axiom_tracer.start_as_current_span(_span_name(func, args)):
                return await func(*args, **kwargs)

        return async_wrapper

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        with axiom_tracer.start_as_current_span(_span_name(func, args)):
            return func(*args, **kwargs)

    return sync_wrapper


def annotate_span(**attributes):
    """Attach billing identifiers (subscription id, period key, ...) to the active span."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(f"billing.{key}", str(value))
