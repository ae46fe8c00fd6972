"""OpenTelemetry tracing setup for Carecore.

Spans wrap each turn and each pipeline stage. Until ``setup_telemetry`` is
called the OpenTelemetry API hands out no-op tracers, so instrumented code
runs unchanged without a configured provider.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

logger = logging.getLogger(__name__)

_tracer: trace.Tracer | None = None
_provider: TracerProvider | None = None


def setup_telemetry(
    service_name: str = "carecore",
    environment: str = "development",
    otlp_endpoint: str | None = None,
    enable_console_export: bool = False,
    sample_rate: float = 1.0,
    exporter: SpanExporter | None = None,
) -> trace.Tracer:
    """Setup OpenTelemetry tracing.

    Args:
        service_name: Name of the service
        environment: Environment (development, production)
        otlp_endpoint: OTLP collector endpoint (e.g., http://localhost:4317)
        enable_console_export: Export spans to console for debugging
        sample_rate: Sampling rate (0.0 to 1.0, 1.0 = all traces)
        exporter: Extra span exporter (used by tests)

    Returns:
        Tracer instance
    """
    global _tracer, _provider

    resource = Resource.create({
        "service.name": service_name,
        "service.namespace": "carecore",
        "deployment.environment": environment,
    })
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sample_rate))

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info(f"✅ OTLP tracing enabled: {otlp_endpoint}")

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("✅ Console span export enabled")

    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    _provider = provider
    _tracer = provider.get_tracer("carecore")

    logger.info(f"✅ Telemetry initialized: {service_name} ({environment})")
    logger.info(f"   Sampling rate: {sample_rate:.0%}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Configured tracer, or the global (possibly no-op) one."""
    return _tracer or trace.get_tracer("carecore")


@contextmanager
def trace_operation(
    operation_name: str,
    attributes: dict[str, str | int | float | bool] | None = None,
) -> Iterator[trace.Span]:
    """Context manager for tracing an operation.

    Args:
        operation_name: Name of the operation
        attributes: Additional span attributes

    Yields:
        Span object
    """
    with get_tracer().start_as_current_span(
        operation_name,
        attributes=attributes or {},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except BaseException as e:
            span.record_exception(e)
            span.set_status(trace.StatusCode.ERROR, str(e))
            raise
        span.set_status(trace.StatusCode.OK)


def add_span_attributes(attributes: dict[str, str | int | float | bool]) -> None:
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        current_span.set_attributes(attributes)


def shutdown_telemetry() -> None:
    """Flush and shut down the tracer provider."""
    global _tracer, _provider
    if _provider is not None:
        _provider.shutdown()
    _provider = None
    _tracer = None
