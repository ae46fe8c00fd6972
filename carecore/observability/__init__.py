"""Observability: Prometheus metrics, OpenTelemetry tracing, safety event logging."""

from carecore.observability.safety_logging import SafetyEventLogger, get_safety_logger
from carecore.observability.tracing import (
    add_span_attributes,
    get_tracer,
    setup_telemetry,
    shutdown_telemetry,
    trace_operation,
)

__all__ = [
    "SafetyEventLogger",
    "add_span_attributes",
    "get_safety_logger",
    "get_tracer",
    "setup_telemetry",
    "shutdown_telemetry",
    "trace_operation",
]
