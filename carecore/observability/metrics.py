"""Prometheus metrics collection and export for Carecore.

Metrics exposed:
    - carecore_turns_total: Processed turns by status
    - carecore_stage_duration_seconds: Per-stage latency of the turn pipeline
    - carecore_safety_matches_total: Policy matches by severity, source and role
    - carecore_incidents_total: Incident outcomes (created, deduplicated, escalated, resolved)
    - carecore_notifications_total: Notification hand-offs by status
    - carecore_memory_candidates_total: Extraction candidates by outcome
    - carecore_photo_selections_total: Photo selections by trigger reason
    - carecore_photos_shown_total: Photos committed for display
    - carecore_enrichment_failures_total: Non-fatal enrichment failures by component
    - carecore_errors_total: Errors by component, type and severity

Example usage:

    ```python
    from carecore.observability.metrics import observe_stage, record_incident

    with observe_stage("safety"):
        matches = engine.scan_turn(user_text, assistant_text)

    record_incident(severity="critical", outcome="created")
    ```
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Literal

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Singleton registry for all Carecore metrics
_registry: CollectorRegistry | None = None
_registry_lock = Lock()

_STAGE_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the singleton Prometheus metrics registry.

    Returns:
        The shared CollectorRegistry for all Carecore metrics.
    """
    global _registry

    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = CollectorRegistry()
                logger.info("Created Prometheus metrics registry")

    return _registry


def _build_metrics(registry: CollectorRegistry) -> None:
    """Create every metric on ``registry`` and bind them to module globals."""
    global \
        turns_total, \
        stage_duration, \
        safety_matches_total, \
        incidents_total, \
        notifications_total, \
        memory_candidates_total, \
        photo_selections_total, \
        photos_shown_total, \
        enrichment_failures_total, \
        error_total

    turns_total = Counter(
        name="carecore_turns_total",
        documentation="Processed turns by status",
        labelnames=["status"],
        registry=registry,
    )
    stage_duration = Histogram(
        name="carecore_stage_duration_seconds",
        documentation="Turn pipeline stage duration in seconds",
        labelnames=["stage"],
        buckets=_STAGE_BUCKETS,
        registry=registry,
    )
    safety_matches_total = Counter(
        name="carecore_safety_matches_total",
        documentation="Safety policy matches by severity, source and role",
        labelnames=["severity", "source", "role"],
        registry=registry,
    )
    incidents_total = Counter(
        name="carecore_incidents_total",
        documentation="Incident tracker outcomes by severity",
        labelnames=["severity", "outcome"],
        registry=registry,
    )
    notifications_total = Counter(
        name="carecore_notifications_total",
        documentation="Notification hand-offs by severity and status",
        labelnames=["severity", "status"],
        registry=registry,
    )
    memory_candidates_total = Counter(
        name="carecore_memory_candidates_total",
        documentation="Long-term memory candidates by outcome",
        labelnames=["outcome"],
        registry=registry,
    )
    photo_selections_total = Counter(
        name="carecore_photo_selections_total",
        documentation="Photo selections by trigger reason and result",
        labelnames=["reason", "result"],
        registry=registry,
    )
    photos_shown_total = Counter(
        name="carecore_photos_shown_total",
        documentation="Photos committed for display",
        registry=registry,
    )
    enrichment_failures_total = Counter(
        name="carecore_enrichment_failures_total",
        documentation="Non-fatal enrichment failures by component",
        labelnames=["component"],
        registry=registry,
    )
    error_total = Counter(
        name="carecore_errors_total",
        documentation="Errors by component, type and severity",
        labelnames=["component", "error_type", "severity"],
        registry=registry,
    )


turns_total: Counter
stage_duration: Histogram
safety_matches_total: Counter
incidents_total: Counter
notifications_total: Counter
memory_candidates_total: Counter
photo_selections_total: Counter
photos_shown_total: Counter
enrichment_failures_total: Counter
error_total: Counter

_build_metrics(get_metrics_registry())


# ============================================================================
# Recording helpers
# ============================================================================


def record_turn(status: Literal["success", "screening_failure", "error"]) -> None:
    """Record a processed turn."""
    turns_total.labels(status=status).inc()


@contextmanager
def observe_stage(stage: str) -> Iterator[None]:
    """Measure the duration of a pipeline stage.

    Args:
        stage: Stage name (safety, memory, photos, turn)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        stage_duration.labels(stage=stage).observe(time.perf_counter() - start_time)


def record_safety_match(severity: str, source: str, role: str) -> None:
    """Record a policy match."""
    safety_matches_total.labels(severity=severity, source=source, role=role).inc()


def record_incident(
    severity: str,
    outcome: Literal["created", "deduplicated", "escalated", "resolved", "race_duplicate"],
) -> None:
    """Record an incident tracker outcome."""
    incidents_total.labels(severity=severity, outcome=outcome).inc()


def record_notification(severity: str, status: str) -> None:
    """Record a notification hand-off."""
    notifications_total.labels(severity=severity, status=status).inc()


def record_memory_candidates(outcome: Literal["stored", "touched", "discarded"], count: int = 1) -> None:
    """Record memory candidates by outcome."""
    if count > 0:
        memory_candidates_total.labels(outcome=outcome).inc(count)


def record_photo_selection(reason: str, shown: int) -> None:
    """Record a photo selection and the number of photos committed."""
    photo_selections_total.labels(reason=reason, result="shown" if shown else "empty").inc()
    if shown:
        photos_shown_total.inc(shown)


def record_enrichment_failure(component: str) -> None:
    """Record a non-fatal enrichment failure."""
    enrichment_failures_total.labels(component=component).inc()


def increment_errors(
    component: str,
    error_type: str,
    severity: Literal["low", "medium", "high", "critical"] = "medium",
) -> None:
    """Record an error occurrence.

    Args:
        component: Component where the error occurred
        error_type: Exception class or category
        severity: Operational severity
    """
    error_total.labels(component=component, error_type=error_type, severity=severity).inc()


# ============================================================================
# Export and test utilities
# ============================================================================


def generate_metrics() -> bytes:
    """Generate Prometheus metrics exposition format."""
    return generate_latest(get_metrics_registry())


def reset_all_metrics() -> None:
    """Reset all metrics to zero by re-creating the registry.

    WARNING: This is primarily useful for testing. Do not use in production.
    """
    global _registry
    with _registry_lock:
        _registry = CollectorRegistry()
        _build_metrics(_registry)

    logger.debug("All Prometheus metrics reset to zero")


def get_metric_summary() -> dict[str, dict[str, float]]:
    """Get a summary of all current metric values.

    Returns:
        Dictionary mapping sample names to their label strings and values.
        Label strings look like ``severity="critical",outcome="created"``.
    """
    summary: dict[str, dict[str, float]] = {}

    for metric in get_metrics_registry().collect():
        for sample in metric.samples:
            labels = ",".join(f'{k}="{v}"' for k, v in sorted(sample.labels.items()))
            summary.setdefault(sample.name, {})[labels] = sample.value

    return summary


def get_sample_value(name: str, **labels: str) -> float:
    """Return one sample value (0.0 when absent)."""
    return get_metrics_registry().get_sample_value(name, labels) or 0.0
