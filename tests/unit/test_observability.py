"""Tests for tracing helpers and structured safety event logging."""

from __future__ import annotations

import json
import logging

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from carecore.models.safety import FamilyNotification, SafetyIncident, SafetyRuleRef
from carecore.observability import SafetyEventLogger, setup_telemetry, shutdown_telemetry, trace_operation
from carecore.observability.metrics import get_sample_value


@pytest.fixture
def incident() -> SafetyIncident:
    return SafetyIncident(
        user_id="user-1",
        incident_type="leaving_home_alone",
        severity="critical",
        conversation_id="conv-1",
        turn_id=2,
        safety_rule=SafetyRuleRef(rule_id="leaving_home_alone", rule_name="leaving_home_alone"),
    )


class TestTracing:
    """Test suite for tracing helpers."""

    def test_spans_exported(self) -> None:
        exporter = InMemorySpanExporter()
        setup_telemetry(service_name="carecore-test", exporter=exporter)

        with trace_operation("carecore.turn", {"conversation_id": "conv-1"}):
            pass
        with pytest.raises(ValueError), trace_operation("carecore.failing"):
            raise ValueError("boom")

        shutdown_telemetry()

        spans = {span.name: span for span in exporter.get_finished_spans()}
        assert spans["carecore.turn"].attributes["conversation_id"] == "conv-1"
        assert spans["carecore.turn"].status.status_code == StatusCode.OK
        assert spans["carecore.failing"].status.status_code == StatusCode.ERROR

    def test_noop_without_setup(self) -> None:
        shutdown_telemetry()

        with trace_operation("carecore.noop") as span:
            assert span is not None


class TestSafetyEventLogger:
    """Test suite for SafetyEventLogger."""

    def _events(self, caplog: pytest.LogCaptureFixture) -> list[dict]:
        return [json.loads(r.getMessage()) for r in caplog.records if r.name == "carecore.safety.events"]

    def test_incident_created(self, incident: SafetyIncident, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="carecore.safety.events")

        SafetyEventLogger().log_incident_created(incident)

        (event,) = self._events(caplog)
        assert event["event_type"] == "incident_created"
        assert event["severity"] == "CRITICAL"
        assert event["incident_id"] == incident.id
        assert event["rule_id"] == "leaving_home_alone"
        assert caplog.records[-1].levelno == logging.WARNING

    def test_failed_notification(self, incident: SafetyIncident, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="carecore.safety.events")
        notification = FamilyNotification(recipients=["Michal (daughter)"], status="failed", detail="no_webhooks")

        SafetyEventLogger().log_notification(incident, notification)

        (event,) = self._events(caplog)
        assert event["event_type"] == "notification_failed"
        assert event["recipients"] == ["Michal (daughter)"]
        assert (
            get_sample_value("carecore_errors_total", component="notifier", error_type="dispatch_failed", severity="critical")
            == 1.0
        )

    def test_screening_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="carecore.safety.events")

        SafetyEventLogger().log_screening_failure("user-1", "conv-1", "UnicodeError: bad")

        (event,) = self._events(caplog)
        assert event["event_type"] == "screening_failure"
        assert event["error"] == "UnicodeError: bad"

    def test_hebrew_kept_readable(self, incident: SafetyIncident, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="carecore.safety.events")
        notification = FamilyNotification(recipients=["מיכל (בת)"], status="queued")

        SafetyEventLogger().log_notification(incident, notification)

        assert "מיכל" in caplog.records[-1].getMessage()
