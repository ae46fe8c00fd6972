"""Unit tests for Prometheus metrics collection."""

from __future__ import annotations

import time

from carecore.observability import metrics


class TestTurnMetrics:
    """Test suite for turn pipeline metrics."""

    def test_record_turn(self):
        """Test recording processed turns."""
        metrics.record_turn("success")
        metrics.record_turn("success")
        metrics.record_turn("screening_failure")

        assert metrics.get_sample_value("carecore_turns_total", status="success") == 2.0
        assert metrics.get_sample_value("carecore_turns_total", status="screening_failure") == 1.0

    def test_observe_stage(self):
        """Test stage duration histogram."""
        with metrics.observe_stage("safety"):
            time.sleep(0.01)

        assert metrics.get_sample_value("carecore_stage_duration_seconds_count", stage="safety") == 1.0
        assert metrics.get_sample_value("carecore_stage_duration_seconds_sum", stage="safety") >= 0.01

    def test_observe_stage_on_error(self):
        """Test the stage is timed even when it raises."""
        try:
            with metrics.observe_stage("memory"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert metrics.get_sample_value("carecore_stage_duration_seconds_count", stage="memory") == 1.0


class TestSafetyMetrics:
    """Test suite for safety metrics."""

    def test_record_safety_match(self):
        metrics.record_safety_match("critical", "crisis_trigger", "user")

        summary = metrics.get_metric_summary()
        samples = summary["carecore_safety_matches_total"]
        # Labels use format: key="value", sorted by key
        assert 'role="user",severity="critical",source="crisis_trigger"' in samples

    def test_record_incident_and_notification(self):
        metrics.record_incident("critical", "created")
        metrics.record_incident("critical", "deduplicated")
        metrics.record_notification("critical", "failed")

        assert metrics.get_sample_value("carecore_incidents_total", severity="critical", outcome="created") == 1.0
        assert metrics.get_sample_value("carecore_notifications_total", severity="critical", status="failed") == 1.0


class TestEnrichmentMetrics:
    """Test suite for memory and photo metrics."""

    def test_memory_candidates(self):
        metrics.record_memory_candidates("stored", 3)
        metrics.record_memory_candidates("discarded", 0)

        assert metrics.get_sample_value("carecore_memory_candidates_total", outcome="stored") == 3.0
        assert metrics.get_sample_value("carecore_memory_candidates_total", outcome="discarded") == 0.0

    def test_photo_selection(self):
        metrics.record_photo_selection("user_mentioned_family", 2)
        metrics.record_photo_selection("user_mentioned_family", 0)

        assert (
            metrics.get_sample_value(
                "carecore_photo_selections_total", reason="user_mentioned_family", result="shown"
            )
            == 1.0
        )
        assert (
            metrics.get_sample_value(
                "carecore_photo_selections_total", reason="user_mentioned_family", result="empty"
            )
            == 1.0
        )
        assert metrics.get_sample_value("carecore_photos_shown_total") == 2.0

    def test_enrichment_failure_and_errors(self):
        metrics.record_enrichment_failure("photos")
        metrics.increment_errors("safety", "screening_failure", "critical")

        assert metrics.get_sample_value("carecore_enrichment_failures_total", component="photos") == 1.0
        assert (
            metrics.get_sample_value(
                "carecore_errors_total", component="safety", error_type="screening_failure", severity="critical"
            )
            == 1.0
        )


class TestMetricsExport:
    """Test suite for exposition and reset."""

    def test_generate_metrics(self):
        metrics.record_turn("success")

        output = metrics.generate_metrics()

        assert isinstance(output, bytes)
        assert b"carecore_turns_total" in output

    def test_reset_all_metrics(self):
        metrics.record_turn("success")

        metrics.reset_all_metrics()

        assert metrics.get_sample_value("carecore_turns_total", status="success") == 0.0

    def test_registry_is_singleton(self):
        assert metrics.get_metrics_registry() is metrics.get_metrics_registry()
