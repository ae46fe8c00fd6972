"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from carecore.config import CarecoreConfig, get_config, load_config_from_file
from carecore.errors import CarecoreError, EnrichmentFailure
from carecore.models.safety import load_safety_rules_file


class TestCarecoreConfig:
    """Test suite for CarecoreConfig."""

    def test_defaults(self) -> None:
        config = CarecoreConfig()

        assert config.memory.short_term_turns == 50
        assert config.memory.confidence_floor == 0.6
        assert config.incidents.dedup_window_seconds == 300.0
        assert config.incidents.notify_severities == ("critical",)
        assert config.photos.cooldown_hours == 24.0
        assert config.photos.session_display_cap == 10
        assert config.enrichment.timeout_seconds == 2.0
        assert config.notifications.backend == "log"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CARECORE_PHOTOS__COOLDOWN_HOURS", "48")
        monkeypatch.setenv("CARECORE_LOG_LEVEL", "DEBUG")

        config = CarecoreConfig()

        assert config.photos.cooldown_hours == 48.0
        assert config.log_level == "DEBUG"

    def test_invalid_value_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CarecoreConfig(memory={"confidence_floor": 1.5})

    def test_sections_are_frozen(self) -> None:
        config = CarecoreConfig()

        with pytest.raises(ValidationError):
            config.photos.cooldown_hours = 1.0


class TestConfigFile:
    """Test suite for YAML configuration files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "carecore.yaml"
        path.write_text(
            "photos:\n"
            "  session_display_cap: 3\n"
            "incidents:\n"
            "  notify_severities: [critical, high]\n"
            "notifications:\n"
            "  backend: webhook\n"
            "  webhook_urls: ['https://alerts.example/hook']\n"
        )

        config = get_config(str(path))

        assert config.photos.session_display_cap == 3
        assert config.incidents.notify_severities == ("critical", "high")
        assert config.notifications.webhook_urls == ["https://alerts.example/hook"]

    def test_file_overrides_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CARECORE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("CARECORE_TRACING_ENABLED", "true")
        path = tmp_path / "carecore.yaml"
        path.write_text("log_level: WARNING\n", encoding="utf-8")

        config = get_config(str(path))

        assert config.log_level == "WARNING"
        assert config.tracing_enabled is True

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_config_from_file(str(tmp_path / "missing.yaml")) == {}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("photos: [unclosed\n")

        assert load_config_from_file(str(path)) == {}


class TestSafetyRulesFile:
    """Test suite for safety rules YAML files."""

    def test_camel_case_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "userId: from-file\n"
            "neverAllow:\n"
            "  - rule: leaving_home_alone\n"
            "    reason: Gets lost\n"
            "    severity: critical\n"
            "crisisTriggers:\n"
            "  - keyword: רוצה לצאת\n"
            "    rule: leaving_home_alone\n"
            "  - I want to die\n"
            "forbiddenTopics: [politics]\n"
            "emergencyContacts:\n"
            "  - name: Michal\n"
            "    relationship: daughter\n",
            encoding="utf-8",
        )

        rules = load_safety_rules_file(path)
        override = load_safety_rules_file(path, user_id="user-9")

        assert rules.user_id == "from-file"
        assert override.user_id == "user-9"
        assert rules.find_rule("leaving_home_alone").severity == "critical"
        assert [t.keyword for t in rules.crisis_triggers] == ["רוצה לצאת", "I want to die"]
        assert rules.emergency_contacts[0].name == "Michal"

    def test_missing_rules_file(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            load_safety_rules_file(tmp_path / "nope.yaml")


class TestErrors:
    """Test suite for the error taxonomy."""

    def test_to_dict(self) -> None:
        error = EnrichmentFailure("photos", "catalog unavailable", user_id="user-1")

        assert isinstance(error, CarecoreError)
        assert error.to_dict() == {
            "error": "EnrichmentFailure",
            "message": "catalog unavailable",
            "component": "photos",
            "user_id": "user-1",
        }
