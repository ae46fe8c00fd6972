"""Carecore configuration management with environment variable overrides.

This module provides centralized configuration management with support for:
- YAML config file loading
- Environment variable overrides
- Pydantic validation

Priority order for configuration values:
1. YAML config file passed to ``get_config`` (highest priority)
2. Environment variables (CARECORE_*)
3. Pydantic defaults (lowest priority)

Every section is read-only once a session has started: the orchestrator takes
a snapshot at ``start_session`` and passes it explicitly to each component.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class MemorySettings(BaseModel):
    """Memory tier configuration.

    Attributes:
        short_term_turns: Sliding window of recent turns kept for context
        long_term_limit: Top-N long-term facts returned by load
        confidence_floor: Extraction candidates below this are discarded
        mood_confidence_floor: Minimum emotion confidence that can set mood
        activity_window_days: Window for recent activities
    """

    model_config = ConfigDict(frozen=True)

    short_term_turns: int = Field(default=50, ge=1)
    long_term_limit: int = Field(default=50, ge=1)
    confidence_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    mood_confidence_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    activity_window_days: int = Field(default=3, ge=1)


class SafetySettings(BaseModel):
    """Safety screening configuration.

    Attributes:
        forbidden_topic_severity: Severity assigned to forbidden-topic matches
        rules_path: Optional YAML file with default safety rules
    """

    model_config = ConfigDict(frozen=True)

    forbidden_topic_severity: Literal["medium", "high"] = "medium"
    rules_path: Path | None = None


class IncidentSettings(BaseModel):
    """Incident escalation configuration.

    Attributes:
        dedup_window_seconds: Repeats of an open incident inside this window are folded
        notify_severities: Severities handed to the notification dispatcher
            (critical is always notified)
    """

    model_config = ConfigDict(frozen=True)

    dedup_window_seconds: float = Field(default=300.0, ge=0.0)
    notify_severities: tuple[str, ...] = ("critical",)


class PhotoSettings(BaseModel):
    """Photo triggering configuration.

    Attributes:
        cooldown_hours: Minimum hours before a shown photo is eligible again
        session_display_cap: Maximum photos shown in one conversation
        default_limit: Photos per selection
        long_conversation_minutes: Elapsed time that triggers engagement photos
    """

    model_config = ConfigDict(frozen=True)

    cooldown_hours: float = Field(default=24.0, ge=0.0)
    session_display_cap: int = Field(default=10, ge=0)
    default_limit: int = Field(default=5, ge=1)
    long_conversation_minutes: float = Field(default=10.0, ge=0.0)


class EnrichmentSettings(BaseModel):
    """Resilience settings for memory/photo enrichment.

    Attributes:
        timeout_seconds: Per-call timeout for an enrichment step
        failure_threshold: Consecutive failures before the circuit opens
        reset_timeout_seconds: Seconds an open circuit waits before half-open
    """

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=2.0, gt=0.0)
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_seconds: float = Field(default=60.0, ge=0.0)


class StorageSettings(BaseModel):
    """Durable store configuration.

    Attributes:
        path: DuckDB database path (":memory:" for in-memory)
        media_base_url: Base URL used to resolve relative blob references
    """

    path: str = Field(default_factory=lambda: os.getenv("CARECORE_DB_PATH", ":memory:"))
    media_base_url: str | None = None


class NotificationSettings(BaseModel):
    """Notification dispatcher configuration.

    Attributes:
        backend: Dispatcher type (log, webhook)
        webhook_urls: Webhooks that receive every notified incident
        timeout_seconds: HTTP timeout per webhook call
    """

    backend: Literal["log", "webhook"] = "log"
    webhook_urls: list[str] = Field(default_factory=list)
    timeout_seconds: float = 5.0


class CarecoreConfig(BaseSettings):
    """Main Carecore configuration.

    This class loads configuration from multiple sources, highest priority first:
    1. YAML config file (via ``get_config(config_path)``, passed as init values)
    2. Environment variables (CARECORE_*)
    3. Pydantic defaults
    """

    memory: MemorySettings = Field(default_factory=MemorySettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    incidents: IncidentSettings = Field(default_factory=IncidentSettings)
    photos: PhotoSettings = Field(default_factory=PhotoSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    log_level: str = "INFO"
    environment: str = Field(default_factory=lambda: os.getenv("CARECORE_ENVIRONMENT", "development"))
    tracing_enabled: bool = False
    otlp_endpoint: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_prefix="carecore_",
        extra="ignore",
    )


def load_config_from_file(config_path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return {}


def get_config(config_path: str | None = None) -> CarecoreConfig:
    """Get configuration instance.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        CarecoreConfig instance
    """
    if config_path:
        file_config = load_config_from_file(config_path)
        return CarecoreConfig(**file_config)

    return CarecoreConfig()


def setup_logging(config: CarecoreConfig | None = None) -> None:
    """Configure root logging.

    Args:
        config: Configuration providing ``log_level``
    """
    level = (config.log_level if config else "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
