"""Carecore application wiring."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from carecore.config import CarecoreConfig, get_config, setup_logging
from carecore.models.safety import load_safety_rules_file
from carecore.observability.metrics import generate_metrics
from carecore.observability.tracing import setup_telemetry, shutdown_telemetry
from carecore.orchestrator import TurnOrchestrator
from carecore.storage.document_store import DocumentStore

if TYPE_CHECKING:
    from pathlib import Path

    from carecore.models.safety import SafetyRules
    from carecore.safety.notifier import NotificationDispatcher
    from carecore.storage.media import MediaResolver

logger = logging.getLogger(__name__)


class CarecoreApplication:
    """Carecore application with lifecycle management.

    Owns the document store and the turn orchestrator. The conversation
    transport calls ``orchestrator`` once ``start()`` has completed.

    Attributes:
        config: Configuration snapshot
        store: Durable document store
        orchestrator: Turn orchestrator (available after ``start``)
    """

    def __init__(
        self,
        config: CarecoreConfig | None = None,
        dispatcher: NotificationDispatcher | None = None,
        media_resolver: MediaResolver | None = None,
    ) -> None:
        """Initialize application.

        Args:
            config: Configuration (loaded from the environment if omitted)
            dispatcher: Notification dispatcher override
            media_resolver: Media resolver override
        """
        self.config = config or get_config()
        self.store = DocumentStore(self.config.storage.path)
        self._dispatcher = dispatcher
        self._media_resolver = media_resolver
        self._orchestrator: TurnOrchestrator | None = None

    @property
    def orchestrator(self) -> TurnOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("Carecore application not started")
        return self._orchestrator

    async def start(self) -> None:
        """Start Carecore services."""
        logger.info("Starting Carecore application")

        if self.config.tracing_enabled:
            setup_telemetry(
                environment=self.config.environment,
                otlp_endpoint=self.config.otlp_endpoint,
            )

        await self.store.initialize()
        self._orchestrator = TurnOrchestrator(
            self.store,
            self.config,
            dispatcher=self._dispatcher,
            media_resolver=self._media_resolver,
        )

        logger.info("✅ Carecore application started successfully")
        logger.info(f"   Environment: {self.config.environment}")
        logger.info(f"   Store: {self.config.storage.path}")
        logger.info(f"   Notifications: {self.config.notifications.backend}")

    async def stop(self) -> None:
        """Stop Carecore services, ending any live sessions."""
        if self._orchestrator is not None:
            for conversation_id in self._orchestrator.active_conversations:
                await self._orchestrator.end_session(conversation_id)
            self._orchestrator = None

        await self.store.close()
        if self.config.tracing_enabled:
            shutdown_telemetry()
        logger.info("✅ Carecore application shutdown complete")

    async def install_safety_rules(self, path: str | Path, user_id: str | None = None) -> SafetyRules:
        """Load safety rules from YAML and save them for the user."""
        rules = load_safety_rules_file(path, user_id=user_id)
        await self.orchestrator.rules.save(rules)
        return rules

    def metrics_exposition(self) -> bytes:
        """Prometheus exposition for the transport's scrape endpoint."""
        return generate_metrics()

    async def __aenter__(self) -> CarecoreApplication:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


def create_application(config_path: str | None = None) -> CarecoreApplication:
    """Build an application from an optional YAML config file and the environment."""
    config = get_config(config_path)
    setup_logging(config)
    return CarecoreApplication(config)
