"""Notification dispatch adapters for safety incidents.

The core only guarantees that a notification attempt is *initiated*; delivery,
acknowledgement and retries belong to the dispatcher's backend.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from carecore.models.safety import FamilyNotification

if TYPE_CHECKING:
    from carecore.config import NotificationSettings
    from carecore.models.safety import EmergencyContact, SafetyIncident

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Accepts an incident and its recipients for delivery."""

    async def dispatch(
        self,
        incident: SafetyIncident,
        recipients: list[EmergencyContact],
    ) -> FamilyNotification: ...


def recipient_labels(recipients: list[EmergencyContact]) -> list[str]:
    """Human-readable recipient list stored on the incident."""
    return [f"{c.name} ({c.relationship})" if c.relationship else c.name for c in recipients]


class LoggingDispatcher:
    """Dispatcher that logs each alert instead of sending it.

    Used in development and as the default backend; the alert is reported as
    queued for the operator pipeline that tails the log.
    """

    async def dispatch(
        self,
        incident: SafetyIncident,
        recipients: list[EmergencyContact],
    ) -> FamilyNotification:
        for contact in recipients:
            logger.warning(
                f"📱 Alert for {contact.name} ({contact.phone or 'no phone'}): "
                f"{incident.severity.upper()} {incident.incident_type} "
                f"(incident {incident.id})"
            )
        if not recipients:
            logger.warning(f"No emergency contacts configured for {incident.user_id}")

        return FamilyNotification(
            recipients=recipient_labels(recipients),
            status="queued",
            detail=f"logged for {len(recipients)} recipient(s)",
        )


class WebhookDispatcher:
    """Dispatcher that posts incidents to webhook endpoints.

    Each configured webhook and each contact's own webhook receives the
    incident payload. The hand-off is ``accepted`` if any endpoint answered
    with a success status.
    """

    def __init__(
        self,
        webhook_urls: list[str] | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize webhook dispatcher.

        Args:
            webhook_urls: Endpoints that receive every incident
            timeout: Seconds per webhook call
            transport: Optional httpx transport (used by tests)
        """
        self.webhook_urls = list(webhook_urls or [])
        self._timeout = timeout
        self._transport = transport

    async def dispatch(
        self,
        incident: SafetyIncident,
        recipients: list[EmergencyContact],
    ) -> FamilyNotification:
        urls = self.webhook_urls + [c.webhook_url for c in recipients if c.webhook_url]
        labels = recipient_labels(recipients)

        if not urls:
            logger.debug(f"No webhooks configured for incident {incident.id}")
            return FamilyNotification(recipients=labels, status="failed", detail="no_webhooks")

        payload = {
            "incident": incident.to_payload(),
            "recipients": [c.to_payload() for c in recipients],
        }

        sent = 0
        errors = []
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for url in urls:
                try:
                    response = await client.post(url, json=payload)
                    response.raise_for_status()
                    sent += 1
                    logger.info(f"Incident {incident.id} sent to {url}")
                except httpx.HTTPError as e:
                    logger.error(f"Failed to send incident {incident.id} to {url}: {e}")
                    errors.append(f"{url}: {e.__class__.__name__}")

        return FamilyNotification(
            recipients=labels,
            status="accepted" if sent else "failed",
            detail=f"{sent}/{len(urls)} webhooks accepted" + (f"; {'; '.join(errors)}" if errors else ""),
        )


def create_dispatcher(settings: NotificationSettings) -> NotificationDispatcher:
    """Build the dispatcher selected by configuration."""
    if settings.backend == "webhook":
        return WebhookDispatcher(settings.webhook_urls, timeout=settings.timeout_seconds)
    return LoggingDispatcher()
