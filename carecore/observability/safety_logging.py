"""Structured safety event logging.

Safety-relevant events are written as single-line JSON documents to the
``carecore.safety.events`` logger so that an operator pipeline (or the family
dashboard's backend) can consume them independently of application logs.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from carecore.observability.metrics import increment_errors

if TYPE_CHECKING:
    from carecore.models.safety import FamilyNotification, SafetyIncident

logger = logging.getLogger(__name__)


class SafetyEventLogger:
    """Structured safety event logger.

    All events include severity, timestamp, user and conversation context.
    """

    SEVERITY_CRITICAL = "CRITICAL"
    SEVERITY_HIGH = "HIGH"
    SEVERITY_MEDIUM = "MEDIUM"
    SEVERITY_INFO = "INFO"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialize safety event logger.

        Args:
            logger: Logger instance (defaults to 'carecore.safety.events')
        """
        self.logger = logger or logging.getLogger("carecore.safety.events")

    def _log_event(
        self,
        event_type: str,
        severity: str,
        message: str,
        **context: Any,
    ) -> None:
        """Log a safety event in structured JSON format.

        Args:
            event_type: Type of safety event
            severity: Severity level (CRITICAL, HIGH, MEDIUM, INFO)
            message: Human-readable message
            **context: Additional event context
        """
        event = {
            "timestamp": datetime.now(UTC).isoformat(),
            "severity": severity,
            "event_type": event_type,
            "message": message,
            **context,
        }
        level = logging.WARNING if severity in (self.SEVERITY_CRITICAL, self.SEVERITY_HIGH) else logging.INFO
        self.logger.log(level, json.dumps(event, ensure_ascii=False, default=str))

    def log_incident_created(self, incident: SafetyIncident) -> None:
        """Log a newly created incident."""
        self._log_event(
            event_type="incident_created",
            severity=incident.severity.upper(),
            message=f"Safety incident {incident.incident_type} raised",
            incident_id=incident.id,
            user_id=incident.user_id,
            conversation_id=incident.conversation_id,
            turn_id=incident.turn_id,
            rule_id=incident.safety_rule.rule_id,
        )

    def log_incident_repeated(self, incident: SafetyIncident) -> None:
        """Log a repeated detection folded into an open incident."""
        self._log_event(
            event_type="incident_repeated",
            severity=self.SEVERITY_INFO,
            message=f"Repeated detection folded into incident {incident.id}",
            incident_id=incident.id,
            user_id=incident.user_id,
            conversation_id=incident.conversation_id,
            access_count=incident.access_count,
        )

    def log_incident_escalated(self, previous: SafetyIncident, incident: SafetyIncident) -> None:
        """Log a severity escalation of an open incident."""
        self._log_event(
            event_type="incident_escalated",
            severity=incident.severity.upper(),
            message=f"Incident {previous.id} escalated from {previous.severity} to {incident.severity}",
            incident_id=incident.id,
            escalated_from=previous.id,
            user_id=incident.user_id,
            conversation_id=incident.conversation_id,
        )

    def log_incident_resolved(self, incident: SafetyIncident) -> None:
        """Log an incident resolution."""
        resolution = incident.resolution
        self._log_event(
            event_type="incident_resolved",
            severity=self.SEVERITY_INFO,
            message=f"Incident {incident.id} resolved",
            incident_id=incident.id,
            user_id=incident.user_id,
            resolved_by=resolution.resolved_by if resolution else None,
        )

    def log_notification(self, incident: SafetyIncident, notification: FamilyNotification) -> None:
        """Log a notification hand-off (or its failure)."""
        failed = notification.status == "failed"
        if failed:
            increment_errors("notifier", "dispatch_failed", "critical")
        self._log_event(
            event_type="notification_failed" if failed else "notification_initiated",
            severity=self.SEVERITY_CRITICAL if failed else incident.severity.upper(),
            message=f"Family notification {notification.status} for incident {incident.id}",
            incident_id=incident.id,
            user_id=incident.user_id,
            recipients=notification.recipients,
            detail=notification.detail,
        )

    def log_screening_failure(self, user_id: str, conversation_id: str, error: str) -> None:
        """Log a screening failure that aborted a turn."""
        increment_errors("safety", "screening_failure", "critical")
        self._log_event(
            event_type="screening_failure",
            severity=self.SEVERITY_CRITICAL,
            message="Turn aborted: text could not be screened",
            user_id=user_id,
            conversation_id=conversation_id,
            error=error,
        )


_safety_logger: SafetyEventLogger | None = None


def get_safety_logger() -> SafetyEventLogger:
    """Get global safety event logger instance."""
    global _safety_logger
    if _safety_logger is None:
        _safety_logger = SafetyEventLogger()
    return _safety_logger
