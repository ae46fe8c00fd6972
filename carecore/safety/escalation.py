"""Incident escalation tracker.

Turns policy matches into durable incidents, folds repeated detections of an
ongoing crisis into the open record, and initiates family notification.

Deduplication: within one conversation, the same ``(rule_id, incident_type)``
detected again within the dedup window bumps ``access_count`` on the open
incident. A strictly higher severity always escalates to a fresh incident.
A write race is retried once and then fails closed: a duplicate incident is
preferable to a dropped one.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from carecore.errors import DedupRaceError
from carecore.models.safety import (
    SEVERITY_RANK,
    FamilyNotification,
    IncidentResolution,
    IncidentStatus,
    SafetyIncident,
)
from carecore.observability.metrics import record_incident, record_notification
from carecore.observability.safety_logging import SafetyEventLogger, get_safety_logger
from carecore.safety.notifier import recipient_labels
from carecore.storage.document_store import StoreConflictError, sort_timestamp

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carecore.config import IncidentSettings
    from carecore.models.safety import EmergencyContact, IncidentContext, PolicyMatch
    from carecore.safety.notifier import NotificationDispatcher
    from carecore.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

INCIDENTS = "safety_incidents"

Outcome = Literal["created", "deduplicated", "escalated", "race_duplicate"]


class EscalationTracker:
    """Records, deduplicates and resolves safety incidents."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        settings: IncidentSettings,
        event_logger: SafetyEventLogger | None = None,
    ) -> None:
        """Initialize escalation tracker.

        Args:
            store: Durable document store
            dispatcher: Notification collaborator
            settings: Incident settings snapshot
            event_logger: Structured safety event logger
        """
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings
        self.events = event_logger or get_safety_logger()

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(seconds=self.settings.dedup_window_seconds)

    async def record(
        self,
        match: PolicyMatch,
        user_id: str,
        conversation_id: str,
        turn_id: int,
        context: IncidentContext,
        recipients: Sequence[EmergencyContact] = (),
        now: datetime | None = None,
    ) -> SafetyIncident:
        """Record a policy match as an incident.

        Notification for a new critical (or configured) incident is awaited
        before this method returns.

        Args:
            match: Policy engine match
            user_id: Owner of the conversation
            conversation_id: Conversation the match occurred in
            turn_id: Turn the match occurred in
            context: User request and AI response
            recipients: Emergency contacts to notify
            now: Detection time (defaults to current UTC time)

        Returns:
            The created, escalated or updated incident
        """
        now = now or datetime.now(UTC)
        previous: SafetyIncident | None = None
        outcome: Outcome

        for attempt in (1, 2):
            try:
                incident, outcome, previous = await self._fold_or_create(
                    match, user_id, conversation_id, turn_id, context, now
                )
                break
            except DedupRaceError as e:
                logger.warning(f"Incident dedup race (attempt {attempt}): {e}")
        else:
            # Fail closed
            incident = SafetyIncident.from_match(match, user_id, conversation_id, turn_id, context, now)
            await self._insert(incident)
            outcome = "race_duplicate"

        record_incident(incident.severity, outcome)

        if outcome == "deduplicated":
            self.events.log_incident_repeated(incident)
            return incident

        if outcome == "escalated" and previous is not None:
            self.events.log_incident_escalated(previous, incident)
        else:
            self.events.log_incident_created(incident)

        if self._should_notify(incident):
            incident = await self._notify(incident, list(recipients))

        return incident

    async def _fold_or_create(
        self,
        match: PolicyMatch,
        user_id: str,
        conversation_id: str,
        turn_id: int,
        context: IncidentContext,
        now: datetime,
    ) -> tuple[SafetyIncident, Outcome, SafetyIncident | None]:
        documents = await self.store.query_versioned(
            INCIDENTS,
            user_id,
            filters={
                "conversation_id": conversation_id,
                "incident_type": match.incident_type,
                "status": IncidentStatus.OPEN.value,
            },
            descending=True,
        )

        for document in documents:
            existing = SafetyIncident.model_validate(document.body)
            if existing.safety_rule.rule_id != match.rule_id:
                continue
            if now - existing.last_detected_at > self.dedup_window:
                continue

            if SEVERITY_RANK[match.severity] > SEVERITY_RANK[existing.severity]:
                existing.status = IncidentStatus.ESCALATED
                await self._put_checked(existing, document.version)
                escalated = SafetyIncident.from_match(
                    match, user_id, conversation_id, turn_id, context, now
                )
                escalated.escalated_from = existing.id
                await self._insert(escalated)
                return escalated, "escalated", existing

            existing.access_count += 1
            existing.last_detected_at = now
            await self._put_checked(existing, document.version)
            return existing, "deduplicated", None

        incident = SafetyIncident.from_match(match, user_id, conversation_id, turn_id, context, now)
        await self._insert(incident)
        return incident, "created", None

    def _should_notify(self, incident: SafetyIncident) -> bool:
        return incident.severity == "critical" or incident.severity in self.settings.notify_severities

    async def _notify(
        self,
        incident: SafetyIncident,
        recipients: list[EmergencyContact],
    ) -> SafetyIncident:
        try:
            notification = await self.dispatcher.dispatch(incident, recipients)
        except Exception as e:
            logger.error(f"❌ Notification dispatch failed for incident {incident.id}: {e}", exc_info=True)
            notification = FamilyNotification(
                recipients=recipient_labels(recipients),
                status="failed",
                detail=f"{e.__class__.__name__}: {e}",
            )

        incident.family_notification = notification
        await self.store.put(
            INCIDENTS,
            incident.user_id,
            incident.id,
            incident.to_document(),
            sort_key=sort_timestamp(incident.timestamp),
        )
        record_notification(incident.severity, notification.status)
        self.events.log_notification(incident, notification)
        return incident

    async def _insert(self, incident: SafetyIncident) -> None:
        await self.store.insert(
            INCIDENTS,
            incident.user_id,
            incident.id,
            incident.to_document(),
            sort_key=sort_timestamp(incident.timestamp),
        )

    async def _put_checked(self, incident: SafetyIncident, version: int) -> None:
        try:
            await self.store.put(
                INCIDENTS,
                incident.user_id,
                incident.id,
                incident.to_document(),
                sort_key=sort_timestamp(incident.timestamp),
                expected_version=version,
            )
        except StoreConflictError as e:
            raise DedupRaceError(str(e), incident_id=incident.id) from e

    async def get(self, user_id: str, incident_id: str) -> SafetyIncident | None:
        """Fetch one incident."""
        body = await self.store.get(INCIDENTS, user_id, incident_id)
        return SafetyIncident.model_validate(body) if body else None

    async def resolve(
        self,
        user_id: str,
        incident_id: str,
        resolved_by: str,
        notes: str = "",
    ) -> SafetyIncident | None:
        """Resolve an incident.

        Resolving an already-resolved incident returns it unchanged. An unknown
        incident is a logged no-op returning None.

        Args:
            user_id: Incident owner
            incident_id: Incident identifier
            resolved_by: Family member or operator resolving it
            notes: Free-form resolution notes

        Returns:
            The resolved incident, or None if it does not exist
        """
        for _ in (1, 2):
            document = await self.store.get_versioned(INCIDENTS, user_id, incident_id)
            if document is None:
                logger.warning(f"Cannot resolve unknown incident {incident_id} for {user_id}")
                return None

            incident = SafetyIncident.model_validate(document.body)
            if incident.is_resolved:
                logger.debug(f"Incident {incident_id} already resolved")
                return incident

            incident.status = IncidentStatus.RESOLVED
            incident.resolution = IncidentResolution(resolved_by=resolved_by, notes=notes)
            try:
                await self._put_checked(incident, document.version)
            except DedupRaceError:
                # Re-read: a concurrent resolve is fine, a concurrent bump is retried
                continue

            record_incident(incident.severity, "resolved")
            self.events.log_incident_resolved(incident)
            return incident

        raise DedupRaceError(f"Could not resolve incident {incident_id}", incident_id=incident_id)

    async def list_incidents(
        self,
        user_id: str,
        unresolved_only: bool = False,
        limit: int = 10,
    ) -> list[SafetyIncident]:
        """List a user's incidents, newest first."""
        bodies = await self.store.query(INCIDENTS, user_id, descending=True)
        incidents = [SafetyIncident.model_validate(body) for body in bodies]
        if unresolved_only:
            incidents = [i for i in incidents if not i.is_resolved]
        return incidents[:limit]
