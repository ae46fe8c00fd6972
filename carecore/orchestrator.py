"""Turn orchestrator.

Runs the per-turn pipeline for a conversation:

1. Screen the user utterance, then the assistant response, add any alerts
   the language model raised, and record the incidents. This step is
   shielded from caller cancellation and its failure aborts the turn (no
   silent miss). A failure after the caller was cancelled is still logged.
2. Record memory and select photos concurrently. Each is guarded by a circuit
   breaker with a per-call timeout; a failure is logged, recorded on the
   result and never retried.

A critical incident suppresses display for the turn: no photos are selected
and the working-memory summary is withheld, while memory is still recorded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from carecore.errors import EnrichmentFailure, NotFoundError, ScreeningFailure
from carecore.memory.store import MemoryStore
from carecore.models.photo import PhotoContext
from carecore.models.safety import SEVERITY_RANK, IncidentContext
from carecore.models.turn import TurnResult
from carecore.observability.metrics import (
    observe_stage,
    record_enrichment_failure,
    record_safety_match,
    record_turn,
)
from carecore.observability.safety_logging import get_safety_logger
from carecore.observability.tracing import add_span_attributes, trace_operation
from carecore.photos.engine import PhotoSession, PhotoTriggerEngine
from carecore.photos.triggers import TriggerDetector
from carecore.resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from carecore.safety.escalation import EscalationTracker
from carecore.safety.notifier import create_dispatcher
from carecore.safety.policy import SafetyPolicyEngine
from carecore.safety.rules import SafetyRulesStore
from carecore.storage.media import BlobUrlResolver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carecore.config import CarecoreConfig
    from carecore.models.memory import ConversationTurn, MemoryCandidate, MemoryLoadResult, WorkingMemory
    from carecore.models.photo import PhotoTriggerEvent, TriggerDecision
    from carecore.models.safety import ModelAlert, SafetyIncident, SafetyRules
    from carecore.observability.safety_logging import SafetyEventLogger
    from carecore.safety.notifier import NotificationDispatcher
    from carecore.storage.document_store import DocumentStore
    from carecore.storage.media import MediaResolver

logger = logging.getLogger(__name__)

MEMORY = "memory"
PHOTOS = "photos"


@dataclass
class ConversationSession:
    """State held for one live conversation."""

    user_id: str
    conversation_id: str
    rules: SafetyRules
    policy: SafetyPolicyEngine
    photos: PhotoSession
    memory: MemoryLoadResult
    started_at: datetime
    turns_processed: int = 0


class TurnOrchestrator:
    """Coordinates safety, memory and photos for every conversational turn."""

    def __init__(
        self,
        store: DocumentStore,
        config: CarecoreConfig,
        dispatcher: NotificationDispatcher | None = None,
        media_resolver: MediaResolver | None = None,
        event_logger: SafetyEventLogger | None = None,
    ) -> None:
        """Initialize turn orchestrator.

        Args:
            store: Initialized document store
            config: Configuration snapshot shared by every component
            dispatcher: Notification dispatcher (from config if omitted)
            media_resolver: Media resolver (blob URL resolver if omitted)
            event_logger: Structured safety event logger
        """
        self.store = store
        self.config = config
        self.events = event_logger or get_safety_logger()

        self.rules = SafetyRulesStore(store)
        self.memory = MemoryStore(store, config.memory)
        self.tracker = EscalationTracker(
            store,
            dispatcher or create_dispatcher(config.notifications),
            config.incidents,
            self.events,
        )
        self.photos = PhotoTriggerEngine(
            store,
            media_resolver or BlobUrlResolver(config.storage.media_base_url),
            config.photos,
        )
        self.detector = TriggerDetector(
            long_conversation_minutes=config.photos.long_conversation_minutes,
            emotion_confidence_floor=config.memory.mood_confidence_floor,
        )
        self.breakers = CircuitBreakerRegistry(CircuitBreakerConfig.from_settings(config.enrichment))

        self._sessions: dict[str, ConversationSession] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    # Sessions

    async def start_session(
        self,
        user_id: str,
        conversation_id: str,
        now: datetime | None = None,
    ) -> ConversationSession:
        """Start a conversation.

        Loads the user's safety rules snapshot, marks the session and loads
        the user's memory.

        Args:
            user_id: User identifier
            conversation_id: Conversation identifier
            now: Session start time (defaults to current UTC time)

        Returns:
            The live session

        Raises:
            ConfigMissingError: If the user has no safety configuration
        """
        now = now or datetime.now(UTC)

        rules = await self.rules.require(user_id, self.config.safety)
        await self.memory.register_session(user_id, conversation_id, now)
        memory = await self.memory.load(user_id)

        session = ConversationSession(
            user_id=user_id,
            conversation_id=conversation_id,
            rules=rules,
            policy=SafetyPolicyEngine(rules, self.config.safety),
            photos=PhotoSession(conversation_id=conversation_id, started_at=now),
            memory=memory,
            started_at=now,
        )
        self._sessions[conversation_id] = session

        logger.info(
            f"🟢 Session {conversation_id} started for {user_id} "
            f"({len(memory.short_term)} recent turns, {len(memory.long_term)} facts)"
        )
        return session

    def get_session(self, conversation_id: str) -> ConversationSession:
        """Live session for a conversation.

        Raises:
            NotFoundError: If the conversation has no live session
        """
        session = self._sessions.get(conversation_id)
        if session is None:
            raise NotFoundError(
                f"No live session for conversation {conversation_id}",
                conversation_id=conversation_id,
            )
        return session

    @property
    def active_conversations(self) -> list[str]:
        """Conversations with a live session."""
        return list(self._sessions)

    async def end_session(self, conversation_id: str, now: datetime | None = None) -> None:
        """End a conversation. Ending an unknown conversation is a no-op."""
        session = self._sessions.pop(conversation_id, None)
        if session is None:
            logger.debug(f"end_session for unknown conversation {conversation_id}")
            return

        await self.memory.close_session(session.user_id, conversation_id, now)
        logger.info(
            f"🔴 Session {conversation_id} ended after {session.turns_processed} turn(s), "
            f"{session.photos.shown_count} photo(s) shown"
        )

    # Turns

    async def process_turn(
        self,
        conversation_id: str,
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn | None = None,
        extracted_memories: Sequence[MemoryCandidate] | None = None,
        explicit_photo_request: bool = False,
        model_alerts: Sequence[ModelAlert] | None = None,
        photo_request: TriggerDecision | None = None,
        now: datetime | None = None,
    ) -> TurnResult:
        """Process one user utterance and the assistant's response.

        Args:
            conversation_id: Live conversation
            user_turn: What the user said
            assistant_turn: What the assistant answered, if generated yet
            extracted_memories: Memories extracted by the language model
            explicit_photo_request: The assistant asked to show photos
            model_alerts: Family alerts raised by the language model; recorded
                with the same dedup and notification as screened matches
            photo_request: Photo call from the language model; replaces
                trigger detection for the turn
            now: Processing time (defaults to current UTC time)

        Returns:
            Incidents, working memory and photo event for the turn

        Raises:
            NotFoundError: If the conversation has no live session
            ScreeningFailure: If screening or incident recording failed
        """
        session = self.get_session(conversation_id)
        now = now or datetime.now(UTC)

        with trace_operation(
            "carecore.process_turn",
            {"conversation_id": conversation_id, "turn_id": user_turn.turn_id},
        ):
            try:
                incidents = await self._screen_shielded(session, user_turn, assistant_turn, model_alerts or (), now)
            except ScreeningFailure as e:
                e.context.setdefault("user_id", session.user_id)
                e.context.setdefault("conversation_id", conversation_id)
                self.events.log_screening_failure(session.user_id, conversation_id, str(e))
                record_turn("screening_failure")
                raise

            critical = any(incident.severity == "critical" for incident in incidents)
            result = TurnResult(
                conversation_id=conversation_id,
                turn_id=user_turn.turn_id,
                incidents=incidents,
                display_suppressed=critical,
            )

            working, photo_event = await self._enrich(
                session,
                user_turn,
                assistant_turn,
                extracted_memories,
                explicit_photo_request,
                photo_request,
                critical,
                now,
                result,
            )
            if not critical:
                result.working_memory = working
                result.photo_event = photo_event

            session.turns_processed += 1
            add_span_attributes(
                {
                    "incidents": len(incidents),
                    "display_suppressed": critical,
                    "enrichment_failures": len(result.enrichment_failures),
                }
            )

        record_turn("success")
        return result

    async def _screen_shielded(
        self,
        session: ConversationSession,
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn | None,
        model_alerts: Sequence[ModelAlert],
        now: datetime,
    ) -> list[SafetyIncident]:
        task = asyncio.ensure_future(self._screen(session, user_turn, assistant_turn, model_alerts, now))
        # Keep a reference so a cancelled caller does not orphan the task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(lambda done: self._report_detached_screening(session, done))
            raise

    def _report_detached_screening(self, session: ConversationSession, task: asyncio.Future) -> None:
        """Report the outcome of screening whose caller was cancelled."""
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            logger.info(f"Screening for {session.conversation_id} finished after its caller was cancelled")
            return
        logger.error(
            f"❌ Screening failed for {session.conversation_id} after its caller was cancelled: {error}",
            exc_info=error,
        )
        self.events.log_screening_failure(session.user_id, session.conversation_id, str(error))
        record_turn("screening_failure")

    async def _screen(
        self,
        session: ConversationSession,
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn | None,
        model_alerts: Sequence[ModelAlert],
        now: datetime,
    ) -> list[SafetyIncident]:
        with observe_stage("safety"), trace_operation("carecore.safety"):
            matches = session.policy.scan_turn(
                user_turn.transcript,
                assistant_turn.transcript if assistant_turn else None,
            )
            ai_response = assistant_turn.transcript if assistant_turn else ""
            context = IncidentContext(user_request=user_turn.transcript, ai_response=ai_response)

            screened = [(match, context) for match in matches]
            for alert in model_alerts:
                screened.append(
                    (
                        session.policy.alert_match(alert),
                        IncidentContext(
                            user_request=alert.user_request or user_turn.transcript,
                            ai_response=ai_response,
                        ),
                    )
                )
            # Critical first, so its notification goes out before anything else
            screened.sort(key=lambda item: -SEVERITY_RANK[item[0].severity])

            incidents: dict[str, SafetyIncident] = {}
            for match, incident_context in screened:
                record_safety_match(match.severity, match.source, match.role)
                try:
                    incident = await self.tracker.record(
                        match,
                        session.user_id,
                        session.conversation_id,
                        user_turn.turn_id,
                        incident_context,
                        recipients=session.rules.emergency_contacts,
                        now=now,
                    )
                except Exception as e:
                    raise ScreeningFailure(
                        f"Could not record {match.severity} incident {match.rule_id}: "
                        f"{e.__class__.__name__}: {e}",
                        user_id=session.user_id,
                        conversation_id=session.conversation_id,
                    ) from e
                # A repeat within the turn folds into the same incident
                incidents[incident.id] = incident

            return list(incidents.values())

    async def _enrich(
        self,
        session: ConversationSession,
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn | None,
        extracted_memories: Sequence[MemoryCandidate] | None,
        explicit_photo_request: bool,
        photo_request: TriggerDecision | None,
        critical: bool,
        now: datetime,
        result: TurnResult,
    ) -> tuple[WorkingMemory | None, PhotoTriggerEvent | None]:
        steps = {
            MEMORY: self.breakers.get(MEMORY).call(
                self._enrich_memory, session, user_turn, assistant_turn, extracted_memories, now
            )
        }
        if not critical:
            steps[PHOTOS] = self.breakers.get(PHOTOS).call(
                self._enrich_photos, session, user_turn, explicit_photo_request, photo_request, now
            )

        outcomes = await asyncio.gather(*steps.values(), return_exceptions=True)
        values: dict[str, Any] = {}

        for component, outcome in zip(steps, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failure = EnrichmentFailure(
                    component,
                    f"{outcome.__class__.__name__}: {outcome}",
                    user_id=session.user_id,
                    conversation_id=session.conversation_id,
                    turn_id=user_turn.turn_id,
                )
                logger.warning(f"⚠️ {component} enrichment failed for turn {user_turn.turn_id}: {failure}")
                record_enrichment_failure(component)
                result.enrichment_failures.append(f"{component}: {failure}")
                continue
            values[component] = outcome

        return values.get(MEMORY), values.get(PHOTOS)

    async def _enrich_memory(
        self,
        session: ConversationSession,
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn | None,
        extracted_memories: Sequence[MemoryCandidate] | None,
        now: datetime,
    ) -> WorkingMemory:
        with observe_stage(MEMORY), trace_operation("carecore.memory"):
            await self.memory.record_turn(session.user_id, session.conversation_id, user_turn)
            if assistant_turn is not None:
                await self.memory.record_turn(session.user_id, session.conversation_id, assistant_turn)

            candidates = self.memory.extract(
                user_turn,
                context=f"Conversation {session.conversation_id}",
                explicit=extracted_memories,
            )
            if candidates:
                await self.memory.merge(session.user_id, candidates, now)

            window = await self.memory.load_short_term(session.user_id)
            return await self.memory.update_working(session.user_id, window, now)

    async def _enrich_photos(
        self,
        session: ConversationSession,
        user_turn: ConversationTurn,
        explicit_request: bool,
        photo_request: TriggerDecision | None,
        now: datetime,
    ) -> PhotoTriggerEvent | None:
        with observe_stage(PHOTOS), trace_operation("carecore.photos"):
            if photo_request is not None:
                decision = photo_request
            else:
                people, tags = await self.photos.catalog_terms(session.user_id)
                elapsed = None if session.photos.long_engagement_fired else session.photos.elapsed(now)
                decision = self.detector.detect(
                    user_turn.transcript,
                    catalog_people=people,
                    emotion=user_turn.emotion,
                    elapsed=elapsed,
                    explicit_request=explicit_request,
                    catalog_tags=tags,
                )
            if decision is None:
                return None

            context = PhotoContext(
                mentioned_names=decision.mentioned_names,
                keywords=decision.keywords,
                text=decision.context or user_turn.transcript[:200],
                emotional_state=decision.emotional_state,
            )
            photos = await self.photos.select(
                session.user_id,
                decision.reason,
                context,
                self.photos.options_for(decision),
                session.photos,
                now,
            )
            return self.photos.build_event(decision.reason, photos, context)
