"""Three-tier memory store.

- Short-term: append-only conversation transcript, read back as a sliding window
- Working: recomputed summary of the window, one document per user
- Long-term: durable facts; each ``(memory_type, key)`` keeps its full history
  and the most recent entry supersedes older ones on read
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from carecore.errors import NotFoundError
from carecore.memory.extraction import MemoryClassifier
from carecore.memory.working import derive_working_memory
from carecore.models.memory import (
    ConversationTurn,
    LongTermMemory,
    MemoryLoadResult,
    MemoryStats,
    MergeResult,
    WorkingMemory,
)
from carecore.observability.metrics import record_memory_candidates
from carecore.storage.document_store import sort_timestamp
from carecore.text import extract_tags, normalize_text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carecore.config import MemorySettings
    from carecore.models.memory import MemoryCandidate
    from carecore.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

SESSIONS = "sessions"
TURNS = "conversation_turns"
WORKING = "working_memory"
LONG_TERM = "long_term_memories"

WORKING_ID = "current"
_ROLE_ORDER = {"system": 0, "user": 1, "assistant": 2}


def _same_value(a: str, b: str) -> bool:
    return " ".join(a.split()).casefold() == " ".join(b.split()).casefold()


class MemoryStore:
    """Memory tiers for every user, backed by the document store."""

    def __init__(
        self,
        store: DocumentStore,
        settings: MemorySettings,
        classifier: MemoryClassifier | None = None,
    ) -> None:
        """Initialize memory store.

        Args:
            store: Durable document store
            settings: Memory settings snapshot
            classifier: Rule-based extractor (default patterns if omitted)
        """
        self.store = store
        self.settings = settings
        self.classifier = classifier or MemoryClassifier()

    # Sessions

    async def register_session(
        self,
        user_id: str,
        conversation_id: str,
        started_at: datetime | None = None,
    ) -> None:
        """Mark that the user has had a session."""
        started_at = started_at or datetime.now(UTC)
        await self.store.put(
            SESSIONS,
            user_id,
            conversation_id,
            {"conversation_id": conversation_id, "started_at": started_at.isoformat()},
            sort_key=sort_timestamp(started_at),
        )

    async def close_session(self, user_id: str, conversation_id: str, ended_at: datetime | None = None) -> None:
        """Stamp the session marker with its end time."""
        body = await self.store.get(SESSIONS, user_id, conversation_id)
        if body is None:
            logger.warning(f"No session marker for {conversation_id} ({user_id})")
            return
        body["ended_at"] = (ended_at or datetime.now(UTC)).isoformat()
        started_at = datetime.fromisoformat(body["started_at"])
        await self.store.put(SESSIONS, user_id, conversation_id, body, sort_key=sort_timestamp(started_at))

    # Load

    async def load(self, user_id: str) -> MemoryLoadResult:
        """Load all three memory tiers.

        Args:
            user_id: User identifier

        Returns:
            Short-term window, working memory and top-ranked long-term facts

        Raises:
            NotFoundError: If the user has never had a session
        """
        if await self.store.count(SESSIONS, user_id) == 0:
            raise NotFoundError(f"No sessions recorded for user {user_id}", user_id=user_id)

        return MemoryLoadResult(
            short_term=await self.load_short_term(user_id),
            working=await self.load_working(user_id),
            long_term=await self.load_long_term(user_id),
        )

    async def load_short_term(self, user_id: str, limit: int | None = None) -> list[ConversationTurn]:
        """Last N turns of the user, oldest first."""
        bodies = await self.store.query(
            TURNS, user_id, descending=True, limit=limit or self.settings.short_term_turns
        )
        return [ConversationTurn.model_validate(body) for body in reversed(bodies)]

    async def load_working(self, user_id: str) -> WorkingMemory | None:
        """Current working memory, if it has been computed."""
        body = await self.store.get(WORKING, user_id, WORKING_ID)
        return WorkingMemory.model_validate(body) if body else None

    async def load_long_term(self, user_id: str, limit: int | None = None) -> list[LongTermMemory]:
        """Current long-term facts ranked by importance, confidence and recency of use."""
        memories = await self._current_long_term(user_id)
        memories.sort(key=LongTermMemory.rank_key)
        return memories[: limit or self.settings.long_term_limit]

    async def _current_long_term(self, user_id: str) -> list[LongTermMemory]:
        # Newest first, so the first entry seen per key is the current one
        bodies = await self.store.query(LONG_TERM, user_id, descending=True)
        current: dict[tuple[str, str], LongTermMemory] = {}
        for body in bodies:
            memory = LongTermMemory.model_validate(body)
            current.setdefault((memory.memory_type, memory.key), memory)
        return list(current.values())

    # Short-term

    async def record_turn(self, user_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        """Append a turn to the short-term transcript.

        Raises:
            StoreConflictError: If this turn was already recorded
        """
        entity_id = f"{conversation_id}:{turn.turn_id:08d}:{turn.role}"
        sort_key = f"{sort_timestamp(turn.timestamp)}|{turn.turn_id:08d}|{_ROLE_ORDER[turn.role]}"
        body = turn.to_document()
        body["conversation_id"] = conversation_id
        await self.store.insert(TURNS, user_id, entity_id, body, sort_key=sort_key)

    # Long-term

    def extract(
        self,
        turn: ConversationTurn,
        context: str = "Learned from conversation",
        explicit: Sequence[MemoryCandidate] | None = None,
    ) -> list[MemoryCandidate]:
        """Propose long-term memories for a turn.

        Rule-based candidates come from user turns only; ``explicit`` holds
        candidates produced by the language model's memory function call.
        Candidates under the confidence floor are discarded.

        Args:
            turn: Turn to classify
            context: Provenance note stored with the memory
            explicit: Externally extracted candidates

        Returns:
            Candidates at or above the confidence floor
        """
        candidates = self.classifier.classify_turn(turn, context)
        for candidate in explicit or ():
            if not candidate.tags:
                candidate = candidate.model_copy(update={"tags": extract_tags(candidate.value)})
            candidates.append(candidate)

        kept = [c for c in candidates if c.confidence >= self.settings.confidence_floor]
        discarded = len(candidates) - len(kept)
        if discarded:
            logger.debug(f"Discarded {discarded} low-confidence memory candidate(s)")
            record_memory_candidates("discarded", discarded)
        return kept

    async def merge(
        self,
        user_id: str,
        candidates: Sequence[MemoryCandidate],
        now: datetime | None = None,
    ) -> MergeResult:
        """Merge candidates into long-term memory.

        An identical value for the same ``(memory_type, key)`` only bumps access
        tracking on the current entry; anything else appends a new entry that
        supersedes the previous one.

        Args:
            user_id: User identifier
            candidates: Candidates from ``extract``
            now: Merge time (defaults to current UTC time)

        Returns:
            Newly created entries and touched existing entries
        """
        now = now or datetime.now(UTC)
        result = MergeResult()

        for candidate in candidates:
            latest = await self._latest(user_id, candidate)

            if latest is not None and _same_value(latest.value, candidate.value):
                latest.last_accessed = now
                latest.access_count += 1
                await self._save(latest)
                result.touched.append(latest)
                continue

            memory = LongTermMemory.from_candidate(user_id, candidate)
            # Strictly after the entry it supersedes, even within one batch
            memory.extracted_at = now
            if latest is not None and latest.extracted_at >= now:
                memory.extracted_at = latest.extracted_at + timedelta(microseconds=1)
            if not memory.tags:
                memory.tags = extract_tags(memory.value)
            await self.store.insert(
                LONG_TERM, user_id, memory.id, memory.to_document(), sort_key=self._sort_key(memory)
            )
            result.created.append(memory)
            logger.info(f"💾 Stored memory {memory.memory_type}/{memory.key} for {user_id}")

        if result.created:
            record_memory_candidates("stored", len(result.created))
        if result.touched:
            record_memory_candidates("touched", len(result.touched))
        return result

    async def _latest(self, user_id: str, candidate: MemoryCandidate) -> LongTermMemory | None:
        bodies = await self.store.query(
            LONG_TERM,
            user_id,
            filters={"memory_type": candidate.memory_type, "key": candidate.key},
            descending=True,
            limit=1,
        )
        return LongTermMemory.model_validate(bodies[0]) if bodies else None

    @staticmethod
    def _sort_key(memory: LongTermMemory) -> str:
        return f"{sort_timestamp(memory.extracted_at)}|{memory.id}"

    async def _save(self, memory: LongTermMemory) -> None:
        await self.store.put(
            LONG_TERM, memory.user_id, memory.id, memory.to_document(), sort_key=self._sort_key(memory)
        )

    async def search(self, user_id: str, keywords: Sequence[str], limit: int = 10) -> list[LongTermMemory]:
        """Search current long-term facts by keyword.

        A fact matches when any keyword appears in its key, value or tags.
        Returned facts have their access tracking bumped.

        Args:
            user_id: User identifier
            keywords: Search terms (normalized before matching)
            limit: Maximum results

        Returns:
            Matching facts in rank order
        """
        needles = [n for n in (normalize_text(k) for k in keywords) if n]
        if not needles:
            return []

        matches = []
        for memory in await self._current_long_term(user_id):
            haystack = normalize_text(" ".join([memory.key, memory.value, *memory.tags]))
            if any(needle in haystack for needle in needles):
                matches.append(memory)

        matches.sort(key=LongTermMemory.rank_key)
        matches = matches[:limit]

        now = datetime.now(UTC)
        for memory in matches:
            memory.last_accessed = now
            memory.access_count += 1
            await self._save(memory)

        logger.debug(f"Memory search for {user_id} returned {len(matches)} result(s)")
        return matches

    # Working

    async def update_working(
        self,
        user_id: str,
        window: Sequence[ConversationTurn] | None = None,
        now: datetime | None = None,
    ) -> WorkingMemory:
        """Recompute and persist working memory.

        Args:
            user_id: User identifier
            window: Short-term window (loaded from the store if omitted)
            now: Update time

        Returns:
            The new working memory
        """
        if window is None:
            window = await self.load_short_term(user_id)

        working = derive_working_memory(window, self.settings, now)
        await self.store.put(WORKING, user_id, WORKING_ID, working.to_document())
        return working

    # Stats

    async def stats(self, user_id: str) -> MemoryStats:
        """Turn and fact counters for dashboards."""
        working = await self.load_working(user_id)
        latest_turns = await self.load_short_term(user_id, limit=1)

        last_activity = latest_turns[-1].timestamp if latest_turns else None
        if working and (last_activity is None or working.last_updated > last_activity):
            last_activity = working.last_updated

        return MemoryStats(
            short_term_turns=await self.store.count(TURNS, user_id),
            long_term_facts=len(await self._current_long_term(user_id)),
            last_activity=last_activity,
        )

