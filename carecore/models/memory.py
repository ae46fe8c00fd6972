"""Memory models: conversation turns and the three memory tiers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import ConfigDict, Field, field_validator

from carecore.models.base import CarecoreModel, new_id, utc_now

Role = Literal["user", "assistant", "system"]
Mood = Literal["happy", "sad", "anxious", "neutral"]
MemoryCategory = Literal[
    "family_info",
    "medical_info",
    "preferences",
    "routine",
    "personal_history",
]
Importance = Literal["high", "medium", "low"]

# Lower rank sorts first
IMPORTANCE_RANK: dict[str, int] = {"high": 0, "medium": 1, "low": 2}


class Emotion(CarecoreModel):
    """Detected emotion attached to a turn."""

    model_config = ConfigDict(frozen=True)

    primary: str
    confidence: float = Field(ge=0.0, le=1.0)


class ConversationTurn(CarecoreModel):
    """A single recorded utterance. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    turn_id: int = Field(ge=0)
    role: Role
    timestamp: datetime = Field(default_factory=utc_now)
    transcript: str
    audio_ref: str | None = None
    emotion: Emotion | None = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so turns always compare."""
        return v if v.tzinfo else v.replace(tzinfo=UTC)


class WorkingMemory(CarecoreModel):
    """Recomputed summary of recent conversational state."""

    last_updated: datetime = Field(default_factory=utc_now)
    recent_themes: list[str] = Field(default_factory=list, max_length=5)
    recent_mood: Mood = "neutral"
    recent_activities: list[str] = Field(default_factory=list, max_length=5)
    upcoming_events: list[str] = Field(default_factory=list, max_length=5)


class MemoryCandidate(CarecoreModel):
    """A fact proposed by extraction, not yet merged."""

    memory_type: MemoryCategory
    key: str = Field(min_length=1, max_length=120)
    value: str = Field(min_length=1)
    context: str = "Learned from conversation"
    importance: Importance = "medium"
    confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)

    @field_validator("key")
    @classmethod
    def normalize_key(cls, v: str) -> str:
        """Keys are stable lookups: trimmed and lower-cased."""
        return v.strip().lower()


class LongTermMemory(CarecoreModel):
    """Durable fact about the user. History is append-only per key."""

    id: str = Field(default_factory=new_id)
    user_id: str
    memory_type: MemoryCategory
    key: str
    value: str
    extracted_at: datetime = Field(default_factory=utc_now)
    context: str = "Learned from conversation"
    importance: Importance = "medium"
    confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    last_accessed: datetime | None = None
    access_count: int = 0
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_candidate(cls, user_id: str, candidate: MemoryCandidate) -> LongTermMemory:
        """Create a new history entry from a merged candidate."""
        return cls(
            user_id=user_id,
            memory_type=candidate.memory_type,
            key=candidate.key,
            value=candidate.value,
            context=candidate.context,
            importance=candidate.importance,
            confidence=candidate.confidence,
            tags=candidate.tags,
        )

    def rank_key(self) -> tuple[int, float, float]:
        """Sort key: importance, then confidence desc, then last access desc."""
        accessed = self.last_accessed.timestamp() if self.last_accessed else 0.0
        return (IMPORTANCE_RANK[self.importance], -self.confidence, -accessed)


class MemoryLoadResult(CarecoreModel):
    """All three memory tiers for a user."""

    short_term: list[ConversationTurn] = Field(default_factory=list)
    working: WorkingMemory | None = None
    long_term: list[LongTermMemory] = Field(default_factory=list)


class MergeResult(CarecoreModel):
    """Outcome of merging extraction candidates."""

    created: list[LongTermMemory] = Field(default_factory=list)
    touched: list[LongTermMemory] = Field(default_factory=list)


class MemoryStats(CarecoreModel):
    """Dashboard counters for a user's memory."""

    short_term_turns: int = 0
    long_term_facts: int = 0
    last_activity: datetime | None = None
