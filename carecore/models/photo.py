"""Photo catalog and display models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field, field_validator

from carecore.models.base import CarecoreModel, new_id

PhotoTriggerReason = Literal[
    "user_mentioned_family",
    "user_expressed_sadness",
    "long_conversation_engagement",
    "user_requested_photos",
]
EmotionalState = Literal["neutral", "sad", "happy", "confused", "anxious"]
SortBy = Literal["relevance", "recent", "least_shown"]


class Photo(CarecoreModel):
    """Catalog entry. Media references are opaque to the core."""

    id: str = Field(default_factory=new_id)
    user_id: str
    blob_url: str
    thumbnail_url: str | None = None
    file_name: str | None = None
    manual_tags: list[str] = Field(default_factory=list)
    tagged_people: list[str] = Field(default_factory=list)
    caption: str | None = None
    location: str | None = None
    captured_date: datetime | None = None
    uploaded_at: datetime | None = None
    last_shown_at: datetime | None = None
    shown_count: int = 0
    trigger_keywords: list[str] = Field(default_factory=list)

    @field_validator("captured_date", "uploaded_at", "last_shown_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Naive timestamps are taken as UTC."""
        if v is None or v.tzinfo:
            return v
        return v.replace(tzinfo=UTC)

    @property
    def people(self) -> list[str]:
        """People shown for display; manual tags stand in when none are set."""
        return self.tagged_people or self.manual_tags


class PhotoQueryOptions(CarecoreModel):
    """Caller-tunable selection options."""

    tagged_people: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    exclude_recently_shown: bool = True
    limit: int = Field(default=5, ge=1)
    sort_by: SortBy = "relevance"


class PhotoContext(CarecoreModel):
    """Conversation context that led to a selection."""

    mentioned_names: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    text: str = ""
    emotional_state: EmotionalState | None = None


class PhotoDisplay(CarecoreModel):
    """What the client needs to render a photo."""

    id: str
    url: str
    thumbnail_url: str | None = None
    caption: str | None = None
    tagged_people: list[str] = Field(default_factory=list)
    date_taken: datetime | None = None
    location: str | None = None

    def describe(self) -> str:
        """Short spoken description for the assistant."""
        people = ", ".join(self.tagged_people) or "family"
        parts = [f"Photo of {people}"]
        if self.date_taken:
            parts.append(f"from {self.date_taken.year}")
        if self.location:
            parts.append(f"at {self.location}")
        description = " ".join(parts)
        if self.caption:
            description += f". Caption: {self.caption}"
        return description


class PhotoTriggerEvent(CarecoreModel):
    """Outward event telling the client to show photos.

    ``descriptions`` are returned to the assistant so it can talk about the photos.
    """

    type: Literal["photo_trigger"] = "photo_trigger"
    photo_ids: list[str]
    photos: list[PhotoDisplay]
    trigger_reason: PhotoTriggerReason
    mentioned_names: list[str] | None = None
    descriptions: list[str] = Field(default_factory=list)
    context: str = "Conversation context"
    emotional_state: EmotionalState | None = None


class TriggerDecision(CarecoreModel):
    """Why photos should be shown for a turn, and what to look for.

    Built by ``TriggerDetector`` or taken from the language model's
    ``show_photos`` call, whose ``context`` explains the choice.
    """

    reason: PhotoTriggerReason
    mentioned_names: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    emotional_state: EmotionalState | None = None
    context: str = ""
