"""Photo trigger engine.

Selects catalog photos for a trigger while respecting the per-photo cooldown
and the per-session display cap, and commits display metadata before the
selection is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from carecore.errors import NotFoundError
from carecore.models.photo import (
    Photo,
    PhotoContext,
    PhotoDisplay,
    PhotoQueryOptions,
    PhotoTriggerEvent,
)
from carecore.observability.metrics import record_photo_selection
from carecore.storage.document_store import sort_timestamp
from carecore.text import normalize_text

if TYPE_CHECKING:
    from carecore.config import PhotoSettings
    from carecore.models.photo import PhotoTriggerReason, TriggerDecision
    from carecore.storage.document_store import DocumentStore
    from carecore.storage.media import MediaResolver

logger = logging.getLogger(__name__)

PHOTOS = "photos"


@dataclass
class PhotoSession:
    """Per-conversation photo display state."""

    conversation_id: str
    started_at: datetime
    shown_count: int = 0
    long_engagement_fired: bool = False

    def remaining(self, cap: int) -> int:
        return max(cap - self.shown_count, 0)

    def elapsed(self, now: datetime) -> timedelta:
        return now - self.started_at


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value else 0.0


class PhotoTriggerEngine:
    """Photo catalog access and trigger-driven selection."""

    def __init__(
        self,
        store: DocumentStore,
        media_resolver: MediaResolver,
        settings: PhotoSettings,
    ) -> None:
        """Initialize photo trigger engine.

        Args:
            store: Durable document store holding the catalog
            media_resolver: Turns blob references into URLs
            settings: Photo settings snapshot
        """
        self.store = store
        self.media = media_resolver
        self.settings = settings

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.settings.cooldown_hours)

    # Catalog

    async def add_photo(self, photo: Photo) -> Photo:
        """Add a photo to the user's catalog.

        Tags are stored lower-cased so keyword matching is stable.
        """
        photo.manual_tags = [t.strip().lower() for t in photo.manual_tags if t.strip()]
        if photo.uploaded_at is None:
            photo.uploaded_at = datetime.now(UTC)
        await self._save(photo)
        logger.info(f"✅ Photo added: {photo.id} ({photo.file_name or photo.blob_url})")
        return photo

    async def get_photo(self, user_id: str, photo_id: str) -> Photo:
        """Fetch one photo.

        Raises:
            NotFoundError: If the photo is not in the user's catalog
        """
        body = await self.store.get(PHOTOS, user_id, photo_id)
        if body is None:
            raise NotFoundError(f"Photo {photo_id} not found", user_id=user_id, photo_id=photo_id)
        return Photo.model_validate(body)

    async def list_photos(self, user_id: str, limit: int | None = None) -> list[Photo]:
        """Catalog, most recently uploaded first."""
        bodies = await self.store.query(PHOTOS, user_id, descending=True, limit=limit)
        return [Photo.model_validate(body) for body in bodies]

    async def catalog_terms(self, user_id: str) -> tuple[list[str], list[str]]:
        """People tagged in the user's catalog, and the remaining manual tags."""
        people: list[str] = []
        tags: list[str] = []
        for photo in await self.list_photos(user_id):
            for person in photo.tagged_people:
                if person not in people:
                    people.append(person)
            for tag in photo.manual_tags:
                if tag not in tags:
                    tags.append(tag)
        folded = {normalize_text(p) for p in people}
        return people, [t for t in tags if normalize_text(t) not in folded]

    async def _save(self, photo: Photo) -> None:
        await self.store.put(
            PHOTOS,
            photo.user_id,
            photo.id,
            photo.to_document(),
            sort_key=f"{sort_timestamp(photo.uploaded_at or datetime.now(UTC))}|{photo.id}",
        )

    # Selection

    def options_for(self, decision: TriggerDecision) -> PhotoQueryOptions:
        """Query options derived from a trigger decision."""
        return PhotoQueryOptions(
            tagged_people=decision.mentioned_names,
            keywords=decision.keywords,
            limit=self.settings.default_limit,
            sort_by="least_shown" if decision.reason == "long_conversation_engagement" else "relevance",
        )

    async def select(
        self,
        user_id: str,
        reason: PhotoTriggerReason,
        context: PhotoContext,
        options: PhotoQueryOptions | None = None,
        session: PhotoSession | None = None,
        now: datetime | None = None,
    ) -> list[PhotoDisplay]:
        """Select photos to display and commit their display metadata.

        The pool is filtered by tagged people and keywords (each filter that is
        given must match), then photos inside the cooldown are dropped. The
        cooldown is never relaxed to fill an empty pool.

        Args:
            user_id: Catalog owner
            reason: Why photos are being shown
            context: Conversation context (stored as trigger keywords)
            options: Filters, sort order and limit
            session: Conversation display state, for the session cap
            now: Selection time (defaults to current UTC time)

        Returns:
            Photos to display, possibly empty
        """
        now = now or datetime.now(UTC)
        options = options or PhotoQueryOptions(limit=self.settings.default_limit)

        limit = options.limit
        if session is not None:
            limit = min(limit, session.remaining(self.settings.session_display_cap))
        if limit <= 0:
            logger.info(f"Session display cap reached for {user_id}")
            record_photo_selection(reason, 0)
            return []

        people = {normalize_text(p) for p in options.tagged_people if p.strip()}
        keywords = {normalize_text(k) for k in options.keywords if k.strip()}

        scored: list[tuple[int, Photo]] = []
        for photo in await self.list_photos(user_id):
            if options.exclude_recently_shown and self._cooling_down(photo, now):
                continue
            score = self._relevance(photo, people, keywords)
            if score is None:
                continue
            scored.append((score, photo))

        chosen = [photo for _, photo in self._sorted(scored, options)[:limit]]

        if session is not None:
            session.shown_count += len(chosen)
            if reason == "long_conversation_engagement":
                session.long_engagement_fired = True

        for photo in chosen:
            photo.last_shown_at = now
            photo.shown_count += 1
            if context.keywords:
                photo.trigger_keywords = list(context.keywords)
            await self._save(photo)

        record_photo_selection(reason, len(chosen))
        if chosen:
            logger.info(f"📸 Selected {len(chosen)} photo(s) for {user_id}: {reason}")
        else:
            logger.info(f"No photos matched for {user_id} ({reason})")

        return [self._display(photo) for photo in chosen]

    def _cooling_down(self, photo: Photo, now: datetime) -> bool:
        return photo.last_shown_at is not None and now - photo.last_shown_at < self.cooldown

    @staticmethod
    def _relevance(photo: Photo, people: set[str], keywords: set[str]) -> int | None:
        """Count of matched people and keywords; None when a given filter misses."""
        tags = {normalize_text(t) for t in photo.manual_tags}
        photo_people = {normalize_text(p) for p in photo.tagged_people} | tags
        caption = normalize_text(photo.caption or "")

        people_hits = len(people & photo_people)
        keyword_hits = sum(1 for k in keywords if k in tags or (caption and k in caption))

        if people and not people_hits:
            return None
        if keywords and not keyword_hits:
            return None
        return people_hits + keyword_hits

    @staticmethod
    def _sorted(scored: list[tuple[int, Photo]], options: PhotoQueryOptions) -> list[tuple[int, Photo]]:
        if options.sort_by == "recent":
            return sorted(scored, key=lambda s: -_timestamp(s[1].captured_date))
        if options.sort_by == "least_shown":
            return sorted(scored, key=lambda s: (s[1].shown_count, -_timestamp(s[1].uploaded_at)))
        return sorted(scored, key=lambda s: (-s[0], -_timestamp(s[1].captured_date)))

    def _display(self, photo: Photo) -> PhotoDisplay:
        return PhotoDisplay(
            id=photo.id,
            url=self.media.resolve(photo.blob_url),
            thumbnail_url=self.media.resolve(photo.thumbnail_url) if photo.thumbnail_url else None,
            caption=photo.caption,
            tagged_people=photo.people,
            date_taken=photo.captured_date,
            location=photo.location,
        )

    def build_event(
        self,
        reason: PhotoTriggerReason,
        photos: list[PhotoDisplay],
        context: PhotoContext,
    ) -> PhotoTriggerEvent | None:
        """Assemble the client event, or None when nothing was selected."""
        if not photos:
            return None
        return PhotoTriggerEvent(
            photo_ids=[p.id for p in photos],
            photos=photos,
            descriptions=[p.describe() for p in photos],
            trigger_reason=reason,
            mentioned_names=context.mentioned_names or None,
            context=context.text or "Conversation context",
            emotional_state=context.emotional_state,
        )
