"""Tests for the photo trigger engine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from carecore.config import PhotoSettings
from carecore.errors import NotFoundError
from carecore.models.photo import Photo, PhotoContext, PhotoQueryOptions, TriggerDecision
from carecore.observability.metrics import get_sample_value
from carecore.photos import PhotoSession, PhotoTriggerEngine
from carecore.storage.document_store import DocumentStore
from carecore.storage.media import BlobUrlResolver

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
CONTEXT = PhotoContext(mentioned_names=["Sarah"], keywords=["wedding"], text="Sarah's wedding")


@pytest.fixture
def engine(document_store: DocumentStore) -> PhotoTriggerEngine:
    return PhotoTriggerEngine(
        document_store,
        BlobUrlResolver("https://media.example/photos"),
        PhotoSettings(),
    )


@pytest.fixture
async def catalog(engine: PhotoTriggerEngine) -> dict[str, Photo]:
    """Three photos; Sarah's wedding photo was shown two hours ago."""
    photos = {
        "sarah": Photo(
            id="p-sarah",
            user_id="user-1",
            blob_url="user-1/sarah.jpg",
            tagged_people=["Sarah"],
            manual_tags=["Wedding "],
            caption="Sarah's wedding",
            captured_date=datetime(2010, 6, 1, tzinfo=UTC),
            uploaded_at=NOW - timedelta(days=30),
            last_shown_at=NOW - timedelta(hours=2),
            shown_count=1,
        ),
        "dan": Photo(
            id="p-dan",
            user_id="user-1",
            blob_url="user-1/dan.jpg",
            thumbnail_url="user-1/dan_thumb.jpg",
            tagged_people=["Dan"],
            manual_tags=["beach"],
            captured_date=datetime(2015, 8, 1, tzinfo=UTC),
            uploaded_at=NOW - timedelta(days=20),
        ),
        "both": Photo(
            id="p-both",
            user_id="user-1",
            blob_url="https://cdn.example/both.jpg",
            tagged_people=["Sarah", "Dan"],
            manual_tags=["birthday"],
            location="Haifa",
            captured_date=datetime(2020, 1, 1, tzinfo=UTC),
            uploaded_at=NOW - timedelta(days=10),
        ),
    }
    for photo in photos.values():
        await engine.add_photo(photo)
    return photos


class TestCatalog:
    """Test suite for catalog operations."""

    @pytest.mark.asyncio
    async def test_add_normalizes_tags(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        photo = await engine.get_photo("user-1", "p-sarah")

        assert photo.manual_tags == ["wedding"]

    @pytest.mark.asyncio
    async def test_add_sets_upload_time(self, engine: PhotoTriggerEngine) -> None:
        photo = await engine.add_photo(Photo(user_id="user-1", blob_url="x.jpg"))

        assert photo.uploaded_at is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, engine: PhotoTriggerEngine) -> None:
        with pytest.raises(NotFoundError):
            await engine.get_photo("user-1", "nope")

    @pytest.mark.asyncio
    async def test_list_newest_upload_first(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        assert [p.id for p in await engine.list_photos("user-1")] == ["p-both", "p-dan", "p-sarah"]

    @pytest.mark.asyncio
    async def test_catalog_terms(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        await engine.add_photo(
            Photo(id="p-x", user_id="user-1", blob_url="x.jpg", tagged_people=["Sarah"], manual_tags=["sarah", "kibbutz"])
        )

        people, tags = await engine.catalog_terms("user-1")

        assert sorted(people) == ["Dan", "Sarah"]
        assert sorted(tags) == ["beach", "birthday", "kibbutz", "wedding"]


class TestSelection:
    """Test suite for PhotoTriggerEngine.select."""

    @pytest.mark.asyncio
    async def test_recently_shown_excluded(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        """Test a photo shown two hours ago is skipped inside the cooldown."""
        displays = await engine.select(
            "user-1", "user_mentioned_family", CONTEXT, PhotoQueryOptions(tagged_people=["sarah"]), now=NOW
        )

        assert [d.id for d in displays] == ["p-both"]

    @pytest.mark.asyncio
    async def test_cooldown_can_be_disabled(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1",
            "user_mentioned_family",
            CONTEXT,
            PhotoQueryOptions(tagged_people=["Sarah"], exclude_recently_shown=False),
            now=NOW,
        )

        # Equal relevance: newest capture first
        assert [d.id for d in displays] == ["p-both", "p-sarah"]

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        later = NOW + timedelta(hours=22)

        displays = await engine.select(
            "user-1", "user_mentioned_family", CONTEXT, PhotoQueryOptions(keywords=["wedding"]), now=later
        )

        assert [d.id for d in displays] == ["p-sarah"]

    @pytest.mark.asyncio
    async def test_selection_is_committed(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        await engine.select("user-1", "user_mentioned_family", CONTEXT, PhotoQueryOptions(tagged_people=["Dan"]), now=NOW)

        for photo_id in ("p-dan", "p-both"):
            photo = await engine.get_photo("user-1", photo_id)
            assert photo.last_shown_at == NOW
            assert photo.shown_count == 1
            assert photo.trigger_keywords == ["wedding"]

        again = await engine.select(
            "user-1", "user_mentioned_family", CONTEXT, PhotoQueryOptions(tagged_people=["Dan"]), now=NOW
        )
        assert again == []

    @pytest.mark.asyncio
    async def test_keyword_filter(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1", "user_requested_photos", CONTEXT, PhotoQueryOptions(keywords=["beach"]), now=NOW
        )

        assert [d.id for d in displays] == ["p-dan"]

    @pytest.mark.asyncio
    async def test_filters_combine(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        """Test people and keyword filters must both match when both are given."""
        displays = await engine.select(
            "user-1",
            "user_requested_photos",
            CONTEXT,
            PhotoQueryOptions(tagged_people=["Dan"], keywords=["birthday"]),
            now=NOW,
        )

        assert [d.id for d in displays] == ["p-both"]

    @pytest.mark.asyncio
    async def test_relevance_ranking(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1",
            "user_mentioned_family",
            CONTEXT,
            PhotoQueryOptions(tagged_people=["Sarah", "Dan"]),
            now=NOW,
        )

        assert [d.id for d in displays] == ["p-both", "p-dan"]

    @pytest.mark.asyncio
    async def test_sort_recent(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1", "user_requested_photos", CONTEXT, PhotoQueryOptions(sort_by="recent"), now=NOW
        )

        assert [d.id for d in displays] == ["p-both", "p-dan"]

    @pytest.mark.asyncio
    async def test_sort_least_shown(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        both = catalog["both"]
        both.shown_count = 3
        await engine.add_photo(both)

        displays = await engine.select(
            "user-1", "long_conversation_engagement", CONTEXT, PhotoQueryOptions(sort_by="least_shown"), now=NOW
        )

        assert [d.id for d in displays] == ["p-dan", "p-both"]

    @pytest.mark.asyncio
    async def test_limit(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1", "user_requested_photos", CONTEXT, PhotoQueryOptions(limit=1), now=NOW
        )

        assert len(displays) == 1

    @pytest.mark.asyncio
    async def test_session_cap(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        session = PhotoSession(conversation_id="conv-1", started_at=NOW, shown_count=9)

        first = await engine.select("user-1", "user_requested_photos", CONTEXT, session=session, now=NOW)
        second = await engine.select(
            "user-1",
            "user_requested_photos",
            CONTEXT,
            PhotoQueryOptions(exclude_recently_shown=False),
            session=session,
            now=NOW,
        )

        assert len(first) == 1
        assert second == []
        assert session.shown_count == 10
        assert get_sample_value(
            "carecore_photo_selections_total", reason="user_requested_photos", result="empty"
        ) == 1.0

    @pytest.mark.asyncio
    async def test_long_engagement_marks_session(
        self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]
    ) -> None:
        session = PhotoSession(conversation_id="conv-1", started_at=NOW - timedelta(minutes=15))

        await engine.select("user-1", "long_conversation_engagement", CONTEXT, session=session, now=NOW)

        assert session.long_engagement_fired
        assert session.elapsed(NOW) == timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_display_urls(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1", "user_requested_photos", CONTEXT, PhotoQueryOptions(tagged_people=["Dan"]), now=NOW
        )

        by_id = {d.id: d for d in displays}
        assert by_id["p-dan"].url == "https://media.example/photos/user-1/dan.jpg"
        assert by_id["p-dan"].thumbnail_url == "https://media.example/photos/user-1/dan_thumb.jpg"
        assert by_id["p-both"].url == "https://cdn.example/both.jpg"
        assert by_id["p-both"].describe() == "Photo of Sarah, Dan from 2020 at Haifa"


class TestEvents:
    """Test suite for trigger events."""

    def test_empty_selection_has_no_event(self, engine: PhotoTriggerEngine) -> None:
        assert engine.build_event("user_requested_photos", [], CONTEXT) is None

    @pytest.mark.asyncio
    async def test_event_payload(self, engine: PhotoTriggerEngine, catalog: dict[str, Photo]) -> None:
        displays = await engine.select(
            "user-1", "user_mentioned_family", CONTEXT, PhotoQueryOptions(tagged_people=["Dan"]), now=NOW
        )

        event = engine.build_event("user_mentioned_family", displays, CONTEXT)
        payload = event.to_payload()

        assert payload["type"] == "photo_trigger"
        assert payload["photoIds"] == [d.id for d in displays]
        assert payload["triggerReason"] == "user_mentioned_family"
        assert payload["mentionedNames"] == ["Sarah"]
        assert payload["context"] == "Sarah's wedding"
        assert payload["descriptions"] == [d.describe() for d in displays]

    def test_options_for_decision(self, engine: PhotoTriggerEngine) -> None:
        long_run = engine.options_for(TriggerDecision(reason="long_conversation_engagement"))
        mention = engine.options_for(TriggerDecision(reason="user_mentioned_family", mentioned_names=["Dan"]))

        assert long_run.sort_by == "least_shown"
        assert mention.sort_by == "relevance"
        assert mention.tagged_people == ["Dan"]
        assert mention.limit == 5
