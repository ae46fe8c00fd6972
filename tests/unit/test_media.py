"""Tests for media reference resolution."""

from __future__ import annotations

from carecore.storage.media import BlobUrlResolver


class TestBlobUrlResolver:
    """Test suite for BlobUrlResolver."""

    def test_relative_reference_joined(self) -> None:
        resolver = BlobUrlResolver("https://media.example/photos")

        assert resolver.resolve("/user-1/beach.jpg") == "https://media.example/photos/user-1/beach.jpg"

    def test_absolute_url_unchanged(self) -> None:
        resolver = BlobUrlResolver("https://media.example/photos")

        assert resolver.resolve("https://cdn.example/a.jpg") == "https://cdn.example/a.jpg"

    def test_without_base_url(self) -> None:
        assert BlobUrlResolver().resolve("user-1/beach.jpg") == "user-1/beach.jpg"

    def test_query_token_appended(self) -> None:
        resolver = BlobUrlResolver("https://media.example/", query_token="?sv=1&sig=abc")

        assert resolver.resolve("a.jpg") == "https://media.example/a.jpg?sv=1&sig=abc"
        assert resolver.resolve("https://cdn.example/b.jpg?w=200") == "https://cdn.example/b.jpg?w=200&sv=1&sig=abc"
