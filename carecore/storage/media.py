"""Media reference resolution.

The core never touches media bytes: it only turns opaque blob references into
URLs a client can fetch.
"""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urljoin, urlparse


class MediaResolver(Protocol):
    """Resolves a media reference to a fetchable URL."""

    def resolve(self, reference: str) -> str: ...


class BlobUrlResolver:
    """Resolve blob references against a base URL.

    Absolute URLs pass through unchanged; relative references are joined to
    ``base_url``. An optional query token (e.g. a SAS token) is appended.
    """

    def __init__(self, base_url: str | None = None, query_token: str | None = None) -> None:
        self.base_url = base_url.rstrip("/") + "/" if base_url else None
        self.query_token = query_token.lstrip("?") if query_token else None

    def resolve(self, reference: str) -> str:
        if urlparse(reference).scheme:
            url = reference
        elif self.base_url:
            url = urljoin(self.base_url, reference.lstrip("/"))
        else:
            url = reference

        if self.query_token:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{self.query_token}"
        return url
