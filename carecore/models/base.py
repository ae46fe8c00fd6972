"""Shared pydantic base for Carecore models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current UTC timestamp."""
    return datetime.now(UTC)


def new_id(prefix: str | None = None) -> str:
    """Generate a unique identifier, optionally prefixed (``incident_<hex>``)."""
    value = uuid.uuid4().hex
    return f"{prefix}_{value}" if prefix else value


class CarecoreModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict used for storage (snake_case keys)."""
        return self.model_dump(mode="json")

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict used for callers (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
