"""Error taxonomy for the Carecore turn pipeline.

Fatal errors (``ConfigMissingError``, ``ScreeningFailure``) abort a turn or a
session and are surfaced to the caller. ``EnrichmentFailure`` is recorded and
swallowed by the orchestrator. ``DedupRaceError`` never leaves the escalation
tracker. ``NotFoundError`` is raised only where an operation is not idempotent.
"""

from __future__ import annotations

from typing import Any


class CarecoreError(Exception):
    """Base class for all Carecore errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Structured form for operator alerts."""
        return {
            "error": self.__class__.__name__,
            "message": str(self),
            **self.context,
        }


class ConfigMissingError(CarecoreError):
    """No safety configuration exists for a user; the session cannot start."""


class ScreeningFailure(CarecoreError):
    """Text could not be screened or an incident could not be recorded."""


class EnrichmentFailure(CarecoreError):
    """Memory or photo enrichment failed for a turn."""

    def __init__(self, component: str, message: str, **context: Any) -> None:
        super().__init__(message, component=component, **context)
        self.component = component


class DedupRaceError(CarecoreError):
    """Concurrent write conflict while folding a repeated incident."""


class NotFoundError(CarecoreError):
    """Referenced user, session, incident or photo does not exist."""
