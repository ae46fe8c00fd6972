"""Turn result returned to the conversation transport."""

from __future__ import annotations

from pydantic import Field

from carecore.models.base import CarecoreModel
from carecore.models.memory import WorkingMemory
from carecore.models.photo import PhotoTriggerEvent
from carecore.models.safety import SEVERITY_RANK, SafetyIncident


class TurnResult(CarecoreModel):
    """Outcome of a single processed turn.

    ``display_suppressed`` is set when a critical incident was raised; the
    working-memory summary and photo event are then withheld from display.
    """

    conversation_id: str
    turn_id: int
    incidents: list[SafetyIncident] = Field(default_factory=list)
    working_memory: WorkingMemory | None = None
    photo_event: PhotoTriggerEvent | None = None
    display_suppressed: bool = False
    enrichment_failures: list[str] = Field(default_factory=list)

    @property
    def highest_severity(self) -> str | None:
        if not self.incidents:
            return None
        return max(self.incidents, key=lambda i: SEVERITY_RANK[i.severity]).severity
