"""Carecore data models."""

from carecore.models.base import CarecoreModel, new_id, utc_now
from carecore.models.memory import (
    IMPORTANCE_RANK,
    ConversationTurn,
    Emotion,
    LongTermMemory,
    MemoryCandidate,
    MemoryLoadResult,
    MemoryStats,
    MergeResult,
    WorkingMemory,
)
from carecore.models.photo import (
    Photo,
    PhotoContext,
    PhotoDisplay,
    PhotoQueryOptions,
    PhotoTriggerEvent,
    TriggerDecision,
)
from carecore.models.safety import (
    SEVERITY_RANK,
    CrisisTrigger,
    EmergencyContact,
    FamilyNotification,
    IncidentContext,
    IncidentResolution,
    IncidentStatus,
    ModelAlert,
    NeverAllowRule,
    PolicyMatch,
    SafetyIncident,
    SafetyRuleRef,
    SafetyRules,
    load_safety_rules_file,
)
from carecore.models.turn import TurnResult

__all__ = [
    "IMPORTANCE_RANK",
    "SEVERITY_RANK",
    "CarecoreModel",
    "ConversationTurn",
    "CrisisTrigger",
    "EmergencyContact",
    "Emotion",
    "FamilyNotification",
    "IncidentContext",
    "IncidentResolution",
    "IncidentStatus",
    "LongTermMemory",
    "MemoryCandidate",
    "MemoryLoadResult",
    "MemoryStats",
    "MergeResult",
    "ModelAlert",
    "NeverAllowRule",
    "Photo",
    "PhotoContext",
    "PhotoDisplay",
    "PhotoQueryOptions",
    "PhotoTriggerEvent",
    "PolicyMatch",
    "SafetyIncident",
    "SafetyRuleRef",
    "SafetyRules",
    "TriggerDecision",
    "TurnResult",
    "WorkingMemory",
    "load_safety_rules_file",
    "new_id",
    "utc_now",
]
