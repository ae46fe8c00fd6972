"""Safety models: per-user rules, policy matches and incidents."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import ConfigDict, Field, field_validator

from carecore.models.base import CarecoreModel, new_id, utc_now
from carecore.models.memory import Role

Severity = Literal["critical", "high", "medium"]
MatchSource = Literal["crisis_trigger", "forbidden_topic", "model_alert"]
NotificationStatus = Literal["accepted", "queued", "failed"]

SEVERITY_RANK: dict[str, int] = {"medium": 1, "high": 2, "critical": 3}


class IncidentStatus(str, Enum):
    """Incident lifecycle: OPEN -> (ESCALATED) -> RESOLVED."""

    OPEN = "open"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class NeverAllowRule(CarecoreModel):
    """Activity the companion must never allow or encourage.

    ``severity`` is the floor for alerts the language model raises against
    this rule; crisis phrases naming the rule are always critical.
    """

    model_config = ConfigDict(frozen=True)

    rule: str
    reason: str = ""
    severity: Severity = "high"


class CrisisTrigger(CarecoreModel):
    """Phrase whose presence mandates a critical incident.

    ``rule`` optionally names a ``NeverAllowRule`` that becomes the
    incident type (for example ``leaving_home_alone``).
    """

    model_config = ConfigDict(frozen=True)

    keyword: str = Field(min_length=1)
    rule: str | None = None
    action: str = ""


class EmergencyContact(CarecoreModel):
    """Family member to notify on escalation."""

    model_config = ConfigDict(frozen=True)

    name: str
    phone: str = ""
    relationship: str = ""
    webhook_url: str | None = None


class SafetyRules(CarecoreModel):
    """Per-user safety policy snapshot, immutable for a session.

    ``redirect_to_family`` and ``approved_activities`` are not screened here;
    they are carried for the prompt layer that instructs the language model.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    never_allow: tuple[NeverAllowRule, ...] = ()
    redirect_to_family: tuple[str, ...] = ()
    approved_activities: tuple[str, ...] = ()
    crisis_triggers: tuple[CrisisTrigger, ...] = ()
    forbidden_topics: tuple[str, ...] = ()
    emergency_contacts: tuple[EmergencyContact, ...] = ()

    @field_validator("crisis_triggers", mode="before")
    @classmethod
    def coerce_triggers(cls, v: Any) -> Any:
        """Accept plain keyword strings as well as trigger objects."""
        if v is None:
            return ()
        return tuple({"keyword": item} if isinstance(item, str) else item for item in v)

    def find_rule(self, rule_id: str) -> NeverAllowRule | None:
        """Look up a never-allow rule by its identifier."""
        for rule in self.never_allow:
            if rule.rule == rule_id:
                return rule
        return None


def load_safety_rules_file(path: str | Path, user_id: str | None = None) -> SafetyRules:
    """Load safety rules from a YAML file.

    Args:
        path: YAML file with camelCase or snake_case keys
        user_id: Overrides the ``userId`` in the file

    Returns:
        SafetyRules snapshot
    """
    with open(Path(path).expanduser(), encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if user_id is not None:
        data["user_id"] = user_id
        data.pop("userId", None)
    return SafetyRules.model_validate(data)


class PolicyMatch(CarecoreModel):
    """Single result of screening a text against the policy."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    rule_name: str
    reason: str = ""
    incident_type: str
    severity: Severity
    keyword: str
    source: MatchSource
    role: Role


class ModelAlert(CarecoreModel):
    """Family alert raised by the language model's ``trigger_family_alert`` call."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = "medium"
    user_request: str = ""
    safety_rule_violated: str = Field(min_length=1)
    context: str = ""


class IncidentContext(CarecoreModel):
    """What was said when the incident was raised."""

    user_request: str = ""
    ai_response: str = ""


class SafetyRuleRef(CarecoreModel):
    """Rule that an incident violated."""

    rule_id: str
    rule_name: str
    reason: str = ""


class FamilyNotification(CarecoreModel):
    """Receipt of a notification hand-off."""

    recipients: list[str] = Field(default_factory=list)
    status: NotificationStatus = "queued"
    initiated_at: datetime = Field(default_factory=utc_now)
    detail: str = ""


class IncidentResolution(CarecoreModel):
    """Terminal resolution metadata."""

    resolved_at: datetime = Field(default_factory=utc_now)
    resolved_by: str
    notes: str = ""


class SafetyIncident(CarecoreModel):
    """Recorded policy violation."""

    id: str = Field(default_factory=lambda: new_id("incident"))
    user_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    incident_type: str
    severity: Severity
    conversation_id: str
    turn_id: int
    context: IncidentContext = Field(default_factory=IncidentContext)
    safety_rule: SafetyRuleRef
    status: IncidentStatus = IncidentStatus.OPEN
    access_count: int = 1
    last_detected_at: datetime = Field(default_factory=utc_now)
    escalated_from: str | None = None
    family_notification: FamilyNotification | None = None
    resolution: IncidentResolution | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status == IncidentStatus.RESOLVED

    @classmethod
    def from_match(
        cls,
        match: PolicyMatch,
        user_id: str,
        conversation_id: str,
        turn_id: int,
        context: IncidentContext,
        now: datetime | None = None,
    ) -> SafetyIncident:
        """Create an open incident for a policy match."""
        now = now or utc_now()
        return cls(
            user_id=user_id,
            timestamp=now,
            last_detected_at=now,
            incident_type=match.incident_type,
            severity=match.severity,
            conversation_id=conversation_id,
            turn_id=turn_id,
            context=context,
            safety_rule=SafetyRuleRef(
                rule_id=match.rule_id,
                rule_name=match.rule_name,
                reason=match.reason,
            ),
        )
