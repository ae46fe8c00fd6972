"""Safety screening, incident escalation and family notification."""

from carecore.safety.escalation import EscalationTracker
from carecore.safety.notifier import (
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
    create_dispatcher,
)
from carecore.safety.policy import SafetyPolicyEngine
from carecore.safety.rules import SafetyRulesStore

__all__ = [
    "EscalationTracker",
    "LoggingDispatcher",
    "NotificationDispatcher",
    "SafetyPolicyEngine",
    "SafetyRulesStore",
    "WebhookDispatcher",
    "create_dispatcher",
]
