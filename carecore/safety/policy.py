"""Safety policy engine: screens text against a user's safety rules.

Matching is phrase containment over normalized text. Crisis triggers are
always checked before forbidden topics and always map to ``critical``; the
first match wins. No scoring is applied, so any configured crisis phrase
present in the text is reported.

Alerts the language model raises are turned into matches by ``alert_match``
so they are recorded like any screened match.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from carecore.errors import ScreeningFailure
from carecore.models.safety import SEVERITY_RANK, PolicyMatch
from carecore.text import normalize_text, slugify

if TYPE_CHECKING:
    from carecore.config import SafetySettings
    from carecore.models.memory import Role
    from carecore.models.safety import CrisisTrigger, ModelAlert, NeverAllowRule, SafetyRules

logger = logging.getLogger(__name__)

CRISIS_INCIDENT_TYPE = "crisis_trigger"
FORBIDDEN_TOPIC_INCIDENT_TYPE = "forbidden_topic"
MODEL_ALERT_INCIDENT_TYPE = "model_alert"


class SafetyPolicyEngine:
    """Evaluates text against one user's immutable safety rules."""

    def __init__(self, rules: SafetyRules, settings: SafetySettings) -> None:
        """Initialize policy engine.

        Args:
            rules: Per-user safety rules snapshot
            settings: Screening settings snapshot
        """
        self.rules = rules
        self.settings = settings
        # Keywords are normalized once per session
        self._crisis = [
            (normalize_text(trigger.keyword), trigger) for trigger in rules.crisis_triggers
        ]
        self._forbidden = [(normalize_text(topic), topic) for topic in rules.forbidden_topics]

        logger.info(
            f"Policy engine ready for {rules.user_id}: "
            f"{len(self._crisis)} crisis triggers, {len(self._forbidden)} forbidden topics"
        )

    def scan(self, text: str, role: Role) -> PolicyMatch | None:
        """Screen a single text.

        Args:
            text: Utterance or generated response
            role: Speaker of the text

        Returns:
            First match, or None if the text is clean

        Raises:
            ScreeningFailure: If the text cannot be evaluated
        """
        try:
            normalized = normalize_text(text)

            for keyword, trigger in self._crisis:
                if keyword and keyword in normalized:
                    logger.warning(
                        f"🚨 Crisis trigger '{trigger.keyword}' matched in {role} text "
                        f"for {self.rules.user_id}"
                    )
                    return self._crisis_match(trigger, role)

            for keyword, topic in self._forbidden:
                if keyword and keyword in normalized:
                    logger.info(f"Forbidden topic '{topic}' matched in {role} text")
                    return PolicyMatch(
                        rule_id=f"{FORBIDDEN_TOPIC_INCIDENT_TYPE}:{slugify(topic)}",
                        rule_name=topic,
                        reason="Forbidden conversation topic",
                        incident_type=FORBIDDEN_TOPIC_INCIDENT_TYPE,
                        severity=self.settings.forbidden_topic_severity,
                        keyword=topic,
                        source="forbidden_topic",
                        role=role,
                    )
        except Exception as e:
            raise ScreeningFailure(
                f"Could not screen {role} text: {e.__class__.__name__}: {e}",
                user_id=self.rules.user_id,
                role=role,
            ) from e

        return None

    def _crisis_match(self, trigger: CrisisTrigger, role: Role) -> PolicyMatch:
        rule = self.rules.find_rule(trigger.rule) if trigger.rule else None

        if rule is not None:
            return PolicyMatch(
                rule_id=rule.rule,
                rule_name=rule.rule,
                reason=rule.reason or trigger.action,
                incident_type=rule.rule,
                severity="critical",
                keyword=trigger.keyword,
                source="crisis_trigger",
                role=role,
            )

        incident_type = trigger.rule or CRISIS_INCIDENT_TYPE
        return PolicyMatch(
            rule_id=trigger.rule or f"{CRISIS_INCIDENT_TYPE}:{slugify(trigger.keyword)}",
            rule_name=trigger.keyword,
            reason=trigger.action or "Crisis trigger phrase detected",
            incident_type=incident_type,
            severity="critical",
            keyword=trigger.keyword,
            source="crisis_trigger",
            role=role,
        )

    def scan_turn(self, user_text: str, assistant_text: str | None) -> list[PolicyMatch]:
        """Screen the user text, then the assistant text."""
        matches = []
        user_match = self.scan(user_text, "user")
        if user_match:
            matches.append(user_match)
        if assistant_text:
            assistant_match = self.scan(assistant_text, "assistant")
            if assistant_match:
                matches.append(assistant_match)
        return matches

    def alert_match(self, alert: ModelAlert) -> PolicyMatch:
        """Turn a family alert raised by the language model into a match.

        An alert naming a never-allow rule reports that rule, at no less than
        the rule's severity. Any other alert is reported as it was raised.

        Raises:
            ScreeningFailure: If the alert cannot be evaluated
        """
        try:
            rule = self._rule_named(alert.safety_rule_violated)
            if rule is not None:
                severity = max(alert.severity, rule.severity, key=SEVERITY_RANK.__getitem__)
                match = PolicyMatch(
                    rule_id=rule.rule,
                    rule_name=rule.rule,
                    reason=rule.reason or alert.context,
                    incident_type=rule.rule,
                    severity=severity,
                    keyword=alert.safety_rule_violated,
                    source="model_alert",
                    role="assistant",
                )
            else:
                match = PolicyMatch(
                    rule_id=f"{MODEL_ALERT_INCIDENT_TYPE}:{slugify(alert.safety_rule_violated)}",
                    rule_name=alert.safety_rule_violated,
                    reason=alert.context or "Raised by the language model",
                    incident_type=MODEL_ALERT_INCIDENT_TYPE,
                    severity=alert.severity,
                    keyword=alert.safety_rule_violated,
                    source="model_alert",
                    role="assistant",
                )
        except Exception as e:
            raise ScreeningFailure(
                f"Could not evaluate model alert: {e.__class__.__name__}: {e}",
                user_id=self.rules.user_id,
                role="assistant",
            ) from e

        logger.warning(
            f"🚨 Model alert '{alert.safety_rule_violated}' ({match.severity}) for {self.rules.user_id}"
        )
        return match

    def _rule_named(self, name: str) -> NeverAllowRule | None:
        # The model paraphrases rule ids ("leaving home alone")
        wanted = slugify(name)
        for rule in self.rules.never_allow:
            if slugify(rule.rule) == wanted:
                return rule
        return None
