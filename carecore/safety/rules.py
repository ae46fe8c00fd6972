"""Per-user safety rules persistence."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from carecore.errors import ConfigMissingError
from carecore.models.safety import SafetyRules, load_safety_rules_file

if TYPE_CHECKING:
    from carecore.config import SafetySettings
    from carecore.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

SAFETY_RULES = "safety_rules"
RULES_ID = "current"


class SafetyRulesStore:
    """Stores one safety rules document per user."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def save(self, rules: SafetyRules) -> None:
        """Replace the user's safety rules; running sessions keep their snapshot."""
        await self.store.put(SAFETY_RULES, rules.user_id, RULES_ID, rules.to_document())
        logger.info(
            f"Saved safety rules for {rules.user_id} "
            f"({len(rules.crisis_triggers)} crisis triggers, "
            f"{len(rules.emergency_contacts)} emergency contacts)"
        )

    async def get(self, user_id: str) -> SafetyRules | None:
        body = await self.store.get(SAFETY_RULES, user_id, RULES_ID)
        return SafetyRules.model_validate(body) if body else None

    async def require(self, user_id: str, settings: SafetySettings) -> SafetyRules:
        """Load the user's rules, falling back to the configured defaults file.

        Raises:
            ConfigMissingError: If neither the store nor the defaults file has rules
        """
        rules = await self.get(user_id)
        if rules is not None:
            return rules

        if settings.rules_path is not None:
            try:
                rules = load_safety_rules_file(settings.rules_path, user_id=user_id)
            except OSError as e:
                raise ConfigMissingError(
                    f"Default safety rules unreadable: {e}", user_id=user_id
                ) from e
            logger.warning(f"Using default safety rules from {settings.rules_path} for {user_id}")
            return rules

        raise ConfigMissingError(f"No safety configuration for user {user_id}", user_id=user_id)
