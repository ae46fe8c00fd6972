"""Photo trigger detection.

Decides, from a user utterance and session state, whether photos should be
shown and why. Precedence, highest first:

1. explicit request ("show me photos", flag from the assistant's function call)
2. a person tagged in the catalog is mentioned
3. sadness (keyword or detected emotion)
4. the conversation has run long (once per session)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from carecore.models.photo import TriggerDecision
from carecore.text import contains_word, normalize_text

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import timedelta

    from carecore.models.memory import Emotion
    from carecore.models.photo import EmotionalState

logger = logging.getLogger(__name__)

REQUEST_PHRASES: tuple[str, ...] = (
    "show me",
    "show photos",
    "show pictures",
    "see photos",
    "see pictures",
    "see the photos",
    "see the pictures",
    "look at photos",
    "look at pictures",
    "תראי לי",
    "תראה לי",
    "להראות לי",
    "לראות תמונות",
    "לראות את התמונות",
    "יש תמונות",
)

SADNESS_PHRASES: tuple[str, ...] = (
    "sad",
    "lonely",
    "i miss",
    "miss them",
    "depressed",
    "crying",
    "heartbroken",
    "עצוב",
    "עצובה",
    "בודד",
    "בודדה",
    "מתגעגע",
    "מתגעגעת",
    "געגועים",
    "בוכה",
)

TOPIC_KEYWORDS: tuple[str, ...] = (
    "wedding",
    "birthday",
    "beach",
    "holiday",
    "vacation",
    "trip",
    "garden",
    "graduation",
    "חתונה",
    "יום הולדת",
    "חופשה",
    "טיול",
    "גינה",
    "בר מצווה",
    "בת מצווה",
    "סדר פסח",
)

EMOTION_STATES: dict[str, EmotionalState] = {
    "sad": "sad",
    "sadness": "sad",
    "lonely": "sad",
    "grief": "sad",
    "happy": "happy",
    "joy": "happy",
    "excited": "happy",
    "confused": "confused",
    "anxious": "anxious",
    "fear": "anxious",
    "worried": "anxious",
    "neutral": "neutral",
}


def _collect(normalized: str, candidates: Sequence[str]) -> list[str]:
    found: list[str] = []
    for candidate in candidates:
        if candidate not in found and contains_word(normalized, candidate):
            found.append(candidate)
    return found


class TriggerDetector:
    """Derives a photo trigger decision from one user utterance."""

    def __init__(
        self,
        long_conversation_minutes: float = 10.0,
        emotion_confidence_floor: float = 0.5,
    ) -> None:
        self.long_conversation_minutes = long_conversation_minutes
        self.emotion_confidence_floor = emotion_confidence_floor

    def emotional_state(self, emotion: Emotion | None) -> EmotionalState | None:
        if emotion is None or emotion.confidence < self.emotion_confidence_floor:
            return None
        return EMOTION_STATES.get(normalize_text(emotion.primary), "neutral")

    def detect(
        self,
        text: str,
        catalog_people: Sequence[str] = (),
        emotion: Emotion | None = None,
        elapsed: timedelta | None = None,
        explicit_request: bool = False,
        catalog_tags: Sequence[str] = (),
    ) -> TriggerDecision | None:
        """Decide whether this utterance should trigger photos.

        Args:
            text: User utterance
            catalog_people: People tagged anywhere in the user's catalog
            emotion: Detected emotion of the utterance
            elapsed: Session age, or None when long-conversation photos were
                already shown this session
            explicit_request: Assistant requested photos via function call
            catalog_tags: Tags present in the catalog, matched as keywords

        Returns:
            Trigger decision or None if photos should not be shown
        """
        normalized = normalize_text(text)
        mentioned = _collect(normalized, catalog_people)
        keywords = _collect(normalized, [*TOPIC_KEYWORDS, *catalog_tags])
        keywords = [k for k in keywords if k not in mentioned]
        state = self.emotional_state(emotion)

        if explicit_request or any(contains_word(normalized, p) for p in REQUEST_PHRASES):
            reason = "user_requested_photos"
        elif mentioned:
            reason = "user_mentioned_family"
        elif state == "sad" or any(contains_word(normalized, p) for p in SADNESS_PHRASES):
            reason = "user_expressed_sadness"
            state = "sad"
        elif elapsed is not None and elapsed.total_seconds() >= self.long_conversation_minutes * 60:
            reason = "long_conversation_engagement"
        else:
            return None

        logger.debug(f"Photo trigger {reason} (names={mentioned}, keywords={keywords})")
        return TriggerDecision(
            reason=reason,
            mentioned_names=mentioned,
            keywords=keywords,
            emotional_state=state,
        )
