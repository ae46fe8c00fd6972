"""Rule-based memory extraction.

Classifies user utterances into the five long-term memory categories using
English and Hebrew phrase patterns. Each pattern carries its own confidence;
the store discards candidates that fall under the configured floor.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from carecore.models.memory import MemoryCandidate
from carecore.text import extract_tags, normalize_text, slugify, split_sentences

if TYPE_CHECKING:
    from collections.abc import Callable

    from carecore.models.memory import ConversationTurn, Importance, MemoryCategory

logger = logging.getLogger(__name__)

_RELATIONS = (
    "granddaughter|grandson|grandchildren|grandchild|daughter|son|wife|husband|"
    "sister|brother|niece|nephew|mother|father"
)
_HE_RELATIONS = "הנכדה|הנכד|הנכדים|הבת|הבן|אשתי|בעלי|אחותי|אחי|אמא|אבא"


@dataclass(frozen=True)
class ExtractionPattern:
    """One classification rule.

    ``key_builder`` turns the regex match (on normalized text) into the stable
    part of the memory key that follows the category prefix.
    """

    memory_type: MemoryCategory
    prefix: str
    pattern: re.Pattern[str]
    key_builder: Callable[[re.Match[str]], str]
    importance: Importance
    confidence: float


def _group(index: int, words: int = 3) -> Callable[[re.Match[str]], str]:
    def build(match: re.Match[str]) -> str:
        return " ".join(match.group(index).split()[:words])

    return build


def _whole(match: re.Match[str]) -> str:
    return match.group(0)


PATTERNS: tuple[ExtractionPattern, ...] = (
    # Family: a relation followed by a name is more specific than a bare relation
    ExtractionPattern(
        "family_info",
        "family",
        re.compile(
            rf"\bmy ({_RELATIONS})(?:'s name is| is called| named)? (?!is\b|was\b)([a-z]+)\b"
            r"(?=$|[.,!?]| (?:is|was|lives|works|visits|called|came)\b)"
        ),
        lambda m: f"{m.group(1)} {m.group(2)}",
        "high",
        0.85,
    ),
    ExtractionPattern(
        "family_info",
        "family",
        re.compile(rf"\bmy ({_RELATIONS})\b"),
        _group(1, 1),
        "high",
        0.7,
    ),
    ExtractionPattern(
        "family_info",
        "family",
        re.compile(rf"({_HE_RELATIONS})(?: שלי)?\s+(\S+)"),
        lambda m: f"{m.group(1)} {m.group(2)}",
        "high",
        0.7,
    ),
    ExtractionPattern(
        "medical_info",
        "medical",
        re.compile(
            r"\b(blood pressure|diabetes|medication|medicine|pills?|doctor|hospital|surgery|"
            r"pain|insulin|allergic to \w+)\b"
        ),
        _whole,
        "high",
        0.75,
    ),
    ExtractionPattern(
        "medical_info",
        "medical",
        re.compile(r"(לחץ דם|סוכרת|תרופות|תרופה|כדורים|רופא|רופאה|בית חולים|ניתוח|כאבים|כאב)"),
        _whole,
        "high",
        0.75,
    ),
    ExtractionPattern(
        "preferences",
        "preference",
        re.compile(r"\bi (?:really |very much )?(?:love|like|enjoy|prefer|adore) (?:to )?([\w' ]+)"),
        _group(1),
        "medium",
        0.8,
    ),
    ExtractionPattern(
        "preferences",
        "preference",
        re.compile(r"\bi (?:really )?(?:hate|dislike|don't like|can't stand) ([\w' ]+)"),
        lambda m: "not " + _group(1)(m),
        "medium",
        0.8,
    ),
    ExtractionPattern(
        "preferences",
        "preference",
        re.compile(r"אני (?:מאוד )?(?:אוהבת|אוהב|נהנית|נהנה|מעדיפה|מעדיף) (?:את )?([\w ]+)"),
        _group(1),
        "medium",
        0.8,
    ),
    ExtractionPattern(
        "routine",
        "routine",
        re.compile(
            r"\b(every (?:morning|day|evening|night|afternoon|week|sunday|monday|tuesday|"
            r"wednesday|thursday|friday|saturday)|each morning|each evening)\b"
        ),
        _whole,
        "medium",
        0.7,
    ),
    ExtractionPattern(
        "routine",
        "routine",
        re.compile(r"(כל בוקר|כל ערב|כל יום|כל שבוע|כל שבת|בכל בוקר|בדרך כלל)"),
        _whole,
        "medium",
        0.7,
    ),
    ExtractionPattern(
        "personal_history",
        "history",
        re.compile(
            r"\b(?:when i was (?:young|a child|a girl|a boy|little)|i used to|i worked as|"
            r"i grew up in|i was born in) ?([\w' ]*)"
        ),
        _group(0, 5),
        "medium",
        0.65,
    ),
    ExtractionPattern(
        "personal_history",
        "history",
        re.compile(r"(?:כשהייתי (?:צעירה|צעיר|ילדה|ילד|קטנה|קטן)|עבדתי כ|גדלתי ב|נולדתי ב)\S*(?: \S+){0,3}"),
        _whole,
        "medium",
        0.65,
    ),
)


class MemoryClassifier:
    """Proposes long-term memory candidates from user utterances."""

    def __init__(self, patterns: tuple[ExtractionPattern, ...] = PATTERNS) -> None:
        self.patterns = patterns

    def classify(self, text: str, context: str = "Learned from conversation") -> list[MemoryCandidate]:
        """Classify free text into memory candidates.

        At most one candidate per category is produced for each sentence; the
        first matching pattern of a category wins.

        Args:
            text: Raw utterance
            context: Provenance note stored with the memory

        Returns:
            Candidates in sentence order
        """
        candidates: list[MemoryCandidate] = []
        seen_keys: set[str] = set()

        for sentence in split_sentences(text):
            normalized = normalize_text(sentence)
            matched: set[str] = set()

            for rule in self.patterns:
                if rule.memory_type in matched:
                    continue
                match = rule.pattern.search(normalized)
                if not match:
                    continue

                slug = slugify(rule.key_builder(match))
                if not slug:
                    continue
                key = f"{rule.prefix}_{slug}"
                matched.add(rule.memory_type)
                if key in seen_keys:
                    continue
                seen_keys.add(key)

                candidates.append(
                    MemoryCandidate(
                        memory_type=rule.memory_type,
                        key=key,
                        value=sentence,
                        context=context,
                        importance=rule.importance,
                        confidence=rule.confidence,
                        tags=extract_tags(sentence),
                    )
                )

        if candidates:
            logger.debug(f"Classified {len(candidates)} memory candidate(s)")
        return candidates

    def classify_turn(self, turn: ConversationTurn, context: str) -> list[MemoryCandidate]:
        """Classify a turn; only the user's own words become memories."""
        if turn.role != "user":
            return []
        return self.classify(turn.transcript, context)
