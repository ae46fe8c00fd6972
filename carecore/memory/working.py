"""Working memory derivation.

Working memory is never edited in place: it is recomputed from the short-term
window on every update, so the same window always yields the same summary.
"""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from carecore.models.memory import WorkingMemory
from carecore.text import contains_word, normalize_text, split_sentences

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from carecore.config import MemorySettings
    from carecore.models.memory import ConversationTurn, Mood

MAX_ITEMS = 5
MAX_EVENT_LENGTH = 160

THEME_LEXICON: dict[str, tuple[str, ...]] = {
    "family": (
        "family", "daughter", "son", "grandchild", "granddaughter", "grandson",
        "grandchildren", "wife", "husband", "sister", "brother",
        "משפחה", "הבת", "הבן", "נכדה", "נכד", "נכדים", "אחות", "אח שלי",
    ),
    "health": (
        "doctor", "medicine", "medication", "pills", "pain", "hospital", "sleep",
        "רופא", "תרופה", "תרופות", "כאב", "בית חולים", "שינה",
    ),
    "music": ("music", "song", "songs", "sing", "radio", "מוזיקה", "שיר", "שירים", "לשיר"),
    "garden": ("garden", "flowers", "roses", "plants", "גינה", "פרחים", "ורדים", "עציצים"),
    "food": (
        "breakfast", "lunch", "dinner", "cook", "cooking", "soup", "cake",
        "ארוחה", "ארוחת", "לבשל", "אוכל", "מרק", "עוגה",
    ),
    "memories": (
        "remember", "used to", "when i was", "old days",
        "זוכרת", "זוכר", "פעם", "כשהייתי",
    ),
    "photos": ("photo", "photos", "picture", "pictures", "album", "תמונה", "תמונות", "אלבום"),
    "faith": ("synagogue", "church", "prayer", "shabbat", "בית כנסת", "תפילה", "שבת"),
}

ACTIVITY_LEXICON: dict[str, tuple[str, ...]] = {
    "walk": ("walk", "walked", "stroll", "טיול", "הלכתי", "טיילתי"),
    "gardening": ("watered", "gardening", "planted", "השקיתי", "שתלתי"),
    "music": ("listened", "sang", "concert", "הקשבתי", "שרתי", "קונצרט"),
    "reading": ("read", "reading", "book", "newspaper", "קראתי", "ספר", "עיתון"),
    "television": ("tv", "television", "watched", "טלוויזיה", "ראיתי סרט"),
    "cooking": ("cooked", "baked", "בישלתי", "אפיתי"),
    "family_visit": ("visited", "came over", "came to visit", "ביקרה", "ביקר", "באו לבקר", "באה לבקר"),
    "phone_call": ("called me", "phoned", "on the phone", "התקשרה", "התקשר", "דיברתי בטלפון"),
    "exercise": ("exercise", "exercised", "physiotherapy", "התעמלתי", "פיזיותרפיה"),
}

FUTURE_MARKERS: tuple[str, ...] = (
    "tomorrow", "next week", "next month", "this weekend", "tonight", "later today",
    "will visit", "will come", "is coming", "are coming", "going to",
    "מחר", "בשבוע הבא", "בחודש הבא", "בסוף השבוע", "הערב", "יבוא", "תבוא", "יבואו",
    "יגיע", "תגיע", "יגיעו",
)

EMOTION_MOODS: dict[str, Mood] = {
    "happy": "happy",
    "happiness": "happy",
    "joy": "happy",
    "joyful": "happy",
    "content": "happy",
    "excited": "happy",
    "grateful": "happy",
    "sad": "sad",
    "sadness": "sad",
    "lonely": "sad",
    "loneliness": "sad",
    "grief": "sad",
    "depressed": "sad",
    "anxious": "anxious",
    "anxiety": "anxious",
    "fear": "anxious",
    "afraid": "anxious",
    "scared": "anxious",
    "worried": "anxious",
    "nervous": "anxious",
    "confused": "anxious",
    "agitated": "anxious",
}


def _hits(normalized: str, lexicon: dict[str, tuple[str, ...]]) -> Iterable[str]:
    for label, keywords in lexicon.items():
        if any(contains_word(normalized, k) for k in keywords):
            yield label


def derive_mood(window: Sequence[ConversationTurn], confidence_floor: float) -> Mood:
    """Most recent confident emotion decides; otherwise neutral."""
    for turn in reversed(window):
        if turn.emotion is None or turn.emotion.confidence < confidence_floor:
            continue
        return EMOTION_MOODS.get(normalize_text(turn.emotion.primary), "neutral")
    return "neutral"


def derive_themes(window: Sequence[ConversationTurn]) -> list[str]:
    """Themes ranked by frequency, ties broken by most recent occurrence."""
    counts: Counter[str] = Counter()
    last_seen: dict[str, int] = {}

    for index, turn in enumerate(window):
        if turn.role == "system":
            continue
        for theme in _hits(normalize_text(turn.transcript), THEME_LEXICON):
            counts[theme] += 1
            last_seen[theme] = index

    ranked = sorted(counts, key=lambda t: (-counts[t], -last_seen[t]))
    return ranked[:MAX_ITEMS]


def derive_activities(window: Sequence[ConversationTurn], window_days: int) -> list[str]:
    """Activities mentioned by the user recently, most recent first."""
    if not window:
        return []

    newest = max(turn.timestamp for turn in window)
    cutoff = newest - timedelta(days=window_days)
    activities: list[str] = []

    for turn in reversed(window):
        if turn.role != "user" or turn.timestamp < cutoff:
            continue
        for activity in _hits(normalize_text(turn.transcript), ACTIVITY_LEXICON):
            if activity not in activities:
                activities.append(activity)

    return activities[:MAX_ITEMS]


def derive_upcoming_events(window: Sequence[ConversationTurn]) -> list[str]:
    """User sentences that mention a future plan, most recent first."""
    events: list[str] = []
    seen: set[str] = set()

    for turn in reversed(window):
        if turn.role != "user":
            continue
        for sentence in reversed(split_sentences(turn.transcript)):
            normalized = normalize_text(sentence)
            if normalized in seen or not any(contains_word(normalized, m) for m in FUTURE_MARKERS):
                continue
            seen.add(normalized)
            events.append(sentence[:MAX_EVENT_LENGTH])
            if len(events) == MAX_ITEMS:
                return events

    return events


def derive_working_memory(
    window: Sequence[ConversationTurn],
    settings: MemorySettings,
    now: datetime | None = None,
) -> WorkingMemory:
    """Recompute working memory from the short-term window.

    Args:
        window: Recent turns in chronological order
        settings: Memory settings snapshot
        now: Update time (defaults to current UTC time)

    Returns:
        Fresh working memory
    """
    ordered = sorted(window, key=lambda t: t.timestamp)
    return WorkingMemory(
        last_updated=now or datetime.now(UTC),
        recent_themes=derive_themes(ordered),
        recent_mood=derive_mood(ordered, settings.mood_confidence_floor),
        recent_activities=derive_activities(ordered, settings.activity_window_days),
        upcoming_events=derive_upcoming_events(ordered),
    )
