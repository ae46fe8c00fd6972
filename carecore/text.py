"""Text normalization shared by screening, extraction and photo triggers."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_TAG_STRIP = re.compile(r"[^\w\u0590-\u05FF]")
_LATIN = re.compile(r"[a-z0-9' ]+")


def normalize_text(text: str) -> str:
    """Case-fold, strip diacritics and collapse whitespace.

    Diacritics are removed by decomposing (NFKD) and dropping combining
    marks, which covers Latin accents and Hebrew niqqud/cantillation.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", stripped.casefold()).strip()


def contains_word(normalized_text: str, keyword: str) -> bool:
    """Keyword hit on already-normalized text.

    Latin and very short keywords must match on word boundaries. Longer Hebrew
    keywords match as substrings since they commonly carry attached prefixes
    (e.g. a name preceded by a preposition).
    """
    needle = normalize_text(keyword)
    if not needle:
        return False
    if _LATIN.fullmatch(needle) or len(needle) < 3:
        return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", normalized_text) is not None
    return needle in normalized_text


def split_sentences(text: str) -> list[str]:
    """Split a transcript into trimmed, non-empty sentences."""
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


def slugify(text: str, max_length: int = 40) -> str:
    """Stable lookup-key form of a phrase (Latin and Hebrew letters kept)."""
    slug = re.sub(r"[^\w\u0590-\u05FF]+", "_", normalize_text(text)).strip("_")
    return slug[:max_length].rstrip("_")


def extract_tags(value: str, max_tags: int = 5) -> list[str]:
    """Searchable tags: words longer than three characters, unique, lower-cased."""
    tags: list[str] = []
    for word in value.split():
        if len(word) <= 3:
            continue
        tag = _TAG_STRIP.sub("", word.lower()).replace("_", "")
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:max_tags]
