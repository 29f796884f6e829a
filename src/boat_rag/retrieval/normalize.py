"""Question normalization shared by every evidence source."""

from __future__ import annotations

import re
from collections.abc import Iterable

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "of", "to", "for", "my", "about",
        "is", "are", "was", "were", "be", "being", "been", "i", "me", "we",
        "us", "our", "you", "your", "can", "could", "would", "should", "do",
        "does", "did", "tell", "show", "give", "please", "what", "when",
        "where", "why", "how", "have", "has", "had", "it", "its", "this",
        "that", "with", "on", "in", "at", "from", "by", "as",
    }
)

_DISALLOWED = re.compile(r"[^a-z0-9\s\-/.]")
_WORD_SPLIT = re.compile(r"\W+")
_EDGE_PUNCT = ".-/"


def tokenize(question: str) -> list[str]:
    """Lowercase, strip noise characters, drop stop words and duplicates."""
    cleaned = _DISALLOWED.sub(" ", (question or "").lower())
    tokens: list[str] = []
    for raw in cleaned.split():
        token = raw.strip(_EDGE_PUNCT)
        if not token or token in STOP_WORDS or token in tokens:
            continue
        tokens.append(token)
    return tokens


def or_query(tokens: Iterable[str]) -> str:
    """Join unique tokens with `` OR ``; an empty result means "do not query"."""
    return " OR ".join(dict.fromkeys(token for token in tokens if token))


def derive_keywords(text: str, *, limit: int = 6, min_len: int = 3, max_len: int = 32) -> list[str]:
    keywords: list[str] = []
    for word in _WORD_SPLIT.split((text or "").lower()):
        if not (min_len <= len(word) <= max_len) or word in STOP_WORDS:
            continue
        if word not in keywords:
            keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """Count keywords that occur in ``text`` on word boundaries."""
    lowered = (text or "").lower()
    hits = 0
    for keyword in keywords:
        if keyword and re.search(rf"\b{re.escape(keyword.lower())}\b", lowered):
            hits += 1
    return hits
