"""Cleaning and budgeting of evidence text."""

from __future__ import annotations

import hashlib
import re

from boat_rag.types import Reference

_PAGE_FOOTER = re.compile(r"\b\d+\s*\|\s*Pa\s?ge\b", re.IGNORECASE)
_PAGE_NUMBER = re.compile(r"\bPage\s+\d+\b", re.IGNORECASE)
_HYPHEN_WRAP = re.compile(r"(\w)-\n(\w)")
_TRAILING_SPACE = re.compile(r"[ \t]+\n")
# A lone newline inside a paragraph, unless the next line opens a list item.
_SOFT_WRAP = re.compile(r"(?<!\n)\n(?!\n|[ \t]*(?:\d+[.)]|[-•*])\s)")
_EXTRA_BREAKS = re.compile(r"\n{3,}")
_EXTRA_SPACES = re.compile(r"[ \t]{2,}")
_BULLET_ONLY = re.compile(r"^[•▪◦●‣\-*]+$")
_SENTENCE_END = ". "


def clean_chunk(text: str) -> str:
    """Strip PDF/OCR noise while keeping paragraph and list structure."""
    if not text:
        return ""
    out = _PAGE_FOOTER.sub(" ", text)
    out = _PAGE_NUMBER.sub(" ", out)
    out = out.replace("\u00b7", "\u2022").replace("\u00a0", " ").replace("\r\n", "\n")
    out = _HYPHEN_WRAP.sub(r"\1\2", out)
    out = _TRAILING_SPACE.sub("\n", out)
    out = _SOFT_WRAP.sub(" ", out)
    out = _EXTRA_BREAKS.sub("\n\n", out)
    out = _EXTRA_SPACES.sub(" ", out)
    lines = (line.strip() for line in out.split("\n"))
    out = "\n".join(line for line in lines if not _BULLET_ONLY.match(line))
    return _EXTRA_BREAKS.sub("\n\n", out).strip()


def cap_context(text: str, max_chars: int, *, min_break: int = 1200) -> str:
    """Truncate to ``max_chars`` at the last paragraph, line or sentence break.

    A break is only used when it sits past ``min_break`` (bounded to a fifth of
    the budget for small budgets); otherwise the cut falls on the last space
    near the limit, and only then mid-word.
    """
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    floor = min(min_break, max_chars // 5)
    # Latest boundary of any kind wins; a sentence keeps its period.
    end = max(cut.rfind("\n\n"), cut.rfind("\n"), _sentence_boundary(cut))
    if end >= floor:
        return cut[:end].rstrip()
    space = cut.rfind(" ")
    if space >= max_chars - 80:
        return cut[:space].rstrip()
    return cut


def _sentence_boundary(text: str) -> int:
    idx = text.rfind(_SENTENCE_END)
    return idx + 1 if idx >= 0 else -1


def dedup_references(references: list[Reference]) -> list[Reference]:
    seen: set[str] = set()
    unique: list[Reference] = []
    for reference in references:
        key = reference.id or hashlib.sha1(
            reference.model_dump_json()[:200].encode("utf-8")
        ).hexdigest()
        if key in seen:
            continue
        seen.add(key)
        unique.append(reference)
    return unique
