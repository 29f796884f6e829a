"""Character-window chunking for fetched pages and ingested text."""

from __future__ import annotations

import re

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


def chunk_text(text: str, *, max_chars: int = 3500, overlap: int = 200) -> list[str]:
    """Pack paragraphs into chunks of at most ``max_chars``.

    Paragraphs longer than the window are sliced with ``overlap`` characters
    carried into the next slice.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    overlap = max(0, min(overlap, max_chars - 1))

    chunks: list[str] = []
    buffer = ""
    for paragraph in (p.strip() for p in _PARAGRAPH_SPLIT.split(text or "")):
        if not paragraph:
            continue
        if len(paragraph) > max_chars:
            if buffer:
                chunks.append(buffer)
                buffer = ""
            chunks.extend(_slice(paragraph, max_chars, overlap))
            continue
        candidate = f"{buffer}\n\n{paragraph}" if buffer else paragraph
        if len(candidate) > max_chars:
            chunks.append(buffer)
            buffer = paragraph
        else:
            buffer = candidate
    if buffer:
        chunks.append(buffer)
    return chunks


def _slice(text: str, max_chars: int, overlap: int) -> list[str]:
    pieces: list[str] = []
    start = 0
    while start < len(text):
        end = min(len(text), start + max_chars)
        pieces.append(text[start:end].strip())
        if end == len(text):
            break
        start = end - overlap
    return [piece for piece in pieces if piece]
