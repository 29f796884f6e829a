"""Narrow references to the ones the answer text actually mentions."""

from __future__ import annotations

from boat_rag.types import Reference

FALLBACK_COUNT = 6


def reference_keys(reference: Reference) -> list[str]:
    keys = [reference.title, reference.model_key]
    if reference.manufacturer or reference.description:
        keys.append(" ".join(part for part in (reference.manufacturer, reference.description) if part))
    return [key.strip().lower() for key in keys if key and key.strip()]


def filter_used(text: str, references: list[Reference]) -> list[Reference]:
    """Keep references whose identifying text appears in ``text``.

    Falls back to the first few references when nothing matches, so provenance
    is never empty while candidates exist.
    """
    body = (text or "").lower()
    used = [
        reference
        for reference in references
        if any(key in body for key in reference_keys(reference))
    ]
    return used or references[:FALLBACK_COUNT]
