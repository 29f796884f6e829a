"""Deterministic extractive answer used when no generator produced text."""

from __future__ import annotations

import re

from boat_rag.agent.policy import apply_policy
from boat_rag.retrieval.sanitize import clean_chunk
from boat_rag.types import RawAnswer, Reference, StructuredAnswer

SNIPPET_CHARS = 1800
MAX_STEPS = 10
MAX_REFERENCES = 8

NUTSHELL_WITH_CONTEXT = "Here's a concise answer based on your documents and retrieved matches."
NUTSHELL_WITHOUT_CONTEXT = "I couldn't find records for this in your boat's documents yet."
NEXT_STEP = "Need further details or clarification?"

_NUMBERED = re.compile(r"^\d+[.)]\s*")
_BULLETED = re.compile(r"^[-•*]\s+")
_SENTENCES = re.compile(r"(?<=[.!?])\s+")


def synthesize_from_context(context_text: str, references: list[Reference]) -> StructuredAnswer:
    """Assemble a minimal policy-shaped answer straight from the context."""
    context = clean_chunk(context_text or "")
    snippet = f"{context[:SNIPPET_CHARS]}…" if len(context) > SNIPPET_CHARS else context
    lines = [line.strip() for line in snippet.splitlines() if line.strip()]

    steps: list[str] = []
    prose: list[str] = []
    for line in lines:
        if _NUMBERED.match(line):
            steps.append(_NUMBERED.sub("", line, count=1))
        elif _BULLETED.match(line):
            steps.append(_BULLETED.sub("", line, count=1))
        else:
            prose.append(line)
    steps = [step for step in steps if step][:MAX_STEPS]

    lead = _lead_sentences(prose, limit=2)
    nutshell = " ".join([NUTSHELL_WITH_CONTEXT, *lead]) if context else NUTSHELL_WITHOUT_CONTEXT
    refs = references[:MAX_REFERENCES]

    document = [f"**In a nutshell**\n{nutshell}"]
    if steps:
        document.append("**Step-by-step**\n" + "\n".join(f"{idx}. {step}" for idx, step in enumerate(steps, start=1)))
    document.append(f"**What’s next**\n{NEXT_STEP}")
    if refs:
        document.append("**References**\n" + "\n".join(_reference_line(ref) for ref in refs))
    text = apply_policy("\n\n".join(document))

    summary = " ".join(steps[:2]) or " ".join(lead) or nutshell
    return StructuredAnswer(
        title="Answer",
        summary=summary[:200].strip() or NUTSHELL_WITHOUT_CONTEXT,
        bullets=steps[:5],
        cta=None,
        raw=RawAnswer(text=text, references=refs),
    )


def _lead_sentences(prose: list[str], *, limit: int) -> list[str]:
    sentences: list[str] = []
    for line in prose:
        for sentence in _SENTENCES.split(line):
            sentence = sentence.strip()
            if len(sentence) >= 12:
                sentences.append(sentence)
            if len(sentences) >= limit:
                return sentences
    return sentences


def _reference_line(reference: Reference) -> str:
    label = (
        reference.title
        or reference.model_key
        or " ".join(part for part in (reference.manufacturer, reference.description) if part)
    )
    return f"• {reference.source} - {label}" if label else f"• {reference.source}"
