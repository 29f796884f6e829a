"""System prompt, tone presets and per-request prompt assembly."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from boat_rag.agent.policy import HEADINGS

logger = logging.getLogger(__name__)

_PERSONA_FILE = "assistant_persona.md"
_STYLE_FILE = "response_style_policy.md"
_RESOURCE_LIMIT = 2

_DEFAULT_PERSONA = """
You are a practical, safety-first marine technician helping a boat owner
maintain the equipment actually installed on their boat. Ground every claim
in the supplied context and resources; say so plainly when they do not cover
the question.
""".strip()

_DEFAULT_STYLE = (
    "Use only these sections, in this order, and skip the ones that do not apply: "
    + ", ".join(f"**{heading}**" for heading in HEADINGS)
    + ". Keep the nutshell to three sentences or fewer, number the steps, and use "
    "bullets for tools, safety and specs."
)

_SAFETY_HINTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(pressure|pressuri[sz]ed|psi|bar|accumulator)\b", re.I),
     "Relieve system pressure before opening any fitting."),
    (re.compile(r"\b(electrical|wiring|battery|batteries|breaker|shore power|volt\w*|12v|24v)\b", re.I),
     "Isolate power at the breaker or battery switch before working on circuits."),
    (re.compile(r"\b(chemical|solvent|acid|antifreeze|glycol|fuel|biocide)\b", re.I),
     "Wear gloves and eye protection and ventilate when handling chemicals."),
    (re.compile(r"\b(membrane|watermaker|reverse osmosis|desalinator)\b", re.I),
     "Never run a watermaker membrane dry or expose it to chlorinated water."),
)


@dataclass(slots=True, frozen=True)
class Tone:
    key: str
    name: str
    voice: str
    bullet_prefix: str = "• "


TONES: dict[str, Tone] = {
    "skipper": Tone("skipper", "Practical Skipper", "Practical, stepwise and safety-first. Short sentences."),
    "coach": Tone("coach", "Supportive Coach", "Warm and encouraging; explain why each step matters."),
    "tech": Tone("tech", "Technical", "Precise technical language with specifications where known.", "– "),
    "brief": Tone("brief", "Brief", "As short as possible: a nutshell and only critical safety notes."),
}


def select_tone(key: str | None) -> Tone:
    return TONES.get((key or "").strip().lower(), TONES["skipper"])


def safety_hints(question: str) -> list[str]:
    return [hint for pattern, hint in _SAFETY_HINTS if pattern.search(question or "")]


class PromptBuilder:
    """Builds the system prompt once and formats per-request user prompts."""

    def __init__(self, *, persona: str = _DEFAULT_PERSONA, style_policy: str = _DEFAULT_STYLE) -> None:
        parts = [
            "You are the boat maintenance assistant.",
            f"## Assistant Persona\n{persona.strip()}" if persona.strip() else "",
            f"## Response Style Policy\n{style_policy.strip()}" if style_policy.strip() else "",
            "Always follow the policy and produce only the sections that apply, in the specified order.",
            "Never include extraneous content outside those sections.",
        ]
        self.system_prompt = "\n\n".join(part for part in parts if part)

    @classmethod
    def from_directory(cls, directory: str | Path | None) -> PromptBuilder:
        """Load persona and style files when present, else use built-in defaults."""
        if directory is None:
            return cls()
        root = Path(directory)
        persona = _read(root / _PERSONA_FILE) or _DEFAULT_PERSONA
        style = _read(root / _STYLE_FILE) or _DEFAULT_STYLE
        return cls(persona=persona, style_policy=style)

    def build_user_prompt(
        self,
        question: str,
        context_text: str,
        *,
        tone: Tone,
        assets: list[dict[str, Any]] | None = None,
        playbooks: list[dict[str, Any]] | None = None,
        web_snippets: list[dict[str, Any]] | None = None,
        structured: bool = False,
    ) -> str:
        resources = {
            "assets": [_public(asset) for asset in (assets or [])[:_RESOURCE_LIMIT]],
            "playbooks": (playbooks or [])[:_RESOURCE_LIMIT],
            "web": (web_snippets or [])[:_RESOURCE_LIMIT],
        }
        blocks = [
            f"Question: {question}",
            f"Tone: {tone.name}. {tone.voice}",
            f"Resources:\n{json.dumps(resources, ensure_ascii=False, default=str)}",
            f"Context:\n{context_text or '(none)'}",
        ]
        hints = safety_hints(question)
        if hints:
            blocks.append("Safety reminders to include:\n" + "\n".join(f"- {hint}" for hint in hints))
        if structured:
            blocks.append(
                "Return JSON: {title, summary, bullets?, cta?, text (markdown using the policy sections), "
                "reference_ids (ids from the resources you relied on)}"
            )
        else:
            blocks.append("Respond clearly and concisely using the policy sections.")
        return "\n\n".join(blocks)


def _public(row: dict[str, Any]) -> dict[str, Any]:
    keys = ("id", "manufacturer", "model", "model_key", "system", "category", "description", "notes")
    return {key: row[key] for key in keys if row.get(key) is not None}


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        logger.debug("Prompt file not found: %s", path)
        return ""
