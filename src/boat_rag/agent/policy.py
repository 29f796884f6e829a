"""Section-ordering policy applied to every generated answer."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Section:
    key: str
    heading: str
    pattern: re.Pattern[str]
    cap: int | None
    shape: str


SECTIONS: tuple[Section, ...] = (
    Section("nutshell", "In a nutshell", re.compile(r"in a nutshell", re.I), 3, "sentences"),
    Section("tools", "Tools & Materials", re.compile(r"tools\s*(?:&|and)\s*materials", re.I), 10, "bullets"),
    Section("steps", "Step-by-step", re.compile(r"step[\s-]*by[\s-]*step", re.I), 12, "numbered"),
    Section("safety", "⚠️ Safety", re.compile(r"safety", re.I), 10, "bullets"),
    Section("specs", "Specs & Notes", re.compile(r"specs?\s*(?:&|and)\s*notes", re.I), 10, "bullets"),
    Section("aftercare", "Dispose / Aftercare", re.compile(r"dispose\s*/\s*aftercare", re.I), None, "text"),
    Section("next", "What’s next", re.compile(r"what['’]?s next", re.I), None, "text"),
    Section("references", "References", re.compile(r"references", re.I), None, "text"),
)
HEADINGS: tuple[str, ...] = tuple(section.heading for section in SECTIONS)

_MARKED_HEADING = re.compile(r"^(?:\*\*[^*]+\*\*|#{1,3}\s+.+)$")
_COLON_HEADING = re.compile(r"^[^\s\d\-•*].{0,60}:$")
_UNKNOWN_COLON_HEADING = re.compile(r"^[A-Z].{0,60}:$")
_NUMBERED = re.compile(r"^\d{1,2}[.)]\s+(.*)$")
_BULLETED = re.compile(r"^[-•*–]\s+(.*)$")
_INLINE_NUMBER = re.compile(r"(?<=[.!?:;])\s+(?=\d{1,2}[.)]\s+[A-Z])")
_INLINE_BULLET = re.compile(r"(?<=\S)[ \t]+•\s+")
_SENTENCES = re.compile(r"(?<=[.!?])\s+")


def normalize_list(text: str) -> str:
    """Move inline numbered items and bullets onto their own lines."""
    out = _INLINE_NUMBER.sub("\n", text or "")
    return _INLINE_BULLET.sub("\n• ", out)


def match_heading(line: str) -> Section | None:
    label = line.strip().strip("#").strip().strip("*").strip().rstrip(":").strip()
    label = re.sub(r"^[^\w]+", "", label).strip()
    for section in SECTIONS:
        if section.pattern.fullmatch(label):
            return section
    return None


def enforce_sections(text: str) -> str:
    """Keep only recognized sections, in canonical order, under normalized headings."""
    buckets: dict[str, list[str]] = {}
    current: Section | None = None
    for raw_line in normalize_list(text).splitlines():
        line = raw_line.strip()
        if not line:
            if current is not None:
                buckets[current.key].append("")
            continue
        section = match_heading(line)
        if section is not None and (_MARKED_HEADING.match(line) or _COLON_HEADING.match(line) or line == section.heading):
            current = section
            buckets.setdefault(section.key, [])
            continue
        if _MARKED_HEADING.match(line) or _UNKNOWN_COLON_HEADING.match(line):
            current = None
            continue
        if current is not None:
            buckets[current.key].append(line)

    blocks: list[str] = []
    for section in SECTIONS:
        body = _shape(section, buckets.get(section.key, []))
        if body:
            blocks.append(f"**{section.heading}**\n{body}")
    return "\n\n".join(blocks)


def apply_policy(text: str) -> str:
    """Enforce sections, keeping the raw text when nothing survives."""
    enforced = enforce_sections(text)
    if enforced.strip():
        return enforced
    logger.warning("Policy enforcement removed all content; returning raw text")
    return (text or "").strip()


def section_body(text: str, key: str) -> str:
    """Body of one canonical section from already enforced text."""
    heading = next((section.heading for section in SECTIONS if section.key == key), None)
    if heading is None:
        return ""
    match = re.search(rf"\*\*{re.escape(heading)}\*\*\n(.*?)(?=\n\n\*\*|\Z)", text or "", re.S)
    return match.group(1).strip() if match else ""


def list_items(body: str) -> list[str]:
    items: list[str] = []
    for line in body.splitlines():
        line = line.strip()
        match = _NUMBERED.match(line) or _BULLETED.match(line)
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items


def _shape(section: Section, lines: list[str]) -> str:
    content = [line for line in lines if line.strip()]
    if not content:
        return ""
    if section.shape == "sentences":
        sentences = [s for s in _SENTENCES.split(" ".join(content)) if s.strip()]
        return " ".join(sentences[: section.cap])
    if section.shape in {"numbered", "bullets"}:
        items = []
        for line in content:
            match = _NUMBERED.match(line) or _BULLETED.match(line)
            items.append(match.group(1).strip() if match else line)
        items = [item for item in items if item][: section.cap]
        if section.shape == "numbered":
            return "\n".join(f"{idx}. {item}" for idx, item in enumerate(items, start=1))
        return "\n".join(f"• {item}" for item in items)
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
