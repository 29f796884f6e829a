"""Short knowledge snippets scoped to the equipment the question is about."""

from __future__ import annotations

import logging
import re
from typing import Any

from boat_rag.retrieval.datastore import Datastore, RowQuery
from boat_rag.retrieval.registry import EvidenceSource, SourceQuery
from boat_rag.retrieval.sources.playbooks import parse_steps
from boat_rag.types import EvidenceCandidate

logger = logging.getLogger(__name__)

SUMMARY_SCORE = 1.0
STEP_SCORE = 0.9
KNOWLEDGE_SCORE = 0.85

_MAINTENANCE_VERBS = re.compile(r"maintain|service|filter|schedule|troubleshoot|replace|clean")
_MAINTENANCE_TYPES = re.compile(r"maintain|maintenance|service|filter|replace|schedule")


def find_focus_system(question: str, systems: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the installed system the question most likely refers to."""
    lowered = (question or "").lower()
    if not lowered or not systems:
        return None

    best: dict[str, Any] | None = None
    best_score = 0
    for system in systems:
        score = 0
        if _mentions(lowered, system.get("category")):
            score += 3
        if _mentions(lowered, system.get("brand")):
            score += 2
        if _mentions(lowered, system.get("model")):
            score += 2
        if _MAINTENANCE_VERBS.search(lowered):
            score += 1
        if score > best_score:
            best, best_score = system, score
    if best is None:
        return None
    return {key: best.get(key) for key in ("id", "category", "brand", "model", "serial_number")}


def system_header(focus: dict[str, Any] | None) -> str | None:
    if not focus:
        return None
    label = " ".join(str(focus[key]) for key in ("brand", "model") if focus.get(key))
    category = focus.get("category") or "System"
    return f"System: {category} - {label}" if label else f"System: {category}"


class KnowledgeSearch(EvidenceSource):
    """Playbook summaries/steps and boat knowledge, ranked on a fixed authority ladder."""

    name = "knowledge"

    def __init__(
        self,
        datastore: Datastore | None,
        *,
        systems_table: str,
        playbooks_table: str,
        knowledge_table: str,
        playbook_lines: int = 4,
        knowledge_lines: int = 6,
    ) -> None:
        self.datastore = datastore
        self.systems_table = systems_table
        self.playbooks_table = playbooks_table
        self.knowledge_table = knowledge_table
        self.playbook_lines = playbook_lines
        self.knowledge_lines = knowledge_lines

    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        if self.datastore is None:
            return []
        systems = await self.datastore.select(
            self.systems_table, RowQuery(order_by="updated_at")
        )
        focus = find_focus_system(query.question, systems)

        candidates = await self._playbook_snippets(query.question, focus)
        candidates.extend(await self._knowledge_snippets(query.question, focus))
        for candidate in candidates:
            candidate.metadata["focus_system"] = focus
        logger.debug(
            "Knowledge search found %d snippets (focus=%s)",
            len(candidates),
            focus.get("category") if focus else None,
        )
        return candidates

    async def _playbook_snippets(
        self, question: str, focus: dict[str, Any] | None
    ) -> list[EvidenceCandidate]:
        rows = await self.datastore.select(self.playbooks_table, RowQuery(order_by="updated_at"))
        lowered = question.lower()
        system_words = [
            str(focus[key]).lower() for key in ("category", "brand", "model") if focus and focus.get(key)
        ]

        scored = [(_score_playbook(row, lowered, system_words), row) for row in rows]
        scored = [(score, row) for score, row in scored if score > 0]
        scored.sort(key=lambda item: item[0], reverse=True)

        snippets: list[EvidenceCandidate] = []
        for _, row in scored:
            if len(snippets) >= self.playbook_lines:
                break
            summary = str(row.get("summary") or "").strip()
            if summary:
                snippets.append(_snippet(f"{row.get('id')}:summary", summary, SUMMARY_SCORE, row))
            for idx, step in enumerate(parse_steps(row.get("steps")), start=1):
                if len(snippets) >= self.playbook_lines:
                    break
                snippets.append(_snippet(f"{row.get('id')}:step:{idx}", step, STEP_SCORE, row))
        return snippets[: self.playbook_lines]

    async def _knowledge_snippets(
        self, question: str, focus: dict[str, Any] | None
    ) -> list[EvidenceCandidate]:
        row_query = RowQuery(order_by="updated_at")
        if focus and focus.get("id") is not None:
            row_query.eq["system_id"] = focus["id"]
        rows = await self.datastore.select(self.knowledge_table, row_query)
        lowered = question.lower()
        category = str(focus.get("category") or "").lower() if focus else ""

        scored = [(_score_knowledge(row, lowered, category), row) for row in rows]
        if not focus:
            scored = [(score, row) for score, row in scored if score > 0]
        scored.sort(key=lambda item: item[0], reverse=True)

        snippets: list[EvidenceCandidate] = []
        for _, row in scored[: self.knowledge_lines]:
            lines = [line.strip() for line in str(row.get("content") or "").splitlines() if line.strip()]
            body = " ".join(lines[:2])
            title = str(row.get("title") or "").strip()
            text = f"{title}: {body}" if title and body else title or body
            if text:
                snippets.append(
                    EvidenceCandidate(
                        id=str(row.get("id")),
                        source="knowledge",
                        score=KNOWLEDGE_SCORE,
                        text=text,
                        title=title or None,
                        metadata={"knowledge_type": row.get("knowledge_type")},
                    )
                )
        return snippets


def _score_playbook(row: dict[str, Any], question: str, system_words: list[str]) -> int:
    score = 0
    archetype = str(row.get("archetype_key") or "").lower()
    title = str(row.get("title") or "").lower()
    if archetype and any(word in archetype for word in system_words):
        score += 3
    if title and any(word in title for word in system_words):
        score += 2
    if any(_mentions(question, trigger) for trigger in row.get("triggers") or []):
        score += 2
    if any(_mentions(question, matcher) for matcher in _flatten(row.get("matchers"))):
        score += 2
    summary = str(row.get("summary") or "").lower()
    if system_words and system_words[0] in summary:
        score += 1
    return score


def _score_knowledge(row: dict[str, Any], question: str, category: str) -> int:
    score = 0
    if _MAINTENANCE_TYPES.search(str(row.get("knowledge_type") or "").lower()):
        score += 2
    if _mentions(question, row.get("title")):
        score += 1
    if category and category in str(row.get("content") or "").lower():
        score += 1
    return score


def _snippet(snippet_id: str, text: str, score: float, row: dict[str, Any]) -> EvidenceCandidate:
    return EvidenceCandidate(
        id=snippet_id,
        source="knowledge",
        score=score,
        text=text,
        title=row.get("title"),
        triggers=[str(item) for item in row.get("triggers") or []],
    )


def _flatten(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, dict):
        return [str(item) for items in value.values() for item in (items if isinstance(items, list) else [items])]
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)]


def _mentions(question: str, needle: Any) -> bool:
    text = str(needle or "").strip().lower()
    return bool(text) and text in question
