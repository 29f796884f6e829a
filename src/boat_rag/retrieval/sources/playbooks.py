"""Keyword-scored search over maintenance procedure playbooks."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from boat_rag.retrieval.datastore import Datastore, RowQuery
from boat_rag.retrieval.registry import EvidenceSource, SourceQuery
from boat_rag.types import EvidenceCandidate

logger = logging.getLogger(__name__)

_TEXT_KEYWORDS = 4
_TEXT_LIMIT = 30
_ARRAY_LIMIT = 20
_RECENCY_BONUS = 0.25


def score_playbook(row: dict[str, Any], keywords: list[str]) -> float:
    title = str(row.get("title") or "").lower()
    summary = str(row.get("summary") or "").lower()
    matchers = [str(item).lower() for item in row.get("matchers") or []]
    triggers = [str(item).lower() for item in row.get("triggers") or []]

    score = 0.0
    for keyword in keywords:
        if keyword in title:
            score += 3.0
        if keyword in summary:
            score += 1.0
        if keyword in matchers:
            score += 4.0
        if keyword in triggers:
            score += 3.0
    if score > 0 and row.get("updated_at"):
        score += _RECENCY_BONUS
    return score


def parse_steps(value: Any) -> list[str]:
    """Steps arrive as a list, a JSON-encoded list or newline-separated text."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(step).strip() for step in value if str(step).strip()]
    text = str(value).strip()
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return [str(step).strip() for step in decoded if str(step).strip()]
    return [line.strip() for line in text.splitlines() if line.strip()]


def format_playbook(row: dict[str, Any]) -> dict[str, Any] | None:
    """Project a playbook row into the resource block given to the model."""
    block = {
        "id": row.get("id"),
        "title": row.get("title") or "",
        "summary": row.get("summary") or "",
        "steps": parse_steps(row.get("steps")),
        "safety": parse_steps(row.get("safety")),
        "matchers": list(row.get("matchers") or []),
        "triggers": list(row.get("triggers") or []),
        "ref_domains": list(row.get("ref_domains") or []),
        "updated_at": row.get("updated_at"),
        "source": "standards_playbooks",
    }
    if not (block["title"] or block["summary"] or block["steps"]):
        return None
    return block


class PlaybookSearch(EvidenceSource):
    name = "playbook"

    def __init__(self, datastore: Datastore | None, *, table: str) -> None:
        self.datastore = datastore
        self.table = table

    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        keywords = query.keywords
        if self.datastore is None or not keywords:
            return []

        text_query = RowQuery(
            ilike_any=[
                (column, keyword)
                for keyword in keywords[:_TEXT_KEYWORDS]
                for column in ("title", "summary")
            ],
            limit=_TEXT_LIMIT,
        )
        array_queries = [
            RowQuery(contains=(column, [keyword]), limit=_ARRAY_LIMIT)
            for keyword in keywords
            for column in ("matchers", "triggers")
        ]
        batches = await asyncio.gather(
            self.datastore.select(self.table, text_query),
            *(self.datastore.select(self.table, array_query) for array_query in array_queries),
        )

        rows: dict[str, dict[str, Any]] = {}
        for batch in batches:
            for row in batch:
                rows.setdefault(str(row.get("id")), row)

        scored = [(score_playbook(row, keywords), row) for row in rows.values()]
        scored = [(score, row) for score, row in scored if score > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        logger.debug("Playbook search scored %d candidates for %s", len(scored), keywords)
        return [_to_candidate(row, score) for score, row in scored[: max(1, query.limit)]]


def _to_candidate(row: dict[str, Any], score: float) -> EvidenceCandidate:
    title = str(row.get("title") or "")
    summary = str(row.get("summary") or "")
    return EvidenceCandidate(
        id=str(row.get("id")),
        source="playbook",
        score=score,
        text=". ".join(part for part in (title, summary) if part),
        title=title or None,
        triggers=[str(item) for item in row.get("triggers") or []],
        urls=[str(domain) for domain in row.get("ref_domains") or []],
        metadata={"row": row},
    )
