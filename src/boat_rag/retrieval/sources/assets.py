"""Keyword-scored search over installed equipment records."""

from __future__ import annotations

import logging
import math
from typing import Any

from boat_rag.retrieval.datastore import Datastore, RowQuery
from boat_rag.retrieval.normalize import or_query
from boat_rag.retrieval.registry import EvidenceSource, SourceQuery
from boat_rag.types import EvidenceCandidate

logger = logging.getLogger(__name__)

_ILIKE_COLUMNS = ("model_key", "model", "manufacturer", "system", "category", "tags", "notes", "description")
_FIELD_WEIGHTS: tuple[tuple[tuple[str, ...], float], ...] = (
    (("model_key", "model"), 8.0),
    (("manufacturer",), 5.0),
    (("system", "category", "tags", "notes"), 3.0),
    (("description",), 1.0),
)
_ROW_LIMIT = 50
_ILIKE_TOKENS = 5


def score_asset(row: dict[str, Any], tokens: list[str]) -> float:
    """Additive field-match score with an instance-order tie-break."""
    score = 0.0
    for token in tokens:
        for columns, weight in _FIELD_WEIGHTS:
            if any(token in _field_text(row.get(column)) for column in columns):
                score += weight
    if score <= 0:
        return 0.0
    index = row.get("instance_index")
    if isinstance(index, (int, float)) and math.isfinite(index) and index >= 0:
        score += 1.0 / (index + 1)
    return score


def asset_text(row: dict[str, Any]) -> str:
    header = " ".join(str(row[key]) for key in ("manufacturer", "model") if row.get(key))
    parts = [header, row.get("description") or "", row.get("notes") or ""]
    return ". ".join(part.strip() for part in parts if part and part.strip())


class AssetSearch(EvidenceSource):
    """Equipment lookup by full-text column or broad OR pattern match."""

    name = "asset"

    def __init__(self, datastore: Datastore | None, *, table: str, use_fts: bool = True) -> None:
        self.datastore = datastore
        self.table = table
        self.use_fts = use_fts

    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        if self.datastore is None or not query.tokens:
            return []
        if self.use_fts:
            expression = or_query(query.tokens)
            if not expression:
                return []
            row_query = RowQuery(text_search=("search_text", expression), limit=_ROW_LIMIT)
        else:
            row_query = RowQuery(
                ilike_any=[
                    (column, token)
                    for token in query.tokens[:_ILIKE_TOKENS]
                    for column in _ILIKE_COLUMNS
                ],
                limit=_ROW_LIMIT,
            )
        rows = await self.datastore.select(self.table, row_query)

        scored = [(score_asset(row, query.tokens), row) for row in rows]
        scored = [(score, row) for score, row in scored if score > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        logger.debug("Asset search matched %d/%d rows", len(scored), len(rows))
        return [_to_candidate(row, score) for score, row in scored[: max(1, query.limit)]]


def _to_candidate(row: dict[str, Any], score: float) -> EvidenceCandidate:
    return EvidenceCandidate(
        id=str(row.get("id")),
        source="asset",
        score=score,
        text=asset_text(row),
        manufacturer=row.get("manufacturer"),
        model=row.get("model"),
        model_key=row.get("model_key"),
        description=row.get("description"),
        title=" ".join(str(row[key]) for key in ("manufacturer", "model") if row.get(key)) or None,
        urls=[str(url) for url in row.get("manual_urls") or []],
        metadata={"row": row},
    )


def _field_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value).lower()
    return str(value).lower()
