"""Similarity search over the private and shared vector partitions."""

from __future__ import annotations

import asyncio
import logging

from boat_rag.errors import SourceUnavailable
from boat_rag.ingest.embedder import Embedder
from boat_rag.retrieval.normalize import keyword_hits
from boat_rag.retrieval.registry import EvidenceSource, SourceQuery
from boat_rag.retrieval.vector_store import VectorIndex, VectorMatch
from boat_rag.types import EvidenceCandidate

logger = logging.getLogger(__name__)

_MIN_K = 3
_MAX_K = 20
_WORLD_K = 5
_PRIVATE_KEEP = 8
_WORLD_KEEP = 2
_PRIVATE_PRUNED = 3
_WORLD_PRUNED = 1
_DEDUP_PREFIX = 160


class VectorSearch(EvidenceSource):
    name = "vector"

    def __init__(
        self,
        embedder: Embedder | None,
        index: VectorIndex | None,
        *,
        private_namespace: str,
        world_namespace: str,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.private_namespace = private_namespace
        self.world_namespace = world_namespace

    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        if self.embedder is None or self.index is None:
            return []
        try:
            vector = await self.embedder.embed_query(query.question)
        except Exception as exc:
            raise SourceUnavailable(self.name, f"embedding failed: {exc}") from exc

        k = max(_MIN_K, min(_MAX_K, query.top_k))
        namespace = query.namespace or self.private_namespace
        private, world = await asyncio.gather(
            self._query(vector, k, namespace, query),
            self._query(vector, min(k, _WORLD_K), self.world_namespace, query),
        )

        keywords = query.keywords
        if keywords:
            private = [match for match in private if keyword_hits(match.text, keywords) > 0]
        private = sorted(private, key=lambda match: match.score, reverse=True)[:_PRIVATE_KEEP]
        world = sorted(world, key=lambda match: match.score, reverse=True)[:_WORLD_KEEP]

        pruned = _rerank(private, keywords)[:_PRIVATE_PRUNED] + _rerank(world, keywords)[:_WORLD_PRUNED]
        results = _dedupe(_rerank(pruned, keywords))
        world_ids = {id(match) for match in world}
        query.diagnostics.update(
            vec_private_matches=len(private),
            vec_world_matches=len(world),
            pruned_private=sum(1 for match in results if id(match) not in world_ids),
            pruned_world=sum(1 for match in results if id(match) in world_ids),
        )
        logger.debug("Vector search kept %d (private=%d world=%d)", len(results), len(private), len(world))
        return [
            _to_candidate(match, "world" if id(match) in world_ids else "private") for match in results
        ]

    async def _query(
        self, vector: list[float], k: int, namespace: str, query: SourceQuery
    ) -> list[VectorMatch]:
        try:
            return await self.index.query(vector, top_k=k, namespace=namespace)
        except Exception as exc:
            logger.warning("Vector query failed for namespace %s: %s", namespace, exc)
            query.failures.append(f"{self.name}:{namespace}:{exc}")
            return []


def _rerank(matches: list[VectorMatch], keywords: list[str]) -> list[VectorMatch]:
    """Similarity first, local keyword hits as the tie-break."""
    return sorted(
        matches,
        key=lambda match: (match.score, keyword_hits(match.text, keywords)),
        reverse=True,
    )


def _dedupe(matches: list[VectorMatch]) -> list[VectorMatch]:
    seen: set[str] = set()
    unique: list[VectorMatch] = []
    for match in matches:
        key = match.id or match.text[:_DEDUP_PREFIX]
        text_key = match.text[:_DEDUP_PREFIX]
        if key in seen or (text_key and text_key in seen):
            continue
        seen.update({key, text_key} - {""})
        unique.append(match)
    return unique


def _to_candidate(match: VectorMatch, partition: str) -> EvidenceCandidate:
    metadata = dict(match.metadata)
    metadata["partition"] = partition
    return EvidenceCandidate(
        id=match.id,
        source="vector",
        score=max(0.0, match.score),
        text=match.text,
        title=metadata.get("title"),
        manufacturer=metadata.get("manufacturer"),
        model=metadata.get("model"),
        urls=[str(metadata["url"])] if metadata.get("url") else [],
        metadata=metadata,
    )
