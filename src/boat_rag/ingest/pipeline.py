"""Knowledge ingest: chunk -> clean -> embed -> upsert into a vector partition."""

from __future__ import annotations

import logging
import re
from typing import Any

from boat_rag.ingest.chunker import chunk_text
from boat_rag.ingest.embedder import Embedder
from boat_rag.ingest.fetcher import PageFetcher
from boat_rag.retrieval.sanitize import clean_chunk
from boat_rag.retrieval.vector_store import VectorIndex, VectorRecord

logger = logging.getLogger(__name__)


class KnowledgeIngestPipeline:
    """Feeds manuals and notes into the vector index used by vector search.

    Kept apart from query-time retrieval so indexing can run in batch jobs.
    """

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        *,
        default_namespace: str,
        max_chars: int = 3500,
        overlap: int = 200,
        fetcher: PageFetcher | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._default_namespace = default_namespace
        self._max_chars = max_chars
        self._overlap = overlap
        self._fetcher = fetcher

    async def ingest_text(
        self,
        text: str,
        *,
        doc_id: str,
        title: str | None = None,
        namespace: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[VectorRecord]:
        """Index one document and return the stored records."""
        chunks = [
            cleaned
            for cleaned in (
                clean_chunk(chunk)
                for chunk in chunk_text(text, max_chars=self._max_chars, overlap=self._overlap)
            )
            if cleaned
        ]
        if not chunks:
            return []

        vectors = await self._embedder.embed_documents(chunks)
        slug = _slug(doc_id)
        records = [
            VectorRecord(
                id=f"{slug}-chunk-{idx:04d}",
                values=vector,
                metadata={
                    **(metadata or {}),
                    "doc_id": doc_id,
                    "title": title,
                    "text": chunk,
                    "chunk_index": idx,
                },
            )
            for idx, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True))
        ]
        target = namespace or self._default_namespace
        await self._index.upsert(records, namespace=target)
        logger.info("Indexed %d chunks for %s into %s", len(records), doc_id, target)
        return records

    async def ingest_url(self, url: str, *, namespace: str | None = None) -> list[VectorRecord]:
        if self._fetcher is None:
            raise RuntimeError("No page fetcher configured for URL ingest")
        page = await self._fetcher.fetch(url)
        return await self.ingest_text(
            page.text,
            doc_id=url,
            title=url,
            namespace=namespace,
            metadata={"url": url, "source_tag": page.source_tag},
        )


def _slug(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-").lower() or "doc"
