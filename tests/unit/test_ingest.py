import pytest

from boat_rag.ingest.embedder import HashingEmbedder, create_embedder
from boat_rag.ingest.fetcher import FetchedPage
from boat_rag.ingest.pipeline import KnowledgeIngestPipeline
from boat_rag.retrieval.vector_store import InMemoryVectorIndex


class StaticFetcher:
    async def fetch(self, url: str) -> FetchedPage:
        return FetchedPage(url=url, text="Outboard winterizing.\n\nFog the cylinders.", source_tag="web:html")


@pytest.mark.asyncio
async def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimension=32)

    first = await embedder.embed_query("flush the outboard")
    second = (await embedder.embed_documents(["flush the outboard"]))[0]

    assert first == second
    assert sum(value * value for value in first) == pytest.approx(1.0)
    assert await embedder.embed_query("") == [0.0] * 32


def test_create_embedder_without_key_is_offline() -> None:
    embedder = create_embedder(api_key=None, model_name="text-embedding-3-large", dimension=3072)

    assert isinstance(embedder, HashingEmbedder)
    assert embedder.model_name == "text-embedding-3-large"


@pytest.mark.asyncio
async def test_ingest_text_chunks_and_upserts() -> None:
    embedder = HashingEmbedder(dimension=16)
    index = InMemoryVectorIndex(dimension=16)
    pipeline = KnowledgeIngestPipeline(embedder, index, default_namespace="default", max_chars=50, overlap=0)

    records = await pipeline.ingest_text(
        "Change the fuel filter.\n\nBleed the injection pump.\n\nCheck for leaks.",
        doc_id="Diesel Notes",
        title="Diesel notes",
        metadata={"system": "engine"},
    )

    assert [record.id for record in records] == ["diesel-notes-chunk-0000", "diesel-notes-chunk-0001"]
    assert records[0].metadata["system"] == "engine"
    assert records[1].metadata["text"] == "Check for leaks."
    assert await index.stats() == {"dimension": 16, "namespaces": {"default": 2}}
    assert await pipeline.ingest_text("   ", doc_id="empty") == []


@pytest.mark.asyncio
async def test_ingest_url_uses_fetcher() -> None:
    index = InMemoryVectorIndex(dimension=16)
    pipeline = KnowledgeIngestPipeline(
        HashingEmbedder(dimension=16), index, default_namespace="default", fetcher=StaticFetcher()
    )

    records = await pipeline.ingest_url("https://example.com/outboard", namespace="world")

    assert len(records) == 1
    assert records[0].metadata["url"] == "https://example.com/outboard"
    assert records[0].metadata["source_tag"] == "web:html"
    assert (await index.stats())["namespaces"] == {"world": 1}
