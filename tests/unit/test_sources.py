import pytest

from boat_rag.errors import SourceUnavailable
from boat_rag.retrieval.datastore import DatastoreError, InMemoryDatastore
from boat_rag.retrieval.normalize import tokenize
from boat_rag.retrieval.registry import SourceQuery
from boat_rag.retrieval.sources.assets import AssetSearch, score_asset
from boat_rag.retrieval.sources.knowledge import (
    KNOWLEDGE_SCORE,
    KnowledgeSearch,
    find_focus_system,
    system_header,
)
from boat_rag.retrieval.sources.playbooks import PlaybookSearch, format_playbook, parse_steps
from boat_rag.retrieval.sources.vector import VectorSearch
from boat_rag.retrieval.vector_store import InMemoryVectorIndex, VectorRecord


class FailingDatastore(InMemoryDatastore):
    async def select(self, table, query=None):
        raise DatastoreError("connection refused")


class FixedEmbedder:
    model_name = "fixed"
    dimension = 4

    def __init__(self, vector: list[float] | None = None, error: Exception | None = None) -> None:
        self.vector = vector or [1.0, 0.0, 0.0, 0.0]
        self.error = error

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.vector for _ in texts]

    async def embed_query(self, text: str) -> list[float]:
        if self.error is not None:
            raise self.error
        return self.vector


class WorldDownIndex(InMemoryVectorIndex):
    async def query(self, vector, *, top_k, namespace):
        if namespace == "world":
            raise TimeoutError("world partition timeout")
        return await super().query(vector, top_k=top_k, namespace=namespace)


def _query(question: str, **fields) -> SourceQuery:
    tokens = tokenize(question)
    fields.setdefault("keywords", tokens)
    return SourceQuery(question=question, tokens=tokens, **fields)


def test_score_asset_weights_fields(asset_rows: list[dict]) -> None:
    gps = asset_rows[0]

    assert score_asset(gps, ["gps", "boat"]) == 13.0
    assert score_asset(gps, ["anchor"]) == 0.0


@pytest.mark.asyncio
async def test_asset_search_full_text(datastore: InMemoryDatastore) -> None:
    source = AssetSearch(datastore, table="boat_assets")

    results = await source.search(_query("What GPS do I have on my boat?"))

    assert [candidate.id for candidate in results] == ["asset-gps"]
    gps = results[0]
    assert gps.title == "Garmin GPSMAP 8610"
    assert gps.urls == ["https://www.garmin.com/manuals/gpsmap8610.pdf"]
    assert gps.metadata["row"]["model_key"] == "gpsmap8610"


@pytest.mark.asyncio
async def test_asset_search_pattern_fallback(datastore: InMemoryDatastore) -> None:
    source = AssetSearch(datastore, table="boat_assets", use_fts=False)

    results = await source.search(_query("watermaker"))

    assert [candidate.id for candidate in results] == ["asset-watermaker"]
    assert results[0].score == 5.0


@pytest.mark.asyncio
async def test_asset_search_without_tokens_or_store() -> None:
    assert await AssetSearch(InMemoryDatastore(), table="boat_assets").search(_query("what is the")) == []
    assert await AssetSearch(None, table="boat_assets").search(_query("gps")) == []


@pytest.mark.asyncio
async def test_asset_search_datastore_failure_is_recorded() -> None:
    query = _query("gps")

    results = await AssetSearch(FailingDatastore(), table="boat_assets").search(query)

    assert results == []
    assert query.failures == ["asset:connection refused"]


def test_parse_steps_accepts_every_encoding() -> None:
    assert parse_steps(["a", " ", "b"]) == ["a", "b"]
    assert parse_steps('["one", "two"]') == ["one", "two"]
    assert parse_steps("1. Isolate\n\n2. Clean") == ["1. Isolate", "2. Clean"]
    assert parse_steps(None) == []


def test_format_playbook_block() -> None:
    block = format_playbook({"id": "pb", "title": "T", "safety": "Isolate the breaker first"})

    assert block["safety"] == ["Isolate the breaker first"]
    assert block["source"] == "standards_playbooks"
    assert format_playbook({"id": "empty"}) is None


@pytest.mark.asyncio
async def test_playbook_search_scores_matchers_and_triggers(datastore: InMemoryDatastore) -> None:
    source = PlaybookSearch(datastore, table="standards_playbooks")

    results = await source.search(_query("watermaker filter", keywords=["watermaker", "filter"]))

    assert [candidate.id for candidate in results] == ["pb-watermaker-filter"]
    playbook = results[0]
    assert playbook.score == 15.25
    assert playbook.urls == ["spectrawatermakers.com"]
    assert playbook.text.startswith("Watermaker prefilter change. Replace")


@pytest.mark.asyncio
async def test_playbook_search_needs_keywords(datastore: InMemoryDatastore) -> None:
    assert await PlaybookSearch(datastore, table="standards_playbooks").search(_query("q", keywords=[])) == []


def test_focus_system_and_header(system_rows: list[dict]) -> None:
    focus = find_focus_system("How do I service the watermaker filter?", system_rows)

    assert focus["id"] == "sys-wm"
    assert system_header(focus) == "System: watermaker - Spectra Newport 400"
    assert find_focus_system("Tell me a joke", system_rows) is None
    assert system_header(None) is None


@pytest.mark.asyncio
async def test_knowledge_search_uses_authority_ladder(datastore: InMemoryDatastore) -> None:
    source = KnowledgeSearch(
        datastore,
        systems_table="boat_systems",
        playbooks_table="standards_playbooks",
        knowledge_table="boat_knowledge",
    )

    results = await source.search(_query("How do I service the watermaker filter?"))

    ids = [candidate.id for candidate in results]
    assert ids == [
        "pb-watermaker-filter:summary",
        "pb-watermaker-filter:step:1",
        "pb-watermaker-filter:step:2",
        "pb-watermaker-filter:step:3",
        "kn-wm-1",
    ]
    assert [candidate.score for candidate in results] == [1.0, 0.9, 0.9, 0.9, KNOWLEDGE_SCORE]
    assert results[-1].text == (
        "Membrane flush: Flush the membrane with fresh water weekly. Use the built-in flush cycle."
    )
    assert results[0].metadata["focus_system"]["id"] == "sys-wm"


async def _vector_index(index_cls=InMemoryVectorIndex) -> InMemoryVectorIndex:
    index = index_cls(dimension=4)
    await index.upsert(
        [
            VectorRecord("p1", [1.0, 0.0, 0.0, 0.0], {"text": "Garmin GPS wiring guide"}),
            VectorRecord("p2", [0.9, 0.1, 0.0, 0.0], {"text": "Garmin GPS wiring guide"}),
            VectorRecord("p3", [0.8, 0.2, 0.0, 0.0], {"text": "Anchor windlass notes"}),
            VectorRecord("p4", [0.7, 0.3, 0.0, 0.0], {"text": "GPS antenna mounting"}),
            VectorRecord("p5", [0.6, 0.4, 0.0, 0.0], {"text": "GPS firmware update"}),
        ],
        namespace="default",
    )
    await index.upsert(
        [
            VectorRecord("w1", [1.0, 0.0, 0.0, 0.0], {"text": "Garmin GPS manual page", "url": "https://garmin.com/m.pdf"}),
            VectorRecord("w2", [0.0, 1.0, 0.0, 0.0], {"text": "gps other"}),
        ],
        namespace="world",
    )
    return index


@pytest.mark.asyncio
async def test_vector_search_filters_prunes_and_dedupes() -> None:
    source = VectorSearch(
        FixedEmbedder(), await _vector_index(), private_namespace="default", world_namespace="world"
    )
    query = _query("gps", top_k=20)

    results = await source.search(query)

    assert {candidate.id for candidate in results} == {"p1", "p4", "w1"}
    partitions = {candidate.id: candidate.metadata["partition"] for candidate in results}
    assert partitions == {"p1": "private", "p4": "private", "w1": "world"}
    assert query.diagnostics["vec_private_matches"] == 4
    assert query.diagnostics["pruned_world"] == 1
    world = next(candidate for candidate in results if candidate.id == "w1")
    assert world.urls == ["https://garmin.com/m.pdf"]


@pytest.mark.asyncio
async def test_vector_search_embedding_failure() -> None:
    source = VectorSearch(
        FixedEmbedder(error=RuntimeError("quota")),
        await _vector_index(),
        private_namespace="default",
        world_namespace="world",
    )
    query = _query("gps")

    assert await source.search(query) == []
    assert query.failures == ["vector:embedding failed: quota"]


@pytest.mark.asyncio
async def test_vector_search_partition_failure_keeps_private_results() -> None:
    source = VectorSearch(
        FixedEmbedder(),
        await _vector_index(WorldDownIndex),
        private_namespace="default",
        world_namespace="world",
    )
    query = _query("gps")

    results = await source.search(query)

    assert results
    assert all(candidate.metadata["partition"] == "private" for candidate in results)
    assert query.failures == ["vector:world:world partition timeout"]


@pytest.mark.asyncio
async def test_index_rejects_wrong_dimension() -> None:
    index = InMemoryVectorIndex(dimension=4)

    with pytest.raises(ValueError):
        await index.upsert([VectorRecord("bad", [1.0, 0.0])], namespace="default")

    assert await index.stats() == {"dimension": 4, "namespaces": {"default": 0}}


def test_source_unavailable_carries_reason() -> None:
    exc = SourceUnavailable("web", "serpapi:403")

    assert exc.source == "web"
    assert exc.reason == "serpapi:403"
