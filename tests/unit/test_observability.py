import logging

import pytest

from boat_rag.obs.logging import setup_logging
from boat_rag.obs.telemetry import ConversationSink, confidence_from_references
from boat_rag.obs.tracing import TraceStore
from boat_rag.retrieval.datastore import InMemoryDatastore
from boat_rag.types import Question, RawAnswer, Reference, StructuredAnswer


class FailingInsertDatastore(InMemoryDatastore):
    async def insert(self, table, row):
        raise ConnectionError("db down")


def _record(store: TraceStore, idx: int):
    return store.create_record(
        question=f"q{idx}",
        tenant_id=None,
        intent="generic",
        mode="retrieval",
        strategy="extractive",
        cache_hit=False,
        reference_ids=[],
        source_traces=[],
        meta={"failures": ["web:serpapi:timeout"]},
        latency_ms=1.0,
        trace_id=f"t{idx}",
    )


def test_trace_store_evicts_oldest() -> None:
    store = TraceStore(capacity=2)
    for idx in range(3):
        _record(store, idx)

    assert len(store) == 2
    assert [record.trace_id for record in store.list_recent()] == ["t2", "t1"]
    assert store.get("t1").failures == ["web:serpapi:timeout"]
    with pytest.raises(KeyError):
        store.get("t0")


def test_confidence_clips_scores() -> None:
    refs = [Reference(id=str(idx), source="asset", score=score) for idx, score in enumerate([13.0, 0.5, 0.2, 0.1])]

    assert confidence_from_references(refs) == pytest.approx(0.5667, abs=1e-4)
    assert confidence_from_references([]) == 0.0


@pytest.mark.asyncio
async def test_conversation_sink_writes_row() -> None:
    datastore = InMemoryDatastore()
    sink = ConversationSink(datastore, table="boat_conversations")
    answer = StructuredAnswer(
        title="Answer",
        summary="s",
        raw=RawAnswer(text="**In a nutshell**\ns", references=[Reference(id="a", source="asset", score=1.0)]),
    )

    assert await sink.record(Question(text="q", tenant_id="boat-1", request_id="r1"), answer)

    row = (await datastore.select("boat_conversations"))[0]
    assert row["boat_id"] == "boat-1"
    assert row["request_id"] == "r1"
    assert row["confidence_score"] == 1.0
    assert row["sources_used"] == [{"id": "a", "source": "asset", "score": 1.0}]


@pytest.mark.asyncio
async def test_conversation_sink_failures_are_swallowed() -> None:
    answer = StructuredAnswer(title="t", summary="s", raw=RawAnswer(text="x"))

    assert await ConversationSink(FailingInsertDatastore(), table="c").record(Question(text="q"), answer) is False
    assert await ConversationSink(InMemoryDatastore(), table="c", enabled=False).record(Question(text="q"), answer) is False


def test_setup_logging_is_idempotent() -> None:
    setup_logging("DEBUG")
    setup_logging("INFO")

    logger = logging.getLogger("boat_rag")
    marked = [handler for handler in logger.handlers if getattr(handler, "_boat_rag", False)]
    assert len(marked) == 1
    assert logger.level == logging.INFO
