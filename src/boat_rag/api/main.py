"""FastAPI entrypoint: ask, health, traces, cache admin and knowledge ingest."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from boat_rag.agent.composer import ComposeResult, ResponseComposer
from boat_rag.agent.generators import build_generators, create_chat_model
from boat_rag.agent.intent import DEFAULT_RULES, IntentClassifier, completion_intent_fallback
from boat_rag.agent.prompt import PromptBuilder
from boat_rag.cache.answer_cache import SemanticAnswerCache
from boat_rag.config import Settings, get_settings, validate_settings
from boat_rag.errors import CacheUnavailable, QuestionValidationError
from boat_rag.ingest.embedder import Embedder, create_embedder
from boat_rag.ingest.fetcher import PageFetcher
from boat_rag.ingest.pipeline import KnowledgeIngestPipeline
from boat_rag.obs.logging import setup_logging
from boat_rag.obs.telemetry import ConversationSink
from boat_rag.obs.tracing import TraceStore
from boat_rag.retrieval.datastore import Datastore, InMemoryDatastore
from boat_rag.retrieval.mixer import ContextMixer
from boat_rag.retrieval.registry import SourceRegistry
from boat_rag.retrieval.sources.assets import AssetSearch
from boat_rag.retrieval.sources.knowledge import KnowledgeSearch
from boat_rag.retrieval.sources.playbooks import PlaybookSearch
from boat_rag.retrieval.sources.vector import VectorSearch
from boat_rag.retrieval.sources.web import SerpApiSearch, WebSearch, WebSearchProvider
from boat_rag.retrieval.vector_store import InMemoryVectorIndex, VectorIndex
from boat_rag.types import Question

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str | None = None
    tenant_id: str | None = Field(default=None, alias="tenantId")
    tone: str | None = None
    namespace: str | None = None
    top_k: int | None = Field(default=None, alias="topK", ge=1, le=50)
    context: str | list[str] | None = None
    references: list[dict[str, Any]] | None = None
    intent: str | None = None
    debug: bool = False


class IngestTextRequest(BaseModel):
    text: str = Field(min_length=1)
    doc_id: str = Field(min_length=1)
    title: str | None = None
    namespace: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class Services:
    settings: Settings
    datastore: Datastore
    vector_index: VectorIndex
    embedder: Embedder
    registry: SourceRegistry
    cache: SemanticAnswerCache
    composer: ResponseComposer
    ingest: KnowledgeIngestPipeline
    trace_store: TraceStore
    llm_configured: bool


def build_services(
    settings: Settings | None = None,
    *,
    datastore: Datastore | None = None,
    vector_index: VectorIndex | None = None,
    embedder: Embedder | None = None,
    llm: Any | None = None,
    web_provider: WebSearchProvider | None = None,
    fetcher: PageFetcher | None = None,
) -> Services:
    """Wire the pipeline; collaborators default to offline implementations."""
    settings = validate_settings(settings or get_settings())
    datastore = datastore if datastore is not None else InMemoryDatastore()
    embedder = embedder or create_embedder(
        api_key=settings.openai_api_key,
        model_name=settings.embedding_model,
        dimension=settings.embedding_dimension,
    )
    vector_index = vector_index or InMemoryVectorIndex(dimension=embedder.dimension)
    if llm is None:
        llm = create_chat_model(api_key=settings.openai_api_key, model=settings.chat_model)
    if web_provider is None and settings.serpapi_key:
        web_provider = SerpApiSearch(settings.serpapi_key, timeout=settings.fetch_timeout_seconds)
    fetcher = fetcher or PageFetcher(timeout=settings.fetch_timeout_seconds)

    registry = SourceRegistry()
    if settings.asset_search_enabled:
        registry.register(AssetSearch(datastore, table=settings.assets_table, use_fts=settings.fts_enabled))
    if settings.playbook_search_enabled:
        registry.register(PlaybookSearch(datastore, table=settings.playbooks_table))
    if settings.knowledge_search_enabled:
        registry.register(
            KnowledgeSearch(
                datastore,
                systems_table=settings.systems_table,
                playbooks_table=settings.playbooks_table,
                knowledge_table=settings.knowledge_table,
            )
        )
    if settings.vector_search_enabled:
        registry.register(
            VectorSearch(
                embedder,
                vector_index,
                private_namespace=settings.private_namespace,
                world_namespace=settings.world_namespace,
            )
        )
    if settings.web_search_enabled:
        registry.register(
            WebSearch(
                web_provider,
                fetcher,
                world_allowlist=settings.world_allowlist,
                parts_threshold=settings.web_parts_threshold,
                top_k=settings.web_top_k,
                chunk_max_chars=settings.chunk_max_chars,
                chunk_overlap=settings.chunk_overlap,
            )
        )

    mixer = ContextMixer(
        registry,
        max_chars=settings.context_max_chars,
        min_break=settings.context_min_break,
        top_k=settings.retrieval_top_k,
        direct_lookup=settings.direct_lookup_enabled,
    )
    prompts = PromptBuilder.from_directory(settings.prompt_dir)
    generators, completion = build_generators(llm, prompts)
    classifier = IntentClassifier(
        fallback=completion_intent_fallback(
            completion.complete, [rule.intent for rule in DEFAULT_RULES] + ["generic"]
        )
        if llm is not None
        else None
    )
    cache = SemanticAnswerCache(
        datastore,
        model_name=settings.embedding_model,
        table=settings.cache_table,
        ttl_minutes=settings.cache_ttl_minutes,
        evidence_cap=settings.cache_evidence_cap,
    )
    trace_store = TraceStore(capacity=settings.trace_capacity)
    composer = ResponseComposer(
        mixer=mixer,
        generators=generators,
        classifier=classifier,
        cache=cache,
        telemetry=ConversationSink(
            datastore, table=settings.conversations_table, enabled=settings.telemetry_enabled
        ),
        trace_store=trace_store,
        max_context_chars=settings.context_max_chars,
    )
    ingest = KnowledgeIngestPipeline(
        embedder,
        vector_index,
        default_namespace=settings.private_namespace,
        max_chars=settings.chunk_max_chars,
        overlap=settings.chunk_overlap,
        fetcher=fetcher,
    )
    return Services(
        settings=settings,
        datastore=datastore,
        vector_index=vector_index,
        embedder=embedder,
        registry=registry,
        cache=cache,
        composer=composer,
        ingest=ingest,
        trace_store=trace_store,
        llm_configured=llm is not None,
    )


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services()
    setup_logging(services.settings.log_level)
    app = FastAPI(title="Boat Maintenance QA", version="0.1.0")
    app.state.services = services

    @app.get("/health")
    async def health() -> dict[str, Any]:
        try:
            datastore_ok = await services.datastore.ping()
        except Exception as exc:
            logger.warning("Datastore probe failed: %s", exc)
            datastore_ok = False
        try:
            vector_stats = await services.vector_index.stats()
        except Exception as exc:
            logger.warning("Vector stats probe failed: %s", exc)
            vector_stats = None
        return {
            "status": "ok" if datastore_ok else "degraded",
            "datastore": datastore_ok,
            "vector_index": vector_stats,
            "llm_configured": services.llm_configured,
            "embedding_model": services.embedder.model_name,
            "sources": services.registry.names(),
            "trace_count": len(services.trace_store),
        }

    @app.post("/ask")
    async def ask(request: AskRequest, background_tasks: BackgroundTasks) -> dict[str, Any]:
        question = Question(
            text=(request.question or "").strip(),
            tenant_id=request.tenant_id,
            context=request.context,
            references=request.references,
            intent=request.intent,
            tone=request.tone,
            namespace=request.namespace,
            top_k=request.top_k,
            request_id=str(uuid.uuid4()),
            debug=request.debug,
        )
        try:
            result = await services.composer.answer(question)
        except QuestionValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        background_tasks.add_task(services.composer.finalize, question, result)
        return _response_payload(result, debug=request.debug)

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(record) for record in services.trace_store.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = services.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/admin/cache")
    async def cache_list(limit: int = 20) -> dict[str, Any]:
        try:
            items = await services.cache.list_recent(limit=limit)
        except CacheUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"items": items}

    @app.delete("/admin/cache")
    async def cache_purge(prefix: str | None = None, tenant_id: str | None = None) -> dict[str, Any]:
        try:
            removed = await services.cache.purge(prefix=prefix, tenant_id=tenant_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CacheUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"removed": removed}

    @app.post("/ingest/text")
    async def ingest_text(request: IngestTextRequest) -> dict[str, Any]:
        records = await services.ingest.ingest_text(
            request.text,
            doc_id=request.doc_id,
            title=request.title,
            namespace=request.namespace,
            metadata=request.metadata,
        )
        return {"chunks_created": len(records), "chunk_ids": [record.id for record in records]}

    return app


def _response_payload(result: ComposeResult, *, debug: bool) -> dict[str, Any]:
    payload = result.answer.model_dump()
    payload["trace_id"] = result.trace_id
    if debug:
        payload["_cache"] = result.cache or {"hit": result.mode == "cache"}
        payload["_retrieval"] = {
            "mode": result.mode,
            "intent": result.intent,
            "strategy": result.strategy,
            "latency_ms": result.latency_ms,
            "meta": result.mix.meta if result.mix else None,
            "context_chars": len(result.mix.context_text) if result.mix else 0,
            "source_traces": [asdict(trace) for trace in result.source_traces],
        }
    return payload


app = create_app()
