"""Response composition: explicit context, cache hit or retrieval, then generation."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from boat_rag.agent.fallback import synthesize_from_context
from boat_rag.agent.generators import GenerationInput, GenerationOutput, Generator
from boat_rag.agent.intent import DEFAULT_INTENT, IntentClassifier
from boat_rag.agent.policy import apply_policy, list_items, section_body
from boat_rag.agent.prompt import select_tone
from boat_rag.agent.references import filter_used
from boat_rag.cache.answer_cache import CacheLookup, SemanticAnswerCache
from boat_rag.errors import GenerationUnavailable, QuestionValidationError
from boat_rag.obs.telemetry import ConversationSink
from boat_rag.obs.tracing import Timer, TraceStore
from boat_rag.retrieval.mixer import ContextMixer
from boat_rag.retrieval.sanitize import cap_context, clean_chunk
from boat_rag.types import ContextMix, Question, RawAnswer, Reference, SourceTrace, StructuredAnswer

logger = logging.getLogger(__name__)

MAX_REFERENCES = 8
_SENTENCE = re.compile(r"(?<=[.!?])\s+")


@dataclass(slots=True)
class ComposeResult:
    answer: StructuredAnswer
    mode: str
    intent: str
    strategy: str
    trace_id: str
    cache: dict[str, Any] = field(default_factory=dict)
    mix: ContextMix | None = None
    source_traces: list[SourceTrace] = field(default_factory=list)
    latency_ms: float = 0.0


class ResponseComposer:
    """Per-request state machine producing a policy-shaped answer.

    ``answer`` never raises for degraded collaborators; only a missing
    question is rejected. ``finalize`` carries the fire-and-forget writes
    (conversation log and cache store) and is meant to run after the
    response has been sent.
    """

    def __init__(
        self,
        *,
        mixer: ContextMixer,
        generators: list[Generator],
        classifier: IntentClassifier | None = None,
        cache: SemanticAnswerCache | None = None,
        telemetry: ConversationSink | None = None,
        trace_store: TraceStore | None = None,
        max_context_chars: int = 6000,
    ) -> None:
        self.mixer = mixer
        self.generators = generators
        self.classifier = classifier or IntentClassifier()
        self.cache = cache
        self.telemetry = telemetry
        self.trace_store = trace_store or TraceStore()
        self.max_context_chars = max_context_chars

    async def answer(self, question: Question) -> ComposeResult:
        if not question.text or not question.text.strip():
            raise QuestionValidationError("Missing question")
        request_id = question.request_id or str(uuid.uuid4())

        with Timer() as timer:
            if _explicit_context(question) is not None:
                result = await self._from_explicit_context(question)
            else:
                result = await self._from_cache(question) or await self._from_retrieval(question, request_id)

        result.latency_ms = timer.elapsed_ms
        record = self.trace_store.create_record(
            question=question.text,
            tenant_id=question.tenant_id,
            intent=result.intent,
            mode=result.mode,
            strategy=result.strategy,
            cache_hit=result.mode == "cache",
            reference_ids=[reference.id for reference in result.answer.raw.references],
            source_traces=result.source_traces,
            meta=result.mix.meta if result.mix else {},
            latency_ms=result.latency_ms,
            trace_id=request_id,
        )
        result.trace_id = record.trace_id
        return result

    async def finalize(self, question: Question, result: ComposeResult) -> None:
        """Persist the conversation and store retrieval answers in the cache."""
        if result.mode == "cache":
            return
        tasks = []
        if self.telemetry is not None:
            tasks.append(self.telemetry.record(question, result.answer))
        if self.cache is not None and result.mode == "retrieval":
            tasks.append(
                self.cache.store(question.text, question.tenant_id, result.answer, result.answer.raw.references)
            )
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.warning("Post-response task failed: %s", outcome)

    async def _from_explicit_context(self, question: Question) -> ComposeResult:
        context = cap_context(clean_chunk(_explicit_context(question) or ""), self.max_context_chars)
        supplied = _parse_references(question.references or [])
        answer, strategy = await self._generate(question, context, supplied)
        return ComposeResult(
            answer=answer,
            mode="explicit",
            intent=question.intent or DEFAULT_INTENT,
            strategy=strategy,
            trace_id="",
        )

    async def _from_cache(self, question: Question) -> ComposeResult | None:
        if self.cache is None:
            return None
        lookup = await self.cache.lookup(question.text, question.tenant_id)
        cached = _cached_answer(lookup)
        if cached is None:
            return None
        return ComposeResult(
            answer=cached,
            mode="cache",
            intent=question.intent or DEFAULT_INTENT,
            strategy="cache",
            trace_id="",
            cache={"hit": True, "key": lookup.key, "expires_at": lookup.expires_at},
        )

    async def _from_retrieval(self, question: Question, request_id: str) -> ComposeResult:
        intent = question.intent or await self.classifier.classify(question.text)
        traces: list[SourceTrace] = []
        mix = await self.mixer.build(
            question.text,
            tenant_id=question.tenant_id,
            intent=intent,
            top_k=question.top_k,
            namespace=question.namespace,
            request_id=request_id,
            observer=traces.append,
        )
        answer, strategy = await self._generate(question, mix.context_text, mix.references, mix)
        cache_state: dict[str, Any] = {"hit": False}
        if self.cache is not None:
            cache_state["key"] = self.cache.compute_key(question.text, question.tenant_id)
        return ComposeResult(
            answer=answer,
            mode="retrieval",
            intent=intent,
            strategy=strategy,
            trace_id="",
            cache=cache_state,
            mix=mix,
            source_traces=traces,
        )

    async def _generate(
        self,
        question: Question,
        context_text: str,
        candidates: list[Reference],
        mix: ContextMix | None = None,
    ) -> tuple[StructuredAnswer, str]:
        data = GenerationInput(
            question=question.text,
            context_text=context_text,
            references=candidates,
            tone=select_tone(question.tone),
            assets=mix.assets if mix else [],
            playbooks=mix.playbooks if mix else [],
            web_snippets=mix.web_snippets if mix else [],
        )
        for generator in self.generators:
            try:
                output = await generator.generate(data)
            except GenerationUnavailable as exc:
                logger.info("Generator %s unavailable: %s", generator.name, exc)
                continue
            return _shape_output(output, candidates), generator.name

        answer = synthesize_from_context(context_text, candidates)
        references = filter_used(answer.raw.text, answer.raw.references)
        answer.raw.references = references
        return answer, "extractive"


def _shape_output(output: GenerationOutput, candidates: list[Reference]) -> StructuredAnswer:
    text = apply_policy(output.text)
    candidate_ids = {reference.id for reference in candidates}
    pool = [reference for reference in output.references if reference.id in candidate_ids]
    for reference in candidates:
        if reference not in pool:
            pool.append(reference)
    references = filter_used(text, pool)[:MAX_REFERENCES]

    nutshell = section_body(text, "nutshell")
    summary = output.summary or " ".join(_SENTENCE.split(nutshell)[:2]) or _first_body_line(text)
    bullets = output.bullets or list_items(section_body(text, "steps"))[:5]
    return StructuredAnswer(
        title=output.title or "Answer",
        summary=summary.strip()[:400] or "Answer",
        bullets=bullets,
        cta=output.cta,
        raw=RawAnswer(text=text, references=references),
    )


def _first_body_line(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith(("**", "#")):
            return line
    return ""


def _explicit_context(question: Question) -> str | None:
    if question.context is None:
        return None
    if isinstance(question.context, (list, tuple)):
        joined = "\n".join(str(item) for item in question.context if item)
    else:
        joined = str(question.context)
    return joined if joined.strip() else None


def _parse_references(items: list[Any]) -> list[Reference]:
    references: list[Reference] = []
    for idx, item in enumerate(items):
        if isinstance(item, Reference):
            references.append(item)
            continue
        if not isinstance(item, dict):
            continue
        data = {"source": "supplied", "score": 0.0, **item}
        data["id"] = str(data.get("id") or item.get("url") or item.get("title") or f"ref-{idx}")
        try:
            references.append(Reference.model_validate(data))
        except ValidationError:
            logger.debug("Ignoring malformed supplied reference: %s", item)
    return references


def _cached_answer(lookup: CacheLookup) -> StructuredAnswer | None:
    if not lookup.hit or not lookup.payload:
        return None
    raw = lookup.payload.get("raw") or {}
    if not isinstance(raw, dict) or not raw.get("text"):
        return None
    try:
        return StructuredAnswer.model_validate(lookup.payload)
    except ValidationError:
        logger.warning("Cached payload for %s failed validation", lookup.key)
        return None
