"""Context mixing: run the intent's source plan and build a bounded context."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from boat_rag.retrieval.normalize import derive_keywords, tokenize
from boat_rag.retrieval.registry import SourceQuery, SourceRegistry
from boat_rag.retrieval.sanitize import cap_context, clean_chunk, dedup_references
from boat_rag.retrieval.sources.knowledge import system_header
from boat_rag.retrieval.sources.playbooks import format_playbook
from boat_rag.types import ContextMix, EvidenceCandidate, SourceTrace

logger = logging.getLogger(__name__)

FULL_PLAN: tuple[str, ...] = ("asset", "playbook", "knowledge", "vector", "web")
DIRECT_SOURCES = frozenset({"asset", "playbook"})
DEFAULT_PLANS: dict[str, tuple[str, ...]] = {
    "inventory": ("asset", "playbook"),
    "maintenance": ("playbook", "knowledge", "asset", "vector", "web"),
    "troubleshooting": ("asset", "playbook", "knowledge", "vector", "web"),
    "specs": ("asset", "playbook", "vector", "web"),
    "parts": ("asset", "playbook", "vector", "web"),
}
_TOP_PLAYBOOKS = 2
_WEB_SNIPPET_CHARS = 1200


@dataclass(slots=True)
class _MixState:
    question: str
    tokens: list[str]
    keywords: list[str]
    tenant_id: str | None
    namespace: str | None
    top_k: int
    meta: dict[str, Any]
    observer: Callable[[SourceTrace], None] | None = None
    parts: list[str] = field(default_factory=list)
    candidates: list[EvidenceCandidate] = field(default_factory=list)
    assets: list[dict[str, Any]] = field(default_factory=list)
    playbooks: list[dict[str, Any]] = field(default_factory=list)
    web_snippets: list[dict[str, Any]] = field(default_factory=list)


class ContextMixer:
    """Runs evidence sources in plan order and merges their output."""

    def __init__(
        self,
        registry: SourceRegistry,
        *,
        plans: dict[str, tuple[str, ...]] | None = None,
        max_chars: int = 6000,
        min_break: int = 1200,
        top_k: int = 20,
        direct_lookup: bool = True,
        asset_limit: int = 3,
        playbook_limit: int = 5,
    ) -> None:
        self.registry = registry
        self.plans = dict(DEFAULT_PLANS if plans is None else plans)
        self.max_chars = max_chars
        self.min_break = min_break
        self.top_k = top_k
        self.direct_lookup = direct_lookup
        self.asset_limit = asset_limit
        self.playbook_limit = playbook_limit
        self._steps: dict[str, Callable[[_MixState], Awaitable[None]]] = {
            "asset": self._asset_step,
            "playbook": self._playbook_step,
            "knowledge": self._knowledge_step,
            "vector": self._vector_step,
            "web": self._web_step,
        }

    def plan_for(self, intent: str | None) -> tuple[str, ...]:
        plan = self.plans.get(intent or "") or self.plans.get("default") or FULL_PLAN
        if not self.direct_lookup and set(plan) <= DIRECT_SOURCES:
            return FULL_PLAN
        return plan

    async def build(
        self,
        question: str,
        *,
        tenant_id: str | None = None,
        intent: str | None = None,
        top_k: int | None = None,
        namespace: str | None = None,
        request_id: str | None = None,
        observer: Callable[[SourceTrace], None] | None = None,
    ) -> ContextMix:
        plan = self.plan_for(intent)
        meta: dict[str, Any] = {
            "request_id": request_id or str(uuid.uuid4()),
            "intent": intent or "generic",
            "plan": list(plan),
            "mode": "plan",
            "playbook_hit": False,
            "asset_rows": 0,
            "playbook_rows": 0,
            "knowledge_rows": 0,
            "vector_rows": 0,
            "web_rows": 0,
            "failures": [],
            "skipped": [],
            "allow_domains": [],
            "router_keywords": [],
            "focus_system": None,
        }
        state = _MixState(
            question=question,
            tokens=tokenize(question),
            keywords=derive_keywords(question),
            tenant_id=tenant_id,
            namespace=namespace,
            top_k=top_k or self.top_k,
            meta=meta,
            observer=observer,
        )

        if set(plan) <= DIRECT_SOURCES:
            meta["mode"] = "direct"
            if state.tokens:
                await self._run(plan, state)
            if not state.tokens or (meta["asset_rows"] == 0 and meta["playbook_rows"] == 0):
                logger.info("Direct lookup found nothing; running full plan")
                meta["mode"] = "legacy-fallback"
                meta["plan"] = list(FULL_PLAN)
                await self._run(tuple(name for name in FULL_PLAN if name not in plan), state)
        else:
            await self._run(plan, state)

        return self._finish(state)

    async def _run(self, plan: tuple[str, ...], state: _MixState) -> None:
        for name in plan:
            step = self._steps.get(name)
            if step is None or name not in self.registry:
                state.meta["skipped"].append(name)
                continue
            try:
                await step(state)
            except Exception as exc:
                logger.warning("Context step %s failed: %s", name, exc, exc_info=True)
                state.meta["failures"].append(f"{name}:{exc}")

    async def _execute(self, name: str, state: _MixState, **overrides: Any) -> list[EvidenceCandidate]:
        query = SourceQuery(
            question=state.question,
            tokens=state.tokens,
            keywords=state.keywords,
            tenant_id=state.tenant_id,
            namespace=state.namespace,
            top_k=max(1, min(50, state.top_k)),
            **overrides,
        )
        results = await self.registry.execute(name, query, observer=state.observer)
        state.meta["failures"].extend(query.failures)
        state.meta.update(query.diagnostics)
        state.meta[f"{name}_rows"] = len(results)
        return results

    async def _asset_step(self, state: _MixState) -> None:
        for candidate in await self._execute("asset", state, limit=self.asset_limit):
            state.parts.append(candidate.text)
            state.candidates.append(candidate)
            state.assets.append(candidate.metadata.get("row") or {})

    async def _playbook_step(self, state: _MixState) -> None:
        results = await self._execute("playbook", state, limit=self.playbook_limit)
        for candidate in results[:_TOP_PLAYBOOKS]:
            block = format_playbook(candidate.metadata.get("row") or {})
            if block is None:
                continue
            state.playbooks.append(block)
            state.candidates.append(candidate)
            state.parts.append(candidate.text)
            _extend_unique(state.meta["allow_domains"], block["ref_domains"])
            routed = " ".join(
                [block["title"], block["summary"], *block["steps"], *block["safety"]]
            )
            _extend_unique(state.meta["router_keywords"], derive_keywords(routed))
        state.meta["playbook_hit"] = bool(state.playbooks)

    async def _knowledge_step(self, state: _MixState) -> None:
        results = await self._execute("knowledge", state)
        if not results:
            return
        focus = results[0].metadata.get("focus_system")
        header = system_header(focus)
        if header:
            state.parts.append(header)
            state.meta["focus_system"] = focus
        for candidate in results:
            state.parts.append(candidate.text)
            state.candidates.append(candidate)

    async def _vector_step(self, state: _MixState) -> None:
        for candidate in await self._execute("vector", state):
            state.parts.append(candidate.text)
            state.candidates.append(candidate)

    async def _web_step(self, state: _MixState) -> None:
        results = await self._execute(
            "web",
            state,
            parts_count=len(state.parts),
            allow_domains=state.meta["allow_domains"],
            router_keywords=state.meta["router_keywords"],
            assets=state.assets,
        )
        for candidate in results:
            state.parts.append(candidate.text)
            state.candidates.append(candidate)
            state.web_snippets.append(
                {
                    "url": candidate.id,
                    "title": candidate.title,
                    "text": candidate.text[:_WEB_SNIPPET_CHARS],
                }
            )

    def _finish(self, state: _MixState) -> ContextMix:
        references = dedup_references([candidate.to_reference() for candidate in state.candidates])
        references.sort(key=lambda reference: reference.score, reverse=True)
        joined = clean_chunk("\n\n".join(part for part in state.parts if part and part.strip()))
        context_text = cap_context(joined, self.max_chars, min_break=self.min_break)
        state.meta["context_chars"] = len(context_text)
        state.meta["context_truncated"] = len(context_text) < len(joined)
        return ContextMix(
            context_text=context_text,
            references=references,
            meta=state.meta,
            assets=state.assets,
            playbooks=state.playbooks,
            web_snippets=state.web_snippets,
        )


def _extend_unique(target: list[str], values: list[str]) -> None:
    for value in values:
        if value and value not in target:
            target.append(value)
