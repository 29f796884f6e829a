"""Evidence source contract and registry with an instrumentation hook."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from time import perf_counter
from typing import Any

from pydantic import BaseModel, Field

from boat_rag.errors import SourceUnavailable
from boat_rag.retrieval.datastore import DatastoreError
from boat_rag.types import EvidenceCandidate, SourceTrace

logger = logging.getLogger(__name__)


class SourceQuery(BaseModel):
    """Per-request input shared by every evidence source.

    ``failures`` and ``diagnostics`` belong to one request; sources write
    absorbed errors and counters there and the mixer copies them into meta.
    """

    question: str
    tokens: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    limit: int = Field(default=5, ge=1, le=50)
    tenant_id: str | None = None
    namespace: str | None = None
    top_k: int = Field(default=20, ge=1, le=50)
    allow_domains: list[str] = Field(default_factory=list)
    router_keywords: list[str] = Field(default_factory=list)
    assets: list[dict[str, Any]] = Field(default_factory=list)
    parts_count: int = 0
    failures: list[str] = Field(default_factory=list)
    diagnostics: dict[str, Any] = Field(default_factory=dict)


class EvidenceSource(ABC):
    """Base class: ``search`` never raises for recoverable conditions."""

    name: str = "source"

    async def search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        try:
            return await self._search(query)
        except SourceUnavailable as exc:
            reason = exc.reason
        except DatastoreError as exc:
            reason = str(exc)
        logger.warning("Evidence source %s unavailable: %s", self.name, reason)
        query.failures.append(f"{self.name}:{reason}")
        return []

    @abstractmethod
    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        """Source-specific lookup; may raise ``SourceUnavailable``."""


class SourceRegistry:
    """Stores evidence sources by name and reports every call to an observer."""

    def __init__(self) -> None:
        self._sources: dict[str, EvidenceSource] = {}
        self._observer: Callable[[SourceTrace], None] | None = None

    def register(self, source: EvidenceSource) -> None:
        if source.name in self._sources:
            raise ValueError(f"Source already registered: {source.name}")
        self._sources[source.name] = source

    def names(self) -> list[str]:
        return list(self._sources)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def set_observer(self, observer: Callable[[SourceTrace], None] | None) -> None:
        """Set an optional callback invoked after each source call."""
        self._observer = observer

    async def execute(
        self,
        name: str,
        query: SourceQuery,
        *,
        observer: Callable[[SourceTrace], None] | None = None,
    ) -> list[EvidenceCandidate]:
        source = self._sources.get(name)
        if source is None:
            raise KeyError(f"Unknown source: {name}")

        failures_before = len(query.failures)
        start = perf_counter()
        results = await source.search(query)
        latency_ms = (perf_counter() - start) * 1000.0

        trace = SourceTrace(
            name=name,
            query=query.question[:320],
            result_count=len(results),
            latency_ms=latency_ms,
            failures=query.failures[failures_before:],
        )
        for callback in (self._observer, observer):
            if callback is not None:
                callback(trace)
        return results
