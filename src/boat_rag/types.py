"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

SourceName = Literal["asset", "playbook", "knowledge", "vector", "web"]


@dataclass(slots=True, frozen=True)
class Question:
    """One incoming request; never mutated after creation."""

    text: str
    tenant_id: str | None = None
    context: str | list[str] | None = None
    references: list[dict[str, Any]] | None = None
    intent: str | None = None
    tone: str | None = None
    namespace: str | None = None
    top_k: int | None = None
    request_id: str | None = None
    debug: bool = False


@dataclass(slots=True)
class EvidenceCandidate:
    """A scored snippet proposed by one evidence source."""

    id: str
    source: SourceName
    score: float
    text: str
    manufacturer: str | None = None
    model: str | None = None
    model_key: str | None = None
    description: str | None = None
    title: str | None = None
    triggers: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_reference(self) -> Reference:
        return Reference(
            id=self.id,
            source=self.source,
            score=self.score,
            title=self.title,
            manufacturer=self.manufacturer,
            model=self.model,
            model_key=self.model_key,
            description=self.description,
            url=self.urls[0] if self.urls else None,
        )


class Reference(BaseModel):
    """Trimmed projection of an evidence candidate attached to an answer."""

    id: str
    source: str
    score: float = Field(default=0.0, ge=0.0)
    title: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    model_key: str | None = None
    description: str | None = None
    url: str | None = None


class RawAnswer(BaseModel):
    text: str
    references: list[Reference] = Field(default_factory=list)


class StructuredAnswer(BaseModel):
    """The answer shape returned to clients and stored in the cache."""

    title: str
    summary: str
    bullets: list[str] = Field(default_factory=list)
    cta: str | None = None
    raw: RawAnswer


@dataclass(slots=True)
class ContextMix:
    """Merged, capped and de-duplicated evidence handed to the composer."""

    context_text: str
    references: list[Reference]
    meta: dict[str, Any]
    assets: list[dict[str, Any]] = field(default_factory=list)
    playbooks: list[dict[str, Any]] = field(default_factory=list)
    web_snippets: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class SourceTrace:
    """Instrumentation record for one evidence source call."""

    name: str
    query: str
    result_count: int
    latency_ms: float
    failures: list[str] = field(default_factory=list)
