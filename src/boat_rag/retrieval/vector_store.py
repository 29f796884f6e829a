"""Partitioned vector index contract and an in-memory adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol


@dataclass(slots=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any]

    @property
    def text(self) -> str:
        return str(self.metadata.get("text") or self.metadata.get("content") or "")


class VectorIndex(Protocol):
    """Namespaced nearest-neighbour index."""

    async def query(self, vector: list[float], *, top_k: int, namespace: str) -> list[VectorMatch]:
        """Return the ``top_k`` closest records within one namespace."""

    async def upsert(self, records: list[VectorRecord], *, namespace: str) -> int:
        """Insert or replace records in one namespace."""

    async def stats(self) -> dict[str, Any]:
        """Dimension and per-namespace record counts."""


class InMemoryVectorIndex:
    """Deterministic vector index used for tests and local prototyping."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}

    async def upsert(self, records: list[VectorRecord], *, namespace: str) -> int:
        partition = self._namespaces.setdefault(namespace, {})
        for record in records:
            if len(record.values) != self.dimension:
                raise ValueError(
                    f"vector {record.id} has dimension {len(record.values)}, expected {self.dimension}"
                )
            partition[record.id] = record
        return len(records)

    async def query(self, vector: list[float], *, top_k: int, namespace: str) -> list[VectorMatch]:
        partition = self._namespaces.get(namespace, {})
        ranked = sorted(
            (
                VectorMatch(
                    id=record.id,
                    score=_cosine_similarity(vector, record.values),
                    metadata=dict(record.metadata),
                )
                for record in partition.values()
            ),
            key=lambda match: match.score,
            reverse=True,
        )
        return ranked[:top_k]

    async def stats(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "namespaces": {name: len(records) for name, records in self._namespaces.items()},
        }


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
