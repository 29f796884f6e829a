"""Embedding abstractions and deterministic baseline implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any


class Embedder(ABC):
    """Embedder interface used by ingest and vector search."""

    model_name: str = "unknown"
    dimension: int = 0

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Deterministic token-hash embedding without external model calls.

    Used when no embedding credentials are configured. Vectors keep the
    pipeline alive but carry no real semantics.
    """

    def __init__(self, dimension: int = 256, *, model_name: str = "hashing-v1") -> None:
        self.dimension = dimension
        self.model_name = model_name

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbedder(Embedder):
    """Embeddings through ``langchain_openai.OpenAIEmbeddings``."""

    def __init__(self, *, model_name: str, dimension: int, client: Any | None = None) -> None:
        self.model_name = model_name
        self.dimension = dimension
        if client is None:
            from langchain_openai import OpenAIEmbeddings

            client = OpenAIEmbeddings(model=model_name, dimensions=dimension)
        self._client = client

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self._client.aembed_documents(texts)

    async def embed_query(self, text: str) -> list[float]:
        return await self._client.aembed_query(text)


def create_embedder(*, api_key: str | None, model_name: str, dimension: int) -> Embedder:
    if not api_key:
        return HashingEmbedder(model_name=model_name)
    return OpenAIEmbedder(model_name=model_name, dimension=dimension)
