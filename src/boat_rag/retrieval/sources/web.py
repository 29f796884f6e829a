"""Allow-listed web evidence used when on-path evidence runs thin."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from boat_rag.errors import SourceUnavailable
from boat_rag.ingest.chunker import chunk_text
from boat_rag.ingest.fetcher import PageFetcher
from boat_rag.retrieval.normalize import keyword_hits, tokenize
from boat_rag.retrieval.registry import EvidenceSource, SourceQuery
from boat_rag.retrieval.sanitize import clean_chunk
from boat_rag.types import EvidenceCandidate

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"
_ALLOWED_BONUS = 3.0
_DOCUMENT_BONUS = 2.0
_DOCUMENT_SUFFIXES = (".pdf", ".doc", ".docx")
_CHUNKS_PER_PAGE = 2


@dataclass(slots=True)
class WebResult:
    title: str
    link: str
    snippet: str = ""
    position: int = 0
    score: float = 0.0
    trust: float = 0.0


class WebSearchProvider(ABC):
    @abstractmethod
    async def search(self, queries: list[str], *, num: int = 10) -> list[WebResult]:
        """Run every query and return results de-duplicated by link."""


class SerpApiSearch(WebSearchProvider):
    """Google results through SerpAPI's JSON endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        engine: str = "google",
        timeout: float = 20.0,
    ) -> None:
        self.api_key = api_key
        self.engine = engine
        self._client = client
        self._timeout = timeout

    async def search(self, queries: list[str], *, num: int = 10) -> list[WebResult]:
        seen: set[str] = set()
        results: list[WebResult] = []
        for query in queries:
            for item in await self._search_one(query, num):
                link = item.get("link") or item.get("url")
                if not link or link in seen:
                    continue
                seen.add(link)
                results.append(
                    WebResult(
                        title=str(item.get("title") or ""),
                        link=str(link),
                        snippet=str(item.get("snippet") or item.get("snippet_highlighted") or ""),
                        position=int(item.get("position") or 0),
                    )
                )
        return results

    async def _search_one(self, query: str, num: int) -> list[dict[str, Any]]:
        params = {"engine": self.engine, "q": query, "api_key": self.api_key, "num": str(num)}
        if self._client is not None:
            response = await self._client.get(SERPAPI_URL, params=params, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(SERPAPI_URL, params=params)
        response.raise_for_status()
        return list(response.json().get("organic_results") or [])


def host_allowed(url: str, allow_domains: list[str]) -> bool:
    """Exact host or subdomain match against the allow-list."""
    host = (urlparse(url).hostname or "").lower().rstrip(".")
    if not host:
        return False
    for domain in allow_domains:
        domain = domain.lower().strip().lstrip(".")
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


def build_world_queries(
    asset: dict[str, Any] | None,
    *,
    allow_domains: list[str],
    keywords: list[str],
    intent_keywords: list[str],
) -> list[str]:
    """Asset-anchored queries, each restricted to the allowed sites."""
    asset_terms = tokenize(
        " ".join(str((asset or {}).get(key) or "") for key in ("manufacturer", "model", "model_key"))
    )
    base = " ".join(dict.fromkeys(asset_terms + intent_keywords))
    sites = " OR ".join(f"site:{domain}" for domain in allow_domains if domain)

    queries = [f"{base} {sites}".strip()]
    extra = [keyword for keyword in keywords if keyword not in base.split()]
    if extra:
        queries.append(f"{base} {' '.join(extra)} {sites}".strip())
    return [query for query in dict.fromkeys(queries) if query and query != sites]


def filter_and_rank(
    results: list[WebResult],
    *,
    allow_domains: list[str],
    keywords: list[str],
    top_k: int,
) -> list[WebResult]:
    """Drop off-list hosts, then rank by document type and keyword hits."""
    ranked: list[WebResult] = []
    for result in results:
        if not host_allowed(result.link, allow_domains):
            continue
        score = _ALLOWED_BONUS
        if urlparse(result.link).path.lower().endswith(_DOCUMENT_SUFFIXES):
            score += _DOCUMENT_BONUS
        score += keyword_hits(f"{result.title} {result.snippet}", keywords)
        result.score = score
        result.trust = min(1.0, score / 10.0)
        ranked.append(result)
    ranked.sort(key=lambda result: result.score, reverse=True)
    return ranked[: max(1, top_k)]


class WebSearch(EvidenceSource):
    name = "web"

    def __init__(
        self,
        provider: WebSearchProvider | None,
        fetcher: PageFetcher | None,
        *,
        world_allowlist: list[str] | None = None,
        parts_threshold: int = 4,
        top_k: int = 2,
        chunk_max_chars: int = 3500,
        chunk_overlap: int = 200,
    ) -> None:
        self.provider = provider
        self.fetcher = fetcher
        self.world_allowlist = list(world_allowlist or [])
        self.parts_threshold = parts_threshold
        self.top_k = top_k
        self.chunk_max_chars = chunk_max_chars
        self.chunk_overlap = chunk_overlap

    async def _search(self, query: SourceQuery) -> list[EvidenceCandidate]:
        if self.provider is None or self.fetcher is None:
            return []
        if query.parts_count >= self.parts_threshold:
            query.diagnostics["web_skipped"] = "enough_parts"
            return []
        allow_domains = query.allow_domains or self.world_allowlist
        if not allow_domains:
            query.diagnostics["web_skipped"] = "no_allowlist"
            return []

        asset = query.assets[0] if query.assets else None
        intent_keywords = ["manual"] if asset else query.keywords[:3] + ["manual"]
        queries = build_world_queries(
            asset,
            allow_domains=allow_domains,
            keywords=query.router_keywords,
            intent_keywords=intent_keywords,
        )
        try:
            results = await self.provider.search(queries, num=self.top_k * 2)
        except Exception as exc:
            raise SourceUnavailable(self.name, f"serpapi:{exc}") from exc

        ranked = filter_and_rank(
            results,
            allow_domains=allow_domains,
            keywords=query.router_keywords + query.keywords,
            top_k=self.top_k,
        )
        query.diagnostics["web_results"] = len(ranked)
        pages = await asyncio.gather(*(self._fetch(result, query) for result in ranked))
        return [candidate for candidate in pages if candidate is not None]

    async def _fetch(self, result: WebResult, query: SourceQuery) -> EvidenceCandidate | None:
        try:
            page = await self.fetcher.fetch(result.link)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Web fetch failed for %s: %s", result.link, exc)
            query.failures.append(f"{self.name}:worldFetch:{result.link}:{exc}")
            return None

        chunks = chunk_text(page.text, max_chars=self.chunk_max_chars, overlap=self.chunk_overlap)
        text = "\n\n".join(clean_chunk(chunk) for chunk in chunks[:_CHUNKS_PER_PAGE]).strip()
        if not text:
            return None
        return EvidenceCandidate(
            id=result.link,
            source="web",
            score=result.score,
            text=text,
            title=result.title or None,
            description=result.snippet or None,
            urls=[result.link],
            metadata={"source_tag": page.source_tag, "trust": result.trust},
        )
