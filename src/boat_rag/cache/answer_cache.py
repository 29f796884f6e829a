"""Answer cache keyed by a hash of the normalized question."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from boat_rag.errors import CacheUnavailable
from boat_rag.retrieval.datastore import Datastore, RowQuery
from boat_rag.types import Reference, StructuredAnswer

logger = logging.getLogger(__name__)

KEY_PREFIX = "sem"
_HASH_CHARS = 16


@dataclass(slots=True)
class CacheLookup:
    key: str
    hit: bool
    payload: dict[str, Any] | None = None
    expired: bool = False
    expires_at: str | None = None


@dataclass(slots=True)
class CacheStoreResult:
    ok: bool
    key: str
    expires_at: str | None = None


def normalize_question(question: str) -> str:
    return re.sub(r"\s+", " ", (question or "").strip().lower())


def question_hash(question: str) -> str:
    digest = hashlib.sha1(normalize_question(question).encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")[:_HASH_CHARS]


class SemanticAnswerCache:
    """Sliding-TTL answer cache on top of the structured datastore.

    Keys collapse questions that differ only in case or whitespace; it is a
    string hash, not an embedding match.
    """

    def __init__(
        self,
        datastore: Datastore | None,
        *,
        model_name: str,
        table: str = "answers_cache",
        ttl_minutes: int = 180,
        evidence_cap: int = 16,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.datastore = datastore
        self.model_name = model_name
        self.table = table
        self.ttl = timedelta(minutes=ttl_minutes)
        self.evidence_cap = evidence_cap
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pending: set[asyncio.Task[None]] = set()

    def compute_key(self, question: str, tenant_id: str | None = None) -> str:
        return f"{KEY_PREFIX}:{self.model_name}:{tenant_id or 'none'}:{question_hash(question)}"

    async def lookup(self, question: str, tenant_id: str | None = None) -> CacheLookup:
        key = self.compute_key(question, tenant_id)
        try:
            row = await self._row(key)
        except CacheUnavailable as exc:
            logger.warning("Cache lookup degraded to miss: %s", exc)
            return CacheLookup(key=key, hit=False)
        if row is None:
            return CacheLookup(key=key, hit=False)

        expires_at = row.get("expires_at")
        try:
            expired = bool(expires_at) and _parse_time(expires_at) <= self._clock()
        except (TypeError, ValueError):
            logger.warning("Cache entry %s has an unreadable expiry %r", key, expires_at)
            return CacheLookup(key=key, hit=False)
        if expired:
            return CacheLookup(key=key, hit=False, expired=True, expires_at=expires_at)

        payload = _decode(row.get("answer_text"))
        if payload is None:
            logger.warning("Cache entry %s has an unreadable payload", key)
            return CacheLookup(key=key, hit=False)

        task = asyncio.create_task(self._touch(key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return CacheLookup(key=key, hit=True, payload=payload, expires_at=expires_at)

    async def store(
        self,
        question: str,
        tenant_id: str | None,
        answer: StructuredAnswer,
        references: list[Reference] | None = None,
    ) -> CacheStoreResult:
        key = self.compute_key(question, tenant_id)
        now = self._clock()
        expires_at = (now + self.ttl).isoformat()
        refs = references if references is not None else answer.raw.references
        try:
            existing = await self._row(key)
            row = {
                "intent_key": key,
                "boat_profile_id": tenant_id,
                "answer_text": answer.model_dump_json(),
                "evidence_ids": [reference.id for reference in refs][: self.evidence_cap],
                "created_at": (existing or {}).get("created_at") or now.isoformat(),
                "expires_at": expires_at,
            }
            await self._call(lambda store: store.upsert(self.table, row, key="intent_key"))
        except CacheUnavailable as exc:
            logger.warning("Cache store failed for %s: %s", key, exc)
            return CacheStoreResult(ok=False, key=key)
        return CacheStoreResult(ok=True, key=key, expires_at=expires_at)

    async def get(self, key: str) -> dict[str, Any] | None:
        row = await self._row(key)
        if row is None:
            return None
        return {**row, "answer_text": _decode(row.get("answer_text"))}

    async def list_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = await self._call(
            lambda store: store.select(self.table, RowQuery(order_by="created_at", limit=limit))
        )
        return [
            {key: row.get(key) for key in ("intent_key", "boat_profile_id", "evidence_ids", "created_at", "expires_at")}
            for row in rows
        ]

    async def purge(self, *, prefix: str | None = None, tenant_id: str | None = None) -> int:
        """Delete entries by key prefix and/or tenant; refuses an unscoped purge."""
        if not prefix and not tenant_id:
            raise ValueError("purge requires a key prefix or a tenant id")
        query = RowQuery()
        if prefix:
            query.prefix = ("intent_key", prefix)
        if tenant_id:
            query.eq["boat_profile_id"] = tenant_id
        removed = await self._call(lambda store: store.delete(self.table, query))
        logger.info("Purged %d cache entries (prefix=%s tenant=%s)", removed, prefix, tenant_id)
        return removed

    async def drain(self) -> None:
        """Wait for outstanding TTL refreshes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _touch(self, key: str) -> None:
        expires_at = (self._clock() + self.ttl).isoformat()
        try:
            await self._call(
                lambda store: store.update(self.table, {"intent_key": key}, {"expires_at": expires_at})
            )
        except CacheUnavailable as exc:
            logger.warning("Cache TTL refresh failed for %s: %s", key, exc)

    async def _row(self, key: str) -> dict[str, Any] | None:
        rows = await self._call(
            lambda store: store.select(self.table, RowQuery(eq={"intent_key": key}, limit=1))
        )
        return rows[0] if rows else None

    async def _call(self, operation: Callable[[Datastore], Awaitable[Any]]) -> Any:
        if self.datastore is None:
            raise CacheUnavailable("no datastore configured")
        try:
            return await operation(self.datastore)
        except Exception as exc:
            raise CacheUnavailable(str(exc)) from exc


def _decode(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
