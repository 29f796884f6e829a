"""Per-request traces kept in a bounded in-process ring buffer."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from boat_rag.types import SourceTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    question: str
    tenant_id: str | None
    intent: str
    mode: str
    strategy: str
    cache_hit: bool
    reference_ids: list[str]
    source_traces: list[SourceTrace]
    meta: dict[str, Any]
    latency_ms: float
    failures: list[str] = field(default_factory=list)


class TraceStore:
    """Keeps the most recent ``capacity`` traces; the oldest is evicted first.

    Single-process only: each worker holds its own buffer.
    """

    def __init__(self, capacity: int = 200) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()

    def create_record(
        self,
        *,
        question: str,
        tenant_id: str | None,
        intent: str,
        mode: str,
        strategy: str,
        cache_hit: bool,
        reference_ids: list[str],
        source_traces: list[SourceTrace],
        meta: dict[str, Any],
        latency_ms: float,
        trace_id: str | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=trace_id or str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            tenant_id=tenant_id,
            intent=intent,
            mode=mode,
            strategy=strategy,
            cache_hit=cache_hit,
            reference_ids=reference_ids,
            source_traces=source_traces,
            meta=meta,
            latency_ms=latency_ms,
            failures=list(meta.get("failures", [])),
        )
        self._records[record.trace_id] = record
        self._records.move_to_end(record.trace_id)
        while len(self._records) > self.capacity:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        records = list(self._records.values())
        return records[-limit:][::-1] if limit > 0 else []

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class Timer:
    """Simple context timer used by the composer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
