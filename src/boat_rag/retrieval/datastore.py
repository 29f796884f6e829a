"""Structured datastore contract and an in-memory implementation."""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol


class DatastoreError(RuntimeError):
    """Raised by datastore adapters when a read or write fails."""


@dataclass(slots=True)
class RowQuery:
    """Declarative row filter understood by every datastore adapter.

    ``ilike_any`` entries are OR-ed together; all other filters are AND-ed.
    ``text_search`` takes a column and an ``or_query`` string.
    """

    eq: dict[str, Any] = field(default_factory=dict)
    ilike_any: list[tuple[str, str]] = field(default_factory=list)
    contains: tuple[str, list[str]] | None = None
    text_search: tuple[str, str] | None = None
    prefix: tuple[str, str] | None = None
    order_by: str | None = None
    descending: bool = True
    limit: int | None = None
    offset: int = 0


class Datastore(Protocol):
    """Minimal row store contract used by sources, cache and telemetry."""

    async def select(self, table: str, query: RowQuery | None = None) -> list[dict[str, Any]]:
        """Return rows matching ``query``."""

    async def upsert(self, table: str, row: dict[str, Any], *, key: str) -> dict[str, Any]:
        """Insert or replace the row whose ``key`` column matches."""

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Append one row."""

    async def update(self, table: str, match: dict[str, Any], values: dict[str, Any]) -> int:
        """Patch rows equal on every ``match`` column; returns rows touched."""

    async def delete(self, table: str, query: RowQuery) -> int:
        """Delete matching rows; returns rows removed."""

    async def ping(self) -> bool:
        """Cheap health probe."""


class InMemoryDatastore:
    """Deterministic datastore used for tests and local prototyping."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }

    def seed(self, table: str, rows: Iterable[dict[str, Any]]) -> None:
        self._tables.setdefault(table, []).extend(dict(row) for row in rows)

    def count(self, table: str) -> int:
        return len(self._tables.get(table, []))

    async def select(self, table: str, query: RowQuery | None = None) -> list[dict[str, Any]]:
        query = query or RowQuery()
        rows = [row for row in self._tables.get(table, []) if _matches(row, query)]
        if query.order_by:
            rows.sort(
                key=lambda row: (row.get(query.order_by) is not None, str(row.get(query.order_by) or "")),
                reverse=query.descending,
            )
        rows = rows[query.offset :]
        if query.limit is not None:
            rows = rows[: query.limit]
        return copy.deepcopy(rows)

    async def upsert(self, table: str, row: dict[str, Any], *, key: str) -> dict[str, Any]:
        if key not in row:
            raise DatastoreError(f"upsert into {table} requires '{key}'")
        rows = self._tables.setdefault(table, [])
        for idx, existing in enumerate(rows):
            if existing.get(key) == row[key]:
                rows[idx] = {**existing, **row}
                return copy.deepcopy(rows[idx])
        rows.append(dict(row))
        return copy.deepcopy(row)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self._tables.setdefault(table, []).append(dict(row))
        return copy.deepcopy(row)

    async def update(self, table: str, match: dict[str, Any], values: dict[str, Any]) -> int:
        touched = 0
        for row in self._tables.get(table, []):
            if all(row.get(column) == value for column, value in match.items()):
                row.update(values)
                touched += 1
        return touched

    async def delete(self, table: str, query: RowQuery) -> int:
        rows = self._tables.get(table, [])
        kept = [row for row in rows if not _matches(row, query)]
        self._tables[table] = kept
        return len(rows) - len(kept)

    async def ping(self) -> bool:
        return True


def _matches(row: dict[str, Any], query: RowQuery) -> bool:
    for column, value in query.eq.items():
        if row.get(column) != value:
            return False
    if query.ilike_any and not any(
        needle.lower() in _as_text(row.get(column)) for column, needle in query.ilike_any
    ):
        return False
    if query.contains is not None:
        column, values = query.contains
        present = {str(item).lower() for item in (row.get(column) or [])}
        if not all(value.lower() in present for value in values):
            return False
    if query.text_search is not None:
        column, expression = query.text_search
        if not _text_search(_as_text(row.get(column)), expression):
            return False
    if query.prefix is not None:
        column, prefix = query.prefix
        if not str(row.get(column) or "").startswith(prefix):
            return False
    return True


def _text_search(document: str, expression: str) -> bool:
    terms = [term.strip().lower() for term in expression.split(" OR ") if term.strip()]
    words = re.findall(r"[a-z0-9][a-z0-9\-/.]*", document)
    return any(word.startswith(term) for term in terms for word in words)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value).lower()
    return str(value).lower()
