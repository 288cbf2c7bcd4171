"""Shared fixtures: in-memory stand-ins for the data API and the image store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import pytest

from cleanup_jobs.integrations.cloudinary_client import (
    ObjectDeletionStatus,
    ObjectStoreConnectionError,
)
from cleanup_jobs.integrations.postgrest_client import (
    Condition,
    GatewayRequestError,
    decode_rows,
)
from cleanup_jobs.services.audit_logger import AuditLogger

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual is not None and actual != expected
    if op == "in":
        return actual in expected
    if op == "is":
        return actual is expected
    if op == "not.is":
        return actual is not expected
    if actual is None:
        return False
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    raise AssertionError(f"unsupported operator {op}")


def matches(row: dict, flt) -> bool:
    if isinstance(flt, Condition):
        return _compare(flt.operator, row.get(flt.column), flt.value)
    results = (matches(row, c) for c in flt.conditions)
    return any(results) if flt.keyword == "or" else all(results)


class InMemoryDataGateway:
    """Evaluates PostgREST filters against plain dict rows.

    ``fail_next(method, table)`` queues an error for the next matching call;
    ``delete_cap[table]`` limits how many rows a single delete removes.
    """

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None) -> None:
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.calls: list[tuple] = []
        self.delete_cap: dict[str, int] = {}
        self._errors: dict[tuple[str, str], list[Exception]] = {}

    def fail_next(self, method: str, table: str, times: int = 1, error: Exception | None = None) -> None:
        queue = self._errors.setdefault((method, table), [])
        for _ in range(times):
            queue.append(error or GatewayRequestError(500, f"{method} {table} failed"))

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def ids(self, table: str) -> set:
        return {row["id"] for row in self.rows(table)}

    def _maybe_fail(self, method: str, table: str) -> None:
        queue = self._errors.get((method, table))
        if queue:
            raise queue.pop(0)

    def _matching(self, table: str, filters: Sequence) -> list[dict]:
        return [row for row in self.rows(table) if all(matches(row, f) for f in filters)]

    async def fetch(self, model, table, columns="*", filters=(), order=None, offset=None, limit=None):
        self.calls.append(("fetch", table, offset, limit))
        self._maybe_fail("fetch", table)
        rows = self._matching(table, filters)
        if order:
            for part in reversed(order.split(",")):
                column, _, direction = part.partition(".")
                rows.sort(key=lambda r: r[column], reverse=direction == "desc")
        start = offset or 0
        end = start + limit if limit is not None else None
        return decode_rows(model, [dict(r) for r in rows[start:end]])

    async def count(self, table, filters=()):
        self.calls.append(("count", table))
        self._maybe_fail("count", table)
        return len(self._matching(table, filters))

    async def update(self, table, values, filters):
        self.calls.append(("update", table))
        self._maybe_fail("update", table)
        for row in self._matching(table, filters):
            row.update(values)

    async def delete(self, table, filters, returning=False):
        self.calls.append(("delete", table))
        self._maybe_fail("delete", table)
        doomed = self._matching(table, filters)
        if table in self.delete_cap:
            doomed = doomed[: self.delete_cap[table]]
        doomed_ids = {id(row) for row in doomed}
        self.tables[table] = [row for row in self.rows(table) if id(row) not in doomed_ids]
        return [dict(row) for row in doomed] if returning else []

    async def insert(self, table, row):
        self.calls.append(("insert", table))
        self._maybe_fail("insert", table)
        self.rows(table).append(dict(row))


class FakeObjectStore:
    """Image store keyed by public id.

    Ids in ``stuck`` are reported as ``other`` and survive; ids in
    ``unreachable`` make the whole call raise.  Bulk calls are recorded in
    ``calls``, single-image calls in ``destroyed``.
    """

    def __init__(self, objects=(), stuck=(), unreachable=()) -> None:
        self.objects: set[str] = set(objects)
        self.stuck: set[str] = set(stuck)
        self.unreachable: set[str] = set(unreachable)
        self.calls: list[list[str]] = []
        self.destroyed: list[str] = []

    def _remove(self, pid):
        if pid in self.stuck:
            return ObjectDeletionStatus.OTHER
        if pid in self.objects:
            self.objects.discard(pid)
            return ObjectDeletionStatus.DELETED
        return ObjectDeletionStatus.NOT_FOUND

    async def delete_resources(self, public_ids):
        self.calls.append(list(public_ids))
        if self.unreachable.intersection(public_ids):
            raise ObjectStoreConnectionError("Cannot connect to object store")
        return {pid: self._remove(pid) for pid in public_ids}

    async def destroy(self, public_id, invalidate=True):
        self.destroyed.append(public_id)
        if public_id in self.unreachable:
            raise ObjectStoreConnectionError("Cannot connect to object store")
        return self._remove(public_id)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def gateway():
    return InMemoryDataGateway()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def audit(gateway, clock):
    return AuditLogger(gateway, clock=clock)


@pytest.fixture
def sleeper():
    """Async stand-in for asyncio.sleep that records requested delays."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
