"""Structural interfaces for the remote collaborators the jobs depend on.

The concrete implementations live in ``cleanup_jobs.integrations``; tests
substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel

from cleanup_jobs.integrations.cloudinary_client import ObjectDeletionStatus
from cleanup_jobs.integrations.postgrest_client import Filter

T = TypeVar("T", bound=BaseModel)


class DataGateway(Protocol):
    """Row-level access to the hosted data API."""

    async def fetch(
        self,
        model: type[T],
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[T]: ...

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int: ...

    async def update(
        self, table: str, values: dict[str, Any], filters: Sequence[Filter],
    ) -> None: ...

    async def delete(
        self, table: str, filters: Sequence[Filter], returning: bool = False,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, row: dict[str, Any]) -> None: ...


class ObjectStore(Protocol):
    """Image deletion by fully-qualified public id."""

    async def delete_resources(
        self, public_ids: Sequence[str],
    ) -> dict[str, ObjectDeletionStatus]: ...

    async def destroy(
        self, public_id: str, invalidate: bool = True,
    ) -> ObjectDeletionStatus: ...
