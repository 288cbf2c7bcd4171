"""Async client for the hosted PostgREST data API.

Uses httpx.AsyncClient against ``{base_url}/rest/v1/<table>`` with the
service-role key.  Filters are built from :class:`Condition`, :class:`And`
and :class:`Or` values and rendered into PostgREST query parameters, so the
cleanup jobs never assemble query strings by hand.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError


T = TypeVar("T", bound=BaseModel)

# Characters that must be double-quoted inside PostgREST list / logic values.
_RESERVED = re.compile(r'[,.:()"\s]')


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class GatewayError(Exception):
    """Base class for data API failures."""


class GatewayRequestError(GatewayError):
    """Raised when the data API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Data API returned {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class GatewayConnectionError(GatewayError):
    """Raised when the data API is unreachable."""


class GatewayTimeoutError(GatewayError):
    """Raised when a data API request exceeds its timeout."""


class GatewayMalformedResponseError(GatewayError):
    """Raised when a response body does not have the expected shape."""


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def _format_value(value: Any, quote: bool = False) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        text = value.isoformat()
    else:
        text = str(value)
    if quote and _RESERVED.search(text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


@dataclass(frozen=True)
class Condition:
    """A single ``column=operator.value`` filter."""

    column: str
    operator: str
    value: Any

    def _render_value(self, quote: bool) -> str:
        if self.operator == "in":
            items = ",".join(_format_value(v, quote=True) for v in self.value)
            return f"({items})"
        return _format_value(self.value, quote=quote)

    def as_param(self) -> tuple[str, str]:
        return self.column, f"{self.operator}.{self._render_value(quote=False)}"

    def as_expression(self) -> str:
        return f"{self.column}.{self.operator}.{self._render_value(quote=True)}"


@dataclass(frozen=True)
class _Group:
    conditions: tuple[Filter, ...]
    keyword: str = ""

    def as_param(self) -> tuple[str, str]:
        inner = ",".join(c.as_expression() for c in self.conditions)
        return self.keyword, f"({inner})"

    def as_expression(self) -> str:
        inner = ",".join(c.as_expression() for c in self.conditions)
        return f"{self.keyword}({inner})"


class Or(_Group):
    def __init__(self, *conditions: Filter) -> None:
        super().__init__(conditions=tuple(conditions), keyword="or")


class And(_Group):
    def __init__(self, *conditions: Filter) -> None:
        super().__init__(conditions=tuple(conditions), keyword="and")


Filter = Union[Condition, Or, And]


def eq(column: str, value: Any) -> Condition:
    return Condition(column, "eq", value)


def neq(column: str, value: Any) -> Condition:
    return Condition(column, "neq", value)


def lt(column: str, value: Any) -> Condition:
    return Condition(column, "lt", value)


def lte(column: str, value: Any) -> Condition:
    return Condition(column, "lte", value)


def gt(column: str, value: Any) -> Condition:
    return Condition(column, "gt", value)


def gte(column: str, value: Any) -> Condition:
    return Condition(column, "gte", value)


def in_(column: str, values: Iterable[Any]) -> Condition:
    return Condition(column, "in", tuple(values))


def is_null(column: str) -> Condition:
    return Condition(column, "is", None)


def is_not_null(column: str) -> Condition:
    return Condition(column, "not.is", None)


# ---------------------------------------------------------------------------
# PostgrestClient
# ---------------------------------------------------------------------------

class PostgrestClient:
    """Async client for row-level CRUD on the hosted data API."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._service_key = service_key
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Return the rows of *table* matching every filter.

        *order* uses PostgREST syntax, e.g. ``"expires_at.asc"``.
        """
        params = [("select", columns), *self._filter_params(filters)]
        if order:
            params.append(("order", order))
        if offset is not None:
            params.append(("offset", str(offset)))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", table, params=params)
        return self._rows(response)

    async def fetch(
        self,
        model: type[T],
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[T]:
        """Like :meth:`select`, decoding each row into *model*."""
        rows = await self.select(
            table, columns=columns, filters=filters,
            order=order, offset=offset, limit=limit,
        )
        return decode_rows(model, rows)

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        """Return the exact number of rows matching *filters*."""
        response = await self._request(
            "HEAD",
            table,
            params=[("select", "*"), *self._filter_params(filters)],
            headers={"Prefer": "count=exact"},
        )
        return self._parse_content_range(response.headers.get("content-range"))

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: Sequence[Filter],
    ) -> None:
        """Apply *values* to every row matching *filters*."""
        self._require_filters("update", filters)
        await self._request(
            "PATCH",
            table,
            params=self._filter_params(filters),
            json=_jsonable(values),
            headers={"Prefer": "return=minimal"},
        )

    async def delete(
        self,
        table: str,
        filters: Sequence[Filter],
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        """Delete rows matching *filters*.

        With ``returning=True`` the deleted rows are returned so callers can
        verify how many were actually removed.
        """
        self._require_filters("delete", filters)
        prefer = "return=representation" if returning else "return=minimal"
        response = await self._request(
            "DELETE",
            table,
            params=self._filter_params(filters),
            headers={"Prefer": prefer},
        )
        return self._rows(response) if returning else []

    async def insert(self, table: str, row: dict[str, Any]) -> None:
        await self._request(
            "POST",
            table,
            json=_jsonable(row),
            headers={"Prefer": "return=minimal"},
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.request(
                    method, f"/{table}", params=params, json=json, headers=headers,
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise GatewayTimeoutError(
                f"{method} {table} timed out after {self.timeout}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise GatewayConnectionError(
                f"Cannot connect to data API at {self.base_url}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise GatewayRequestError(
                exc.response.status_code, self._error_message(exc.response),
            ) from exc
        return response

    @staticmethod
    def _filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
        return [f.as_param() for f in filters]

    @staticmethod
    def _require_filters(action: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError(f"Refusing to {action} without filters")

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayMalformedResponseError("Response body is not JSON") from exc
        if not isinstance(data, list):
            raise GatewayMalformedResponseError("Expected a JSON array of rows")
        return data

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("message") or body)
        return str(body)

    @staticmethod
    def _parse_content_range(value: Optional[str]) -> int:
        # "0-24/3573" or "*/0"
        if not value or "/" not in value:
            raise GatewayMalformedResponseError("Missing Content-Range header")
        total = value.rsplit("/", 1)[1]
        if not total.isdigit():
            raise GatewayMalformedResponseError(f"Unexpected Content-Range: {value}")
        return int(total)


def decode_rows(model: type[T], rows: list[dict[str, Any]]) -> list[T]:
    """Validate raw rows into *model* instances."""
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise GatewayMalformedResponseError(
            f"Rows do not match {model.__name__}: {exc.error_count()} error(s)"
        ) from exc


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in values.items()
    }
