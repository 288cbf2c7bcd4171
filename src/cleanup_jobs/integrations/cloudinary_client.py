"""Async Cloudinary client for deleting listing images.

Talks to the Admin API (bulk ``DELETE resources/image/upload``, HTTP basic
auth) and the Upload API (signed ``image/destroy``) via httpx.AsyncClient.
Every deletion resolves to an :class:`ObjectDeletionStatus`; anything other
than ``DELETED`` means the object may still exist.
"""

from __future__ import annotations

import hashlib
import re
import time
from enum import Enum
from typing import Any, Iterator, Optional, Sequence

import httpx


BULK_DELETE_LIMIT = 100
DEFAULT_API_URL = "https://api.cloudinary.com"

# https://res.cloudinary.com/<cloud>/image/upload/v1712345678/posts/abc.jpg
_DELIVERY_URL = re.compile(
    r"/upload/(?:v\d+/)?(?P<path>[^?#]+?)(?:\.[A-Za-z0-9]+)?(?:[?#].*)?$"
)


class ObjectDeletionStatus(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class ObjectStoreError(Exception):
    """Base class for object store failures."""


class ObjectStoreRequestError(ObjectStoreError):
    """Raised when the object store answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Object store returned {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ObjectStoreConnectionError(ObjectStoreError):
    """Raised when the object store is unreachable."""


class ObjectStoreTimeoutError(ObjectStoreError):
    """Raised when an object store request exceeds its timeout."""


class ObjectStoreMalformedResponseError(ObjectStoreError):
    """Raised when a response body does not have the expected shape."""


# ---------------------------------------------------------------------------
# Public id helpers
# ---------------------------------------------------------------------------

def to_public_id(identifier: str, folder: str) -> str:
    """Resolve a stored image reference into a fully-qualified public id.

    Delivery URLs are reduced to the path after ``/upload/`` (version and
    extension dropped).  Bare ids get the *folder* prefix; ids that already
    contain a ``/`` are used as they are.
    """
    identifier = identifier.strip()
    if not identifier:
        raise ValueError("Empty image identifier")
    if "://" in identifier:
        match = _DELIVERY_URL.search(identifier)
        if match is None:
            raise ValueError(f"Could not extract public id from URL: {identifier}")
        return match.group("path")
    if "/" in identifier:
        return identifier
    return f"{folder}/{identifier}"


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _to_status(value: Any) -> ObjectDeletionStatus:
    if value == "deleted":
        return ObjectDeletionStatus.DELETED
    if value == "not_found":
        return ObjectDeletionStatus.NOT_FOUND
    return ObjectDeletionStatus.OTHER


# ---------------------------------------------------------------------------
# CloudinaryClient
# ---------------------------------------------------------------------------

class CloudinaryClient:
    """Deletes uploaded images by public id."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 30.0,
        api_url: str = DEFAULT_API_URL,
    ) -> None:
        self.cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def delete_resources(
        self, public_ids: Sequence[str],
    ) -> dict[str, ObjectDeletionStatus]:
        """Bulk-delete *public_ids*, at most 100 per Admin API call.

        Returns one status per requested id.  Ids missing from the response
        are reported as ``OTHER``.
        """
        outcome: dict[str, ObjectDeletionStatus] = {}
        for chunk in _chunks(list(public_ids), BULK_DELETE_LIMIT):
            response = await self._request(
                "DELETE",
                f"/v1_1/{self.cloud_name}/resources/image/upload",
                params=[("public_ids[]", pid) for pid in chunk],
                auth=(self._api_key, self._api_secret),
            )
            deleted = self._json(response).get("deleted")
            if not isinstance(deleted, dict):
                raise ObjectStoreMalformedResponseError(
                    "Response missing 'deleted' mapping"
                )
            for pid in chunk:
                outcome[pid] = _to_status(deleted.get(pid))
        return outcome

    async def destroy(
        self, public_id: str, invalidate: bool = True,
    ) -> ObjectDeletionStatus:
        """Delete a single image through the signed Upload API."""
        params: dict[str, Any] = {
            "public_id": public_id,
            "timestamp": str(int(time.time())),
            "invalidate": "true" if invalidate else "false",
        }
        params["signature"] = self.sign(params)
        params["api_key"] = self._api_key

        response = await self._request(
            "POST", f"/v1_1/{self.cloud_name}/image/destroy", data=params,
        )
        result = self._json(response).get("result")
        if result == "ok":
            return ObjectDeletionStatus.DELETED
        if result == "not found":
            return ObjectDeletionStatus.NOT_FOUND
        return ObjectDeletionStatus.OTHER

    def sign(self, params: dict[str, Any]) -> str:
        """SHA-1 request signature over the sorted, non-empty parameters."""
        payload = "&".join(
            f"{key}={params[key]}"
            for key in sorted(params)
            if key not in ("api_key", "file", "resource_type", "cloud_name")
            and params[key] not in (None, "")
        )
        return hashlib.sha1(f"{payload}{self._api_secret}".encode()).hexdigest()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[list[tuple[str, str]]] = None,
        data: Optional[dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url,
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.request(
                    method, path, params=params, data=data, auth=auth,
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ObjectStoreTimeoutError(
                f"{method} {path} timed out after {self.timeout}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise ObjectStoreConnectionError(
                f"Cannot connect to object store at {self.api_url}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ObjectStoreRequestError(
                exc.response.status_code, exc.response.text,
            ) from exc
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ObjectStoreMalformedResponseError("Response body is not JSON") from exc
        if not isinstance(body, dict):
            raise ObjectStoreMalformedResponseError("Expected a JSON object")
        return body
