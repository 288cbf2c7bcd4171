"""Expiration transitioner -- flips overdue active listings to ``expired``.

Scans ``posts`` where ``status = active`` and ``expires_at`` is before the
run's start time, oldest first, one page at a time.  Each page is expired
with a single bulk update.  A page whose update fails is counted as failed
and left in place; the scan moves past it and the next scheduled run picks
it up again because it still matches the filter.

Pagination: updated rows drop out of the filter, so the offset only ever
advances past rows that are still ``active`` (the failed batches).  Adding
the full batch size after a successful update would jump over rows that
were never visited.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from cleanup_jobs.integrations.postgrest_client import eq, in_, lt
from cleanup_jobs.models import Listing, ListingStatus
from cleanup_jobs.services.audit_logger import AuditLogger, utcnow
from cleanup_jobs.services.gateways import DataGateway

log = structlog.get_logger()

OPERATION = "update_expired_listings"
LISTINGS_TABLE = "posts"
DEFAULT_BATCH_SIZE = 100
DEFAULT_BATCH_DELAY_SECONDS = 1.0


@dataclass
class ExpirationResult:
    """Counters accumulated over one transitioner run."""

    success: bool = True
    posts_updated: int = 0
    posts_failed: int = 0
    total_processed: int = 0
    eligible_at_start: Optional[int] = None
    timestamp: str = ""
    error: Optional[str] = None

    def as_details(self) -> dict:
        details = asdict(self)
        if details["error"] is None:
            details.pop("error")
        return details


class ExpirationTransitioner:
    """Marks active listings past ``expires_at`` as expired, in batches."""

    def __init__(
        self,
        gateway: DataGateway,
        audit: AuditLogger,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        max_attempts: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._gateway = gateway
        self._audit = audit
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_attempts = max_attempts
        self._clock = clock or utcnow
        self._sleep = sleep

    async def run(self) -> ExpirationResult:
        """Expire every eligible listing, then write the cleanup log.

        A failure to fetch a page aborts the run: the log is still written
        with the counts gathered so far and the exception propagates.
        """
        cutoff = self._clock()
        result = ExpirationResult(timestamp=cutoff.isoformat())
        offset = 0
        seen: set[str] = set()

        with structlog.contextvars.bound_contextvars(operation=OPERATION):
            log.info("expiration_started", cutoff=cutoff.isoformat(), batch_size=self.batch_size)
            try:
                result.eligible_at_start = await self._gateway.count(
                    LISTINGS_TABLE, self._filters(cutoff),
                )
                while True:
                    page = await self._fetch_page(cutoff, offset)
                    if not page:
                        break

                    ids = [listing.id for listing in page]
                    if seen.issuperset(ids):
                        # Updates reported success but the rows still match.
                        log.warning("expiration_stalled", offset=offset, count=len(ids))
                        break
                    seen.update(ids)

                    if await self._expire_batch(ids):
                        result.posts_updated += len(ids)
                        log.info("batch_expired", offset=offset, count=len(ids))
                    else:
                        result.posts_failed += len(ids)
                        offset += len(ids)
                    result.total_processed += len(ids)

                    if len(page) < self.batch_size:
                        break
                    await self._sleep(self.batch_delay)
            except Exception as exc:
                result.success = False
                result.error = str(exc)
                log.error("expiration_aborted", error=str(exc), **self._counts(result))
                await self._audit.record(OPERATION, result.posts_updated, result.as_details())
                raise

            log.info("expiration_complete", **self._counts(result))
            await self._audit.record(OPERATION, result.posts_updated, result.as_details())
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _filters(cutoff: datetime):
        return [eq("status", ListingStatus.ACTIVE.value), lt("expires_at", cutoff)]

    async def _fetch_page(self, cutoff: datetime, offset: int) -> list[Listing]:
        return await self._gateway.fetch(
            Listing,
            LISTINGS_TABLE,
            columns="id,status,expires_at",
            filters=self._filters(cutoff),
            order="expires_at.asc,id.asc",
            offset=offset,
            limit=self.batch_size,
        )

    async def _expire_batch(self, ids: list[str]) -> bool:
        """Bulk-update one page; ``False`` once every attempt has failed."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._gateway.update(
                    LISTINGS_TABLE,
                    {"status": ListingStatus.EXPIRED.value, "updated_at": self._clock()},
                    [in_("id", ids)],
                )
                return True
            except Exception as exc:
                log.warning(
                    "batch_update_failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    count=len(ids),
                    error=str(exc),
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.batch_delay)
        return False

    @staticmethod
    def _counts(result: ExpirationResult) -> dict:
        return {
            "total_processed": result.total_processed,
            "posts_updated": result.posts_updated,
            "posts_failed": result.posts_failed,
        }
