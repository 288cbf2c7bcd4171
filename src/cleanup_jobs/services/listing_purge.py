"""Listing purge -- deletes long-expired listings together with their images.

Per listing the order is fixed: images first, row second.  The row is only
deleted once the object store has confirmed every one of its images as
``deleted``; otherwise the listing is skipped and stays eligible for the
next run.  A row can therefore outlive its images only when the row delete
itself fails after a clean image purge, never the other way around.

State per listing:

    pending -> no images  -> deleted | skipped (row delete failed)
            -> has images -> all deleted -> deleted | skipped (row delete failed)
                          -> any failed  -> skipped (retried next run)
                          -> exception   -> skipped (retried next run)

Listings are processed one at a time; nothing inside a page runs
concurrently.  Deleted rows drop out of the query, so the offset only
advances past listings that were skipped.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import structlog

from cleanup_jobs.integrations.cloudinary_client import ObjectDeletionStatus, to_public_id
from cleanup_jobs.integrations.postgrest_client import eq, in_, lt
from cleanup_jobs.models import Listing
from cleanup_jobs.services.audit_logger import AuditLogger, utcnow
from cleanup_jobs.services.gateways import DataGateway, ObjectStore

log = structlog.get_logger()

OPERATION = "posts_cleanup"
LISTINGS_TABLE = "posts"
DEFAULT_BATCH_SIZE = 10
DEFAULT_GRACE_DAYS = 7
DEFAULT_IMAGE_FOLDER = "posts"
DEFAULT_STATUSES = ("removed", "expired")


@dataclass
class FailedDeletion:
    post_id: str
    failed_images: list[str]
    reason: str


@dataclass
class PurgeResult:
    """Aggregated outcome of one purge run."""

    success: bool = True
    posts_deleted: int = 0
    posts_skipped: int = 0
    images_deleted: int = 0
    images_failed: int = 0
    images_partially_deleted: int = 0
    failed_deletions: list[FailedDeletion] = field(default_factory=list)
    duration_ms: int = 0
    timestamp: str = ""
    error: Optional[str] = None

    @property
    def has_warnings(self) -> bool:
        return self.images_failed > 0

    def as_details(self) -> dict:
        details = asdict(self)
        if details["error"] is None:
            details.pop("error")
        return details


class ListingPurgeJob:
    """Deletes listings whose expiry is older than the grace window."""

    def __init__(
        self,
        gateway: DataGateway,
        object_store: ObjectStore,
        audit: AuditLogger,
        batch_size: int = DEFAULT_BATCH_SIZE,
        grace: timedelta = timedelta(days=DEFAULT_GRACE_DAYS),
        image_folder: str = DEFAULT_IMAGE_FOLDER,
        statuses: Sequence[str] = DEFAULT_STATUSES,
        max_attempts: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._gateway = gateway
        self._store = object_store
        self._audit = audit
        self.batch_size = batch_size
        self.grace = grace
        self.image_folder = image_folder
        self.statuses = tuple(statuses)
        self.max_attempts = max_attempts
        self._clock = clock or utcnow

    async def run(self) -> PurgeResult:
        """Purge every eligible listing and write the cleanup log.

        Per-listing failures never abort the run.  Anything that escapes the
        per-listing handler (a page fetch failing, typically) is logged to
        ``cleanup_logs`` and re-raised.
        """
        now = self._clock()
        cutoff = now - self.grace
        result = PurgeResult(timestamp=now.isoformat())
        started = time.monotonic()
        offset = 0

        with structlog.contextvars.bound_contextvars(operation=OPERATION):
            log.info("purge_started", cutoff=cutoff.isoformat(), batch_size=self.batch_size)
            try:
                while True:
                    page = await self._fetch_page(cutoff, offset)
                    if not page:
                        break
                    log.info("purge_page", offset=offset, count=len(page))
                    for listing in page:
                        if not await self._purge_listing(listing, result):
                            offset += 1
            except Exception as exc:
                result.success = False
                result.error = str(exc)
                result.duration_ms = self._elapsed_ms(started)
                log.error("purge_aborted", error=str(exc), **self._counts(result))
                await self._audit.record(OPERATION, result.posts_deleted, result.as_details())
                raise

            result.duration_ms = self._elapsed_ms(started)
            if result.has_warnings:
                log.warning("purge_complete_with_failures", **self._counts(result))
            else:
                log.info("purge_complete", **self._counts(result))
            await self._audit.record(OPERATION, result.posts_deleted, result.as_details())
        return result

    # ------------------------------------------------------------------
    # Per-listing processing
    # ------------------------------------------------------------------

    async def _purge_listing(self, listing: Listing, result: PurgeResult) -> bool:
        """Process one listing; ``True`` when its row was deleted."""
        if not listing.has_images:
            return await self._delete_row(listing, result)

        public_ids: list[str] = list(listing.image_ids)
        try:
            public_ids = list(dict.fromkeys(
                to_public_id(image, self.image_folder) for image in listing.image_ids
            ))
            outcome = await self._delete_images(public_ids)
        except Exception as exc:
            log.error("listing_purge_failed", post_id=listing.id, error=str(exc))
            self._record_failure(result, listing.id, public_ids, confirmed=0, reason=str(exc))
            return False

        failed = [pid for pid in public_ids if outcome.get(pid) is not ObjectDeletionStatus.DELETED]
        confirmed = len(public_ids) - len(failed)
        if failed:
            reasons = sorted({(outcome.get(pid) or ObjectDeletionStatus.OTHER).value for pid in failed})
            self._record_failure(
                result, listing.id, failed, confirmed=confirmed,
                reason=f"image deletion not confirmed: {', '.join(reasons)}",
            )
            log.warning(
                "listing_images_not_deleted",
                post_id=listing.id,
                failed=len(failed),
                deleted=confirmed,
            )
            return False

        result.images_deleted += confirmed
        return await self._delete_row(listing, result)

    async def _delete_images(self, public_ids: list[str]) -> dict[str, ObjectDeletionStatus]:
        """Delete *public_ids*, re-requesting unconfirmed ones up to ``max_attempts``.

        The first attempt is one bulk call.  Later attempts destroy the
        remaining images one at a time through the Upload API, which is not
        subject to the Admin API's hourly rate limit.
        """
        outcome: dict[str, ObjectDeletionStatus] = {}
        remaining = public_ids
        for attempt in range(1, self.max_attempts + 1):
            try:
                if attempt == 1:
                    statuses = await self._store.delete_resources(remaining)
                else:
                    statuses = {pid: await self._store.destroy(pid) for pid in remaining}
            except Exception as exc:
                if attempt == self.max_attempts:
                    raise
                log.warning("image_delete_retry", attempt=attempt, error=str(exc))
                continue
            outcome.update(statuses)
            remaining = [pid for pid in remaining if statuses.get(pid) is not ObjectDeletionStatus.DELETED]
            if not remaining:
                break
        return outcome

    async def _delete_row(self, listing: Listing, result: PurgeResult) -> bool:
        try:
            deleted = await self._gateway.delete(
                LISTINGS_TABLE, [eq("id", listing.id)], returning=True,
            )
        except Exception as exc:
            log.error("listing_row_delete_failed", post_id=listing.id, error=str(exc))
            result.posts_skipped += 1
            return False
        if not deleted:
            log.warning("listing_row_not_deleted", post_id=listing.id)
            result.posts_skipped += 1
            return False
        result.posts_deleted += 1
        log.info("listing_deleted", post_id=listing.id, images=len(listing.image_ids))
        return True

    @staticmethod
    def _record_failure(
        result: PurgeResult,
        post_id: str,
        failed_images: list[str],
        confirmed: int,
        reason: str,
    ) -> None:
        result.posts_skipped += 1
        result.images_failed += len(failed_images)
        result.images_partially_deleted += confirmed
        result.failed_deletions.append(
            FailedDeletion(post_id=post_id, failed_images=failed_images, reason=reason)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_page(self, cutoff: datetime, offset: int) -> list[Listing]:
        filters = [lt("expires_at", cutoff)]
        if self.statuses:
            filters.append(in_("status", self.statuses))
        return await self._gateway.fetch(
            Listing,
            LISTINGS_TABLE,
            columns="id,title,status,image_ids,expires_at,created_at",
            filters=filters,
            order="created_at.asc,id.asc",
            offset=offset,
            limit=self.batch_size,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    @staticmethod
    def _counts(result: PurgeResult) -> dict:
        return {
            "posts_deleted": result.posts_deleted,
            "posts_skipped": result.posts_skipped,
            "images_deleted": result.images_deleted,
            "images_failed": result.images_failed,
        }
