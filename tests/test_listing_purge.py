"""Tests for the listing purge job (images first, row second)."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cleanup_jobs.integrations.cloudinary_client import ObjectDeletionStatus
from cleanup_jobs.integrations.postgrest_client import GatewayTimeoutError
from cleanup_jobs.services.listing_purge import OPERATION, ListingPurgeJob

from conftest import NOW


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _listing(post_id: str, images=(), expired_days: int = 10, created_minutes: int = 0, status: str = "expired") -> dict:
    return {
        "id": post_id,
        "title": f"Listing {post_id}",
        "status": status,
        "image_ids": list(images),
        "expires_at": NOW - timedelta(days=expired_days),
        "created_at": NOW - timedelta(days=60) + timedelta(minutes=created_minutes),
    }


def _job(gateway, object_store, audit, clock, **overrides) -> ListingPurgeJob:
    options = dict(batch_size=10, clock=clock)
    options.update(overrides)
    return ListingPurgeJob(gateway, object_store, audit, **options)


def _log(gateway) -> dict:
    logs = gateway.rows("cleanup_logs")
    assert len(logs) == 1
    assert logs[0]["operation"] == OPERATION
    return logs[0]


# ---------------------------------------------------------------------------
# Worked example: mixed outcomes in one run
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mixed_run_counts_and_failed_deletions(gateway, object_store, audit, clock):
    """No images / all images deletable / one image stuck."""
    gateway.rows("posts").extend([
        _listing("a", created_minutes=1),
        _listing("b", images=["b1", "b2"], created_minutes=2),
        _listing("c", images=["c1", "c2"], created_minutes=3),
    ])
    object_store.objects.update({"posts/b1", "posts/b2", "posts/c1"})

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.success is True
    assert result.posts_deleted == 2
    assert result.posts_skipped == 1
    assert result.images_deleted == 2
    assert result.images_failed == 1
    assert result.images_partially_deleted == 1
    assert gateway.ids("posts") == {"c"}

    details = _log(gateway)["details"]
    assert details["failed_deletions"] == [{
        "post_id": "c",
        "failed_images": ["posts/c2"],
        "reason": "image deletion not confirmed: not_found",
    }]
    assert details["images_failed"] == 1
    assert "error" not in details
    assert _log(gateway)["rows_affected"] == 2


# ---------------------------------------------------------------------------
# Per-listing behaviour
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_listing_without_images_deleted_without_store_call(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("bare"))

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 1
    assert object_store.calls == []
    assert gateway.ids("posts") == set()


@pytest.mark.asyncio
async def test_null_images_treated_as_no_images(gateway, object_store, audit, clock):
    row = _listing("legacy")
    row["image_ids"] = None
    gateway.rows("posts").append(row)

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 1


@pytest.mark.asyncio
async def test_all_images_deleted_then_row(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["x", "y", "z"]))
    object_store.objects.update({"posts/x", "posts/y", "posts/z"})

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 1
    assert result.images_deleted == 3
    assert object_store.objects == set()
    assert gateway.ids("posts") == set()
    assert object_store.calls == [["posts/x", "posts/y", "posts/z"]]


@pytest.mark.asyncio
async def test_stuck_image_keeps_row(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["ok", "stuck"]))
    object_store.objects.update({"posts/ok", "posts/stuck"})
    object_store.stuck.add("posts/stuck")

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 0
    assert result.posts_skipped == 1
    assert gateway.ids("posts") == {"p"}
    failure = result.failed_deletions[0]
    assert failure.post_id == "p"
    assert failure.failed_images == ["posts/stuck"]
    assert ObjectDeletionStatus.OTHER.value in failure.reason


@pytest.mark.asyncio
async def test_store_exception_marks_all_images_failed_and_continues(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("broken", images=["e1", "e2"], created_minutes=1),
        _listing("fine", images=["f1"], created_minutes=2),
    ])
    object_store.objects.update({"posts/e1", "posts/e2", "posts/f1"})
    object_store.unreachable.add("posts/e1")

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 1
    assert result.posts_skipped == 1
    assert result.images_failed == 2
    assert result.images_deleted == 1
    assert gateway.ids("posts") == {"broken"}
    assert result.failed_deletions[0].failed_images == ["posts/e1", "posts/e2"]
    assert "Cannot connect" in result.failed_deletions[0].reason


@pytest.mark.asyncio
async def test_row_delete_failure_counted_as_skipped(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["i"]))
    object_store.objects.add("posts/i")
    gateway.fail_next("delete", "posts")

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.success is True
    assert result.posts_skipped == 1
    assert result.images_deleted == 1
    assert result.failed_deletions == []
    assert gateway.ids("posts") == {"p"}


@pytest.mark.asyncio
async def test_folder_prefix_and_urls_resolved(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=[
        "plain",
        "avatars/already-qualified",
        "https://res.cloudinary.com/demo/image/upload/v1712345678/posts/from-url.jpg",
    ]))
    object_store.objects.update({"posts/plain", "avatars/already-qualified", "posts/from-url"})

    result = await _job(gateway, object_store, audit, clock).run()

    assert object_store.calls == [["posts/plain", "avatars/already-qualified", "posts/from-url"]]
    assert result.posts_deleted == 1


@pytest.mark.asyncio
async def test_max_attempts_rerequests_unconfirmed_images(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["a", "b"]))
    object_store.objects.update({"posts/a", "posts/b"})
    object_store.stuck.add("posts/b")

    original = object_store.delete_resources

    async def unstick_after_first_call(public_ids):
        outcome = await original(public_ids)
        object_store.stuck.clear()
        return outcome

    object_store.delete_resources = unstick_after_first_call

    result = await _job(gateway, object_store, audit, clock, max_attempts=2).run()

    assert object_store.calls == [["posts/a", "posts/b"]]
    assert object_store.destroyed == ["posts/b"]
    assert result.posts_deleted == 1
    assert result.images_deleted == 2


@pytest.mark.asyncio
async def test_retries_destroy_each_image_until_attempts_run_out(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["a", "b", "c"]))
    object_store.objects.update({"posts/a", "posts/b", "posts/c"})
    object_store.stuck.update({"posts/b", "posts/c"})

    result = await _job(gateway, object_store, audit, clock, max_attempts=3).run()

    assert object_store.calls == [["posts/a", "posts/b", "posts/c"]]
    assert object_store.destroyed == ["posts/b", "posts/c", "posts/b", "posts/c"]
    assert result.posts_skipped == 1
    assert result.failed_deletions[0].failed_images == ["posts/b", "posts/c"]
    assert gateway.ids("posts") == {"p"}


@pytest.mark.asyncio
async def test_single_attempt_never_calls_destroy(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p", images=["a"]))
    object_store.objects.add("posts/a")
    object_store.stuck.add("posts/a")

    await _job(gateway, object_store, audit, clock).run()

    assert object_store.destroyed == []


# ---------------------------------------------------------------------------
# Eligibility and pagination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_listing_inside_grace_window_kept(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("recent", expired_days=3),
        _listing("old", expired_days=8),
    ])

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 1
    assert gateway.ids("posts") == {"recent"}


@pytest.mark.asyncio
async def test_default_statuses_only_purge_removed_and_expired(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("act", status="active", created_minutes=1),
        _listing("pend", status="pending", created_minutes=2),
        _listing("exp", status="expired", created_minutes=3),
        _listing("rem", status="removed", created_minutes=4),
    ])

    result = await ListingPurgeJob(gateway, object_store, audit, clock=clock).run()

    assert result.posts_deleted == 2
    assert gateway.ids("posts") == {"act", "pend"}


@pytest.mark.asyncio
async def test_status_filter_limits_eligible_rows(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("expired", status="expired"),
        _listing("removed", status="removed"),
    ])

    await _job(gateway, object_store, audit, clock, statuses=["expired"]).run()

    assert gateway.ids("posts") == {"removed"}


@pytest.mark.asyncio
async def test_unlisted_status_does_not_abort_page(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("odd", status="archived", created_minutes=1),
        _listing("exp", status="expired", created_minutes=2),
    ])

    result = await _job(gateway, object_store, audit, clock, statuses=()).run()

    assert result.success is True
    assert result.posts_deleted == 2


@pytest.mark.asyncio
async def test_empty_status_filter_purges_any_status(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("inactive", status="inactive"),
        _listing("deleted", status="deleted"),
    ])

    await _job(gateway, object_store, audit, clock, statuses=()).run()

    assert gateway.ids("posts") == set()


@pytest.mark.asyncio
async def test_all_pages_processed_when_rows_disappear(gateway, object_store, audit, clock):
    """25 deletable listings with batch size 10 are all purged in one run."""
    gateway.rows("posts").extend(_listing(f"p{n:02d}", created_minutes=n) for n in range(25))

    result = await _job(gateway, object_store, audit, clock).run()

    assert result.posts_deleted == 25
    assert gateway.ids("posts") == set()


@pytest.mark.asyncio
async def test_skipped_listings_not_refetched_within_run(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("stuck", images=["s"], created_minutes=1),
        *(_listing(f"p{n}", created_minutes=10 + n) for n in range(4)),
    ])
    object_store.objects.add("posts/s")
    object_store.stuck.add("posts/s")

    result = await _job(gateway, object_store, audit, clock, batch_size=2).run()

    assert result.posts_deleted == 4
    assert result.posts_skipped == 1
    assert object_store.calls == [["posts/s"]]
    assert gateway.ids("posts") == {"stuck"}


@pytest.mark.asyncio
async def test_second_run_only_sees_previous_failures(gateway, object_store, audit, clock):
    gateway.rows("posts").extend([
        _listing("gone", images=["g"], created_minutes=1),
        _listing("retry", images=["r"], created_minutes=2),
    ])
    object_store.objects.update({"posts/g", "posts/r"})
    object_store.stuck.add("posts/r")

    first = await _job(gateway, object_store, audit, clock).run()
    object_store.calls.clear()
    second = await _job(gateway, object_store, audit, clock).run()

    assert first.posts_deleted == 1
    assert second.posts_deleted == 0
    assert second.posts_skipped == 1
    assert object_store.calls == [["posts/r"]]
    assert second.failed_deletions[0].post_id == "retry"


# ---------------------------------------------------------------------------
# Run-level failure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_page_fetch_failure_logged_and_raised(gateway, object_store, audit, clock):
    gateway.rows("posts").append(_listing("p"))
    gateway.fail_next("fetch", "posts", error=GatewayTimeoutError("fetch timed out"))

    with pytest.raises(GatewayTimeoutError):
        await _job(gateway, object_store, audit, clock).run()

    details = _log(gateway)["details"]
    assert details["success"] is False
    assert details["error"] == "fetch timed out"
    assert gateway.ids("posts") == {"p"}
