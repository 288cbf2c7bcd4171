"""Process entry points for the scheduled cleanup jobs.

Each console script runs one job with no arguments and exits ``0`` on
success or ``1`` on any unhandled exception, missing configuration
included.  Gateways are built here from settings and injected into the job.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from typing import Any, Awaitable, Callable, Protocol

import structlog

from cleanup_jobs.config import Settings, get_settings
from cleanup_jobs.integrations.cloudinary_client import CloudinaryClient
from cleanup_jobs.integrations.postgrest_client import PostgrestClient
from cleanup_jobs.logging_config import configure_logging
from cleanup_jobs.services.audit_logger import AuditLogger
from cleanup_jobs.services.conversation_purge import ConversationPurgeJob
from cleanup_jobs.services.expiration import ExpirationTransitioner
from cleanup_jobs.services.listing_purge import ListingPurgeJob
from cleanup_jobs.services.report_purge import ReportPurgeJob

log = structlog.get_logger()


class Job(Protocol):
    def run(self) -> Awaitable[Any]: ...


JobFactory = Callable[[Settings, PostgrestClient, CloudinaryClient, AuditLogger], Job]


# ---------------------------------------------------------------------------
# Job factories
# ---------------------------------------------------------------------------

def build_expiration(settings, gateway, object_store, audit) -> Job:
    return ExpirationTransitioner(
        gateway,
        audit,
        batch_size=settings.EXPIRE_BATCH_SIZE,
        batch_delay=settings.EXPIRE_BATCH_DELAY_SECONDS,
        max_attempts=settings.EXPIRE_MAX_ATTEMPTS,
    )


def build_listing_purge(settings, gateway, object_store, audit) -> Job:
    return ListingPurgeJob(
        gateway,
        object_store,
        audit,
        batch_size=settings.PURGE_BATCH_SIZE,
        grace=timedelta(days=settings.PURGE_GRACE_DAYS),
        image_folder=settings.PURGE_IMAGE_FOLDER,
        statuses=settings.PURGE_STATUSES,
        max_attempts=settings.PURGE_MAX_ATTEMPTS,
    )


def build_conversation_purge(settings, gateway, object_store, audit) -> Job:
    return ConversationPurgeJob(
        gateway, audit, retention_months=settings.CONVERSATION_RETENTION_MONTHS,
    )


def build_report_purge(settings, gateway, object_store, audit) -> Job:
    return ReportPurgeJob(
        gateway, audit, retention=timedelta(days=settings.REPORT_RETENTION_DAYS),
    )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

async def execute(build: JobFactory, settings: Settings) -> Any:
    """Wire gateways from *settings* and run the job produced by *build*."""
    gateway = PostgrestClient(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    object_store = CloudinaryClient(
        settings.CLOUDINARY_CLOUD_NAME,
        settings.CLOUDINARY_API_KEY,
        settings.CLOUDINARY_API_SECRET,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    job = build(settings, gateway, object_store, AuditLogger(gateway))
    return await job.run()


def run_job(name: str, build: JobFactory) -> int:
    """Run one job to completion and return the process exit code."""
    try:
        settings = get_settings()
    except Exception as exc:
        log.error("configuration_invalid", job=name, error=str(exc))
        return 1

    configure_logging(settings.APP_ENV, settings.LOG_LEVEL)
    try:
        result = asyncio.run(execute(build, settings))
    except Exception:
        log.exception("job_failed", job=name)
        return 1
    log.info("job_succeeded", job=name, result=repr(result))
    return 0


def update_expired_listings() -> None:
    sys.exit(run_job("update_expired_listings", build_expiration))


def cleanup_listings() -> None:
    sys.exit(run_job("cleanup_listings", build_listing_purge))


def cleanup_conversations() -> None:
    sys.exit(run_job("cleanup_conversations", build_conversation_purge))


def cleanup_reports() -> None:
    sys.exit(run_job("cleanup_reports", build_report_purge))
