"""Report purge -- deletes moderation reports reviewed more than 30 days ago.

Pending reports are never touched, however old they are.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from cleanup_jobs.integrations.postgrest_client import in_, is_not_null, lt, neq
from cleanup_jobs.models import Report, ReportStatus
from cleanup_jobs.services.audit_logger import AuditLogger, utcnow
from cleanup_jobs.services.gateways import DataGateway
from cleanup_jobs.services.verification import verify_deleted_count

log = structlog.get_logger()

OPERATION = "reports_cleanup"
REPORTS_TABLE = "reports"
DEFAULT_RETENTION_DAYS = 30


@dataclass
class ReportCleanupResult:
    success: bool = True
    reports_deleted: int = 0
    dismissed_count: int = 0
    resolved_count: int = 0


class ReportPurgeJob:
    def __init__(
        self,
        gateway: DataGateway,
        audit: AuditLogger,
        retention: timedelta = timedelta(days=DEFAULT_RETENTION_DAYS),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._gateway = gateway
        self._audit = audit
        self.retention = retention
        self._clock = clock or utcnow

    async def run(self) -> ReportCleanupResult:
        now = self._clock()
        cutoff = now - self.retention

        with structlog.contextvars.bound_contextvars(operation=OPERATION):
            log.info("report_purge_started", cutoff=cutoff.isoformat())
            try:
                result = await self._purge(cutoff)
            except Exception as exc:
                log.error("report_purge_failed", error=str(exc))
                await self._audit.record(OPERATION, 0, {
                    "error": str(exc),
                    "timestamp": now.isoformat(),
                })
                raise

            log.info(
                "report_purge_complete",
                reports_deleted=result.reports_deleted,
                dismissed=result.dismissed_count,
                resolved=result.resolved_count,
            )
            await self._audit.record(OPERATION, result.reports_deleted, {
                "dismissed_count": result.dismissed_count,
                "resolved_count": result.resolved_count,
                "timestamp": now.isoformat(),
            })
        return result

    async def _purge(self, cutoff: datetime) -> ReportCleanupResult:
        reports = await self._gateway.fetch(
            Report,
            REPORTS_TABLE,
            columns="id,status,reviewed_at",
            filters=[
                is_not_null("reviewed_at"),
                lt("reviewed_at", cutoff),
                neq("status", ReportStatus.PENDING.value),
            ],
        )
        if not reports:
            log.info("no_reports_to_cleanup")
            return ReportCleanupResult()

        ids = [r.id for r in reports]
        deleted = await self._gateway.delete(REPORTS_TABLE, [in_("id", ids)], returning=True)
        verify_deleted_count("reports", len(ids), len(deleted))

        return ReportCleanupResult(
            reports_deleted=len(deleted),
            dismissed_count=sum(1 for r in reports if r.status is ReportStatus.DISMISSED),
            resolved_count=sum(1 for r in reports if r.status is ReportStatus.RESOLVED),
        )
