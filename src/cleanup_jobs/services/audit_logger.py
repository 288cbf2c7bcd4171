"""Audit logger for cleanup job runs.

Each run appends exactly one row to ``cleanup_logs`` and emits the same
record as a structlog ``audit_event`` carrying ``audit: true`` so log
pipelines can filter on it.  Writing the row is best-effort: a failed insert
is logged and swallowed, never allowed to change the job's outcome.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from cleanup_jobs.models import CleanupLog
from cleanup_jobs.services.gateways import DataGateway


log = structlog.get_logger()

CLEANUP_LOGS_TABLE = "cleanup_logs"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogger:
    """Appends run summaries to the ``cleanup_logs`` table."""

    def __init__(
        self,
        gateway: DataGateway,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._gateway = gateway
        self._clock = clock or utcnow

    async def record(
        self,
        operation: str,
        rows_affected: int,
        details: dict[str, Any],
    ) -> bool:
        """Write one cleanup log entry.

        Returns ``False`` when the insert failed; the failure is only logged.
        """
        entry = CleanupLog(
            operation=operation,
            rows_affected=rows_affected,
            details=details,
            executed_at=self._clock(),
        )
        log.info(
            "audit_event",
            event_type="cleanup_run",
            operation=operation,
            rows_affected=rows_affected,
            details=entry.details,
            executed_at=entry.executed_at.isoformat(),
            audit=True,
        )
        try:
            await self._gateway.insert(CLEANUP_LOGS_TABLE, entry.to_row())
        except Exception as exc:
            log.warning(
                "cleanup_log_write_failed",
                operation=operation,
                error=str(exc),
            )
            return False
        return True
