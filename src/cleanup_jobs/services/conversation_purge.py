"""Conversation purge -- hard-deletes abandoned conversations and their messages.

A conversation is eligible when both parties soft-deleted it, or when its
last activity is older than the retention window (one calendar month by
default).  Messages are deleted before the conversations that own them.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from cleanup_jobs.integrations.postgrest_client import And, Or, eq, in_, lt
from cleanup_jobs.models import Conversation
from cleanup_jobs.services.audit_logger import AuditLogger, utcnow
from cleanup_jobs.services.gateways import DataGateway
from cleanup_jobs.services.verification import verify_deleted_count

log = structlog.get_logger()

OPERATION = "conversations_cleanup"
CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"


def months_before(moment: datetime, months: int) -> datetime:
    """Shift *moment* back by calendar months, clamping the day (Mar 31 -> Feb 28)."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class ConversationCleanupResult:
    success: bool = True
    conversations_deleted: int = 0
    deleted_by_both: int = 0
    deleted_by_inactivity: int = 0


class ConversationPurgeJob:
    """Deletes mutually soft-deleted or inactive conversations."""

    def __init__(
        self,
        gateway: DataGateway,
        audit: AuditLogger,
        retention_months: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._gateway = gateway
        self._audit = audit
        self.retention_months = retention_months
        self._clock = clock or utcnow

    async def run(self) -> ConversationCleanupResult:
        now = self._clock()
        cutoff = months_before(now, self.retention_months)

        with structlog.contextvars.bound_contextvars(operation=OPERATION):
            log.info("conversation_purge_started", cutoff=cutoff.isoformat())
            try:
                result = await self._purge(cutoff)
            except Exception as exc:
                log.error("conversation_purge_failed", error=str(exc))
                await self._audit.record(OPERATION, 0, {
                    "deleted_by_both": 0,
                    "deleted_by_inactivity": 0,
                    "error": str(exc),
                    "timestamp": now.isoformat(),
                })
                raise

            log.info(
                "conversation_purge_complete",
                conversations_deleted=result.conversations_deleted,
                deleted_by_both=result.deleted_by_both,
                deleted_by_inactivity=result.deleted_by_inactivity,
            )
            await self._audit.record(OPERATION, result.conversations_deleted, {
                "deleted_by_both": result.deleted_by_both,
                "deleted_by_inactivity": result.deleted_by_inactivity,
                "timestamp": now.isoformat(),
            })
        return result

    async def _purge(self, cutoff: datetime) -> ConversationCleanupResult:
        conversations = await self._gateway.fetch(
            Conversation,
            CONVERSATIONS_TABLE,
            columns="id,last_activity_date,deleted_by_creator,deleted_by_participant",
            filters=[Or(
                And(eq("deleted_by_creator", True), eq("deleted_by_participant", True)),
                lt("last_activity_date", cutoff),
            )],
        )
        if not conversations:
            log.info("no_conversations_to_cleanup")
            return ConversationCleanupResult()

        # Independent tallies: a conversation can count toward both.
        result = ConversationCleanupResult(
            deleted_by_both=sum(1 for c in conversations if c.deleted_by_both),
            deleted_by_inactivity=sum(1 for c in conversations if c.inactive_since(cutoff)),
        )
        ids = [c.id for c in conversations]

        await self._gateway.delete(MESSAGES_TABLE, [in_("conversation_id", ids)])
        deleted = await self._gateway.delete(
            CONVERSATIONS_TABLE, [in_("id", ids)], returning=True,
        )
        verify_deleted_count("conversations", len(ids), len(deleted))

        result.conversations_deleted = len(deleted)
        return result
