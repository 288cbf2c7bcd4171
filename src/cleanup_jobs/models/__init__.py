"""Row models package -- re-exports every decoded remote entity."""

from cleanup_jobs.models.chat import Conversation
from cleanup_jobs.models.cleanup_log import CleanupLog
from cleanup_jobs.models.listing import Listing, ListingStatus
from cleanup_jobs.models.moderation import Report, ReportStatus

__all__ = [
    "CleanupLog",
    "Conversation",
    "Listing",
    "ListingStatus",
    "Report",
    "ReportStatus",
]
