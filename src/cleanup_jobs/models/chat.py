"""Conversation rows (the ``conversations`` table)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Conversation(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    creator_id: Optional[str] = None
    participant_id: Optional[str] = None
    deleted_by_creator: bool = False
    deleted_by_participant: bool = False
    last_activity_date: Optional[datetime] = None

    @field_validator("last_activity_date")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # `timestamp without time zone` columns come back naive.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def deleted_by_both(self) -> bool:
        """Both parties soft-deleted the conversation."""
        return self.deleted_by_creator and self.deleted_by_participant

    def inactive_since(self, cutoff: datetime) -> bool:
        """True when the last message predates *cutoff*."""
        return self.last_activity_date is not None and self.last_activity_date < cutoff
