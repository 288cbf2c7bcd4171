"""Listing rows (the ``posts`` table) as seen by the cleanup jobs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ListingStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REMOVED = "removed"
    PENDING = "pending"
    INACTIVE = "inactive"
    DELETED = "deleted"


class Listing(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", coerce_numbers_to_str=True,
    )

    id: str
    status: Optional[ListingStatus] = None
    expires_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("expires_at", "expiry_date"),
    )
    image_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("image_ids", "images"),
    )
    created_at: Optional[datetime] = None
    title: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _unknown_status(cls, value):
        # Jobs filter by status server-side; an unlisted value must not fail the page.
        if value is not None and value not in {s.value for s in ListingStatus}:
            return None
        return value

    @field_validator("image_ids", mode="before")
    @classmethod
    def _null_images(cls, value):
        # Rows created before images were required store NULL.
        return [] if value is None else value

    @property
    def has_images(self) -> bool:
        return bool(self.image_ids)
