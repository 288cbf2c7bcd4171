"""Moderation report rows (the ``reports`` table)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ReportStatus(str, Enum):
    PENDING = "pending"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


class Report(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: ReportStatus
    reviewed_at: Optional[datetime] = None
