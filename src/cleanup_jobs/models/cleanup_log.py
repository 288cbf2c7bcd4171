"""Append-only audit record written once per job run."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CleanupLog(BaseModel):
    operation: str
    rows_affected: int = 0
    details: dict[str, Any] = Field(default_factory=dict)
    executed_at: datetime

    def to_row(self) -> dict[str, Any]:
        """Serialise for the ``cleanup_logs`` insert (timestamps as ISO strings)."""
        return self.model_dump(mode="json")
