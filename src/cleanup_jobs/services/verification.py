"""Post-delete verification shared by the bulk purge jobs."""

from __future__ import annotations


class CleanupVerificationError(Exception):
    """Raised when a bulk delete removed a different number of rows than fetched."""

    def __init__(self, entity: str, expected: int, deleted: int) -> None:
        super().__init__(
            f"Failed to delete all {entity}. Expected: {expected}, Deleted: {deleted}"
        )
        self.entity = entity
        self.expected = expected
        self.deleted = deleted


def verify_deleted_count(entity: str, expected: int, deleted: int) -> None:
    if deleted != expected:
        raise CleanupVerificationError(entity, expected, deleted)
