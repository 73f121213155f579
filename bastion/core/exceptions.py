"""
Bastion - Exceptions
====================

Errors raised across service boundaries.

Author: Bastion Maintainers
"""

from typing import Optional


class BastionError(Exception):
    """Base class for all Bastion errors."""


class RestoreInProgressError(BastionError):
    """A restore is already running for this community."""

    def __init__(self, community_id: int) -> None:
        self.community_id = community_id
        super().__init__(f"Restore already in progress for community {community_id}")


class SnapshotNotFoundError(BastionError):
    """Snapshot id is unknown or belongs to another community."""

    def __init__(self, snapshot_id: int, community_id: Optional[int] = None) -> None:
        self.snapshot_id = snapshot_id
        self.community_id = community_id
        super().__init__(f"Snapshot {snapshot_id} not found")


class SnapshotCaptureError(BastionError):
    """The structure provider could not read the community's structure."""


class ScorerUnavailableError(BastionError):
    """A learned scorer could not be loaded or evaluated."""


__all__ = [
    "BastionError",
    "RestoreInProgressError",
    "SnapshotNotFoundError",
    "SnapshotCaptureError",
    "ScorerUnavailableError",
]
