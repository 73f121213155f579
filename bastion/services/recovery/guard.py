"""
Bastion - Restore Guard
=======================

Per-community "restore in progress" flag shared by the recovery manager
(writer) and the action monitor (reader).

DESIGN:
    try_acquire() is a plain set check-and-add with no await in between,
    so on a single event loop it is atomic: two restore requests for the
    same community can never both acquire it.

Author: Bastion Maintainers
"""

from typing import FrozenSet, Set


class RestoreGuard:

    def __init__(self) -> None:
        self._active: Set[int] = set()

    def is_restoring(self, community_id: int) -> bool:
        return community_id in self._active

    def try_acquire(self, community_id: int) -> bool:
        if community_id in self._active:
            return False
        self._active.add(community_id)
        return True

    def release(self, community_id: int) -> None:
        self._active.discard(community_id)

    @property
    def active(self) -> FrozenSet[int]:
        return frozenset(self._active)


__all__ = ["RestoreGuard"]
