"""
Bastion - Lockdown State Machine
================================

NORMAL -> LOCKED on a detected attack, LOCKED -> NORMAL only on an
explicit admin clear.

DESIGN:
    There is no expiry; a human has to confirm the threat is gone. The
    in-memory dict answers is_locked() on the event path. The database
    copy is written off the event path and lets a restart come back
    LOCKED.

    Each write syncs the row to whatever the in-memory state is when the
    write runs, under one lock. Writes can therefore finish in any order
    and the row still ends up matching the last transition.

Author: Bastion Maintainers
"""

import threading
from enum import Enum
from typing import Dict, List, Optional, TYPE_CHECKING

from bastion.core.logger import logger
from bastion.core.models import LockdownState
from bastion.utils.async_utils import run_blocking
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.database import DatabaseManager


class LockdownStatus(str, Enum):
    NORMAL = "normal"
    LOCKED = "locked"


class LockdownManager:
    """Per-community lockdown flags with durable backing."""

    def __init__(self, db: Optional["DatabaseManager"] = None, clock: Clock = SYSTEM_CLOCK) -> None:
        self.db = db
        self._clock = clock
        self._states: Dict[int, LockdownState] = {}
        self._persist_lock = threading.Lock()

    def load(self) -> int:
        """
        Restore persisted lockdowns after a restart.

        Returns:
            Number of communities that came back locked.
        """
        if self.db is None:
            return 0
        for state in self.db.get_active_lockdowns():
            self._states[state.community_id] = state

        if self._states:
            logger.tree("Lockdowns Restored", [
                ("Communities", ", ".join(str(cid) for cid in sorted(self._states))),
            ], emoji="🔒")
        return len(self._states)

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self, community_id: int) -> LockdownStatus:
        return LockdownStatus.LOCKED if community_id in self._states else LockdownStatus.NORMAL

    def is_locked(self, community_id: int) -> bool:
        return community_id in self._states

    def get_state(self, community_id: int) -> Optional[LockdownState]:
        return self._states.get(community_id)

    def active_lockdowns(self) -> List[LockdownState]:
        return sorted(self._states.values(), key=lambda s: s.activated_at)

    # =========================================================================
    # Transitions
    # =========================================================================

    def activate(self, community_id: int, triggered_by: Optional[int], reason: str) -> bool:
        """
        NORMAL -> LOCKED.

        Returns:
            True if this call locked the community, False if it already was.
        """
        if community_id in self._states:
            return False

        state = LockdownState(
            community_id=community_id,
            active=True,
            triggered_by=triggered_by,
            reason=reason,
            activated_at=self._clock.now(),
        )
        self._states[community_id] = state

        if self.db is not None:
            run_blocking(self._persist, community_id, name="Persist Lockdown")

        logger.tree("🔒 LOCKDOWN ACTIVATED", [
            ("Community", str(community_id)),
            ("Triggered By", str(triggered_by)),
            ("Reason", reason),
            ("Clears", "Admin only"),
        ], emoji="🔒")
        return True

    def clear(self, community_id: int, cleared_by: Optional[int] = None) -> bool:
        """
        LOCKED -> NORMAL. The only way out of a lockdown.

        Returns:
            True if a lockdown was cleared.
        """
        state = self._states.pop(community_id, None)
        if state is None:
            return False

        if self.db is not None:
            run_blocking(self._persist, community_id, name="Persist Lockdown")

        logger.tree("🔓 LOCKDOWN CLEARED", [
            ("Community", str(community_id)),
            ("Cleared By", str(cleared_by)),
            ("Duration", f"{self._clock.now() - state.activated_at:.0f}s"),
        ], emoji="🔓")
        return True

    def _persist(self, community_id: int) -> bool:
        with self._persist_lock:
            state = self._states.get(community_id)
            if state is None:
                return self.db.end_lockdown(community_id)
            return self.db.start_lockdown(state)


__all__ = ["LockdownManager", "LockdownStatus"]
