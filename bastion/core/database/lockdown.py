"""
Bastion - Lockdown Database Mixin
=================================

Durable lockdown state. A row in lockdown_state means the community is
locked; only an explicit clear deletes it.

Author: Bastion Maintainers
"""

import sqlite3
from typing import TYPE_CHECKING, List, Optional

from bastion.core.database.base import _db_error
from bastion.core.models import LockdownState

if TYPE_CHECKING:
    from bastion.core.database.manager import DatabaseManager


def _row_to_state(row: sqlite3.Row) -> LockdownState:
    return LockdownState(
        community_id=row["community_id"],
        active=True,
        triggered_by=row["triggered_by"],
        reason=row["reason"] or "",
        activated_at=row["activated_at"],
    )


class LockdownMixin:
    """Mixin for lockdown state persistence."""

    def start_lockdown(self: "DatabaseManager", state: LockdownState) -> bool:
        """
        Record a lockdown.

        Returns:
            True if stored.
        """
        try:
            self.execute(
                """INSERT OR REPLACE INTO lockdown_state
                   (community_id, triggered_by, reason, activated_at)
                   VALUES (?, ?, ?, ?)""",
                (state.community_id, state.triggered_by, state.reason, state.activated_at)
            )
            return True
        except sqlite3.Error as e:
            _db_error("Lockdown Save Failed", e, ("Community", str(state.community_id)))
            return False

    def end_lockdown(self: "DatabaseManager", community_id: int) -> bool:
        try:
            self.execute("DELETE FROM lockdown_state WHERE community_id = ?", (community_id,))
            return True
        except sqlite3.Error as e:
            _db_error("Lockdown Clear Failed", e, ("Community", str(community_id)))
            return False

    def get_lockdown_state(self: "DatabaseManager", community_id: int) -> Optional[LockdownState]:
        """Lockdown state for a community, or None if not locked."""
        try:
            row = self.fetchone(
                "SELECT * FROM lockdown_state WHERE community_id = ?",
                (community_id,)
            )
        except sqlite3.Error as e:
            _db_error("Lockdown Read Failed", e, ("Community", str(community_id)))
            return None
        return _row_to_state(row) if row else None

    def get_active_lockdowns(self: "DatabaseManager") -> List[LockdownState]:
        """All persisted lockdowns, used to restore state after a restart."""
        try:
            rows = self.fetchall("SELECT * FROM lockdown_state ORDER BY activated_at")
        except sqlite3.Error as e:
            _db_error("Lockdown List Failed", e)
            return []
        return [_row_to_state(row) for row in rows]


__all__ = ["LockdownMixin"]
