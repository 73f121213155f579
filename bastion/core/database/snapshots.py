"""
Bastion - Structure Snapshots Database Mixin
============================================

Persistence for community structure snapshots: save, list, get, retention
purge and stats.

DESIGN:
    Snapshots are immutable once written, so there is no update method.
    Retention only ever deletes automatic snapshots; manual ones stay until
    an operator removes them.

Author: Bastion Maintainers
"""

import json
import sqlite3
from dataclasses import asdict, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from bastion.core.database.base import _db_error, _safe_json_loads
from bastion.core.models import ChannelState, OverwriteState, RoleState, Snapshot

if TYPE_CHECKING:
    from bastion.core.database.manager import DatabaseManager


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        community_id=row["community_id"],
        created_at=row["created_at"],
        reason=row["reason"] or "",
        manual=bool(row["manual"]),
        channels=tuple(ChannelState(**c) for c in _safe_json_loads(row["channels"])),
        roles=tuple(RoleState(**r) for r in _safe_json_loads(row["roles"])),
        overwrites=tuple(OverwriteState(**o) for o in _safe_json_loads(row["overwrites"])),
    )


INSERT_SNAPSHOT = """INSERT INTO snapshots
   (community_id, created_at, reason, manual, channels, roles, overwrites)
   VALUES (?, ?, ?, ?, ?, ?, ?)"""

PURGE_AUTOMATIC = """DELETE FROM snapshots
   WHERE community_id = ? AND manual = 0 AND id NOT IN (
       SELECT id FROM snapshots
       WHERE community_id = ? AND manual = 0
       ORDER BY created_at DESC, id DESC
       LIMIT ?
   )"""


def _snapshot_params(snapshot: Snapshot) -> Tuple:
    return (
        snapshot.community_id,
        snapshot.created_at,
        snapshot.reason,
        1 if snapshot.manual else 0,
        json.dumps([asdict(c) for c in snapshot.channels]),
        json.dumps([asdict(r) for r in snapshot.roles]),
        json.dumps([asdict(o) for o in snapshot.overwrites]),
    )


class SnapshotsMixin:
    """Database mixin for structure snapshot operations."""

    # =========================================================================
    # Save / Get / List
    # =========================================================================

    def save_snapshot(self: "DatabaseManager", snapshot: Snapshot) -> Optional[Snapshot]:
        """
        Store a snapshot.

        Returns:
            The stored snapshot with its id set, or None if the write failed.
        """
        try:
            cursor = self.execute(INSERT_SNAPSHOT, _snapshot_params(snapshot))
        except sqlite3.Error as e:
            _db_error("Snapshot Save Failed", e, ("Community", str(snapshot.community_id)))
            return None

        return replace(snapshot, id=cursor.lastrowid)

    def save_snapshot_with_retention(
        self: "DatabaseManager",
        snapshot: Snapshot,
        keep: int,
    ) -> Tuple[Optional[Snapshot], int]:
        """
        Store a snapshot and trim automatic ones beyond `keep` in one
        transaction.

        Returns:
            (stored snapshot or None if the write failed, snapshots purged).
        """
        try:
            with self.transaction() as tx:
                snapshot_id = tx.execute(INSERT_SNAPSHOT, _snapshot_params(snapshot)).lastrowid
                purged = tx.execute(
                    PURGE_AUTOMATIC, (snapshot.community_id, snapshot.community_id, keep),
                ).rowcount
        except sqlite3.Error as e:
            _db_error("Snapshot Save Failed", e, ("Community", str(snapshot.community_id)))
            return None, 0
        return replace(snapshot, id=snapshot_id), purged

    def get_snapshot(self: "DatabaseManager", snapshot_id: int) -> Optional[Snapshot]:
        try:
            row = self.fetchone("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
        except sqlite3.Error as e:
            _db_error("Snapshot Read Failed", e, ("Snapshot", str(snapshot_id)))
            return None
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self: "DatabaseManager", community_id: int, limit: int = 24) -> List[Snapshot]:
        """Snapshots for a community, newest first."""
        try:
            rows = self.fetchall(
                """SELECT * FROM snapshots WHERE community_id = ?
                   ORDER BY created_at DESC, id DESC LIMIT ?""",
                (community_id, limit)
            )
        except sqlite3.Error as e:
            _db_error("Snapshot List Failed", e, ("Community", str(community_id)))
            return []
        return [_row_to_snapshot(row) for row in rows]

    def get_latest_snapshot_time(self: "DatabaseManager", community_id: int) -> Optional[float]:
        try:
            row = self.fetchone(
                "SELECT MAX(created_at) AS latest FROM snapshots WHERE community_id = ?",
                (community_id,)
            )
        except sqlite3.Error as e:
            _db_error("Snapshot Read Failed", e, ("Community", str(community_id)))
            return None
        return row["latest"] if row else None

    # =========================================================================
    # Retention
    # =========================================================================

    def purge_automatic_snapshots(self: "DatabaseManager", community_id: int, keep: int) -> int:
        """
        Delete automatic snapshots beyond the newest `keep`.

        Returns:
            Number of snapshots deleted.
        """
        try:
            cursor = self.execute(PURGE_AUTOMATIC, (community_id, community_id, keep))
        except sqlite3.Error as e:
            _db_error("Snapshot Purge Failed", e, ("Community", str(community_id)))
            return 0
        return cursor.rowcount

    # =========================================================================
    # Stats
    # =========================================================================

    def get_snapshot_stats(self: "DatabaseManager", since: float) -> Dict[str, Any]:
        try:
            row = self.fetchone(
                """SELECT COUNT(*) AS total,
                          COUNT(DISTINCT community_id) AS communities,
                          SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS recent,
                          SUM(manual) AS manual
                   FROM snapshots""",
                (since,)
            )
        except sqlite3.Error as e:
            _db_error("Snapshot Stats Failed", e)
            return {"total": 0, "communities": 0, "recent": 0, "manual": 0}
        return {
            "total": row["total"] or 0,
            "communities": row["communities"] or 0,
            "recent": row["recent"] or 0,
            "manual": row["manual"] or 0,
        }


__all__ = ["SnapshotsMixin"]
