"""
Bastion - Community Settings Database Mixin
===========================================

Stores per-community detection settings as JSON.

Author: Bastion Maintainers
"""

import json
import sqlite3
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from bastion.core.database.base import _db_error, _safe_json_loads

if TYPE_CHECKING:
    from bastion.core.database.manager import DatabaseManager


class CommunityMixin:
    """Mixin for community settings storage."""

    def get_community_settings(self: "DatabaseManager", community_id: int) -> Optional[Dict[str, Any]]:
        """
        Get stored settings for a community.

        Returns:
            Settings dict, or None if nothing stored (or the read failed).
        """
        try:
            row = self.fetchone(
                "SELECT settings FROM community_settings WHERE community_id = ?",
                (community_id,)
            )
        except sqlite3.Error as e:
            _db_error("Community Settings Read Failed", e, ("Community", str(community_id)))
            return None
        if not row:
            return None
        return _safe_json_loads(row["settings"], default={})

    def save_community_settings(
        self: "DatabaseManager",
        community_id: int,
        settings: Dict[str, Any],
    ) -> bool:
        """
        Insert or replace the settings for a community.

        Returns:
            True if saved.
        """
        try:
            self.execute(
                """INSERT OR REPLACE INTO community_settings
                   (community_id, settings, updated_at)
                   VALUES (?, ?, ?)""",
                (community_id, json.dumps(settings), time.time())
            )
            return True
        except sqlite3.Error as e:
            _db_error("Community Settings Save Failed", e, ("Community", str(community_id)))
            return False

    def list_configured_communities(self: "DatabaseManager") -> List[int]:
        try:
            rows = self.fetchall("SELECT community_id FROM community_settings ORDER BY community_id")
        except sqlite3.Error as e:
            _db_error("Community List Failed", e)
            return []
        return [row["community_id"] for row in rows]


__all__ = ["CommunityMixin"]
