"""
Bastion - Database Schema Module
================================

Table definitions.

Author: Bastion Maintainers
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bastion.core.database.manager import DatabaseManager


class SchemaMixin:
    """Mixin for database schema initialization."""

    def _init_tables(self: "DatabaseManager") -> None:
        """
        Initialize all database tables.

        DESIGN: Tables are created if not exist, allowing safe restarts.
        Indexes added for the time-range queries the services run.
        """
        conn = self._ensure_connection()
        cursor = conn.cursor()

        # -----------------------------------------------------------------
        # Community Settings
        # DESIGN: One JSON blob per community (CommunityConfig.to_dict)
        # -----------------------------------------------------------------
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS community_settings (
                community_id INTEGER PRIMARY KEY,
                settings TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        # -----------------------------------------------------------------
        # Lockdown State
        # DESIGN: Row present = community locked. Survives restarts so a
        # lockdown is never cleared by anything but an admin.
        # -----------------------------------------------------------------
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS lockdown_state (
                community_id INTEGER PRIMARY KEY,
                triggered_by INTEGER,
                reason TEXT,
                activated_at REAL NOT NULL
            )
        """)

        # -----------------------------------------------------------------
        # Structure Snapshots
        # DESIGN: Immutable rows; channels/roles/overwrites stored as JSON
        # -----------------------------------------------------------------
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                community_id INTEGER NOT NULL,
                created_at REAL NOT NULL,
                reason TEXT,
                manual INTEGER NOT NULL DEFAULT 0,
                channels TEXT NOT NULL,
                roles TEXT NOT NULL,
                overwrites TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_snapshots_community
            ON snapshots(community_id, created_at)
        """)

        # -----------------------------------------------------------------
        # Threat Reports
        # DESIGN: Append-only input for the correlation engine
        # -----------------------------------------------------------------
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS threat_reports (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                community_id INTEGER NOT NULL,
                actor_id INTEGER,
                type TEXT NOT NULL,
                severity INTEGER NOT NULL,
                metadata TEXT,
                timestamp REAL NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_threat_reports_time
            ON threat_reports(timestamp)
        """)

        # -----------------------------------------------------------------
        # Threat Correlations
        # DESIGN: Write-once output of the correlation engine
        # -----------------------------------------------------------------
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS threat_correlations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                threat_type TEXT NOT NULL,
                actor_id INTEGER,
                signature TEXT,
                communities TEXT NOT NULL,
                confidence REAL NOT NULL,
                report_count INTEGER NOT NULL DEFAULT 0,
                detected_at REAL NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_threat_correlations_time
            ON threat_correlations(detected_at)
        """)

        conn.commit()


__all__ = ["SchemaMixin"]
