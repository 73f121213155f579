"""
Bastion - Database Manager
==========================

SQLite store for community settings, lockdowns, snapshots and threat
intelligence.

Author: Bastion Maintainers
"""

import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Tuple, Union

from bastion.core.logger import logger
from bastion.core.database.base import DB_CONNECTION_TIMEOUT, DB_PATH, SQLITE_BUSY_TIMEOUT
from bastion.core.database.schema import SchemaMixin
from bastion.core.database.community import CommunityMixin
from bastion.core.database.lockdown import LockdownMixin
from bastion.core.database.snapshots import SnapshotsMixin
from bastion.core.database.threats import ThreatsMixin


# =============================================================================
# Database Manager
# =============================================================================

class DatabaseManager(
    SchemaMixin,
    CommunityMixin,
    LockdownMixin,
    SnapshotsMixin,
    ThreatsMixin,
):
    """
    Database manager with thread-safe operations.

    DESIGN: One connection per manager, guarded by a lock so repository
    calls can be pushed to worker threads with asyncio.to_thread. Uses WAL
    mode for concurrent readers. Services receive the manager through their
    constructors; get_db() only provides the process default.
    """

    def __init__(self, path: Union[str, Path] = DB_PATH) -> None:
        self.path = Path(path)
        self._db_lock: threading.Lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._connect()
        self._init_tables()

        logger.tree("Database Manager Initialized", [
            ("Path", str(self.path)),
            ("WAL Mode", "Enabled"),
        ], emoji="🗄️")

    # =========================================================================
    # Connection Management
    # =========================================================================

    def _connect(self) -> None:
        try:
            self._conn = sqlite3.connect(
                str(self.path),
                check_same_thread=False,
                timeout=DB_CONNECTION_TIMEOUT,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA temp_store=MEMORY")
            self._conn.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT}")
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            logger.error("Database Connection Failed", [("Path", str(self.path)), ("Error", str(e))])
            raise

    def _ensure_connection(self) -> sqlite3.Connection:
        """Ensure connection is valid, reconnect if needed."""
        if self._conn is None:
            self._connect()
        return self._conn

    def execute(
        self,
        query: str,
        params: Tuple = (),
        commit: bool = True
    ) -> sqlite3.Cursor:
        """Execute a query with thread safety."""
        with self._db_lock:
            conn = self._ensure_connection()
            cursor = conn.cursor()
            cursor.execute(query, params)
            if commit:
                conn.commit()
            return cursor

    def fetchone(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        with self._db_lock:
            cursor = self._ensure_connection().execute(query, params)
            return cursor.fetchone()

    def fetchall(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        with self._db_lock:
            cursor = self._ensure_connection().execute(query, params)
            return cursor.fetchall()

    def close(self) -> None:
        """Close database connection."""
        with self._db_lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Database Connection Closed")

    # =========================================================================
    # Transaction Support
    # =========================================================================

    class Transaction:
        """
        Context manager for atomic database transactions.

        Usage:
            with db.transaction() as tx:
                tx.execute("INSERT INTO ...", (...))
                tx.execute("DELETE FROM ...", (...))
            # Commits on success, rolls back on exception
        """

        def __init__(self, db: "DatabaseManager"):
            self._db = db
            self._cursor: Optional[sqlite3.Cursor] = None

        def __enter__(self) -> "DatabaseManager.Transaction":
            self._db._db_lock.acquire()
            try:
                conn = self._db._ensure_connection()
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error:
                self._db._db_lock.release()
                raise
            self._cursor = conn.cursor()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
            conn = self._db._ensure_connection()
            try:
                if exc_type is None:
                    conn.commit()
                else:
                    conn.rollback()
                    logger.warning("Database Transaction Rolled Back", [
                        ("Error", str(exc_val)[:100] if exc_val else "Unknown"),
                    ])
            finally:
                self._db._db_lock.release()
            return False

        def execute(self, query: str, params: Tuple = ()) -> sqlite3.Cursor:
            self._cursor.execute(query, params)
            return self._cursor

    def transaction(self) -> "DatabaseManager.Transaction":
        return self.Transaction(self)


# =============================================================================
# Default Instance
# =============================================================================

_db: Optional[DatabaseManager] = None


def get_db(path: Union[str, Path, None] = None) -> DatabaseManager:
    """
    Get the process-wide database manager, creating it on first use.

    Args:
        path: Database file used if the manager does not exist yet.
    """
    global _db
    if _db is None:
        _db = DatabaseManager(path or DB_PATH)
    return _db


__all__ = ["DatabaseManager", "get_db"]
