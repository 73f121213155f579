"""
Bastion - Database Module
=========================

SQLite persistence split into mixins by concern.

Author: Bastion Maintainers
"""

from bastion.core.database.base import DATA_DIR, DB_PATH
from bastion.core.database.manager import DatabaseManager, get_db

__all__ = ["DatabaseManager", "get_db", "DATA_DIR", "DB_PATH"]
