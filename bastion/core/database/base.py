"""
Bastion - Database Base Module
==============================

Shared paths and helpers for the database mixins.

Author: Bastion Maintainers
"""

import json
from pathlib import Path
from typing import Any, Optional

from bastion.core.logger import logger


# =============================================================================
# Constants
# =============================================================================

DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "bastion.db"

DB_CONNECTION_TIMEOUT = 30.0
SQLITE_BUSY_TIMEOUT = 5000  # ms


# =============================================================================
# Helper Functions
# =============================================================================

def _safe_json_loads(value: Optional[str], default: Any = None) -> Any:
    """Safely parse JSON, returning default on error."""
    if not value:
        return default if default is not None else []
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        logger.warning(f"Corrupted JSON in database: {value[:50]}")
        return default if default is not None else []


def _db_error(title: str, error: Exception, *details: tuple) -> None:
    """Log a repository failure in the usual shape."""
    logger.error(title, [
        *details,
        ("Error", str(error)[:100]),
        ("Type", type(error).__name__),
    ])


__all__ = ["DATA_DIR", "DB_PATH", "_safe_json_loads", "_db_error"]
