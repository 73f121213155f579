"""
Bastion - Core Package
======================

Configuration, logging, data models and persistence.

DESIGN:
    Core modules are singletons or global instances so every component
    sees the same state:
    - get_config() returns the same Config instance
    - get_db() returns the same DatabaseManager instance
    - logger is a global TreeLogger instance

Author: Bastion Maintainers
"""

# =============================================================================
# Core Imports
# =============================================================================

from .config import (
    CommunityConfig,
    Config,
    ConfigValidationError,
    get_config,
)

from .database import DatabaseManager, get_db

from .exceptions import (
    BastionError,
    RestoreInProgressError,
    ScorerUnavailableError,
    SnapshotCaptureError,
    SnapshotNotFoundError,
)

from .logger import logger, TreeLogger


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    # Config
    "Config",
    "CommunityConfig",
    "ConfigValidationError",
    "get_config",
    # Database
    "DatabaseManager",
    "get_db",
    # Errors
    "BastionError",
    "RestoreInProgressError",
    "SnapshotNotFoundError",
    "SnapshotCaptureError",
    "ScorerUnavailableError",
    # Logger
    "logger",
    "TreeLogger",
]
