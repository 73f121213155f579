"""
Bastion - Recovery Package
==========================

Structure snapshots, diffing and restore.

Author: Bastion Maintainers
"""

from bastion.services.recovery.diff import StructureDiff, diff_structure
from bastion.services.recovery.guard import RestoreGuard
from bastion.services.recovery.manager import RecoveryManager, StructureProvider

__all__ = [
    "RecoveryManager",
    "StructureProvider",
    "RestoreGuard",
    "StructureDiff",
    "diff_structure",
]
