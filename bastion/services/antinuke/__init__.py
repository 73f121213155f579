"""
Bastion - Anti-Nuke Package
===========================

Action-rate monitoring and the lockdown state machine.

Author: Bastion Maintainers
"""

from bastion.services.antinuke.lockdown import LockdownManager, LockdownStatus
from bastion.services.antinuke.service import (
    STRUCTURAL_SIGNAL,
    ActionDecision,
    ActionRateMonitor,
    Trigger,
    action_signal,
    match_attack_signature,
)

__all__ = [
    "ActionRateMonitor",
    "ActionDecision",
    "Trigger",
    "LockdownManager",
    "LockdownStatus",
    "STRUCTURAL_SIGNAL",
    "action_signal",
    "match_attack_signature",
]
