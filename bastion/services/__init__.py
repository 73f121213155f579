"""
Bastion - Services Package
==========================

Detection, correlation and recovery services. None of them import
discord; the handlers package adapts them to the gateway.

DESIGN:
    Services take their collaborators (tracker, config provider, clock,
    database) as constructor arguments. build_services() in protection.py
    wires the production graph; tests build the pieces they need.

Available Services:
    SlidingWindowTracker: Per-community, per-signal event windows
    RaidDetector: Join-burst scoring with rule and learned scorers
    ActionRateMonitor: Destructive-action rates and the lockdown trigger
    TokenLeakDetector: Bot tokens pasted into messages
    ThreatCorrelationEngine: Cross-community threat correlation
    RecoveryManager: Structure snapshots and restore
    ExemptionGuard: System, owner and whitelist exemptions
    Scheduler: Every periodic job

Author: Bastion Maintainers
"""

# =============================================================================
# Service Imports
# =============================================================================

from .tracker import SlidingWindowTracker
from .whitelist import Exemption, ExemptionGuard
from .community_config import CommunityConfigProvider
from .raid import RaidDetector, RaidDecision
from .antinuke import ActionRateMonitor, ActionDecision, LockdownManager
from .token_leak import TokenLeakDetector, TokenLeakDecision
from .correlation import ThreatCorrelationEngine
from .recovery import RecoveryManager, RestoreGuard
from .scheduler import Scheduler
from .dispatch import ActionDispatcher, AlertDispatcher
from .protection import ProtectionService, build_services


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "SlidingWindowTracker",
    "Exemption",
    "ExemptionGuard",
    "CommunityConfigProvider",
    "RaidDetector",
    "RaidDecision",
    "ActionRateMonitor",
    "ActionDecision",
    "LockdownManager",
    "TokenLeakDetector",
    "TokenLeakDecision",
    "ThreatCorrelationEngine",
    "RecoveryManager",
    "RestoreGuard",
    "Scheduler",
    "ActionDispatcher",
    "AlertDispatcher",
    "ProtectionService",
    "build_services",
]
