"""
Bastion - Periodic Jobs
=======================

Every recurring piece of work in the protection services.

Author: Bastion Maintainers
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict

from bastion.core import constants as C
from bastion.core.logger import logger
from bastion.services.scheduler.base import PeriodicJob

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider
    from bastion.services.correlation import ThreatCorrelationEngine
    from bastion.services.raid import RaidDetector
    from bastion.services.recovery import RecoveryManager
    from bastion.services.tracker import SlidingWindowTracker


# =============================================================================
# Tracker / Cache Cleanup
# =============================================================================

class TrackerCleanupJob(PeriodicJob):
    """Evict expired tracker events, closed raid bursts and stale configs."""

    name = "Tracker Cleanup"
    interval = C.TRACKER_CLEANUP_INTERVAL

    def __init__(
        self,
        tracker: "SlidingWindowTracker",
        detector: "RaidDetector",
        config_provider: "CommunityConfigProvider",
        interval: float = C.TRACKER_CLEANUP_INTERVAL,
    ) -> None:
        self.tracker = tracker
        self.detector = detector
        self.config_provider = config_provider
        self.interval = interval

    async def run(self) -> Dict[str, Any]:
        events = self.tracker.cleanup()
        bursts = self.detector.cleanup()
        configs = self.config_provider.cleanup_cache()
        return {
            "success": True,
            "removed": events,
            "bursts_closed": bursts,
            "configs_expired": configs,
            "remaining": len(self.tracker),
        }


# =============================================================================
# Correlation
# =============================================================================

class CorrelationJob(PeriodicJob):
    """Run the actor, pattern and time correlators over the current window."""

    name = "Threat Correlation"
    interval = C.CORRELATION_RUN_INTERVAL

    def __init__(self, engine: "ThreatCorrelationEngine", interval: float = C.CORRELATION_RUN_INTERVAL) -> None:
        self.engine = engine
        self.interval = interval

    async def run(self) -> Dict[str, Any]:
        published = await self.engine.run_analysis()
        return {"success": True, "published": len(published)}


class CorrelationCacheCleanupJob(PeriodicJob):

    name = "Correlation Cache Cleanup"
    interval = C.CORRELATION_CACHE_CLEANUP_INTERVAL

    def __init__(self, engine: "ThreatCorrelationEngine") -> None:
        self.engine = engine

    async def run(self) -> Dict[str, Any]:
        return {"success": True, "removed": self.engine.cleanup_cache()}


class ThreatReportPurgeJob(PeriodicJob):
    """Delete threat reports older than the retention period."""

    name = "Threat Report Purge"
    interval = C.THREAT_REPORT_PURGE_INTERVAL

    def __init__(
        self,
        engine: "ThreatCorrelationEngine",
        retention: float = C.THREAT_REPORT_RETENTION,
    ) -> None:
        self.engine = engine
        self.retention = retention

    async def run(self) -> Dict[str, Any]:
        purged = await asyncio.to_thread(self.engine.purge_reports, self.retention)
        return {"success": True, "purged": purged}


# =============================================================================
# Snapshots
# =============================================================================

class SnapshotJob(PeriodicJob):
    """Automatic snapshot for every community without one in the last day."""

    name = "Snapshot Check"
    interval = C.SNAPSHOT_CHECK_INTERVAL

    def __init__(self, recovery: "RecoveryManager", interval: float = C.SNAPSHOT_CHECK_INTERVAL) -> None:
        self.recovery = recovery
        self.interval = interval

    async def run(self) -> Dict[str, Any]:
        result = await self.recovery.run_scheduled_snapshots()
        if result["failed"]:
            logger.warning("Scheduled Snapshots Incomplete", [
                ("Checked", str(result["checked"])),
                ("Created", str(result["created"])),
                ("Failed", str(result["failed"])),
            ])
        return {"success": True, **result}

    def format_result(self, result: Dict[str, Any]) -> str:
        if not result.get("success", False):
            return "failed"
        return f"{result['created']}/{result['checked']} snapshotted"


__all__ = [
    "TrackerCleanupJob",
    "CorrelationJob",
    "CorrelationCacheCleanupJob",
    "ThreatReportPurgeJob",
    "SnapshotJob",
]
