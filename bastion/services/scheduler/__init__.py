"""
Bastion - Scheduler Package
===========================

Periodic jobs and the scheduler that runs them.

Author: Bastion Maintainers
"""

from bastion.services.scheduler.base import PeriodicJob
from bastion.services.scheduler.jobs import (
    CorrelationCacheCleanupJob,
    CorrelationJob,
    SnapshotJob,
    ThreatReportPurgeJob,
    TrackerCleanupJob,
)
from bastion.services.scheduler.service import Scheduler

__all__ = [
    "PeriodicJob",
    "Scheduler",
    "TrackerCleanupJob",
    "CorrelationJob",
    "CorrelationCacheCleanupJob",
    "ThreatReportPurgeJob",
    "SnapshotJob",
]
