"""
Bastion - Threat Correlation Engine
===================================

Cross-community threat intelligence. Detectors in every community hand
their ThreatReports here; the engine persists them, looks for the same
threat across communities and publishes correlations as alerts.

DESIGN:
    Two paths produce correlations:
    - Fast path: report_threat() keeps (actor, type) -> {community: seen_at}
      in a TTL cache and publishes as soon as an actor crosses the
      community threshold, without waiting for the next run.
    - Periodic path: run_analysis() (scheduled every 60s) reads the
      persisted reports of the last window and runs the actor, pattern
      and time correlators.

    Both paths go through _publish(), which de-duplicates on the
    correlation key plus affected set inside the window. A correlation is
    only published again when it spreads to a community it did not cover.

    Report writes that fail are queued and retried at the start of the
    next run. Writes run on worker threads, so the queue and the counters
    are only touched under _lock.

Author: Bastion Maintainers
"""

import asyncio
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, TYPE_CHECKING

from bastion.core import constants as C
from bastion.core.logger import logger
from bastion.core.models import Alert, Correlation, CorrelationKind, ThreatReport
from bastion.services.correlation.analysis import (
    CorrelationSettings,
    actor_confidence,
    analyze,
)
from bastion.utils.async_utils import run_blocking
from bastion.utils.cache import TTLCache
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.database import DatabaseManager


AlertSink = Callable[[Alert], Any]

ACTOR_CACHE_SIZE = 10000


class ThreatCorrelationEngine:
    """Collects threat reports and publishes multi-community correlations."""

    def __init__(
        self,
        db: "DatabaseManager",
        alert_sink: Optional[AlertSink] = None,
        settings: Optional[CorrelationSettings] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.db = db
        self.alert_sink = alert_sink
        self.settings = settings or CorrelationSettings()
        self._clock = clock

        # (actor_id, threat_type) -> {community_id: last seen}
        self._actor_cache: TTLCache[Tuple[int, str], Dict[int, float]] = TTLCache(
            ttl=self.settings.window, max_size=ACTOR_CACHE_SIZE, clock=clock,
        )
        # dedupe key -> (communities already published, published at)
        self._published: Dict[Tuple[str, str, str], Tuple[FrozenSet[int], float]] = {}
        self._pending: List[ThreatReport] = []
        self._lock = threading.Lock()

        self._stats: Dict[str, int] = {
            "reports_received": 0,
            "reports_stored": 0,
            "reports_below_severity": 0,
            "write_failures": 0,
            "correlations_published": 0,
            "correlations_deduped": 0,
            "fast_path": 0,
            "runs": 0,
        }

        logger.tree("Threat Correlation Engine Loaded", [
            ("Window", f"{self.settings.window:.0f}s"),
            ("Alert Threshold", f"{self.settings.alert_threshold} communities"),
            ("Publish At", f"confidence >= {self.settings.publish_confidence}"),
        ], emoji="🕸️")

    # =========================================================================
    # Intake
    # =========================================================================

    def report_threat(self, report: ThreatReport) -> Optional[Correlation]:
        """
        Accept one report from a detector.

        Returns:
            The correlation published by the fast path, if this report
            pushed its actor over the threshold.
        """
        self._count("reports_received")
        if report.severity < self.settings.min_severity:
            self._count("reports_below_severity")
            return None

        run_blocking(self._store_report, report, name="Persist Threat Report")

        if report.actor_id is None:
            return None

        now = self._clock.now()
        key = (report.actor_id, report.type)
        seen = self._actor_cache.get(key) or {}
        seen = {cid: at for cid, at in seen.items() if now - at <= self.settings.window}
        seen[report.community_id] = now
        self._actor_cache.set(key, seen)

        if len(seen) < self.settings.alert_threshold:
            return None

        correlation = Correlation(
            kind=CorrelationKind.ACTOR,
            threat_type=report.type,
            affected_communities=frozenset(seen),
            confidence=actor_confidence(len(seen), self.settings),
            detected_at=now,
            actor_id=report.actor_id,
            report_count=len(seen),
        )
        published = self._publish(correlation)
        if published is None:
            return None

        self._count("fast_path")
        run_blocking(self.db.save_correlation, published, name="Persist Correlation")
        return published

    def _count(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[name] += amount

    def _store_report(self, report: ThreatReport) -> None:
        if self.db.save_threat_report(report):
            self._count("reports_stored")
            return
        with self._lock:
            self._stats["write_failures"] += 1
            self._pending.append(report)

    def _flush_pending(self) -> int:
        """Retry reports whose first write failed. Returns how many landed."""
        with self._lock:
            pending, self._pending = self._pending, []
        if not pending:
            return 0

        stored = 0
        failed: List[ThreatReport] = []
        for report in pending:
            if self.db.save_threat_report(report):
                stored += 1
            else:
                failed.append(report)

        with self._lock:
            # Reports that failed while this flush ran stay queued behind these
            self._pending[:0] = failed
            self._stats["reports_stored"] += stored
            remaining = len(self._pending)

        if remaining:
            logger.warning("Threat Reports Still Pending", [
                ("Stored", str(stored)),
                ("Pending", str(remaining)),
            ])
        return stored

    @property
    def pending_reports(self) -> int:
        with self._lock:
            return len(self._pending)

    # =========================================================================
    # Periodic Analysis
    # =========================================================================

    async def run_analysis(self) -> List[Correlation]:
        """
        Correlate the persisted reports of the current window.

        Returns:
            Correlations published by this run.
        """
        self._count("runs")
        await asyncio.to_thread(self._flush_pending)

        now = self._clock.now()
        reports = await asyncio.to_thread(
            self.db.get_threat_reports_since, now - self.settings.window,
        )
        if reports is None:
            logger.warning("Correlation Run Skipped", [
                ("Reason", "Threat report read failed"),
            ])
            return []

        reports = [r for r in reports if r.severity >= self.settings.min_severity]
        published: List[Correlation] = []

        for candidate in analyze(reports, self.settings, now):
            correlation = self._publish(candidate)
            if correlation is None:
                continue
            row_id = await asyncio.to_thread(self.db.save_correlation, correlation)
            if row_id is not None:
                correlation = replace(correlation, id=row_id)
            published.append(correlation)

        if published:
            logger.tree("Correlation Run Complete", [
                ("Reports", str(len(reports))),
                ("Published", str(len(published))),
            ], emoji="🕸️")
        return published

    def _publish(self, correlation: Correlation) -> Optional[Correlation]:
        """Confidence gate, de-duplication and alert fan-out."""
        if correlation.confidence < self.settings.publish_confidence:
            return None

        now = self._clock.now()
        key = correlation.dedupe_key()
        previous = self._published.get(key)
        if previous is not None:
            covered, published_at = previous
            if now - published_at <= self.settings.window and correlation.affected_communities <= covered:
                self._count("correlations_deduped")
                return None
            if now - published_at <= self.settings.window:
                self._published[key] = (covered | correlation.affected_communities, now)
            else:
                self._published[key] = (correlation.affected_communities, now)
        else:
            self._published[key] = (correlation.affected_communities, now)

        self._count("correlations_published")
        communities = sorted(correlation.affected_communities)

        logger.tree("🕸️ THREAT CORRELATION", [
            ("Kind", correlation.kind.value),
            ("Threat", correlation.threat_type),
            ("Actor", str(correlation.actor_id) if correlation.actor_id is not None else "N/A"),
            ("Communities", str(len(communities))),
            ("Confidence", f"{correlation.confidence:.2f}"),
        ], emoji="🕸️")

        if self.alert_sink is not None:
            payload = {
                "kind": correlation.kind.value,
                "threat_type": correlation.threat_type,
                "actor_id": correlation.actor_id,
                "signature": correlation.signature,
                "confidence": correlation.confidence,
                "communities": communities,
                "report_count": correlation.report_count,
                "detected_at": correlation.detected_at,
            }
            for community_id in communities:
                try:
                    self.alert_sink(Alert(community_id, "threat_correlation", dict(payload)))
                except Exception as e:
                    logger.error("Correlation Alert Failed", [
                        ("Community", str(community_id)),
                        ("Error", str(e)[:100]),
                        ("Type", type(e).__name__),
                    ])

        return correlation

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_cache(self) -> int:
        """Drop expired actor entries and stale dedupe keys."""
        removed = self._actor_cache.cleanup_expired()

        cutoff = self._clock.now() - self.settings.window
        stale = [key for key, (_, at) in self._published.items() if at < cutoff]
        for key in stale:
            del self._published[key]
        return removed + len(stale)

    def purge_reports(self, retention: float = C.THREAT_REPORT_RETENTION) -> int:
        return self.db.purge_threat_reports(self._clock.now() - retention)

    def get_recent_correlations(self, limit: int = 10) -> List[Correlation]:
        return self.db.get_recent_correlations(limit)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)
            stats["pending_reports"] = len(self._pending)
        stats["tracked_actors"] = len(self._actor_cache)
        stats["last_24h"] = self.db.get_threat_stats(self._clock.now() - 86400)
        return stats


__all__ = ["ThreatCorrelationEngine", "AlertSink"]
