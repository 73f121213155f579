"""
Bastion - Protection Service
============================

Single entry point for inbound events and the wiring of every protection
component.

DESIGN:
    handle_event() routes joins to the raid detector, messages to the
    token leak detector and everything else to the action-rate monitor, then turns their decisions into outbound
    work: action requests to the ActionDispatcher, alerts to the
    AlertDispatcher, threat reports to the correlation engine. Detection
    stays synchronous; only the dispatchers touch the network.

    build_services() is the composition root. It takes the platform
    collaborators (executor, notifiers, structure provider) as arguments,
    so the Discord adapter and the tests wire the same graph.

Author: Bastion Maintainers
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from bastion.core import constants as C
from bastion.core.logger import logger
from bastion.core.models import (
    ActionKind,
    ActionRequest,
    Alert,
    EventType,
    InboundEvent,
    ThreatReport,
)
from bastion.services.antinuke import ActionDecision, ActionRateMonitor, LockdownManager
from bastion.services.community_config import CommunityConfigProvider
from bastion.services.correlation import CorrelationSettings, ThreatCorrelationEngine
from bastion.services.dispatch import ActionDispatcher, ActionExecutor, AlertDispatcher, Notifier
from bastion.services.raid import FallbackScorer, RaidDecision, RaidDetector
from bastion.services.recovery import RecoveryManager, RestoreGuard, StructureProvider
from bastion.services.scheduler import (
    CorrelationCacheCleanupJob,
    CorrelationJob,
    Scheduler,
    SnapshotJob,
    ThreatReportPurgeJob,
    TrackerCleanupJob,
)
from bastion.services.tracker import SlidingWindowTracker
from bastion.services.token_leak import TokenLeakDecision, TokenLeakDetector
from bastion.services.whitelist import ExemptionGuard
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.config import Config
    from bastion.core.database import DatabaseManager


# Threat types reported for joins
RAID_THREAT = "raid"
RAID_JOIN_THREAT = "raid_join"

SEVERITY_RAID = 3
SEVERITY_RAID_MEMBER = 2

Decision = Union[RaidDecision, ActionDecision, TokenLeakDecision]


@dataclass
class ProtectionService:
    """Routes events through detection and dispatches the results."""

    tracker: SlidingWindowTracker
    config_provider: CommunityConfigProvider
    guard: ExemptionGuard
    detector: RaidDetector
    monitor: ActionRateMonitor
    token_scanner: TokenLeakDetector
    lockdown: LockdownManager
    restore_guard: RestoreGuard
    engine: ThreatCorrelationEngine
    recovery: RecoveryManager
    scheduler: Scheduler
    actions: ActionDispatcher
    alerts: AlertDispatcher
    clock: Clock = SYSTEM_CLOCK

    # =========================================================================
    # Events
    # =========================================================================

    def handle_event(self, event: InboundEvent) -> Decision:
        if event.event_type == EventType.MEMBER_JOIN:
            return self.handle_join(event)
        if event.event_type == EventType.MESSAGE_CREATE:
            return self.handle_message(event)

        decision = self.monitor.evaluate(event)
        self.actions.submit_all(decision.actions)
        for alert in decision.alerts:
            self.alerts.submit(alert)
        return decision

    def handle_join(self, event: InboundEvent) -> RaidDecision:
        decision = self.detector.evaluate(event)
        community_id = event.community_id
        member_id = decision.member_id
        config = self.config_provider.get_community_config(community_id)

        if member_id is not None and decision.part_of_raid:
            self.actions.submit(ActionRequest(
                community_id=community_id,
                target_id=member_id,
                action=ActionKind(config.raid_action),
                reason=f"Anti-raid: join burst ({decision.confidence:.2f}, {decision.method})",
            ))
            self.engine.report_threat(ThreatReport(
                community_id=community_id,
                actor_id=member_id,
                type=RAID_JOIN_THREAT,
                severity=SEVERITY_RAID_MEMBER,
                metadata={"method": decision.method},
                timestamp=event.timestamp,
            ))
        elif (
            member_id is not None
            and config.kick_joins_during_lockdown
            and self.lockdown.is_locked(community_id)
            and not self.guard.is_exempt(community_id, member_id)
        ):
            self.actions.submit(ActionRequest(
                community_id=community_id,
                target_id=member_id,
                action=ActionKind.KICK,
                reason="Lockdown active: new joins are removed",
            ))

        if decision.is_raid:
            self._on_raid(event, decision, config.raid_lockdown)

        return decision

    def handle_message(self, event: InboundEvent) -> TokenLeakDecision:
        decision = self.token_scanner.scan(event)
        if decision.leaked:
            self.actions.submit_all(decision.actions)
            for alert in decision.alerts:
                self.alerts.submit(alert)
            if decision.report is not None:
                self.engine.report_threat(decision.report)
        return decision

    def _on_raid(self, event: InboundEvent, decision: RaidDecision, lock: bool) -> None:
        community_id = event.community_id
        lockdown_activated = False
        if lock:
            lockdown_activated = self.lockdown.activate(community_id, None, reason="raid")

        features = decision.features
        self.alerts.submit(Alert(
            community_id=community_id,
            kind="raid_detected",
            payload={
                "confidence": decision.confidence,
                "method": decision.method,
                "join_count": features.join_count if features else None,
                "window": features.time_window if features else None,
                "lockdown_activated": lockdown_activated,
            },
        ))
        self.engine.report_threat(ThreatReport(
            community_id=community_id,
            actor_id=None,
            type=RAID_THREAT,
            severity=SEVERITY_RAID,
            metadata={"method": decision.method},
            timestamp=event.timestamp,
        ))

    # =========================================================================
    # Admin Operations
    # =========================================================================

    def clear_lockdown(self, community_id: int, cleared_by: Optional[int] = None) -> bool:
        """Admin-only exit from LOCKED."""
        cleared = self.lockdown.clear(community_id, cleared_by)
        if cleared:
            self.alerts.submit(Alert(
                community_id=community_id,
                kind="lockdown_cleared",
                payload={"cleared_by": cleared_by},
            ))
        return cleared

    def set_system_actor(self, actor_id: int) -> None:
        self.guard.set_system_actor(actor_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.lockdown.load()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.actions.drain()
        await self.alerts.drain()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "raid": self.detector.get_stats(),
            "antinuke": self.monitor.get_stats(),
            "token_leaks": self.token_scanner.get_stats(),
            "lockdowns": len(self.lockdown.active_lockdowns()),
            "correlation": self.engine.get_stats(),
            "recovery": self.recovery.get_stats(),
            "actions": self.actions.get_stats(),
            "alerts": self.alerts.get_stats(),
        }


# =============================================================================
# Composition Root
# =============================================================================

def build_services(
    config: "Config",
    db: "DatabaseManager",
    executor: ActionExecutor,
    notifiers: Sequence[Notifier],
    provider: StructureProvider,
    clock: Clock = SYSTEM_CLOCK,
    scorer: Optional[FallbackScorer] = None,
) -> ProtectionService:
    """Wire every protection component and register the periodic jobs."""
    tracker = SlidingWindowTracker(clock=clock)
    config_provider = CommunityConfigProvider(db, ttl=config.config_cache_ttl, clock=clock)
    guard = ExemptionGuard(config_provider)
    restore_guard = RestoreGuard()
    lockdown = LockdownManager(db, clock=clock)

    actions = ActionDispatcher(executor)
    alerts = AlertDispatcher(notifiers, config_provider)

    engine = ThreatCorrelationEngine(
        db,
        alert_sink=alerts.submit,
        settings=CorrelationSettings(
            alert_threshold=config.correlation_alert_threshold,
            window=config.correlation_window,
            publish_confidence=config.correlation_publish_confidence,
        ),
        clock=clock,
    )
    detector = RaidDetector(
        tracker, guard, config_provider,
        scorer=scorer or FallbackScorer.from_model_path(config.raid_model_path),
        clock=clock,
    )
    monitor = ActionRateMonitor(
        tracker, guard, config_provider, lockdown, restore_guard,
        threat_sink=engine.report_threat,
        clock=clock,
    )
    token_scanner = TokenLeakDetector(config_provider, own_token=config.discord_token)
    recovery = RecoveryManager(
        db, provider, restore_guard, clock=clock, retention=config.snapshot_retention,
    )

    scheduler = Scheduler(clock=clock)
    jobs: List[Any] = [
        TrackerCleanupJob(tracker, detector, config_provider, interval=config.tracker_cleanup_interval),
        CorrelationJob(engine, interval=config.correlation_interval),
        CorrelationCacheCleanupJob(engine),
        ThreatReportPurgeJob(engine, retention=C.THREAT_REPORT_RETENTION),
        SnapshotJob(recovery, interval=config.snapshot_interval),
    ]
    for job in jobs:
        scheduler.add_job(job)

    logger.tree("Protection Services Ready", [
        ("Raid Scorer", detector.scorer.method),
        ("Notifiers", ", ".join(type(n).__name__ for n in notifiers) or "None"),
        ("Jobs", str(len(jobs))),
    ], emoji="🛡️")

    return ProtectionService(
        tracker=tracker,
        config_provider=config_provider,
        guard=guard,
        detector=detector,
        monitor=monitor,
        token_scanner=token_scanner,
        lockdown=lockdown,
        restore_guard=restore_guard,
        engine=engine,
        recovery=recovery,
        scheduler=scheduler,
        actions=actions,
        alerts=alerts,
        clock=clock,
    )


__all__ = ["ProtectionService", "build_services", "RAID_THREAT", "RAID_JOIN_THREAT"]
