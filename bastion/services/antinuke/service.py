"""
Bastion - Action-Rate Monitor
=============================

Per-actor, per-type rate tracking of destructive actions with an instant
trigger path, an accumulating path and the lockdown hook.

DESIGN:
    evaluate() is synchronous and returns an ActionDecision describing the
    outbound actions and alerts; it never performs network I/O itself. The
    protection service hands those to the dispatchers.

    Order of checks for one action:
    1. Restore in progress -> SUPPRESSED, nothing recorded or punished.
    2. System actor -> PASS (its changes are restores and reversals).
    3. LOCKED, actor not owner/whitelisted and the action is a reversible
       creation -> REVERSE, no scoring. Bans, kicks, deletions and
       permission changes have nothing to undo and are scored as usual.
    4. Instant path: structural burst or attack-signature name. Applies
       to owner and whitelist too.
    5. Owner/whitelist -> PASS.
    6. Accumulating path: per-type counter against its threshold.
    Every action that reaches step 3 is forwarded to the threat sink.

Author: Bastion Maintainers
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from bastion.core.logger import logger
from bastion.core.models import (
    CREATION_EVENTS,
    STRUCTURAL_EVENTS,
    ActionKind,
    ActionRequest,
    Alert,
    EventType,
    InboundEvent,
    ThreatReport,
    Verdict,
)
from bastion.services.antinuke.constants import (
    ATTACK_NAME_PATTERNS,
    NAMED_TARGET_EVENTS,
    REVERSAL_TARGETS,
    SEVERITY_INSTANT,
    SEVERITY_NONE,
    SEVERITY_REVERSED,
    SEVERITY_THRESHOLD,
)
from bastion.services.whitelist import Exemption
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.config import CommunityConfig
    from bastion.services.antinuke.lockdown import LockdownManager
    from bastion.services.community_config import CommunityConfigProvider
    from bastion.services.recovery.guard import RestoreGuard
    from bastion.services.tracker import SlidingWindowTracker
    from bastion.services.whitelist import ExemptionGuard


STRUCTURAL_SIGNAL = "structural"
LOCKDOWN_REVERSAL_REASON = "Lockdown active: change reverted"

ThreatSink = Callable[[ThreatReport], Any]


class Trigger(str, Enum):
    INSTANT_BURST = "instant_burst"
    SIGNATURE = "signature"
    THRESHOLD = "threshold"
    LOCKDOWN = "lockdown"


def action_signal(action_type: str) -> str:
    return f"action:{action_type}"


def match_attack_signature(name: Optional[str]) -> Optional[str]:
    """Name of the first defacement pattern the target name matches."""
    if not name:
        return None
    for label, pattern in ATTACK_NAME_PATTERNS:
        if pattern.search(name):
            return label
    return None


@dataclass(frozen=True)
class ActionDecision:
    community_id: int
    actor_id: Optional[int]
    action_type: str
    verdict: Verdict
    trigger: Optional[Trigger] = None
    reason: str = ""
    count: int = 0
    threshold: int = 0
    exemption: Optional[Exemption] = None
    lockdown_activated: bool = False
    actions: Tuple[ActionRequest, ...] = ()
    alerts: Tuple[Alert, ...] = ()
    report: Optional[ThreatReport] = field(default=None, compare=False)

    @property
    def flagged(self) -> bool:
        return self.verdict in (Verdict.FLAG, Verdict.REVERSE)


class ActionRateMonitor:
    """Destructive-action detection for every community."""

    def __init__(
        self,
        tracker: "SlidingWindowTracker",
        guard: "ExemptionGuard",
        config_provider: "CommunityConfigProvider",
        lockdown: "LockdownManager",
        restore_guard: "RestoreGuard",
        threat_sink: Optional[ThreatSink] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.tracker = tracker
        self.guard = guard
        self.config_provider = config_provider
        self.lockdown = lockdown
        self.restore_guard = restore_guard
        self.threat_sink = threat_sink
        self._clock = clock

        self._stats: Dict[str, int] = {
            "evaluated": 0,
            "suppressed": 0,
            "flagged": 0,
            "reversed": 0,
        }

        logger.tree("Action-Rate Monitor Loaded", [
            ("Instant Path", "Structural bursts + attack signatures"),
            ("Accumulating Path", "Per-actor, per-type windows"),
            ("Threat Sink", "Connected" if threat_sink else "None"),
        ], emoji="🛡️")

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, event: InboundEvent) -> ActionDecision:
        """Record one destructive action and decide what to do about it."""
        community_id = event.community_id
        actor_id = event.actor_id
        action_type = event.event_type.value

        if self.restore_guard.is_restoring(community_id):
            self._stats["suppressed"] += 1
            logger.debug("Action Ignored (Restore In Progress)", [
                ("Community", str(community_id)),
                ("Action", action_type),
                ("Actor", str(actor_id)),
            ])
            return ActionDecision(
                community_id, actor_id, action_type, Verdict.SUPPRESSED,
                reason="restore_in_progress",
            )

        config = self.config_provider.get_community_config(community_id)
        tracked = event.to_tracked()
        self.tracker.record(community_id, action_signal(action_type), tracked)
        if event.event_type in STRUCTURAL_EVENTS:
            self.tracker.record(community_id, STRUCTURAL_SIGNAL, tracked)

        exemption = self.guard.exemption_for(community_id, actor_id)
        if exemption == Exemption.SYSTEM:
            return ActionDecision(
                community_id, actor_id, action_type, Verdict.PASS,
                reason="system", exemption=exemption,
            )
        if not config.antinuke_enabled:
            return ActionDecision(community_id, actor_id, action_type, Verdict.PASS, reason="disabled")

        self._stats["evaluated"] += 1

        reversal = self._reversal_for(event, LOCKDOWN_REVERSAL_REASON)
        if exemption is None and reversal is not None and self.lockdown.is_locked(community_id):
            decision = self._reverse(event, reversal)
        else:
            decision = self._score(event, config, exemption)

        return self._forward(event, decision)

    def _score(
        self,
        event: InboundEvent,
        config: "CommunityConfig",
        exemption: Optional[Exemption],
    ) -> ActionDecision:
        community_id = event.community_id
        actor_id = event.actor_id
        action_type = event.event_type.value

        # Instant path: not bypassed by owner or whitelist
        if event.event_type in STRUCTURAL_EVENTS:
            burst = self.tracker.count_since(
                community_id, STRUCTURAL_SIGNAL, config.instant_window, actor_id=actor_id,
            )
            if burst >= config.instant_burst_threshold:
                return self._respond(
                    event, config, exemption, Trigger.INSTANT_BURST,
                    reason=f"{burst} structural changes in {config.instant_window:.0f}s",
                    count=burst, threshold=config.instant_burst_threshold,
                )

        if event.event_type in NAMED_TARGET_EVENTS:
            signature = match_attack_signature(event.metadata.get("name"))
            if signature:
                return self._respond(
                    event, config, exemption, Trigger.SIGNATURE,
                    reason=f"attack signature '{signature}'",
                    count=1, threshold=1,
                )

        if exemption is not None:
            return ActionDecision(
                community_id, actor_id, action_type, Verdict.PASS,
                reason=f"exempt:{exemption.value}", exemption=exemption,
            )

        # Accumulating path
        limit = config.threshold_for(action_type)
        if limit is None:
            return ActionDecision(community_id, actor_id, action_type, Verdict.PASS, reason="untracked")

        count = self.tracker.count_since(
            community_id, action_signal(action_type), limit.window, actor_id=actor_id,
        )
        if count >= limit.count:
            return self._respond(
                event, config, exemption, Trigger.THRESHOLD,
                reason=f"{count} {action_type} in {limit.window:.0f}s",
                count=count, threshold=limit.count,
            )

        return ActionDecision(
            community_id, actor_id, action_type, Verdict.PASS,
            reason="under_threshold", count=count, threshold=limit.count,
        )

    # =========================================================================
    # Responses
    # =========================================================================

    def _respond(
        self,
        event: InboundEvent,
        config: "CommunityConfig",
        exemption: Optional[Exemption],
        trigger: Trigger,
        reason: str,
        count: int,
        threshold: int,
    ) -> ActionDecision:
        """Flag the actor: revert the change, punish, lock down, alert."""
        community_id = event.community_id
        actor_id = event.actor_id
        action_type = event.event_type.value
        audit_reason = f"Anti-nuke: {reason}"

        actions: List[ActionRequest] = []
        reversal = self._reversal_for(event, audit_reason)
        if reversal:
            actions.append(reversal)
        # Owners cannot be removed from their own community; alert only
        if actor_id is not None and exemption != Exemption.OWNER:
            actions.append(ActionRequest(
                community_id=community_id,
                target_id=actor_id,
                action=ActionKind(config.nuke_action),
                reason=audit_reason,
            ))

        lockdown_activated = self.lockdown.activate(community_id, actor_id, reason=trigger.value)
        self._stats["flagged"] += 1

        logger.tree("🚨 NUKE DETECTED", [
            ("Community", str(community_id)),
            ("Actor", str(actor_id)),
            ("Action", action_type),
            ("Trigger", trigger.value),
            ("Detail", reason),
            ("Exemption", exemption.value if exemption else "None"),
            ("Lockdown", "Activated" if lockdown_activated else "Already active"),
        ], emoji="🚨")

        alert = Alert(
            community_id=community_id,
            kind="nuke_detected",
            payload={
                "actor_id": actor_id,
                "action_type": action_type,
                "trigger": trigger.value,
                "detail": reason,
                "count": count,
                "threshold": threshold,
                "exemption": exemption.value if exemption else None,
                "lockdown_activated": lockdown_activated,
                "actions": [a.action.value for a in actions],
            },
        )

        return ActionDecision(
            community_id, actor_id, action_type, Verdict.FLAG,
            trigger=trigger,
            reason=reason,
            count=count,
            threshold=threshold,
            exemption=exemption,
            lockdown_activated=lockdown_activated,
            actions=tuple(actions),
            alerts=(alert,),
        )

    def _reverse(self, event: InboundEvent, reversal: ActionRequest) -> ActionDecision:
        """While LOCKED: undo a creation without scoring it."""
        community_id = event.community_id
        actor_id = event.actor_id
        action_type = event.event_type.value
        actions = (reversal,)

        self._stats["reversed"] += 1
        logger.tree("Lockdown Reversal", [
            ("Community", str(community_id)),
            ("Actor", str(actor_id)),
            ("Action", action_type),
            ("Response", f"{reversal.action.value} {reversal.target_type}"),
        ], emoji="↩️")

        return ActionDecision(
            community_id, actor_id, action_type, Verdict.REVERSE,
            trigger=Trigger.LOCKDOWN,
            reason="lockdown_active",
            actions=actions,
        )

    def _reversal_for(self, event: InboundEvent, reason: str) -> Optional[ActionRequest]:
        if event.event_type not in CREATION_EVENTS or event.target_id is None:
            return None
        target_type = REVERSAL_TARGETS[event.event_type]
        action = ActionKind.KICK if event.event_type == EventType.BOT_ADD else ActionKind.DELETE
        return ActionRequest(
            community_id=event.community_id,
            target_id=event.target_id,
            action=action,
            reason=reason,
            target_type=target_type,
        )

    # =========================================================================
    # Threat Forwarding
    # =========================================================================

    def _forward(self, event: InboundEvent, decision: ActionDecision) -> ActionDecision:
        """Attach a ThreatReport to the decision and hand it to the sink."""
        if decision.verdict == Verdict.REVERSE:
            severity = SEVERITY_REVERSED
        elif decision.trigger in (Trigger.INSTANT_BURST, Trigger.SIGNATURE):
            severity = SEVERITY_INSTANT
        elif decision.trigger == Trigger.THRESHOLD:
            severity = SEVERITY_THRESHOLD
        else:
            severity = SEVERITY_NONE

        metadata: Dict[str, Any] = {
            k: v for k, v in event.metadata.items()
            if isinstance(v, (str, int, float, bool)) or v is None
        }
        metadata["trigger"] = decision.trigger.value if decision.trigger else None

        report = ThreatReport(
            community_id=event.community_id,
            actor_id=event.actor_id,
            type=event.event_type.value,
            severity=severity,
            metadata=metadata,
            timestamp=event.timestamp,
        )

        if self.threat_sink is not None:
            try:
                self.threat_sink(report)
            except Exception as e:
                logger.error("Threat Report Forward Failed", [
                    ("Community", str(event.community_id)),
                    ("Error", str(e)[:100]),
                    ("Type", type(e).__name__),
                ])

        return replace(decision, report=report)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


__all__ = [
    "ActionRateMonitor",
    "ActionDecision",
    "Trigger",
    "STRUCTURAL_SIGNAL",
    "action_signal",
    "match_attack_signature",
]
