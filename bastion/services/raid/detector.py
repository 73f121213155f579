"""
Bastion - Raid Detector
=======================

Scores each member join against the community's recent join history.

DESIGN:
    Runs synchronously inside the join handler: record the join in the
    tracker, extract features, score, decide. No I/O beyond the cached
    config lookup.

    A raid is reported once per burst. The first join that scores above
    the threshold opens a burst and returns is_raid=True; later high-scoring
    joins inside the same burst return part_of_raid=True only, so the
    caller acts on each member but locks down and alerts once. A burst
    closes after a full join window without a high-scoring join.

Author: Bastion Maintainers
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from bastion.core.logger import logger
from bastion.core.models import InboundEvent
from bastion.services.raid.features import RaidFeatures, extract_features
from bastion.services.raid.scorers import FallbackScorer, RuleScorer
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider
    from bastion.services.tracker import SlidingWindowTracker
    from bastion.services.whitelist import ExemptionGuard


JOIN_SIGNAL = "join"


@dataclass(frozen=True)
class RaidDecision:
    community_id: int
    member_id: Optional[int]
    is_raid: bool
    part_of_raid: bool
    confidence: float
    method: str
    reason: str
    features: Optional[RaidFeatures] = None


class RaidDetector:
    """Join-burst scoring with once-per-burst raid reporting."""

    def __init__(
        self,
        tracker: "SlidingWindowTracker",
        guard: "ExemptionGuard",
        config_provider: "CommunityConfigProvider",
        scorer: Optional[FallbackScorer] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.tracker = tracker
        self.guard = guard
        self.config_provider = config_provider
        self.scorer = scorer or FallbackScorer()
        self._clock = clock

        # community_id -> time of the last high-scoring join in the open burst
        self._bursts: Dict[int, float] = {}

        self._evaluations = 0
        self._detections = 0
        self._members_flagged = 0

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, event: InboundEvent) -> RaidDecision:
        """Record a join and decide whether it is part of a raid."""
        community_id = event.community_id
        member_id = event.target_id if event.target_id is not None else event.actor_id
        config = self.config_provider.get_community_config(community_id)
        window = config.raid_join_window
        now = self._clock.now()

        tracked = event.to_tracked()
        self.tracker.record(community_id, JOIN_SIGNAL, tracked)
        self._evaluations += 1

        if not config.antiraid_enabled:
            return self._pass(community_id, member_id, "disabled")

        exemption = self.guard.exemption_for(community_id, member_id)
        if exemption is not None:
            return self._pass(community_id, member_id, f"exempt:{exemption.value}")

        recent = self.tracker.events_since(community_id, JOIN_SIGNAL, window)
        if len(recent) < config.raid_min_sample:
            return self._pass(community_id, member_id, "insufficient_data")

        features = extract_features(tracked, recent, window, now)
        confidence = self.scorer.score(features, fallback=RuleScorer(config.raid_weights))
        method = self.scorer.last_method

        # Equal to the threshold is not a raid
        if confidence <= config.raid_confidence_threshold:
            return RaidDecision(
                community_id=community_id,
                member_id=member_id,
                is_raid=False,
                part_of_raid=False,
                confidence=confidence,
                method=method,
                reason="below_threshold",
                features=features,
            )

        burst_open = self._burst_open(community_id, now, window)
        self._bursts[community_id] = now
        self._members_flagged += 1

        if burst_open:
            return RaidDecision(
                community_id=community_id,
                member_id=member_id,
                is_raid=False,
                part_of_raid=True,
                confidence=confidence,
                method=method,
                reason="ongoing_burst",
                features=features,
            )

        self._detections += 1
        logger.tree("RAID DETECTED", [
            ("Community", str(community_id)),
            ("Joins In Window", f"{features.join_count} / {window:.0f}s"),
            ("Confidence", f"{confidence:.2f}"),
            ("Method", method),
        ], emoji="🚨")

        return RaidDecision(
            community_id=community_id,
            member_id=member_id,
            is_raid=True,
            part_of_raid=True,
            confidence=confidence,
            method=method,
            reason="burst_detected",
            features=features,
        )

    def _pass(self, community_id: int, member_id: Optional[int], reason: str) -> RaidDecision:
        return RaidDecision(
            community_id=community_id,
            member_id=member_id,
            is_raid=False,
            part_of_raid=False,
            confidence=0.0,
            method=self.scorer.method,
            reason=reason,
        )

    def _burst_open(self, community_id: int, now: float, window: float) -> bool:
        last = self._bursts.get(community_id)
        return last is not None and now - last <= window

    def is_burst_open(self, community_id: int) -> bool:
        window = self.config_provider.get_community_config(community_id).raid_join_window
        return self._burst_open(community_id, self._clock.now(), window)

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def cleanup(self) -> int:
        """Forget bursts that have been quiet for a full window."""
        now = self._clock.now()
        closed = [
            cid for cid, last in self._bursts.items()
            if now - last > self.config_provider.get_community_config(cid).raid_join_window
        ]
        for cid in closed:
            del self._bursts[cid]
        return len(closed)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "method": self.scorer.method,
            "evaluations": self._evaluations,
            "detections": self._detections,
            "members_flagged": self._members_flagged,
            "open_bursts": len(self._bursts),
            "learned_failures": self.scorer.primary_failures,
        }


__all__ = ["RaidDetector", "RaidDecision", "JOIN_SIGNAL"]
