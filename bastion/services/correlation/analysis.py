"""
Bastion - Correlation Analysis
==============================

Pure functions that turn a window of threat reports into correlations.

DESIGN:
    Confidence formulas are chosen so a correlation sitting exactly at its
    minimum (threshold communities, minimum actors, minimum burst) lands
    at or just above the publication floor, and grows from there:

        actor    base + step * (communities - threshold)
        pattern  communities * actors / pattern_scale
        time     reports / time_scale

    All parameters live in CorrelationSettings and are tunable.

Author: Bastion Maintainers
"""

import json
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from bastion.core import constants as C
from bastion.core.models import Correlation, CorrelationKind, ThreatReport


@dataclass(frozen=True)
class CorrelationSettings:
    alert_threshold: int = C.CORRELATION_ALERT_THRESHOLD
    window: float = C.CORRELATION_WINDOW
    publish_confidence: float = C.CORRELATION_PUBLISH_CONFIDENCE
    min_severity: int = C.CORRELATION_MIN_SEVERITY
    actor_base: float = C.ACTOR_CONFIDENCE_BASE
    actor_step: float = C.ACTOR_CONFIDENCE_STEP
    pattern_min_actors: int = C.PATTERN_MIN_ACTORS
    pattern_scale: float = C.PATTERN_CONFIDENCE_SCALE
    time_window: float = C.TIME_BURST_WINDOW
    time_min_reports: int = C.TIME_BURST_MIN_REPORTS
    time_min_communities: int = C.TIME_BURST_MIN_COMMUNITIES
    time_scale: float = C.TIME_CONFIDENCE_SCALE


# =============================================================================
# Helpers
# =============================================================================

def _is_volatile_key(key: str) -> bool:
    return key == "id" or key.endswith("_id") or key.endswith("_ids")


def metadata_signature(metadata: Mapping[str, Any]) -> str:
    """
    Canonical form of report metadata with per-target ids removed.

    Two reports from different communities about the same kind of attack
    (same channel name, same trigger) get the same signature even though
    the channel ids differ.
    """
    stable = {k: v for k, v in metadata.items() if not _is_volatile_key(k)}
    return json.dumps(stable, sort_keys=True, default=str, separators=(",", ":"))


def actor_confidence(communities: int, settings: CorrelationSettings) -> float:
    extra = max(0, communities - settings.alert_threshold)
    return min(1.0, round(settings.actor_base + settings.actor_step * extra, 6))


def pattern_confidence(communities: int, actors: int, settings: CorrelationSettings) -> float:
    return min(1.0, round(communities * actors / settings.pattern_scale, 6))


def time_confidence(reports: int, settings: CorrelationSettings) -> float:
    return min(1.0, round(reports / settings.time_scale, 6))


# =============================================================================
# Correlators
# =============================================================================

def correlate_actors(
    reports: Iterable[ThreatReport],
    settings: CorrelationSettings,
    now: float,
) -> List[Correlation]:
    """Same actor, same threat type, in at least alert_threshold communities."""
    communities: Dict[Tuple[int, str], Set[int]] = defaultdict(set)
    counts: Dict[Tuple[int, str], int] = defaultdict(int)

    for report in reports:
        if report.actor_id is None:
            continue
        key = (report.actor_id, report.type)
        communities[key].add(report.community_id)
        counts[key] += 1

    results = []
    for (actor_id, threat_type), affected in communities.items():
        if len(affected) < settings.alert_threshold:
            continue
        results.append(Correlation(
            kind=CorrelationKind.ACTOR,
            threat_type=threat_type,
            affected_communities=frozenset(affected),
            confidence=actor_confidence(len(affected), settings),
            detected_at=now,
            actor_id=actor_id,
            report_count=counts[(actor_id, threat_type)],
        ))
    return results


def correlate_patterns(
    reports: Iterable[ThreatReport],
    settings: CorrelationSettings,
    now: float,
) -> List[Correlation]:
    """Several distinct actors producing identical metadata across communities."""
    actors: Dict[Tuple[str, str], Set[int]] = defaultdict(set)
    communities: Dict[Tuple[str, str], Set[int]] = defaultdict(set)
    counts: Dict[Tuple[str, str], int] = defaultdict(int)

    for report in reports:
        key = (report.type, metadata_signature(report.metadata))
        if report.actor_id is not None:
            actors[key].add(report.actor_id)
        communities[key].add(report.community_id)
        counts[key] += 1

    results = []
    for key, affected in communities.items():
        actor_count = len(actors[key])
        if actor_count < settings.pattern_min_actors or len(affected) < settings.alert_threshold:
            continue
        threat_type, signature = key
        results.append(Correlation(
            kind=CorrelationKind.PATTERN,
            threat_type=threat_type,
            affected_communities=frozenset(affected),
            confidence=pattern_confidence(len(affected), actor_count, settings),
            detected_at=now,
            signature=signature,
            report_count=counts[key],
        ))
    return results


def correlate_time(
    reports: Iterable[ThreatReport],
    settings: CorrelationSettings,
    now: float,
) -> List[Correlation]:
    """
    Bursts of same-type reports across communities inside time_window.

    For each threat type, the densest qualifying window is reported.
    """
    by_type: Dict[str, List[ThreatReport]] = defaultdict(list)
    for report in reports:
        by_type[report.type].append(report)

    results = []
    for threat_type, typed in by_type.items():
        typed.sort(key=lambda r: r.timestamp)
        best: Optional[Tuple[int, FrozenSet[int]]] = None
        start = 0

        for end in range(len(typed)):
            while typed[end].timestamp - typed[start].timestamp > settings.time_window:
                start += 1
            count = end - start + 1
            if count < settings.time_min_reports:
                continue
            affected = frozenset(r.community_id for r in typed[start:end + 1])
            if len(affected) < settings.time_min_communities:
                continue
            if best is None or count > best[0]:
                best = (count, affected)

        if best is None:
            continue
        count, affected = best
        results.append(Correlation(
            kind=CorrelationKind.TIME,
            threat_type=threat_type,
            affected_communities=affected,
            confidence=time_confidence(count, settings),
            detected_at=now,
            report_count=count,
        ))
    return results


def analyze(
    reports: List[ThreatReport],
    settings: CorrelationSettings,
    now: float,
) -> List[Correlation]:
    """Run every correlator over one window of reports."""
    return (
        correlate_actors(reports, settings, now)
        + correlate_patterns(reports, settings, now)
        + correlate_time(reports, settings, now)
    )


__all__ = [
    "CorrelationSettings",
    "metadata_signature",
    "actor_confidence",
    "pattern_confidence",
    "time_confidence",
    "correlate_actors",
    "correlate_patterns",
    "correlate_time",
    "analyze",
]
