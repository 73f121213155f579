"""
Bastion - Data Models
=====================

Dataclasses shared by the detection, correlation and recovery services.

DESIGN:
    Everything that crosses a component boundary is a plain dataclass.
    Records that must never change after creation (tracked events, threat
    reports, correlations, snapshots) are frozen. Timestamps are float
    seconds since the epoch, windows are seconds.

Author: Bastion Maintainers
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


# =============================================================================
# Enums
# =============================================================================

class EventType(str, Enum):
    """Inbound event kinds delivered by the gateway."""
    MEMBER_JOIN = "member_join"
    CHANNEL_CREATE = "channel_create"
    CHANNEL_DELETE = "channel_delete"
    CHANNEL_UPDATE = "channel_update"
    ROLE_CREATE = "role_create"
    ROLE_DELETE = "role_delete"
    MEMBER_BAN = "member_ban"
    MEMBER_KICK = "member_kick"
    PERMISSION_CHANGE = "permission_change"
    WEBHOOK_CREATE = "webhook_create"
    BOT_ADD = "bot_add"
    MESSAGE_CREATE = "message_create"


STRUCTURAL_EVENTS = frozenset({
    EventType.CHANNEL_CREATE,
    EventType.CHANNEL_DELETE,
    EventType.ROLE_CREATE,
    EventType.ROLE_DELETE,
    EventType.WEBHOOK_CREATE,
})
"""Creations/deletions counted by the instant-trigger burst path."""

CREATION_EVENTS = frozenset({
    EventType.CHANNEL_CREATE,
    EventType.ROLE_CREATE,
    EventType.WEBHOOK_CREATE,
    EventType.BOT_ADD,
})
"""Actions whose target can be reverted by removing it again."""


class ActionKind(str, Enum):
    """Outbound action verbs understood by the executor."""
    BAN = "ban"
    KICK = "kick"
    TIMEOUT = "timeout"
    DELETE = "delete"


class Verdict(str, Enum):
    PASS = "pass"
    FLAG = "flag"
    REVERSE = "reverse"
    SUPPRESSED = "suppressed"


class CorrelationKind(str, Enum):
    ACTOR = "actor"
    PATTERN = "pattern"
    TIME = "time"


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class TrackedEvent:
    """One entry in a sliding window."""
    actor_id: Optional[int]
    type: str
    target_id: Optional[int]
    metadata: Dict[str, Any]
    timestamp: float


@dataclass(frozen=True)
class InboundEvent:
    """Event as delivered by the gateway client."""
    community_id: int
    actor_id: Optional[int]
    event_type: EventType
    timestamp: float
    target_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_tracked(self) -> TrackedEvent:
        return TrackedEvent(
            actor_id=self.actor_id,
            type=self.event_type.value,
            target_id=self.target_id,
            metadata=self.metadata,
            timestamp=self.timestamp,
        )


# =============================================================================
# Threats
# =============================================================================

@dataclass(frozen=True)
class ThreatReport:
    """A detector's account of something suspicious in one community."""
    community_id: int
    actor_id: Optional[int]
    type: str
    severity: int
    metadata: Dict[str, Any]
    timestamp: float


@dataclass(frozen=True)
class Correlation:
    """A signal spanning several communities."""
    kind: CorrelationKind
    threat_type: str
    affected_communities: FrozenSet[int]
    confidence: float
    detected_at: float
    actor_id: Optional[int] = None
    signature: Optional[str] = None
    report_count: int = 0
    id: Optional[int] = None

    def dedupe_key(self) -> Tuple[str, str, str]:
        subject = str(self.actor_id) if self.actor_id is not None else (self.signature or "")
        return (self.kind.value, subject, self.threat_type)


@dataclass
class LockdownState:
    community_id: int
    active: bool
    triggered_by: Optional[int]
    reason: str
    activated_at: float


# =============================================================================
# Outbound
# =============================================================================

@dataclass(frozen=True)
class ActionRequest:
    """Fire-and-forget request for the REST collaborator."""
    community_id: int
    target_id: int
    action: ActionKind
    reason: str
    # What the target is, for DELETE ("channel", "role", "webhook", "member", "message")
    target_type: str = "member"
    # Channel holding the target, for message deletes
    channel_id: Optional[int] = None


@dataclass(frozen=True)
class Alert:
    community_id: int
    kind: str
    payload: Dict[str, Any]


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class ChannelState:
    id: int
    name: str
    type: str
    parent_id: Optional[int]
    position: int


@dataclass(frozen=True)
class RoleState:
    id: int
    name: str
    permissions: int
    position: int
    color: int


@dataclass(frozen=True)
class OverwriteState:
    channel_id: int
    target_id: int
    target_type: str  # "role" or "member"
    allow: int
    deny: int


@dataclass(frozen=True)
class StructureState:
    """Structure of a community at one moment, as captured from the platform."""
    channels: Tuple[ChannelState, ...] = ()
    roles: Tuple[RoleState, ...] = ()
    overwrites: Tuple[OverwriteState, ...] = ()


@dataclass(frozen=True)
class Snapshot:
    community_id: int
    created_at: float
    reason: str
    channels: Tuple[ChannelState, ...]
    roles: Tuple[RoleState, ...]
    overwrites: Tuple[OverwriteState, ...]
    manual: bool = False
    id: Optional[int] = None

    @property
    def structure(self) -> StructureState:
        return StructureState(self.channels, self.roles, self.overwrites)


@dataclass(frozen=True)
class RestoredItem:
    item_type: str
    name: str
    action: str


@dataclass(frozen=True)
class SkippedItem:
    item_type: str
    name: str
    reason: str


@dataclass
class RestoreResult:
    recovered: List[RestoredItem] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "EventType",
    "STRUCTURAL_EVENTS",
    "CREATION_EVENTS",
    "ActionKind",
    "Verdict",
    "CorrelationKind",
    "TrackedEvent",
    "InboundEvent",
    "ThreatReport",
    "Correlation",
    "LockdownState",
    "ActionRequest",
    "Alert",
    "ChannelState",
    "RoleState",
    "OverwriteState",
    "StructureState",
    "Snapshot",
    "RestoredItem",
    "SkippedItem",
    "RestoreResult",
]
