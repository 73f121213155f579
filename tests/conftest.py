"""
Bastion - Test Fixtures
=======================

Shared fixtures for all tests.
"""

import itertools
from dataclasses import replace
from typing import Dict, List, Optional, Set

import pytest

from bastion.core.database import DatabaseManager
from bastion.core.models import (
    ActionRequest,
    Alert,
    ChannelState,
    EventType,
    InboundEvent,
    OverwriteState,
    RoleState,
    StructureState,
)
from bastion.services.antinuke import ActionRateMonitor, LockdownManager
from bastion.services.community_config import CommunityConfigProvider
from bastion.services.raid import RaidDetector
from bastion.services.recovery import RestoreGuard
from bastion.services.tracker import SlidingWindowTracker
from bastion.services.whitelist import ExemptionGuard
from bastion.utils.clock import ManualClock


COMMUNITY_ID = 987654321
OWNER_ID = 111111111
SYSTEM_ID = 222222222
ATTACKER_ID = 666666666


# =============================================================================
# Platform Fakes
# =============================================================================

class RecordingExecutor:
    """ActionExecutor that records requests, optionally failing some."""

    def __init__(self, fail: bool = False) -> None:
        self.requests: List[ActionRequest] = []
        self.fail = fail

    async def execute(self, request: ActionRequest) -> None:
        if self.fail:
            raise RuntimeError("Missing Permissions")
        self.requests.append(request)


class RecordingNotifier:
    """Notifier that records alerts."""

    def __init__(self, fail: bool = False) -> None:
        self.alerts: List[Alert] = []
        self.fail = fail

    async def send(self, alert: Alert) -> None:
        if self.fail:
            raise RuntimeError("Webhook down")
        self.alerts.append(alert)


class FakeStructureProvider:
    """
    In-memory community structure.

    Mutations behave like the platform: created items get fresh ids.
    Names in `fail_names` make the matching create/update raise.
    """

    def __init__(self) -> None:
        self.structures: Dict[int, StructureState] = {}
        self.fail_names: Set[str] = set()
        self.fail_capture: Set[int] = set()
        self.calls: List[str] = []
        self._ids = itertools.count(900000)

    def list_communities(self) -> List[int]:
        return sorted(self.structures)

    async def capture(self, community_id: int) -> StructureState:
        if community_id in self.fail_capture:
            raise RuntimeError("Forbidden")
        return self.structures.setdefault(community_id, StructureState())

    def _check(self, name: str) -> None:
        if name in self.fail_names:
            raise RuntimeError(f"Cannot modify {name}")

    async def create_role(self, community_id: int, role: RoleState) -> int:
        self._check(role.name)
        new_id = next(self._ids)
        state = self.structures[community_id]
        self.structures[community_id] = replace(state, roles=state.roles + (replace(role, id=new_id),))
        self.calls.append(f"create_role:{role.name}")
        return new_id

    async def update_role(self, community_id: int, role_id: int, role: RoleState) -> None:
        self._check(role.name)
        state = self.structures[community_id]
        roles = tuple(replace(role, id=role_id) if r.id == role_id else r for r in state.roles)
        self.structures[community_id] = replace(state, roles=roles)
        self.calls.append(f"update_role:{role.name}")

    async def create_channel(self, community_id: int, channel: ChannelState, parent_id: Optional[int]) -> int:
        self._check(channel.name)
        new_id = next(self._ids)
        state = self.structures[community_id]
        created = replace(channel, id=new_id, parent_id=parent_id)
        self.structures[community_id] = replace(state, channels=state.channels + (created,))
        self.calls.append(f"create_channel:{channel.name}")
        return new_id

    async def update_channel(
        self, community_id: int, channel_id: int, channel: ChannelState, parent_id: Optional[int],
    ) -> None:
        self._check(channel.name)
        state = self.structures[community_id]
        channels = tuple(
            replace(channel, id=channel_id, parent_id=parent_id) if c.id == channel_id else c
            for c in state.channels
        )
        self.structures[community_id] = replace(state, channels=channels)
        self.calls.append(f"update_channel:{channel.name}")

    async def set_overwrite(self, community_id: int, overwrite: OverwriteState) -> None:
        state = self.structures[community_id]
        kept = tuple(
            o for o in state.overwrites
            if (o.channel_id, o.target_id) != (overwrite.channel_id, overwrite.target_id)
        )
        self.structures[community_id] = replace(state, overwrites=kept + (overwrite,))
        self.calls.append(f"set_overwrite:{overwrite.channel_id}:{overwrite.target_id}")


def sample_structure() -> StructureState:
    """A small server: one category with two channels, two roles, one overwrite."""
    return StructureState(
        channels=(
            ChannelState(id=10, name="General", type="category", parent_id=None, position=0),
            ChannelState(id=11, name="chat", type="text", parent_id=10, position=1),
            ChannelState(id=12, name="voice", type="voice", parent_id=10, position=2),
        ),
        roles=(
            RoleState(id=20, name="Moderator", permissions=8, position=2, color=0xFF0000),
            RoleState(id=21, name="Member", permissions=0, position=1, color=0),
        ),
        overwrites=(
            OverwriteState(channel_id=11, target_id=21, target_type="role", allow=1024, deny=0),
        ),
    )


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Manual clock starting at a fixed epoch."""
    return ManualClock()


@pytest.fixture
def test_db(tmp_path):
    """Create a fresh test database instance."""
    db = DatabaseManager(tmp_path / "test_bastion.db")
    yield db
    db.close()


@pytest.fixture
def config_provider(test_db, clock):
    provider = CommunityConfigProvider(test_db, clock=clock)
    provider.set_owner(COMMUNITY_ID, OWNER_ID)
    return provider


@pytest.fixture
def guard(config_provider):
    return ExemptionGuard(config_provider, system_actor_id=SYSTEM_ID)


@pytest.fixture
def tracker(clock):
    return SlidingWindowTracker(clock=clock)


@pytest.fixture
def restore_guard():
    return RestoreGuard()


@pytest.fixture
def lockdown(test_db, clock):
    return LockdownManager(test_db, clock=clock)


@pytest.fixture
def detector(tracker, guard, config_provider, clock):
    return RaidDetector(tracker, guard, config_provider, clock=clock)


@pytest.fixture
def threat_reports():
    """List the monitor's threat sink appends to."""
    return []


@pytest.fixture
def monitor(tracker, guard, config_provider, lockdown, restore_guard, threat_reports, clock):
    return ActionRateMonitor(
        tracker, guard, config_provider, lockdown, restore_guard,
        threat_sink=threat_reports.append,
        clock=clock,
    )


@pytest.fixture
def structure_provider():
    provider = FakeStructureProvider()
    provider.structures[COMMUNITY_ID] = sample_structure()
    return provider


# =============================================================================
# Event Factories
# =============================================================================

@pytest.fixture
def make_join(clock):
    """Build a member_join event at the current clock time."""
    member_ids = itertools.count(500000)

    def factory(
        community_id: int = COMMUNITY_ID,
        member_id: Optional[int] = None,
        suspicious: bool = True,
    ) -> InboundEvent:
        member_id = member_id if member_id is not None else next(member_ids)
        now = clock.now()
        if suspicious:
            metadata = {
                "username": f"user{member_id}",
                "account_created_at": now - 3600,
                "joined_at": now,
                "avatar_hash": None,
            }
        else:
            metadata = {
                "username": "alice",
                "account_created_at": now - 400 * 86400,
                "joined_at": now,
                "avatar_hash": f"hash{member_id}",
            }
        return InboundEvent(
            community_id=community_id,
            actor_id=member_id,
            event_type=EventType.MEMBER_JOIN,
            timestamp=now,
            target_id=member_id,
            metadata=metadata,
        )

    return factory


@pytest.fixture
def make_action(clock):
    """Build a destructive-action event at the current clock time."""
    target_ids = itertools.count(700000)

    def factory(
        event_type: EventType,
        actor_id: Optional[int] = ATTACKER_ID,
        community_id: int = COMMUNITY_ID,
        name: Optional[str] = None,
        target_id: Optional[int] = None,
    ) -> InboundEvent:
        metadata = {"name": name} if name else {}
        return InboundEvent(
            community_id=community_id,
            actor_id=actor_id,
            event_type=event_type,
            timestamp=clock.now(),
            target_id=target_id if target_id is not None else next(target_ids),
            metadata=metadata,
        )

    return factory
