"""
Bastion - Recovery Tests
========================

Snapshots, retention, diffing and restore.
"""

import asyncio
from dataclasses import replace

import pytest

from bastion.core.exceptions import RestoreInProgressError, SnapshotCaptureError, SnapshotNotFoundError
from bastion.core.models import ChannelState, OverwriteState, RoleState, StructureState
from bastion.services.recovery import RecoveryManager, diff_structure

from conftest import COMMUNITY_ID, sample_structure


@pytest.fixture
def recovery(test_db, structure_provider, restore_guard, clock):
    return RecoveryManager(test_db, structure_provider, restore_guard, clock=clock)


def _nuke(provider, community_id=COMMUNITY_ID):
    """Delete everything but the Member role, like an attacker would."""
    state = provider.structures[community_id]
    provider.structures[community_id] = StructureState(
        channels=(),
        roles=tuple(r for r in state.roles if r.name == "Member"),
        overwrites=(),
    )


# =============================================================================
# Diff
# =============================================================================

class TestDiff:

    def test_identical_structure_is_empty(self):
        structure = sample_structure()
        assert diff_structure(structure, structure).is_empty

    def test_missing_items_are_created(self):
        diff = diff_structure(StructureState(), sample_structure())

        assert [r.name for r in diff.role_creates] == ["Member", "Moderator"]
        assert diff.channel_creates[0].type == "category"
        assert len(diff.overwrites) == 1

    def test_renamed_role_matched_by_id_is_updated(self):
        snapshot = sample_structure()
        current = replace(snapshot, roles=(
            RoleState(id=20, name="hacked", permissions=8, position=2, color=0xFF0000),
            snapshot.roles[1],
        ))

        diff = diff_structure(current, snapshot)

        assert diff.role_creates == []
        assert diff.role_updates == [(20, snapshot.roles[0])]

    def test_recreated_role_matched_by_name(self):
        snapshot = sample_structure()
        current = replace(snapshot, roles=(
            RoleState(id=99, name="Moderator", permissions=8, position=2, color=0xFF0000),
            snapshot.roles[1],
        ))

        diff = diff_structure(current, snapshot)

        assert diff.role_ids[20] == 99
        assert diff.role_creates == []
        assert diff.role_updates == []

    def test_moved_channel_is_updated(self):
        snapshot = sample_structure()
        moved = replace(snapshot.channels[1], parent_id=None)
        current = replace(snapshot, channels=(snapshot.channels[0], moved, snapshot.channels[2]))

        diff = diff_structure(current, snapshot)

        assert [cid for cid, _ in diff.channel_updates] == [11]

    def test_overwrite_on_uncaptured_role_keeps_its_id(self):
        snapshot = replace(sample_structure(), overwrites=sample_structure().overwrites + (
            OverwriteState(channel_id=11, target_id=30, target_type="role", allow=1024, deny=0),
        ))

        diff = diff_structure(snapshot, snapshot)

        assert diff.is_empty
        assert diff.role_ids[30] == 30

    def test_position_change_is_ignored(self):
        snapshot = sample_structure()
        shuffled = replace(snapshot.channels[2], position=9)
        current = replace(snapshot, channels=snapshot.channels[:2] + (shuffled,))
        assert diff_structure(current, snapshot).is_empty


# =============================================================================
# Snapshots
# =============================================================================

class TestSnapshots:

    @pytest.mark.asyncio
    async def test_create_snapshot(self, recovery):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")

        assert snapshot.id is not None
        assert len(snapshot.channels) == 3
        assert len(snapshot.roles) == 2
        assert len(snapshot.overwrites) == 1

    @pytest.mark.asyncio
    async def test_capture_failure_raises(self, recovery, structure_provider):
        structure_provider.fail_capture.add(COMMUNITY_ID)
        with pytest.raises(SnapshotCaptureError):
            await recovery.create_snapshot(COMMUNITY_ID, reason="test")

    @pytest.mark.asyncio
    async def test_retention_keeps_newest_automatic(self, recovery, clock):
        manual = await recovery.create_snapshot(COMMUNITY_ID, reason="before changes", manual=True)
        for _ in range(30):
            clock.advance(60)
            await recovery.create_snapshot(COMMUNITY_ID, reason="scheduled")

        snapshots = await recovery.list_snapshots(COMMUNITY_ID, limit=100)
        automatic = [s for s in snapshots if not s.manual]

        assert len(automatic) == 24
        assert manual.id in {s.id for s in snapshots}
        assert automatic[0].created_at == clock.now()

    @pytest.mark.asyncio
    async def test_scheduled_snapshots_only_when_stale(self, recovery, structure_provider, clock):
        structure_provider.structures[123] = sample_structure()

        first = await recovery.run_scheduled_snapshots()
        assert first == {"checked": 2, "created": 2, "failed": 0}

        clock.advance(3600)
        assert (await recovery.run_scheduled_snapshots())["created"] == 0

        clock.advance(86400)
        assert (await recovery.run_scheduled_snapshots())["created"] == 2

    @pytest.mark.asyncio
    async def test_scheduled_snapshot_failure_is_counted(self, recovery, structure_provider):
        structure_provider.fail_capture.add(COMMUNITY_ID)
        result = await recovery.run_scheduled_snapshots()
        assert result == {"checked": 1, "created": 0, "failed": 1}


# =============================================================================
# Restore
# =============================================================================

class TestRestore:

    @pytest.mark.asyncio
    async def test_snapshot_then_restore_is_noop(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert result.recovered == []
        assert result.skipped == []
        assert structure_provider.calls == []

    @pytest.mark.asyncio
    async def test_managed_role_overwrite_round_trip_is_noop(self, recovery, structure_provider):
        # Role 30 belongs to an integration: captures leave it out, its overwrite stays
        state = structure_provider.structures[COMMUNITY_ID]
        structure_provider.structures[COMMUNITY_ID] = replace(state, overwrites=state.overwrites + (
            OverwriteState(channel_id=11, target_id=30, target_type="role", allow=1024, deny=0),
        ))
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert result.recovered == []
        assert result.skipped == []

    @pytest.mark.asyncio
    async def test_managed_role_overwrite_reapplied_on_recreated_channel(self, recovery, structure_provider):
        state = structure_provider.structures[COMMUNITY_ID]
        structure_provider.structures[COMMUNITY_ID] = replace(state, overwrites=state.overwrites + (
            OverwriteState(channel_id=11, target_id=30, target_type="role", allow=1024, deny=0),
        ))
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        _nuke(structure_provider)

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert result.skipped == []
        assert ("overwrite", "chat:30", "applied") in {(i.item_type, i.name, i.action) for i in result.recovered}
        chat = next(c for c in structure_provider.structures[COMMUNITY_ID].channels if c.name == "chat")
        assert any(
            o.channel_id == chat.id and o.target_id == 30
            for o in structure_provider.structures[COMMUNITY_ID].overwrites
        )

    @pytest.mark.asyncio
    async def test_restore_after_nuke(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        _nuke(structure_provider)

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert result.skipped == []
        assert {(i.item_type, i.name, i.action) for i in result.recovered} == {
            ("role", "Moderator", "created"),
            ("channel", "General", "created"),
            ("channel", "chat", "created"),
            ("channel", "voice", "created"),
            ("overwrite", "chat:21", "applied"),
        }

        # Categories before their children, children re-parented
        calls = structure_provider.calls
        assert calls.index("create_channel:General") < calls.index("create_channel:chat")
        state = structure_provider.structures[COMMUNITY_ID]
        category = next(c for c in state.channels if c.name == "General")
        chat = next(c for c in state.channels if c.name == "chat")
        assert chat.parent_id == category.id

        # Restoring again changes nothing
        again = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)
        assert again.recovered == [] and again.skipped == []

    @pytest.mark.asyncio
    async def test_failed_items_are_skipped(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        _nuke(structure_provider)
        structure_provider.fail_names.add("General")

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        skipped = {(s.item_type, s.name) for s in result.skipped}
        assert ("channel", "General") in skipped
        # Children are still created, at the top level
        assert ("channel", "chat", "created") in {(i.item_type, i.name, i.action) for i in result.recovered}
        chat = next(c for c in structure_provider.structures[COMMUNITY_ID].channels if c.name == "chat")
        assert chat.parent_id is None

    @pytest.mark.asyncio
    async def test_one_failing_role_is_the_only_skip(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        structure_provider.structures[COMMUNITY_ID] = StructureState()
        structure_provider.fail_names.add("Moderator")

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert [(s.item_type, s.name) for s in result.skipped] == [("role", "Moderator")]
        assert ("role", "Member", "created") in {(i.item_type, i.name, i.action) for i in result.recovered}
        assert ("overwrite", "chat:21", "applied") in {(i.item_type, i.name, i.action) for i in result.recovered}

    @pytest.mark.asyncio
    async def test_overwrite_skipped_when_channel_fails(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        _nuke(structure_provider)
        structure_provider.fail_names.add("chat")

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert any(
            s.item_type == "overwrite" and s.reason == "channel not restored"
            for s in result.skipped
        )

    @pytest.mark.asyncio
    async def test_unknown_snapshot(self, recovery, restore_guard):
        with pytest.raises(SnapshotNotFoundError):
            await recovery.restore_to_snapshot(COMMUNITY_ID, 12345)
        assert not restore_guard.is_restoring(COMMUNITY_ID)

    @pytest.mark.asyncio
    async def test_snapshot_from_other_community(self, recovery, structure_provider):
        structure_provider.structures[123] = sample_structure()
        other = await recovery.create_snapshot(123, reason="test")
        with pytest.raises(SnapshotNotFoundError):
            await recovery.restore_to_snapshot(COMMUNITY_ID, other.id)

    @pytest.mark.asyncio
    async def test_concurrent_restore_rejected(self, recovery, structure_provider, restore_guard):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        _nuke(structure_provider)

        gate = asyncio.Event()
        started = asyncio.Event()
        original = structure_provider.create_role

        async def slow_create_role(community_id, role):
            started.set()
            await gate.wait()
            return await original(community_id, role)

        structure_provider.create_role = slow_create_role

        first = asyncio.create_task(recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id))
        await asyncio.wait_for(started.wait(), timeout=5)
        assert restore_guard.is_restoring(COMMUNITY_ID)

        with pytest.raises(RestoreInProgressError):
            await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        gate.set()
        result = await first
        assert result.skipped == []
        assert not restore_guard.is_restoring(COMMUNITY_ID)

    @pytest.mark.asyncio
    async def test_renamed_channel_restored(self, recovery, structure_provider):
        snapshot = await recovery.create_snapshot(COMMUNITY_ID, reason="test")
        state = structure_provider.structures[COMMUNITY_ID]
        defaced = tuple(
            replace(c, name="nuked") if c.id == 11 else c for c in state.channels
        )
        structure_provider.structures[COMMUNITY_ID] = replace(state, channels=defaced)

        result = await recovery.restore_to_snapshot(COMMUNITY_ID, snapshot.id)

        assert [(i.name, i.action) for i in result.recovered] == [("chat", "updated")]
        assert ChannelState(id=11, name="chat", type="text", parent_id=10, position=1) in \
            structure_provider.structures[COMMUNITY_ID].channels
