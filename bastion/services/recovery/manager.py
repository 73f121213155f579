"""
Bastion - Recovery Manager
==========================

Structure snapshots and restores.

DESIGN:
    The manager never talks to the platform directly. A StructureProvider
    captures the current structure and applies individual changes, so the
    same restore logic runs against discord.py in production and a fake
    provider in tests.

    A restore is a sequence of independent steps. A step that fails is
    recorded in RestoreResult.skipped and the restore carries on; nothing
    is rolled back.

    Restore order:
    1. Roles (created or updated), recording old id -> new id
    2. Categories, then all other channels, with parent ids remapped
    3. Permission overwrites, with channel and role ids remapped

    While a restore runs, the RestoreGuard flag makes the action monitor
    ignore the bot's own rebuild instead of flagging it as a nuke.

Author: Bastion Maintainers
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING

from bastion.core import constants as C
from bastion.core.exceptions import (
    RestoreInProgressError,
    SnapshotCaptureError,
    SnapshotNotFoundError,
)
from bastion.core.logger import logger
from bastion.core.models import (
    ChannelState,
    OverwriteState,
    RestoredItem,
    RestoreResult,
    RoleState,
    SkippedItem,
    Snapshot,
    StructureState,
)
from bastion.services.recovery.diff import CATEGORY, StructureDiff, diff_structure
from bastion.services.recovery.guard import RestoreGuard
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.database import DatabaseManager


# =============================================================================
# Provider Protocol
# =============================================================================

class StructureProvider(Protocol):
    """Reads and rebuilds a community's structure on the platform."""

    def list_communities(self) -> List[int]: ...

    async def capture(self, community_id: int) -> StructureState: ...

    async def create_role(self, community_id: int, role: RoleState) -> int: ...

    async def update_role(self, community_id: int, role_id: int, role: RoleState) -> None: ...

    async def create_channel(
        self, community_id: int, channel: ChannelState, parent_id: Optional[int],
    ) -> int: ...

    async def update_channel(
        self, community_id: int, channel_id: int, channel: ChannelState, parent_id: Optional[int],
    ) -> None: ...

    async def set_overwrite(self, community_id: int, overwrite: OverwriteState) -> None: ...


# =============================================================================
# Recovery Manager
# =============================================================================

class RecoveryManager:
    """Creates, lists and restores structure snapshots."""

    def __init__(
        self,
        db: "DatabaseManager",
        provider: StructureProvider,
        restore_guard: RestoreGuard,
        clock: Clock = SYSTEM_CLOCK,
        retention: int = C.SNAPSHOT_RETENTION,
        stale_after: float = C.SNAPSHOT_STALE_AFTER,
    ) -> None:
        self.db = db
        self.provider = provider
        self.restore_guard = restore_guard
        self._clock = clock
        self.retention = retention
        self.stale_after = stale_after

        self._stats: Dict[str, int] = {
            "snapshots_created": 0,
            "snapshot_failures": 0,
            "restores": 0,
            "restores_rejected": 0,
            "items_recovered": 0,
            "items_skipped": 0,
        }

    # =========================================================================
    # Snapshots
    # =========================================================================

    async def create_snapshot(self, community_id: int, reason: str, manual: bool = False) -> Snapshot:
        """
        Capture and store the community's current structure.

        Automatic snapshots beyond the retention cap are purged afterwards;
        manual snapshots are never purged.

        Raises:
            SnapshotCaptureError: If the structure could not be read or stored.
        """
        try:
            structure = await self.provider.capture(community_id)
        except Exception as e:
            self._stats["snapshot_failures"] += 1
            logger.error("Snapshot Capture Failed", [
                ("Community", str(community_id)),
                ("Error", str(e)[:100]),
                ("Type", type(e).__name__),
            ])
            raise SnapshotCaptureError(f"Could not capture community {community_id}: {e}") from e

        snapshot = Snapshot(
            community_id=community_id,
            created_at=self._clock.now(),
            reason=reason,
            channels=structure.channels,
            roles=structure.roles,
            overwrites=structure.overwrites,
            manual=manual,
        )
        saved, purged = await asyncio.to_thread(
            self.db.save_snapshot_with_retention, snapshot, self.retention,
        )
        if saved is None:
            self._stats["snapshot_failures"] += 1
            raise SnapshotCaptureError(f"Could not store snapshot for community {community_id}")

        self._stats["snapshots_created"] += 1

        logger.tree("Snapshot Created", [
            ("Community", str(community_id)),
            ("ID", str(saved.id)),
            ("Reason", reason),
            ("Type", "Manual" if manual else "Automatic"),
            ("Roles", str(len(saved.roles))),
            ("Channels", str(len(saved.channels))),
            ("Purged", str(purged)),
        ], emoji="📸")
        return saved

    async def list_snapshots(self, community_id: int, limit: int = C.SNAPSHOT_LIST_LIMIT) -> List[Snapshot]:
        return await asyncio.to_thread(self.db.list_snapshots, community_id, limit)

    def needs_snapshot(self, community_id: int) -> bool:
        """True when the newest snapshot is older than stale_after, or missing."""
        latest = self.db.get_latest_snapshot_time(community_id)
        return latest is None or self._clock.now() - latest > self.stale_after

    async def run_scheduled_snapshots(self) -> Dict[str, int]:
        """Automatic snapshot for every community whose newest one is stale."""
        created = 0
        failed = 0
        checked = 0

        for community_id in self.provider.list_communities():
            checked += 1
            due = await asyncio.to_thread(self.needs_snapshot, community_id)
            if not due:
                continue
            try:
                await self.create_snapshot(community_id, reason="scheduled")
                created += 1
            except SnapshotCaptureError:
                failed += 1

        return {"checked": checked, "created": created, "failed": failed}

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore_to_snapshot(self, community_id: int, snapshot_id: int) -> RestoreResult:
        """
        Bring the community back to a stored snapshot.

        Raises:
            RestoreInProgressError: A restore for this community is running.
            SnapshotNotFoundError: Unknown id, or a snapshot of another community.
            SnapshotCaptureError: The current structure could not be read.
        """
        if not self.restore_guard.try_acquire(community_id):
            self._stats["restores_rejected"] += 1
            logger.warning("Restore Rejected", [
                ("Community", str(community_id)),
                ("Reason", "Restore already in progress"),
            ])
            raise RestoreInProgressError(community_id)

        try:
            snapshot = await asyncio.to_thread(self.db.get_snapshot, snapshot_id)
            if snapshot is None or snapshot.community_id != community_id:
                raise SnapshotNotFoundError(snapshot_id, community_id)

            try:
                current = await self.provider.capture(community_id)
            except Exception as e:
                raise SnapshotCaptureError(f"Could not capture community {community_id}: {e}") from e

            diff = diff_structure(current, snapshot.structure)
            result = RestoreResult()
            if not diff.is_empty:
                await self._apply(community_id, diff, snapshot, result)

            self._stats["restores"] += 1
            self._stats["items_recovered"] += len(result.recovered)
            self._stats["items_skipped"] += len(result.skipped)

            logger.tree("Restore Complete", [
                ("Community", str(community_id)),
                ("Snapshot", str(snapshot_id)),
                ("Recovered", str(len(result.recovered))),
                ("Skipped", str(len(result.skipped))),
            ], emoji="♻️")
            return result
        finally:
            self.restore_guard.release(community_id)

    async def _apply(
        self,
        community_id: int,
        diff: StructureDiff,
        snapshot: Snapshot,
        result: RestoreResult,
    ) -> None:
        role_ids = dict(diff.role_ids)
        channel_ids = dict(diff.channel_ids)

        # 1. Roles
        for role in diff.role_creates:
            try:
                role_ids[role.id] = await self.provider.create_role(community_id, role)
                result.recovered.append(RestoredItem("role", role.name, "created"))
            except Exception as e:
                self._skip(result, "role", role.name, e)

        for role_id, role in diff.role_updates:
            try:
                await self.provider.update_role(community_id, role_id, role)
                result.recovered.append(RestoredItem("role", role.name, "updated"))
            except Exception as e:
                self._skip(result, "role", role.name, e)

        # 2. Channels, categories first
        for categories in (True, False):
            for channel in diff.channel_creates:
                if (channel.type == CATEGORY) != categories:
                    continue
                parent_id = channel_ids.get(channel.parent_id) if channel.parent_id else None
                try:
                    channel_ids[channel.id] = await self.provider.create_channel(
                        community_id, channel, parent_id,
                    )
                    result.recovered.append(RestoredItem("channel", channel.name, "created"))
                except Exception as e:
                    self._skip(result, "channel", channel.name, e)

            for channel_id, channel in diff.channel_updates:
                if (channel.type == CATEGORY) != categories:
                    continue
                parent_id = channel_ids.get(channel.parent_id) if channel.parent_id else None
                try:
                    await self.provider.update_channel(community_id, channel_id, channel, parent_id)
                    result.recovered.append(RestoredItem("channel", channel.name, "updated"))
                except Exception as e:
                    self._skip(result, "channel", channel.name, e)

        # 3. Overwrites
        channel_names = {c.id: c.name for c in snapshot.channels}
        for overwrite in diff.overwrites:
            label = f"{channel_names.get(overwrite.channel_id, overwrite.channel_id)}:{overwrite.target_id}"
            channel_id = channel_ids.get(overwrite.channel_id)
            if channel_id is None:
                result.skipped.append(SkippedItem("overwrite", label, "channel not restored"))
                continue
            target_id = overwrite.target_id
            if overwrite.target_type == "role":
                target_id = role_ids.get(overwrite.target_id)
                if target_id is None:
                    result.skipped.append(SkippedItem("overwrite", label, "role not restored"))
                    continue
            try:
                await self.provider.set_overwrite(
                    community_id, replace(overwrite, channel_id=channel_id, target_id=target_id),
                )
                result.recovered.append(RestoredItem("overwrite", label, "applied"))
            except Exception as e:
                self._skip(result, "overwrite", label, e)

    def _skip(self, result: RestoreResult, item_type: str, name: str, error: Exception) -> None:
        result.skipped.append(SkippedItem(item_type, name, str(error)[:200] or type(error).__name__))
        logger.warning("Restore Step Skipped", [
            ("Item", f"{item_type} {name}"),
            ("Error", str(error)[:100]),
            ("Type", type(error).__name__),
        ])

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats["active_restores"] = len(self.restore_guard.active)
        stats["storage"] = self.db.get_snapshot_stats(self._clock.now() - 86400)
        return stats


__all__ = ["RecoveryManager", "StructureProvider"]
