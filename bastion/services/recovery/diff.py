"""
Bastion - Structure Diff
========================

Compares a community's current structure against a snapshot and lists
what a restore has to create, update or re-apply.

DESIGN:
    Snapshot items are matched to current items by id first, then by name
    (roles) or name + type (channels) among the current items nothing else
    claimed. A role deleted during a nuke and recreated by hand therefore
    matches its old self instead of being created twice.

    Overwrites on roles the snapshot does not hold (managed roles left out
    of captures) keep their own id.

    Roles compare on name, permissions and color. Channels compare on
    name, type and parent. Positions are not compared; the platform
    renumbers them on every change.

Author: Bastion Maintainers
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

from bastion.core.models import ChannelState, OverwriteState, RoleState, StructureState

CATEGORY = "category"

T = TypeVar("T", ChannelState, RoleState)


@dataclass
class StructureDiff:
    role_creates: List[RoleState] = field(default_factory=list)
    role_updates: List[Tuple[int, RoleState]] = field(default_factory=list)
    channel_creates: List[ChannelState] = field(default_factory=list)
    channel_updates: List[Tuple[int, ChannelState]] = field(default_factory=list)
    overwrites: List[OverwriteState] = field(default_factory=list)
    # snapshot id -> current id, for items that still exist
    role_ids: Dict[int, int] = field(default_factory=dict)
    channel_ids: Dict[int, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.role_creates or self.role_updates
            or self.channel_creates or self.channel_updates
            or self.overwrites
        )


def _match(
    wanted: Iterable[T],
    current: Iterable[T],
    same: Callable[[T, T], bool],
) -> Dict[int, T]:
    """Map snapshot id -> matching current item."""
    by_id = {item.id: item for item in current}
    claimed: Set[int] = set()
    matches: Dict[int, T] = {}
    leftovers: List[T] = []

    for item in wanted:
        existing = by_id.get(item.id)
        if existing is not None:
            matches[item.id] = existing
            claimed.add(existing.id)
        else:
            leftovers.append(item)

    for item in leftovers:
        for candidate in by_id.values():
            if candidate.id not in claimed and same(item, candidate):
                matches[item.id] = candidate
                claimed.add(candidate.id)
                break

    return matches


def _role_changed(wanted: RoleState, current: RoleState) -> bool:
    return (
        wanted.name != current.name
        or wanted.permissions != current.permissions
        or wanted.color != current.color
    )


def _expected_parent(channel: ChannelState, channel_ids: Dict[int, int]) -> Optional[int]:
    if channel.parent_id is None:
        return None
    return channel_ids.get(channel.parent_id)


def diff_structure(current: StructureState, snapshot: StructureState) -> StructureDiff:
    """Everything needed to bring `current` back to `snapshot`."""
    diff = StructureDiff()

    # Roles
    role_matches = _match(snapshot.roles, current.roles, lambda a, b: a.name == b.name)
    for role in sorted(snapshot.roles, key=lambda r: r.position):
        existing = role_matches.get(role.id)
        if existing is None:
            diff.role_creates.append(role)
            continue
        diff.role_ids[role.id] = existing.id
        if _role_changed(role, existing):
            diff.role_updates.append((existing.id, role))

    # Channels
    channel_matches = _match(
        snapshot.channels, current.channels,
        lambda a, b: a.name == b.name and a.type == b.type,
    )
    for channel in snapshot.channels:
        existing = channel_matches.get(channel.id)
        if existing is not None:
            diff.channel_ids[channel.id] = existing.id

    # Categories first so children can be re-parented onto recreated ones
    ordered = sorted(
        snapshot.channels,
        key=lambda c: (c.type != CATEGORY, c.position),
    )
    for channel in ordered:
        existing = channel_matches.get(channel.id)
        if existing is None:
            diff.channel_creates.append(channel)
            continue
        parent_missing = channel.parent_id is not None and channel.parent_id not in diff.channel_ids
        if (
            parent_missing
            or channel.name != existing.name
            or channel.type != existing.type
            or _expected_parent(channel, diff.channel_ids) != existing.parent_id
        ):
            diff.channel_updates.append((existing.id, channel))

    # Overwrites. Roles the snapshot never captured (bot and integration
    # roles) are owned by the platform and keep their ids.
    captured_roles = {role.id for role in snapshot.roles}
    for overwrite in snapshot.overwrites:
        if overwrite.target_type == "role" and overwrite.target_id not in captured_roles:
            diff.role_ids.setdefault(overwrite.target_id, overwrite.target_id)

    present = {
        (o.channel_id, o.target_id, o.target_type, o.allow, o.deny)
        for o in current.overwrites
    }
    for overwrite in snapshot.overwrites:
        channel_id = diff.channel_ids.get(overwrite.channel_id)
        if overwrite.target_type == "role":
            target_id = diff.role_ids.get(overwrite.target_id)
        else:
            target_id = overwrite.target_id
        if channel_id is None or target_id is None:
            diff.overwrites.append(overwrite)
            continue
        key = (channel_id, target_id, overwrite.target_type, overwrite.allow, overwrite.deny)
        if key not in present:
            diff.overwrites.append(overwrite)

    return diff


__all__ = ["StructureDiff", "diff_structure", "CATEGORY"]
