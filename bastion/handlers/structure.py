"""
Bastion - Discord Structure Provider
====================================

Reads a guild's roles, channels and overwrites into StructureState and
applies single restore steps.

DESIGN:
    Managed roles (bot and integration roles) are left out of captures;
    Discord creates them itself and they cannot be recreated by hand.
    Every apply method raises on failure so the recovery manager can put
    the item in `skipped` and move on.

Author: Bastion Maintainers
"""

from typing import List, Optional, Union

import discord

from bastion.core.logger import logger
from bastion.core.models import (
    ChannelState,
    OverwriteState,
    RoleState,
    StructureState,
)


RESTORE_REASON = "Bastion: snapshot restore"


class DiscordStructureProvider:
    """StructureProvider backed by the discord.py cache."""

    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    def list_communities(self) -> List[int]:
        return [guild.id for guild in self.bot.guilds]

    def _guild(self, community_id: int) -> discord.Guild:
        guild = self.bot.get_guild(community_id)
        if guild is None:
            raise LookupError(f"Guild {community_id} not available")
        return guild

    # =========================================================================
    # Capture
    # =========================================================================

    async def capture(self, community_id: int) -> StructureState:
        guild = self._guild(community_id)

        roles = tuple(
            RoleState(
                id=role.id,
                name=role.name,
                permissions=role.permissions.value,
                position=role.position,
                color=role.color.value,
            )
            for role in guild.roles
            if not role.managed
        )

        channels = []
        overwrites = []
        for channel in guild.channels:
            channels.append(ChannelState(
                id=channel.id,
                name=channel.name,
                type=channel.type.name,
                parent_id=channel.category_id,
                position=channel.position,
            ))
            for target, overwrite in channel.overwrites.items():
                allow, deny = overwrite.pair()
                overwrites.append(OverwriteState(
                    channel_id=channel.id,
                    target_id=target.id,
                    target_type="role" if isinstance(target, discord.Role) else "member",
                    allow=allow.value,
                    deny=deny.value,
                ))

        return StructureState(channels=tuple(channels), roles=roles, overwrites=tuple(overwrites))

    # =========================================================================
    # Roles
    # =========================================================================

    async def create_role(self, community_id: int, role: RoleState) -> int:
        guild = self._guild(community_id)
        created = await guild.create_role(
            name=role.name,
            permissions=discord.Permissions(role.permissions),
            colour=discord.Colour(role.color),
            reason=RESTORE_REASON,
        )
        try:
            await created.edit(position=max(1, role.position), reason=RESTORE_REASON)
        except discord.HTTPException as e:
            logger.warning("Role Position Not Restored", [
                ("Role", role.name),
                ("Error", str(e)[:100]),
            ])
        return created.id

    async def update_role(self, community_id: int, role_id: int, role: RoleState) -> None:
        guild = self._guild(community_id)
        existing = guild.get_role(role_id)
        if existing is None:
            raise LookupError(f"Role {role_id} not found")
        await existing.edit(
            name=role.name,
            permissions=discord.Permissions(role.permissions),
            colour=discord.Colour(role.color),
            reason=RESTORE_REASON,
        )

    # =========================================================================
    # Channels
    # =========================================================================

    async def create_channel(
        self,
        community_id: int,
        channel: ChannelState,
        parent_id: Optional[int],
    ) -> int:
        guild = self._guild(community_id)
        category = guild.get_channel(parent_id) if parent_id else None
        if not isinstance(category, discord.CategoryChannel):
            category = None

        if channel.type == "category":
            created = await guild.create_category(
                channel.name, position=channel.position, reason=RESTORE_REASON,
            )
        elif channel.type == "voice":
            created = await guild.create_voice_channel(
                channel.name, category=category, position=channel.position, reason=RESTORE_REASON,
            )
        elif channel.type == "stage_voice":
            created = await guild.create_stage_channel(
                channel.name, category=category, position=channel.position, reason=RESTORE_REASON,
            )
        elif channel.type == "forum":
            created = await guild.create_forum(
                channel.name, category=category, position=channel.position, reason=RESTORE_REASON,
            )
        else:
            created = await guild.create_text_channel(
                channel.name, category=category, position=channel.position, reason=RESTORE_REASON,
            )
        return created.id

    async def update_channel(
        self,
        community_id: int,
        channel_id: int,
        channel: ChannelState,
        parent_id: Optional[int],
    ) -> None:
        guild = self._guild(community_id)
        existing = guild.get_channel(channel_id)
        if existing is None:
            raise LookupError(f"Channel {channel_id} not found")

        if isinstance(existing, discord.CategoryChannel):
            await existing.edit(name=channel.name, reason=RESTORE_REASON)
            return

        category = guild.get_channel(parent_id) if parent_id else None
        await existing.edit(name=channel.name, category=category, reason=RESTORE_REASON)

    # =========================================================================
    # Overwrites
    # =========================================================================

    async def set_overwrite(self, community_id: int, overwrite: OverwriteState) -> None:
        guild = self._guild(community_id)
        channel = guild.get_channel(overwrite.channel_id)
        if channel is None:
            raise LookupError(f"Channel {overwrite.channel_id} not found")

        target: Optional[Union[discord.Role, discord.Member]]
        if overwrite.target_type == "role":
            target = guild.get_role(overwrite.target_id)
        else:
            target = guild.get_member(overwrite.target_id)
            if target is None:
                target = await guild.fetch_member(overwrite.target_id)
        if target is None:
            raise LookupError(f"Overwrite target {overwrite.target_id} not found")

        await channel.set_permissions(
            target,
            overwrite=discord.PermissionOverwrite.from_pair(
                discord.Permissions(overwrite.allow),
                discord.Permissions(overwrite.deny),
            ),
            reason=RESTORE_REASON,
        )


__all__ = ["DiscordStructureProvider", "RESTORE_REASON"]
