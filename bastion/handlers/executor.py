"""
Bastion - Discord Action Executor
=================================

Carries out ActionRequests against the Discord API.

DESIGN:
    Every method raises on failure (missing guild or target, Forbidden,
    HTTPException). The ActionDispatcher catches, logs and counts; there
    is no retry here either.

Author: Bastion Maintainers
"""

from datetime import timedelta

import discord

from bastion.core.constants import TIMEOUT_DURATION
from bastion.core.models import ActionKind, ActionRequest


class DiscordActionExecutor:
    """Bans, kicks, timeouts and deletions through discord.py."""

    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    async def execute(self, request: ActionRequest) -> None:
        guild = self.bot.get_guild(request.community_id)
        if guild is None:
            raise LookupError(f"Guild {request.community_id} not available")

        if request.action == ActionKind.BAN:
            await guild.ban(
                discord.Object(id=request.target_id),
                reason=request.reason,
                delete_message_seconds=0,
            )
        elif request.action == ActionKind.KICK:
            member = await self._member(guild, request.target_id)
            await member.kick(reason=request.reason)
        elif request.action == ActionKind.TIMEOUT:
            member = await self._member(guild, request.target_id)
            await member.timeout(timedelta(seconds=TIMEOUT_DURATION), reason=request.reason)
        elif request.action == ActionKind.DELETE:
            await self._delete(guild, request)
        else:
            raise ValueError(f"Unsupported action: {request.action}")

    async def _member(self, guild: discord.Guild, member_id: int) -> discord.Member:
        member = guild.get_member(member_id)
        if member is None:
            member = await guild.fetch_member(member_id)
        return member

    async def _delete(self, guild: discord.Guild, request: ActionRequest) -> None:
        target_id = request.target_id

        if request.target_type == "channel":
            channel = guild.get_channel(target_id)
            if channel is None:
                raise LookupError(f"Channel {target_id} not found")
            await channel.delete(reason=request.reason)

        elif request.target_type == "role":
            role = guild.get_role(target_id)
            if role is None:
                raise LookupError(f"Role {target_id} not found")
            await role.delete(reason=request.reason)

        elif request.target_type == "webhook":
            webhook = discord.utils.get(await guild.webhooks(), id=target_id)
            if webhook is None:
                raise LookupError(f"Webhook {target_id} not found")
            await webhook.delete(reason=request.reason)

        elif request.target_type == "message":
            if request.channel_id is None:
                raise ValueError(f"Message {target_id} has no channel")
            channel = guild.get_channel_or_thread(request.channel_id)
            if channel is None:
                raise LookupError(f"Channel {request.channel_id} not found")
            await channel.get_partial_message(target_id).delete()

        elif request.target_type == "member":
            member = await self._member(guild, target_id)
            await member.kick(reason=request.reason)

        else:
            raise ValueError(f"Unsupported delete target: {request.target_type}")


__all__ = ["DiscordActionExecutor"]
