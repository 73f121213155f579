"""
Bastion - Gateway Events
========================

Turns discord.py gateway events into InboundEvents for the protection
service.

DESIGN:
    Joins come from on_member_join. Destructive actions come from
    on_audit_log_entry_create, because only the audit log says who did
    them. A role update only counts as permission_change when it grants
    one of the dangerous permissions the role did not have before.

    Guild messages come from on_message and are only scanned for leaked
    tokens; their content is never stored.

Author: Bastion Maintainers
"""

import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import discord
from discord.ext import commands

from bastion.core.logger import logger
from bastion.core.models import EventType, InboundEvent
from bastion.services.antinuke.constants import DANGEROUS_PERMISSIONS

if TYPE_CHECKING:
    from bastion.bot import BastionBot


AUDIT_EVENT_TYPES = {
    discord.AuditLogAction.channel_create: EventType.CHANNEL_CREATE,
    discord.AuditLogAction.channel_delete: EventType.CHANNEL_DELETE,
    discord.AuditLogAction.channel_update: EventType.CHANNEL_UPDATE,
    discord.AuditLogAction.role_create: EventType.ROLE_CREATE,
    discord.AuditLogAction.role_delete: EventType.ROLE_DELETE,
    discord.AuditLogAction.ban: EventType.MEMBER_BAN,
    discord.AuditLogAction.kick: EventType.MEMBER_KICK,
    discord.AuditLogAction.webhook_create: EventType.WEBHOOK_CREATE,
    discord.AuditLogAction.bot_add: EventType.BOT_ADD,
}


def gained_dangerous_permissions(before: Any, after: Any) -> List[str]:
    """Dangerous permissions set in `after` but not in `before`."""
    before_perms = getattr(before, "permissions", None)
    after_perms = getattr(after, "permissions", None)
    if after_perms is None:
        return []
    return sorted(
        name for name in DANGEROUS_PERMISSIONS
        if getattr(after_perms, name, False) and not getattr(before_perms, name, False)
    )


def member_join_event(member: discord.Member, timestamp: float) -> InboundEvent:
    return InboundEvent(
        community_id=member.guild.id,
        actor_id=member.id,
        event_type=EventType.MEMBER_JOIN,
        timestamp=timestamp,
        target_id=member.id,
        metadata={
            "username": member.name,
            "account_created_at": member.created_at.timestamp() if member.created_at else None,
            "joined_at": member.joined_at.timestamp() if member.joined_at else timestamp,
            "avatar_hash": member.avatar.key if member.avatar else None,
        },
    )


def message_event(message: discord.Message, timestamp: float) -> InboundEvent:
    return InboundEvent(
        community_id=message.guild.id,
        actor_id=message.author.id,
        event_type=EventType.MESSAGE_CREATE,
        timestamp=timestamp,
        target_id=message.id,
        metadata={
            "channel_id": message.channel.id,
            "content": message.content,
        },
    )


def audit_entry_event(entry: discord.AuditLogEntry, timestamp: float) -> Optional[InboundEvent]:
    """Map an audit log entry to an InboundEvent, or None if it is not tracked."""
    if entry.action == discord.AuditLogAction.role_update:
        gained = gained_dangerous_permissions(entry.before, entry.after)
        if not gained:
            return None
        event_type = EventType.PERMISSION_CHANGE
        metadata: Dict[str, Any] = {"permissions": ",".join(gained)}
    else:
        event_type = AUDIT_EVENT_TYPES.get(entry.action)
        if event_type is None:
            return None
        metadata = {}

    name = getattr(entry.after, "name", None) or getattr(entry.target, "name", None)
    if name:
        metadata["name"] = str(name)

    target = entry.target
    return InboundEvent(
        community_id=entry.guild.id,
        actor_id=entry.user_id,
        event_type=event_type,
        timestamp=timestamp,
        target_id=getattr(target, "id", None),
        metadata=metadata,
    )


class GatewayEvents(commands.Cog):
    """Routes joins, audit log entries and messages to the protection service."""

    def __init__(self, bot: "BastionBot") -> None:
        self.bot = bot

        logger.tree("Gateway Events Loaded", [
            ("Joins", "Raid detection"),
            ("Audit Log", "Anti-nuke"),
            ("Messages", "Token leak scan"),
            ("Tracked Actions", str(len(AUDIT_EVENT_TYPES) + 1)),
        ], emoji="📡")

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if not self.bot.protection:
            return
        try:
            self.bot.protection.handle_event(member_join_event(member, time.time()))
        except Exception as e:
            logger.error("Join Handling Failed", [
                ("Guild", str(member.guild.id)),
                ("Member", f"{member} ({member.id})"),
                ("Error", str(e)[:100]),
            ])

    @commands.Cog.listener()
    async def on_audit_log_entry_create(self, entry: discord.AuditLogEntry) -> None:
        if not self.bot.protection or not entry.guild:
            return

        event = audit_entry_event(entry, time.time())
        if event is None:
            return

        try:
            self.bot.protection.handle_event(event)
        except Exception as e:
            logger.error("Audit Event Handling Failed", [
                ("Guild", str(entry.guild.id)),
                ("Action", str(entry.action)),
                ("Error", str(e)[:100]),
            ])

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if not self.bot.protection or message.guild is None or not message.content:
            return
        try:
            self.bot.protection.handle_event(message_event(message, time.time()))
        except Exception as e:
            logger.error("Message Scan Failed", [
                ("Guild", str(message.guild.id)),
                ("Channel", str(message.channel.id)),
                ("Error", str(e)[:100]),
            ])

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        if not self.bot.protection:
            return
        self.bot.sync_owner(guild)
        logger.tree("Guild Joined", [
            ("Guild", f"{guild.name} ({guild.id})"),
            ("Members", str(guild.member_count)),
        ], emoji="🏰")


async def setup(bot: "BastionBot") -> None:
    """Load the gateway events cog."""
    await bot.add_cog(GatewayEvents(bot))


__all__ = [
    "GatewayEvents",
    "audit_entry_event",
    "member_join_event",
    "message_event",
    "gained_dangerous_permissions",
    "setup",
]
