"""
Bastion - Admin Commands
========================

Slash commands for the operations only a human may perform: clearing a
lockdown, managing snapshots and the whitelist, choosing the alert channel.

Author: Bastion Maintainers
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.ext import commands

from bastion.core.config import EmbedColors
from bastion.core.exceptions import RestoreInProgressError, SnapshotCaptureError, SnapshotNotFoundError
from bastion.core.logger import logger, NY_TZ

if TYPE_CHECKING:
    from bastion.bot import BastionBot


def _timestamp(epoch: float) -> str:
    return f"<t:{int(epoch)}:R>"


class ProtectionCommands(commands.Cog):
    """Admin commands for lockdown, snapshots and exemptions."""

    snapshot = app_commands.Group(
        name="snapshot",
        description="Structure snapshots",
        default_permissions=discord.Permissions(administrator=True),
        guild_only=True,
    )
    whitelist = app_commands.Group(
        name="whitelist",
        description="Actors exempt from accumulating anti-nuke limits",
        default_permissions=discord.Permissions(administrator=True),
        guild_only=True,
    )

    def __init__(self, bot: "BastionBot") -> None:
        self.bot = bot

        logger.tree("Protection Commands Loaded", [
            ("Commands", "/unlockdown, /snapshot, /whitelist, /alerts, /protection"),
            ("Permission", "Administrator"),
        ], emoji="🛡️")

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Every command needs the services built in on_ready."""
        if self.bot.protection is None:
            await interaction.response.send_message(
                "⏳ Bastion is still starting up. Try again in a moment.", ephemeral=True,
            )
            return False
        return True

    # =========================================================================
    # Lockdown
    # =========================================================================

    @app_commands.command(name="unlockdown", description="Clear an automatic lockdown")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def unlockdown(self, interaction: discord.Interaction) -> None:
        protection = self.bot.protection
        state = protection.lockdown.get_state(interaction.guild_id)
        if state is None:
            await interaction.response.send_message("This server is not locked down.", ephemeral=True)
            return

        protection.clear_lockdown(interaction.guild_id, cleared_by=interaction.user.id)
        await interaction.response.send_message(
            f"🔓 Lockdown cleared. It was triggered {_timestamp(state.activated_at)} ({state.reason}).",
            ephemeral=True,
        )

    # =========================================================================
    # Snapshots
    # =========================================================================

    @snapshot.command(name="create", description="Take a manual snapshot (never purged automatically)")
    @app_commands.describe(reason="Why this snapshot is being taken")
    async def snapshot_create(self, interaction: discord.Interaction, reason: Optional[str] = None) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            snapshot = await self.bot.protection.recovery.create_snapshot(
                interaction.guild_id, reason=reason or f"manual by {interaction.user}", manual=True,
            )
        except SnapshotCaptureError as e:
            await interaction.followup.send(f"Snapshot failed: {e}", ephemeral=True)
            return

        await interaction.followup.send(
            f"📸 Snapshot `#{snapshot.id}` saved: {len(snapshot.roles)} roles, "
            f"{len(snapshot.channels)} channels.",
            ephemeral=True,
        )

    @snapshot.command(name="list", description="List recent snapshots")
    async def snapshot_list(self, interaction: discord.Interaction) -> None:
        snapshots = await self.bot.protection.recovery.list_snapshots(interaction.guild_id, limit=10)
        if not snapshots:
            await interaction.response.send_message("No snapshots yet.", ephemeral=True)
            return

        lines = [
            f"`#{s.id}` {_timestamp(s.created_at)} {'📌 manual' if s.manual else 'auto'} - {s.reason}"
            for s in snapshots
        ]
        embed = discord.Embed(title="📸 Snapshots", description="\n".join(lines), color=EmbedColors.INFO)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @snapshot.command(name="restore", description="Restore roles, channels and overwrites from a snapshot")
    @app_commands.describe(snapshot_id="Snapshot number from /snapshot list")
    async def snapshot_restore(self, interaction: discord.Interaction, snapshot_id: int) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            result = await self.bot.protection.recovery.restore_to_snapshot(interaction.guild_id, snapshot_id)
        except RestoreInProgressError:
            await interaction.followup.send("A restore is already running for this server.", ephemeral=True)
            return
        except SnapshotNotFoundError:
            await interaction.followup.send(f"Snapshot `#{snapshot_id}` not found.", ephemeral=True)
            return
        except SnapshotCaptureError as e:
            await interaction.followup.send(f"Restore failed: {e}", ephemeral=True)
            return

        embed = discord.Embed(
            title="♻️ Restore Complete",
            color=EmbedColors.SUCCESS if not result.skipped else EmbedColors.WARNING,
            timestamp=datetime.now(NY_TZ),
        )
        embed.add_field(name="Recovered", value=f"`{len(result.recovered)}`", inline=True)
        embed.add_field(name="Skipped", value=f"`{len(result.skipped)}`", inline=True)
        if result.skipped:
            preview = "\n".join(f"{s.item_type} {s.name}: {s.reason}" for s in result.skipped[:5])
            if len(result.skipped) > 5:
                preview += f"\n... and {len(result.skipped) - 5} more"
            embed.add_field(name="Skipped Items", value=f"```{preview[:1000]}```", inline=False)
        await interaction.followup.send(embed=embed, ephemeral=True)

    # =========================================================================
    # Whitelist
    # =========================================================================

    @whitelist.command(name="add", description="Exempt a user or bot from accumulating limits")
    async def whitelist_add(self, interaction: discord.Interaction, user: discord.User) -> None:
        self.bot.protection.config_provider.add_to_whitelist(interaction.guild_id, user.id)
        logger.tree("Whitelist Updated", [
            ("Guild", str(interaction.guild_id)),
            ("Added", f"{user} ({user.id})"),
            ("By", f"{interaction.user} ({interaction.user.id})"),
        ], emoji="📝")
        await interaction.response.send_message(f"{user.mention} is now whitelisted.", ephemeral=True)

    @whitelist.command(name="remove", description="Remove a whitelist exemption")
    async def whitelist_remove(self, interaction: discord.Interaction, user: discord.User) -> None:
        self.bot.protection.config_provider.remove_from_whitelist(interaction.guild_id, user.id)
        await interaction.response.send_message(f"{user.mention} is no longer whitelisted.", ephemeral=True)

    # =========================================================================
    # Settings / Stats
    # =========================================================================

    @app_commands.command(name="alerts", description="Choose the channel protection alerts are posted in")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def alerts(self, interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        self.bot.protection.config_provider.update(interaction.guild_id, alert_channel_id=channel.id)
        await interaction.response.send_message(f"Alerts will be posted in {channel.mention}.", ephemeral=True)

    @app_commands.command(name="protection", description="Protection status for this server")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def protection_status(self, interaction: discord.Interaction) -> None:
        protection = self.bot.protection
        guild_id = interaction.guild_id
        config = protection.config_provider.get_community_config(guild_id)
        state = protection.lockdown.get_state(guild_id)
        stats = protection.get_stats()

        embed = discord.Embed(title="🛡️ Protection Status", color=EmbedColors.INFO)
        embed.add_field(name="Anti-Raid", value="On" if config.antiraid_enabled else "Off", inline=True)
        embed.add_field(name="Anti-Nuke", value="On" if config.antinuke_enabled else "Off", inline=True)
        embed.add_field(name="Token Scan", value="On" if config.token_scan_enabled else "Off", inline=True)
        embed.add_field(
            name="Lockdown",
            value=f"🔒 since {_timestamp(state.activated_at)}" if state else "🔓 Normal",
            inline=True,
        )
        embed.add_field(name="Raid Scorer", value=f"`{stats['raid']['method']}`", inline=True)
        embed.add_field(name="Whitelisted", value=f"`{len(config.whitelist)}`", inline=True)
        embed.add_field(
            name="Correlations (24h)",
            value=f"`{sum(stats['correlation']['last_24h']['correlations'].values())}`",
            inline=True,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: "BastionBot") -> None:
    """Load the protection commands cog."""
    await bot.add_cog(ProtectionCommands(bot))


__all__ = ["ProtectionCommands", "setup"]
