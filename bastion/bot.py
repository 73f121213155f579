"""
Bastion - Main Bot Class
========================

Discord client that hosts the protection services.

Author: Bastion Maintainers
"""

from datetime import datetime
from typing import Optional

import discord
from discord.ext import commands

from bastion.core.config import get_config
from bastion.core.database import DatabaseManager
from bastion.core.logger import logger
from bastion.services import ProtectionService, build_services


# =============================================================================
# BastionBot Class
# =============================================================================

class BastionBot(commands.Bot):
    """
    Main Discord bot class for Bastion.

    DESIGN: Thin host around ProtectionService:
    - Gateway cogs translate Discord events into InboundEvents
    - Handlers execute actions, deliver alerts and rebuild structure
    - All detection lives in bastion.services and never imports discord

    SERVICE INITIALIZATION ORDER:
    1. setup_hook (before on_ready):
       - Handler cog loading
       - Command tree syncing

    2. on_ready:
       - Database
       - Protection services (with the bot's own id as system actor)
       - Owner sync for every guild
       - Scheduler start
    """

    # =========================================================================
    # Initialization
    # =========================================================================

    def __init__(self) -> None:
        self.config = get_config()

        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = True
        intents.guilds = True

        super().__init__(
            command_prefix="!",
            intents=intents,
            help_command=None,
        )

        self.start_time: datetime = datetime.now()
        self.db: Optional[DatabaseManager] = None
        self.protection: Optional[ProtectionService] = None
        self.webhook_notifier = None

        # Ready state guard
        self._ready_initialized: bool = False

        logger.info("Bot Instance Created")

    # =========================================================================
    # Setup Hook
    # =========================================================================

    async def setup_hook(self) -> None:
        """Load cogs and sync commands before on_ready."""
        from bastion.handlers import HANDLER_COGS
        for cog in HANDLER_COGS:
            try:
                await self.load_extension(cog)
                logger.success(f"Cog Loaded: {cog.split('.')[-1]}")
            except Exception as e:
                logger.error("Failed to Load Cog", [("Cog", cog), ("Error", str(e))])

        try:
            synced = await self.tree.sync()
            logger.tree("Commands Synced", [("Count", str(len(synced)))], emoji="✅")
        except Exception as e:
            logger.error("Command Sync Failed", [("Error", str(e))])

    # =========================================================================
    # On Ready
    # =========================================================================

    async def on_ready(self) -> None:
        """Initialize services when bot is ready."""
        if self._ready_initialized:
            logger.info("Bot Reconnected (skipping re-initialization)")
            return

        self._ready_initialized = True

        if not self.user:
            return

        logger.tree("BOT ONLINE", [
            ("Name", self.user.name),
            ("ID", str(self.user.id)),
            ("Guilds", str(len(self.guilds))),
        ], emoji="🚀")

        await self._init_services()

    async def _init_services(self) -> None:
        """Build the protection graph after the Discord connection is up."""
        from bastion.handlers.executor import DiscordActionExecutor
        from bastion.handlers.notifier import DiscordAlertNotifier, WebhookNotifier
        from bastion.handlers.structure import DiscordStructureProvider

        self.db = DatabaseManager(self.config.database_path)

        executor = DiscordActionExecutor(self)
        provider = DiscordStructureProvider(self)
        self.protection = build_services(
            self.config,
            self.db,
            executor=executor,
            notifiers=[],
            provider=provider,
        )
        self.protection.alerts.add_notifier(DiscordAlertNotifier(self, self.protection.config_provider))
        if self.config.alert_webhook_url:
            self.webhook_notifier = WebhookNotifier(self.config.alert_webhook_url)
            self.protection.alerts.add_notifier(self.webhook_notifier)

        self.protection.set_system_actor(self.user.id)
        for guild in self.guilds:
            self.sync_owner(guild)

        self.protection.start()

        logger.tree_nested("BASTION READY", [
            ("Detection", [
                ("Guilds", str(len(self.guilds))),
                ("Raid Scorer", self.protection.detector.scorer.method),
                ("Active Lockdowns", str(len(self.protection.lockdown.active_lockdowns()))),
            ]),
            ("Alerts", [
                ("Channel Alerts", "Enabled"),
                ("Webhook Alerts", "Enabled" if self.webhook_notifier else "Disabled"),
            ]),
        ], emoji="🛡️")

    def sync_owner(self, guild: discord.Guild) -> None:
        """Record the guild owner as an exempt actor."""
        if self.protection is None or guild.owner_id is None:
            return
        config = self.protection.config_provider.get_community_config(guild.id)
        if config.owner_id != guild.owner_id:
            self.protection.config_provider.set_owner(guild.id, guild.owner_id)
            logger.info("Guild Owner Synced", [
                ("Guild", f"{guild.name} ({guild.id})"),
                ("Owner", str(guild.owner_id)),
            ])

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Graceful shutdown with proper cleanup."""
        logger.info("Initiating Graceful Shutdown")

        if self.protection:
            await self.protection.stop()

        if self.webhook_notifier:
            await self.webhook_notifier.close()

        if self.db:
            self.db.close()
        await super().close()

        logger.tree("SHUTDOWN COMPLETE", [
            ("Uptime", str(datetime.now() - self.start_time)),
        ], emoji="🛑")

    async def close(self) -> None:
        """Override close to ensure proper shutdown."""
        await self.shutdown()


__all__ = ["BastionBot"]
