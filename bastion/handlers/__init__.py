"""
Bastion - Discord Handlers Package
==================================

discord.py adapters around the protection services: gateway events in,
actions, alerts and structure changes out.

DESIGN:
    Cogs are loaded by the bot with load_extension(); add new cogs to
    HANDLER_COGS below.

Author: Bastion Maintainers
"""

HANDLER_COGS = [
    "bastion.handlers.gateway",
    "bastion.handlers.commands",
]
"""Cog module paths the bot loads in setup_hook."""


__all__ = ["HANDLER_COGS"]
