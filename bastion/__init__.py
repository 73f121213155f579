"""
Bastion - Guild Protection Package
==================================

Raid detection, anti-nuke monitoring, cross-community threat correlation
and structure snapshot recovery for Discord communities.

Package Structure:
- bot.py: discord.py bot class and service startup
- core/: Config, logging, models, database
- services/: Detection, correlation, recovery, scheduling
- handlers/: Discord gateway, executor, notifiers, admin commands
- utils/: Clock, cache, async helpers

Author: Bastion Maintainers
Version: v1.0.0
"""

__version__ = "1.0.0"
