#!/usr/bin/env python3
"""
Bastion - Entry Point
=====================

Loads the environment, validates configuration and runs the bot.

Author: Bastion Maintainers
"""

import asyncio
import sys

from dotenv import load_dotenv

from bastion.core.config import ConfigValidationError, validate_and_log_config
from bastion.core.logger import logger


async def main() -> None:
    """
    Main entry point for Bastion.

    Raises:
        SystemExit: If configuration is invalid or the bot fails to start.
    """
    load_dotenv()

    logger.tree("BASTION STARTING", [
        ("Protection", "Anti-raid, anti-nuke, correlation, recovery"),
    ], emoji="🛡️")

    try:
        config = validate_and_log_config()
    except ConfigValidationError as e:
        logger.error("Invalid Configuration", [("Error", str(e))])
        sys.exit(1)

    if config.error_webhook_url:
        logger.set_webhook(config.error_webhook_url)

    from bastion.bot import BastionBot

    bot = BastionBot()
    try:
        async with bot:
            await bot.start(config.discord_token)
    except Exception as e:
        logger.critical("Bot Crashed")
        logger.error("Bot Crash Details", [
            ("Error", str(e)[:200]),
            ("Type", type(e).__name__),
        ])
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("🛑 Bot stopped by user (Ctrl+C)")
