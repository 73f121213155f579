"""
Bastion - Alert Notifiers
=========================

Delivers protection alerts to a community's alert channel and, when
configured, to an operator webhook. Token leak alerts also go to the
community owner by DM.

DESIGN:
    Both notifiers render the same embed dict from build_alert_embed(), so
    the channel message and the webhook copy always match. Neither retries;
    the AlertDispatcher logs and counts failures.

Author: Bastion Maintainers
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiohttp
import discord

from bastion.core.config import EmbedColors
from bastion.core.logger import logger, NY_TZ
from bastion.core.models import Alert

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider


ALERT_STYLES = {
    "nuke_detected": ("🚨 Nuke Detected", EmbedColors.ERROR),
    "raid_detected": ("🚨 Raid Detected", EmbedColors.ERROR),
    "threat_correlation": ("🕸️ Cross-Community Threat", EmbedColors.WARNING),
    "lockdown_cleared": ("🔓 Lockdown Cleared", EmbedColors.SUCCESS),
    "token_leak": ("🔑 Token Leak", EmbedColors.ERROR),
}

# Kinds that also go to the community owner by DM
OWNER_DM_KINDS = frozenset({"token_leak"})

FIELD_LABELS = {
    "actor_id": "Actor",
    "action_type": "Action",
    "trigger": "Trigger",
    "detail": "Detail",
    "lockdown_activated": "Lockdown",
    "actions": "Response",
    "confidence": "Confidence",
    "method": "Method",
    "join_count": "Joins",
    "kind": "Correlation",
    "threat_type": "Threat",
    "communities": "Communities",
    "report_count": "Reports",
    "cleared_by": "Cleared By",
    "channel_id": "Channel",
    "token_count": "Tokens",
    "own_token": "Bastion Token",
    "owner_id": "Owner",
}


def _format_value(key: str, value: Any) -> str:
    if value is None:
        return "None"
    if key in ("actor_id", "cleared_by", "owner_id"):
        return f"<@{value}> (`{value}`)"
    if key == "confidence":
        return f"`{value:.2f}`"
    if key == "communities":
        return f"`{len(value)}`"
    if key == "channel_id":
        return f"<#{value}>"
    if key == "own_token":
        return "Yes, regenerate it now" if value else "No"
    if key == "lockdown_activated":
        return "Activated" if value else "Already active"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) or "None"
    return f"`{value}`"


def build_alert_embed(alert: Alert) -> Dict[str, Any]:
    """Render an alert as a Discord embed dict."""
    title, color = ALERT_STYLES.get(alert.kind, (alert.kind.replace("_", " ").title(), EmbedColors.INFO))

    fields: List[Dict[str, Any]] = []
    for key, label in FIELD_LABELS.items():
        if key not in alert.payload:
            continue
        fields.append({
            "name": label,
            "value": _format_value(key, alert.payload[key]),
            "inline": key not in ("detail", "actions"),
        })

    return {
        "title": title,
        "color": color,
        "fields": fields,
        "footer": {"text": f"Community {alert.community_id}"},
        "timestamp": datetime.now(NY_TZ).isoformat(),
    }


# =============================================================================
# Alert Channel
# =============================================================================

class DiscordAlertNotifier:
    """Posts alerts to the alert channel set in each community's config."""

    def __init__(self, bot: discord.Client, config_provider: "CommunityConfigProvider") -> None:
        self.bot = bot
        self.config_provider = config_provider

    async def send(self, alert: Alert) -> None:
        config = self.config_provider.get_community_config(alert.community_id)
        embed = discord.Embed.from_dict(build_alert_embed(alert))

        if alert.kind in OWNER_DM_KINDS and config.owner_id:
            await self._dm_owner(config.owner_id, embed)

        if not config.alert_channel_id:
            logger.debug("Alert Not Posted", [
                ("Community", str(alert.community_id)),
                ("Kind", alert.kind),
                ("Reason", "No alert channel configured"),
            ])
            return

        channel = self.bot.get_channel(config.alert_channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(config.alert_channel_id)

        await channel.send(embed=embed)

    async def _dm_owner(self, owner_id: int, embed: discord.Embed) -> None:
        try:
            owner = self.bot.get_user(owner_id) or await self.bot.fetch_user(owner_id)
            await owner.send(embed=embed)
        except discord.HTTPException as e:
            logger.warning("Owner DM Failed", [
                ("Owner", str(owner_id)),
                ("Error", str(e)[:100]),
            ])


# =============================================================================
# Operator Webhook
# =============================================================================

class WebhookNotifier:
    """Mirrors every alert to a Discord webhook."""

    def __init__(self, webhook_url: str, bot_name: str = "Bastion") -> None:
        self.webhook_url = webhook_url
        self.bot_name = bot_name
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        return self._session

    async def send(self, alert: Alert) -> None:
        session = await self._get_session()
        payload = {
            "username": self.bot_name,
            "embeds": [build_alert_embed(alert)],
        }
        async with session.post(self.webhook_url, json=payload) as response:
            response.raise_for_status()

    async def close(self) -> None:
        """Close HTTP session on shutdown."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


__all__ = ["DiscordAlertNotifier", "WebhookNotifier", "build_alert_embed"]
