"""
Bastion - Anti-Nuke Constants
=============================

Attack signatures, severities and the permissions that make a role
change count as escalation.

Author: Bastion Maintainers
"""

import re

from bastion.core.models import EventType


# Names that only show up when someone is defacing a server
ATTACK_NAME_PATTERNS = (
    ("nuked", re.compile(r"\bnuked\b", re.IGNORECASE)),
    # "raided" or "raid by", never a bare "raid" (raid-logs, raid-reports)
    ("raid", re.compile(r"\braided\b|\braid\s+by\b", re.IGNORECASE)),
    ("hacked", re.compile(r"\bhacked\b", re.IGNORECASE)),
    ("symbol_spam", re.compile(r"^[^a-zA-Z0-9\s_-]{3,}$")),
)

# Events whose target carries a name worth checking against the patterns
NAMED_TARGET_EVENTS = frozenset({
    EventType.CHANNEL_CREATE,
    EventType.CHANNEL_UPDATE,
    EventType.ROLE_CREATE,
    EventType.WEBHOOK_CREATE,
})

# Role permission grants that count as a permission_change event
DANGEROUS_PERMISSIONS = frozenset({
    "administrator",
    "ban_members",
    "kick_members",
    "manage_guild",
    "manage_channels",
    "manage_roles",
    "manage_webhooks",
    "mention_everyone",
})

# What a DELETE/KICK reversal removes, per creation event
REVERSAL_TARGETS = {
    EventType.CHANNEL_CREATE: "channel",
    EventType.ROLE_CREATE: "role",
    EventType.WEBHOOK_CREATE: "webhook",
    EventType.BOT_ADD: "member",
}

# ThreatReport severities
SEVERITY_NONE = 0
SEVERITY_REVERSED = 2
SEVERITY_THRESHOLD = 2
SEVERITY_INSTANT = 3


__all__ = [
    "ATTACK_NAME_PATTERNS",
    "NAMED_TARGET_EVENTS",
    "DANGEROUS_PERMISSIONS",
    "REVERSAL_TARGETS",
    "SEVERITY_NONE",
    "SEVERITY_REVERSED",
    "SEVERITY_THRESHOLD",
    "SEVERITY_INSTANT",
]
