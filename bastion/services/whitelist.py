"""
Bastion - Whitelist / Exemption Guard
=====================================

Shared exemption policy for the action monitor and the raid detector.

DESIGN:
    Three kinds of exemption, checked in this order:
    - SYSTEM: the bot's own account. Its changes are restores and
      reversals, so every detection path ignores it.
    - OWNER: the community owner.
    - WHITELIST: accounts an admin marked as trusted.
    Owner and whitelist skip the accumulating counters only. The burst
    path still applies to them because a leaked owner token looks exactly
    like an owner nuking the server.

Author: Bastion Maintainers
"""

from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider


class Exemption(str, Enum):
    SYSTEM = "system"
    OWNER = "owner"
    WHITELIST = "whitelist"


class ExemptionGuard:
    """Answers "is this actor exempt in this community, and why"."""

    def __init__(
        self,
        config_provider: "CommunityConfigProvider",
        system_actor_id: Optional[int] = None,
    ) -> None:
        self.config_provider = config_provider
        self.system_actor_id = system_actor_id

    def set_system_actor(self, actor_id: int) -> None:
        """Called once the gateway knows the bot's own user id."""
        self.system_actor_id = actor_id

    def exemption_for(self, community_id: int, actor_id: Optional[int]) -> Optional[Exemption]:
        if actor_id is None:
            return None
        if self.system_actor_id is not None and actor_id == self.system_actor_id:
            return Exemption.SYSTEM

        config = self.config_provider.get_community_config(community_id)
        if config.owner_id is not None and actor_id == config.owner_id:
            return Exemption.OWNER
        if actor_id in config.whitelist:
            return Exemption.WHITELIST
        return None

    def is_exempt(self, community_id: int, actor_id: Optional[int]) -> bool:
        return self.exemption_for(community_id, actor_id) is not None

    def is_whitelisted(self, community_id: int, actor_id: Optional[int]) -> bool:
        return self.exemption_for(community_id, actor_id) == Exemption.WHITELIST


__all__ = ["Exemption", "ExemptionGuard"]
