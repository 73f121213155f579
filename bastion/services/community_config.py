"""
Bastion - Community Config Provider
===================================

Cached read path for CommunityConfig and the only write path for it.

DESIGN:
    Detectors call get_community_config() on every event, so reads are
    served from a TTLCache and only fall through to SQLite on a miss.
    Writes go to the database first and then replace the cached entry, so
    a change is visible to the next event without waiting for the TTL.

Author: Bastion Maintainers
"""

from dataclasses import asdict
from typing import Any, TYPE_CHECKING

from bastion.core.config import CommunityConfig, ConfigValidationError
from bastion.core.constants import COMMUNITY_CONFIG_CACHE_SIZE, COMMUNITY_CONFIG_TTL
from bastion.core.logger import logger
from bastion.utils.cache import TTLCache
from bastion.utils.clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:
    from bastion.core.database import DatabaseManager


class CommunityConfigProvider:
    """Per-community settings, cached."""

    def __init__(
        self,
        db: "DatabaseManager",
        ttl: float = COMMUNITY_CONFIG_TTL,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.db = db
        self._cache: TTLCache[int, CommunityConfig] = TTLCache(
            ttl=ttl, max_size=COMMUNITY_CONFIG_CACHE_SIZE, clock=clock,
        )

    # =========================================================================
    # Read
    # =========================================================================

    def get_community_config(self, community_id: int) -> CommunityConfig:
        """
        Settings for a community; defaults when nothing is stored.

        Stored settings that fail validation are logged and replaced by
        defaults rather than disabling detection.
        """
        cached = self._cache.get(community_id)
        if cached is not None:
            return cached

        stored = self.db.get_community_settings(community_id)
        if stored is None:
            config = CommunityConfig(community_id=community_id)
        else:
            try:
                config = CommunityConfig.from_dict(community_id, stored)
            except (ConfigValidationError, TypeError, ValueError, KeyError) as e:
                logger.error("Community Config Invalid", [
                    ("Community", str(community_id)),
                    ("Error", str(e)[:100]),
                    ("Type", type(e).__name__),
                ])
                config = CommunityConfig(community_id=community_id)

        self._cache.set(community_id, config)
        return config

    # =========================================================================
    # Write
    # =========================================================================

    def update(self, community_id: int, **changes: Any) -> CommunityConfig:
        """
        Apply changes to a community's settings and persist them.

        Raises:
            ConfigValidationError: If the change produces invalid settings.
        """
        current = self.get_community_config(community_id)
        updated = CommunityConfig.from_dict(community_id, {**current.to_dict(), **_serializable(changes)})

        if not self.db.save_community_settings(community_id, updated.to_dict()):
            raise ConfigValidationError(f"Could not save settings for community {community_id}")

        self._cache.set(community_id, updated)

        logger.tree("Community Config Updated", [
            ("Community", str(community_id)),
            ("Changed", ", ".join(sorted(changes)) or "None"),
        ], emoji="⚙️")
        return updated

    def set_owner(self, community_id: int, owner_id: int) -> CommunityConfig:
        if self.get_community_config(community_id).owner_id == owner_id:
            return self.get_community_config(community_id)
        return self.update(community_id, owner_id=owner_id)

    def add_to_whitelist(self, community_id: int, actor_id: int) -> CommunityConfig:
        current = self.get_community_config(community_id)
        return self.update(community_id, whitelist=sorted(current.whitelist | {actor_id}))

    def remove_from_whitelist(self, community_id: int, actor_id: int) -> CommunityConfig:
        current = self.get_community_config(community_id)
        return self.update(community_id, whitelist=sorted(current.whitelist - {actor_id}))

    def invalidate(self, community_id: int) -> None:
        self._cache.delete(community_id)

    def cleanup_cache(self) -> int:
        return self._cache.cleanup_expired()


def _serializable(changes: dict) -> dict:
    """Turn dataclass-valued changes into the dict form from_dict expects."""
    result = {}
    for key, value in changes.items():
        if key == "raid_weights" and not isinstance(value, dict):
            value = asdict(value)
        elif key == "action_thresholds":
            value = {
                action: limit if isinstance(limit, dict) else {"count": limit.count, "window": limit.window}
                for action, limit in value.items()
            }
        elif isinstance(value, (set, frozenset)):
            value = sorted(value)
        result[key] = value
    return result


__all__ = ["CommunityConfigProvider"]
