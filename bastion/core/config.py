"""
Bastion - Configuration Module
==============================

Process configuration from environment variables, plus the per-community
settings every detector reads.

DESIGN:
    Config is the single source of truth for process-wide settings and is
    loaded once from the environment (python-dotenv populates it in
    main.py). CommunityConfig holds the per-community thresholds; it is
    persisted as JSON in SQLite and read through CommunityConfigProvider,
    which caches it.

    Key patterns:
    - Singleton via get_config() for the process config
    - Validation happens once at load time, not on every access
    - Every detection constant has a default in core.constants and can be
      overridden per community

Author: Bastion Maintainers
"""

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from bastion.core import constants as C


# =============================================================================
# Errors
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration is missing or invalid."""


VALID_MEMBER_ACTIONS = ("ban", "kick", "timeout")


# =============================================================================
# Process Configuration
# =============================================================================

@dataclass
class Config:
    """
    Process configuration loaded from environment variables.

    Attributes:
        discord_token: Bot authentication token.
        database_path: SQLite file for snapshots, reports and settings.
        alert_webhook_url: Optional webhook mirroring every outbound alert.
        error_webhook_url: Optional webhook for error logs.
        raid_model_path: Optional JSON model file for the learned raid scorer.
    """

    discord_token: str
    database_path: str = "data/bastion.db"
    alert_webhook_url: Optional[str] = None
    error_webhook_url: Optional[str] = None
    raid_model_path: Optional[str] = None

    # Correlation engine
    correlation_window: int = C.CORRELATION_WINDOW
    correlation_interval: int = C.CORRELATION_RUN_INTERVAL
    correlation_alert_threshold: int = C.CORRELATION_ALERT_THRESHOLD
    correlation_publish_confidence: float = C.CORRELATION_PUBLISH_CONFIDENCE

    # Housekeeping
    tracker_cleanup_interval: int = C.TRACKER_CLEANUP_INTERVAL
    snapshot_retention: int = C.SNAPSHOT_RETENTION
    snapshot_interval: int = C.SNAPSHOT_CHECK_INTERVAL
    config_cache_ttl: int = C.COMMUNITY_CONFIG_TTL


def _parse_int_with_default(
    value: Optional[str],
    default: int,
    name: str,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """
    Parse optional integer with default and range validation.

    Args:
        value: String value from environment variable.
        default: Default value if not set or invalid.
        name: Variable name for warning messages.
        min_val: Minimum allowed value (inclusive).
        max_val: Maximum allowed value (inclusive).

    Returns:
        Parsed integer within valid range, or default.
    """
    if not value:
        return default
    from bastion.core.logger import logger
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Config {name}='{value}' invalid, using default {default}")
        return default
    if min_val is not None and parsed < min_val:
        logger.warning(f"Config {name}={parsed} below min {min_val}, using {min_val}")
        return min_val
    if max_val is not None and parsed > max_val:
        logger.warning(f"Config {name}={parsed} above max {max_val}, using {max_val}")
        return max_val
    return parsed


def _parse_float_with_default(value: Optional[str], default: float, name: str) -> float:
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        from bastion.core.logger import logger
        logger.warning(f"Config {name}='{value}' invalid, using default {default}")
        return default
    if not 0.0 <= parsed <= 1.0:
        from bastion.core.logger import logger
        logger.warning(f"Config {name}={parsed} outside 0..1, using default {default}")
        return default
    return parsed


def _validate_url(value: Optional[str], name: str) -> Optional[str]:
    """Return the URL if it looks like http(s), otherwise None."""
    if not value:
        return None
    if not value.startswith(("https://", "http://")):
        from bastion.core.logger import logger
        logger.warning(f"Config {name} invalid URL format, ignoring")
        return None
    return value


def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Raises:
        ConfigValidationError: If a required variable is missing.
    """
    discord_token = os.getenv("DISCORD_TOKEN")
    if not discord_token:
        raise ConfigValidationError("Missing required environment variables: DISCORD_TOKEN")

    return Config(
        discord_token=discord_token,
        database_path=os.getenv("BASTION_DB_PATH", "data/bastion.db"),
        alert_webhook_url=_validate_url(os.getenv("ALERT_WEBHOOK_URL"), "ALERT_WEBHOOK_URL"),
        error_webhook_url=_validate_url(os.getenv("ERROR_WEBHOOK_URL"), "ERROR_WEBHOOK_URL"),
        raid_model_path=os.getenv("RAID_MODEL_PATH") or None,
        correlation_window=_parse_int_with_default(
            os.getenv("CORRELATION_WINDOW"), C.CORRELATION_WINDOW, "CORRELATION_WINDOW", min_val=60,
        ),
        correlation_interval=_parse_int_with_default(
            os.getenv("CORRELATION_INTERVAL"), C.CORRELATION_RUN_INTERVAL, "CORRELATION_INTERVAL", min_val=10,
        ),
        correlation_alert_threshold=_parse_int_with_default(
            os.getenv("CORRELATION_ALERT_THRESHOLD"), C.CORRELATION_ALERT_THRESHOLD,
            "CORRELATION_ALERT_THRESHOLD", min_val=2,
        ),
        correlation_publish_confidence=_parse_float_with_default(
            os.getenv("CORRELATION_PUBLISH_CONFIDENCE"), C.CORRELATION_PUBLISH_CONFIDENCE,
            "CORRELATION_PUBLISH_CONFIDENCE",
        ),
        tracker_cleanup_interval=_parse_int_with_default(
            os.getenv("TRACKER_CLEANUP_INTERVAL"), C.TRACKER_CLEANUP_INTERVAL,
            "TRACKER_CLEANUP_INTERVAL", min_val=30,
        ),
        snapshot_retention=_parse_int_with_default(
            os.getenv("SNAPSHOT_RETENTION"), C.SNAPSHOT_RETENTION, "SNAPSHOT_RETENTION", min_val=1, max_val=500,
        ),
        snapshot_interval=_parse_int_with_default(
            os.getenv("SNAPSHOT_INTERVAL"), C.SNAPSHOT_CHECK_INTERVAL, "SNAPSHOT_INTERVAL", min_val=60,
        ),
        config_cache_ttl=_parse_int_with_default(
            os.getenv("CONFIG_CACHE_TTL"), C.COMMUNITY_CONFIG_TTL, "CONFIG_CACHE_TTL", min_val=1,
        ),
    )


# =============================================================================
# Global Config Instance
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance, loading if needed.

    Raises:
        ConfigValidationError: On first call if config is invalid.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def validate_and_log_config() -> Config:
    """Load the config (raising on invalid values) and log a summary."""
    from bastion.core.logger import logger

    config = get_config()

    optional_features = []
    if config.alert_webhook_url:
        optional_features.append("Alert Webhook")
    if config.error_webhook_url:
        optional_features.append("Error Webhook")
    if config.raid_model_path:
        optional_features.append("Learned Raid Scorer")

    logger.tree("Configuration Validated", [
        ("Required", "✅ All required variables set"),
        ("Optional Features", ", ".join(optional_features) if optional_features else "None"),
        ("Database", config.database_path),
        ("Correlation", f"≥{config.correlation_alert_threshold} communities / {config.correlation_window}s"),
        ("Snapshot Retention", str(config.snapshot_retention)),
    ], emoji="⚙️")
    return config


# =============================================================================
# Embed Colors
# =============================================================================

class EmbedColors:
    """Color palette for alert embeds."""

    RED = 0xDC3545      # Attacks in progress (nuke, raid)
    ORANGE = 0xFF9800   # Cross-community threats
    GREEN = 0x1F5E2E    # Recoveries, lockdown cleared
    BLURPLE = 0x5865F2  # Informational

    # Semantic aliases
    ERROR = RED
    WARNING = ORANGE
    SUCCESS = GREEN
    INFO = BLURPLE


# =============================================================================
# Per-Community Settings
# =============================================================================

@dataclass(frozen=True)
class ActionThreshold:
    """Accumulating limit: `count` actions of one type inside `window` seconds."""
    count: int
    window: float


@dataclass(frozen=True)
class RaidWeights:
    """Weights and cut-offs for the rule-based raid scorer."""
    join_burst_count: int = C.RAID_JOIN_THRESHOLD
    join_rate: float = C.RAID_WEIGHT_JOIN_RATE
    account_age: float = C.RAID_WEIGHT_ACCOUNT_AGE
    membership_age: float = C.RAID_WEIGHT_MEMBERSHIP_AGE
    avatar: float = C.RAID_WEIGHT_AVATAR
    name_pattern: float = C.RAID_WEIGHT_NAME_PATTERN
    new_account_days: float = C.RAID_NEW_ACCOUNT_DAYS
    new_member_hours: float = C.RAID_NEW_MEMBER_HOURS
    avatar_cutoff: float = C.RAID_AVATAR_SIMILARITY_CUTOFF
    name_pattern_cutoff: float = C.RAID_NAME_PATTERN_CUTOFF


def _default_action_thresholds() -> Dict[str, ActionThreshold]:
    return {
        action: ActionThreshold(count=count, window=float(window))
        for action, (count, window) in C.ACTION_THRESHOLDS.items()
    }


@dataclass(frozen=True)
class CommunityConfig:
    """
    Detection settings for one community.

    DESIGN:
        Frozen so a cached instance can be shared by every component
        without copies. Changes go through CommunityConfigProvider.update()
        which stores a new instance and invalidates the cache.
    """

    community_id: int
    owner_id: Optional[int] = None
    alert_channel_id: Optional[int] = None
    whitelist: FrozenSet[int] = frozenset()

    # Raid detection
    antiraid_enabled: bool = True
    raid_join_window: float = C.RAID_JOIN_WINDOW
    raid_min_sample: int = C.RAID_MIN_SAMPLE
    raid_confidence_threshold: float = C.RAID_CONFIDENCE_THRESHOLD
    raid_action: str = "kick"
    raid_lockdown: bool = True
    kick_joins_during_lockdown: bool = True
    raid_weights: RaidWeights = field(default_factory=RaidWeights)

    # Anti-nuke
    antinuke_enabled: bool = True
    instant_burst_threshold: int = C.INSTANT_BURST_THRESHOLD
    instant_window: float = C.INSTANT_BURST_WINDOW
    action_thresholds: Dict[str, ActionThreshold] = field(default_factory=_default_action_thresholds)
    nuke_action: str = "ban"

    # Token leaks
    token_scan_enabled: bool = True

    # Correlation
    correlation_alerts: bool = True

    def threshold_for(self, action_type: str) -> Optional[ActionThreshold]:
        return self.action_thresholds.get(action_type)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["whitelist"] = sorted(self.whitelist)
        data.pop("community_id")
        return data

    @classmethod
    def from_dict(cls, community_id: int, data: Dict[str, Any]) -> "CommunityConfig":
        """
        Build a config from stored JSON, ignoring unknown keys.

        Raises:
            ConfigValidationError: If a punishment action is not recognised.
        """
        known = {f for f in cls.__dataclass_fields__ if f != "community_id"}
        values: Dict[str, Any] = {k: v for k, v in data.items() if k in known}

        if "whitelist" in values:
            values["whitelist"] = frozenset(int(x) for x in values["whitelist"])
        if "raid_weights" in values:
            values["raid_weights"] = RaidWeights(**values["raid_weights"])
        if "action_thresholds" in values:
            merged = _default_action_thresholds()
            for action, limit in values["action_thresholds"].items():
                merged[action] = ActionThreshold(count=int(limit["count"]), window=float(limit["window"]))
            values["action_thresholds"] = merged

        for key in ("raid_action", "nuke_action"):
            if key in values and values[key] not in VALID_MEMBER_ACTIONS:
                raise ConfigValidationError(f"Invalid {key}: {values[key]}")

        return cls(community_id=community_id, **values)


__all__ = [
    "Config",
    "ConfigValidationError",
    "load_config",
    "get_config",
    "validate_and_log_config",
    "EmbedColors",
    "ActionThreshold",
    "RaidWeights",
    "CommunityConfig",
    "VALID_MEMBER_ACTIONS",
]
