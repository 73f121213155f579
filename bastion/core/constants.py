"""
Bastion - Centralized Constants
===============================

Default values for every tunable threshold. Per-community overrides live in
CommunityConfig; these are the values a fresh community starts with.

Author: Bastion Maintainers
"""

# =============================================================================
# Time Constants (in seconds)
# =============================================================================

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# =============================================================================
# Scheduler Intervals (in seconds)
# =============================================================================

TRACKER_CLEANUP_INTERVAL = 10 * SECONDS_PER_MINUTE
CORRELATION_RUN_INTERVAL = SECONDS_PER_MINUTE
CORRELATION_CACHE_CLEANUP_INTERVAL = 5 * SECONDS_PER_MINUTE
THREAT_REPORT_PURGE_INTERVAL = SECONDS_PER_HOUR
SNAPSHOT_CHECK_INTERVAL = SECONDS_PER_HOUR
SCHEDULER_TICK = 1.0

# =============================================================================
# Cache
# =============================================================================

COMMUNITY_CONFIG_TTL = 300            # 5 minutes
COMMUNITY_CONFIG_CACHE_SIZE = 5000

# =============================================================================
# Sliding-Window Tracker
# =============================================================================

DEFAULT_TRACKER_WINDOW = 60           # Retention before any window is registered
MAX_EVENTS_PER_KEY = 1000

# =============================================================================
# Raid Detection
# =============================================================================

RAID_JOIN_WINDOW = 10                 # Short window for join rate
RAID_JOIN_THRESHOLD = 10              # Joins in window that count as a burst
RAID_MIN_SAMPLE = 3                   # Below this the rate is not trusted
RAID_CONFIDENCE_THRESHOLD = 0.7
RAID_NEW_ACCOUNT_DAYS = 7
RAID_NEW_MEMBER_HOURS = 1.0
RAID_AVATAR_SIMILARITY_CUTOFF = 0.7
RAID_NAME_PATTERN_CUTOFF = 0.5
DEFAULT_AVATAR_SIMILARITY = 0.8

RAID_WEIGHT_JOIN_RATE = 0.3
RAID_WEIGHT_ACCOUNT_AGE = 0.25
RAID_WEIGHT_MEMBERSHIP_AGE = 0.15
RAID_WEIGHT_AVATAR = 0.2
RAID_WEIGHT_NAME_PATTERN = 0.1

# =============================================================================
# Anti-Nuke
# =============================================================================

INSTANT_BURST_THRESHOLD = 2           # Structural creations/deletions by one actor
INSTANT_BURST_WINDOW = 10

# (count, window seconds) per action type
ACTION_THRESHOLDS = {
    "channel_delete": (3, 5),
    "role_delete": (2, 5),
    "member_ban": (3, 5),
    "permission_change": (3, 10),
    "member_kick": (3, 5),
    "channel_create": (4, 10),
    "role_create": (4, 10),
    "webhook_create": (3, 10),
    "bot_add": (2, 60),
}

TIMEOUT_DURATION = SECONDS_PER_DAY    # Timeout applied by "timeout" actions

# =============================================================================
# Threat Correlation
# =============================================================================

CORRELATION_WINDOW = 5 * SECONDS_PER_MINUTE
CORRELATION_ALERT_THRESHOLD = 3
CORRELATION_PUBLISH_CONFIDENCE = 0.7
CORRELATION_MIN_SEVERITY = 1
ACTOR_CONFIDENCE_BASE = 0.7
ACTOR_CONFIDENCE_STEP = 0.1
PATTERN_MIN_ACTORS = 3
PATTERN_CONFIDENCE_SCALE = 12
TIME_BURST_WINDOW = SECONDS_PER_MINUTE
TIME_BURST_MIN_REPORTS = 10
TIME_BURST_MIN_COMMUNITIES = 3
TIME_CONFIDENCE_SCALE = 14
THREAT_REPORT_RETENTION = SECONDS_PER_DAY

# =============================================================================
# Snapshots
# =============================================================================

SNAPSHOT_RETENTION = 24               # Automatic snapshots kept per community
SNAPSHOT_STALE_AFTER = SECONDS_PER_DAY
SNAPSHOT_LIST_LIMIT = 24


__all__ = [name for name in list(globals()) if name.isupper()]
