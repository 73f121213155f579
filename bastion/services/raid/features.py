"""
Bastion - Raid Feature Extraction
=================================

Pure functions turning a join and its recent history into the feature
vector both scorers consume.

Join event metadata keys:
    username            Account name.
    account_created_at  Epoch seconds the account was created.
    joined_at           Epoch seconds the member joined (defaults to event time).
    avatar_hash         Avatar hash, None for the default avatar.

Author: Bastion Maintainers
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from bastion.core.constants import DEFAULT_AVATAR_SIMILARITY, SECONDS_PER_DAY, SECONDS_PER_HOUR
from bastion.core.models import TrackedEvent


UNKNOWN_ACCOUNT_AGE_DAYS = 3650.0
"""Used when the platform did not give an account creation time."""

_LONG_RUN = re.compile(r"[a-z]{10,}|[0-9]{5,}")
_BOT_STYLE = (
    re.compile(r"user\d+"),
    re.compile(r"bot\d+"),
    re.compile(r"account\d+"),
    re.compile(r"^[a-z]{1,3}\d{4,}$"),
    re.compile(r"^[a-z]+\d{3,}$"),
)
_VOWEL = re.compile(r"[aeiou]")
_REPEATED_CHAR = re.compile(r"(.)\1{3,}")


@dataclass(frozen=True)
class RaidFeatures:
    join_count: int
    join_rate: float
    account_age_days: float
    membership_age_hours: float
    avatar_similarity: float
    name_pattern: float
    time_window: float

    def as_vector(self) -> Tuple[float, ...]:
        """Feature order shared with learned model files."""
        return (
            self.join_rate,
            self.account_age_days,
            self.membership_age_hours,
            self.avatar_similarity,
            self.name_pattern,
            self.time_window,
        )


# =============================================================================
# Individual Features
# =============================================================================

def name_pattern_score(username: Optional[str]) -> float:
    """
    Suspicion score for a username, 0.0 to 1.0.

    Long letter or digit runs +0.3, bot-style names (user123, bot123,
    abc1234, word1234) +0.4, no vowels in a name longer than 5 +0.2, a
    character repeated four or more times +0.1.
    """
    if not username:
        return 0.0

    name = username.lower()
    score = 0.0

    if _LONG_RUN.search(name):
        score += 0.3
    if any(p.search(name) for p in _BOT_STYLE):
        score += 0.4
    if len(name) > 5 and not _VOWEL.search(name):
        score += 0.2
    if _REPEATED_CHAR.search(name):
        score += 0.1

    return min(1.0, round(score, 6))


def avatar_similarity(avatar_hash: Optional[str], others: Sequence[Optional[str]]) -> float:
    """
    How much this avatar looks like the other recent joiners'.

    A default avatar scores at least DEFAULT_AVATAR_SIMILARITY, more when most
    recent joiners also have one. A custom avatar scores the share of other
    joiners using the same hash.
    """
    if avatar_hash is None:
        if not others:
            return DEFAULT_AVATAR_SIMILARITY
        default_share = sum(1 for h in others if h is None) / len(others)
        return max(DEFAULT_AVATAR_SIMILARITY, default_share)

    if not others:
        return 0.0
    return sum(1 for h in others if h == avatar_hash) / len(others)


def account_age_days(created_at: Optional[float], now: float) -> float:
    if created_at is None:
        return UNKNOWN_ACCOUNT_AGE_DAYS
    return max(0.0, (now - created_at) / SECONDS_PER_DAY)


# =============================================================================
# Vector
# =============================================================================

def extract_features(
    event: TrackedEvent,
    recent: List[TrackedEvent],
    window: float,
    now: float,
) -> RaidFeatures:
    """
    Build the feature vector for one join.

    Args:
        event: The join being scored.
        recent: Joins inside the window, the candidate included.
        window: Window the join rate is measured over, in seconds.
        now: Current time.
    """
    meta = event.metadata
    others = [e.metadata.get("avatar_hash") for e in recent if e is not event]
    joined_at = meta.get("joined_at", event.timestamp)

    return RaidFeatures(
        join_count=len(recent),
        join_rate=len(recent) / window if window > 0 else 0.0,
        account_age_days=account_age_days(meta.get("account_created_at"), now),
        membership_age_hours=max(0.0, (now - joined_at) / SECONDS_PER_HOUR),
        avatar_similarity=avatar_similarity(meta.get("avatar_hash"), others),
        name_pattern=name_pattern_score(meta.get("username")),
        time_window=window,
    )


__all__ = [
    "RaidFeatures",
    "name_pattern_score",
    "avatar_similarity",
    "account_age_days",
    "extract_features",
]
