"""
Bastion - Token Leak Detector
=============================

Scans message content for Discord bot tokens so a pasted token cannot be
used to take a community over.

DESIGN:
    A token is three base64url segments joined by dots: the encoded bot
    id, a timestamp and an HMAC. Anything shaped like that is treated as
    a leak. The message is deleted, the community owner is alerted and a
    ThreatReport goes to the correlation engine, so the same account
    pasting tokens in several communities correlates by actor.

    Our own token showing up is logged as critical and flagged in the
    alert. The process keeps running.

    Nobody is exempt, the owner included.

Author: Bastion Maintainers
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from bastion.core.logger import logger
from bastion.core.models import ActionKind, ActionRequest, Alert, InboundEvent, ThreatReport

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider


TOKEN_PATTERN = re.compile(
    r"(?<![A-Za-z0-9_-])"
    r"[MNO][A-Za-z0-9_-]{23,27}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,38}"
    r"(?![A-Za-z0-9_-])"
)
"""Bot token shape: base64 id, 6-char timestamp, 27-38 char HMAC."""

TOKEN_LEAK_THREAT = "token_leak"
SEVERITY_TOKEN_LEAK = 3


def find_tokens(content: Optional[str]) -> List[str]:
    if not content:
        return []
    return TOKEN_PATTERN.findall(content)


def mask_token(token: str) -> str:
    """First segment only; the rest of a token never reaches a log."""
    return token.split(".", 1)[0][:8] + ".***"


@dataclass(frozen=True)
class TokenLeakDecision:
    community_id: int
    author_id: Optional[int]
    message_id: Optional[int]
    token_count: int = 0
    own_token: bool = False
    actions: Tuple[ActionRequest, ...] = ()
    alerts: Tuple[Alert, ...] = ()
    report: Optional[ThreatReport] = None

    @property
    def leaked(self) -> bool:
        return self.token_count > 0


class TokenLeakDetector:
    """Message scanner for leaked bot tokens."""

    def __init__(
        self,
        config_provider: "CommunityConfigProvider",
        own_token: Optional[str] = None,
    ) -> None:
        self.config_provider = config_provider
        self._own_token = own_token or None
        self._stats: Dict[str, int] = {"scanned": 0, "leaks": 0, "own_token_leaks": 0}

    def scan(self, event: InboundEvent) -> TokenLeakDecision:
        """
        Check one message.

        The event carries the message id as target_id, and `channel_id`
        and `content` in its metadata.
        """
        community_id = event.community_id
        message_id = event.target_id
        decision = TokenLeakDecision(community_id, event.actor_id, message_id)

        config = self.config_provider.get_community_config(community_id)
        if not config.token_scan_enabled:
            return decision

        self._stats["scanned"] += 1
        tokens = find_tokens(event.metadata.get("content"))
        if not tokens:
            return decision

        own_token = self._own_token is not None and self._own_token in tokens
        channel_id = event.metadata.get("channel_id")
        self._stats["leaks"] += 1

        if own_token:
            self._stats["own_token_leaks"] += 1
            logger.critical(f"Bastion's own token leaked in community {community_id}")

        logger.tree("🔑 TOKEN LEAK DETECTED", [
            ("Community", str(community_id)),
            ("Author", str(event.actor_id)),
            ("Channel", str(channel_id)),
            ("Tokens", ", ".join(mask_token(t) for t in tokens)),
            ("Own Token", "Yes" if own_token else "No"),
        ], emoji="🔑")

        actions: Tuple[ActionRequest, ...] = ()
        if message_id is not None and channel_id is not None:
            actions = (ActionRequest(
                community_id=community_id,
                target_id=message_id,
                action=ActionKind.DELETE,
                reason="Token leak: message removed",
                target_type="message",
                channel_id=channel_id,
            ),)

        alert = Alert(
            community_id=community_id,
            kind="token_leak",
            payload={
                "actor_id": event.actor_id,
                "channel_id": channel_id,
                "token_count": len(tokens),
                "own_token": own_token,
                "owner_id": config.owner_id,
                "actions": [a.action.value for a in actions],
            },
        )

        report = ThreatReport(
            community_id=community_id,
            actor_id=event.actor_id,
            type=TOKEN_LEAK_THREAT,
            severity=SEVERITY_TOKEN_LEAK,
            metadata={"token_count": len(tokens), "own_token": own_token},
            timestamp=event.timestamp,
        )

        return TokenLeakDecision(
            community_id,
            event.actor_id,
            message_id,
            token_count=len(tokens),
            own_token=own_token,
            actions=actions,
            alerts=(alert,),
            report=report,
        )

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


__all__ = [
    "TokenLeakDetector",
    "TokenLeakDecision",
    "TOKEN_PATTERN",
    "TOKEN_LEAK_THREAT",
    "find_tokens",
    "mask_token",
]
