"""
Bastion - Sliding-Window Tracker
================================

Bounded, per-community, per-signal event history with time-based eviction.

DESIGN:
    Each (community, signal) key owns a deque of TrackedEvents in arrival
    order. Counting walks the deque from the newest end and stops at the
    first event outside the window, so cost is proportional to the events
    inside it. cleanup() drops everything not newer than the largest window
    any caller has asked about; it is registered with the scheduler at
    startup (TrackerCleanupJob) and must never be skipped.

Author: Bastion Maintainers
"""

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from bastion.core.constants import DEFAULT_TRACKER_WINDOW, MAX_EVENTS_PER_KEY
from bastion.core.logger import logger
from bastion.core.models import TrackedEvent
from bastion.utils.clock import Clock, SYSTEM_CLOCK


Key = Tuple[int, str]


class SlidingWindowTracker:
    """In-memory sliding windows keyed by community and signal."""

    def __init__(
        self,
        clock: Clock = SYSTEM_CLOCK,
        window: float = DEFAULT_TRACKER_WINDOW,
        max_events_per_key: int = MAX_EVENTS_PER_KEY,
    ) -> None:
        self._clock = clock
        self._largest_window = float(window)
        self._max_events = max_events_per_key
        self._events: Dict[Key, Deque[TrackedEvent]] = {}

    @property
    def largest_window(self) -> float:
        return self._largest_window

    def register_window(self, window: float) -> None:
        """Make sure cleanup keeps at least `window` seconds of history."""
        if window > self._largest_window:
            self._largest_window = float(window)

    # =========================================================================
    # Record / Query
    # =========================================================================

    def record(self, community_id: int, signal: str, event: TrackedEvent) -> None:
        key = (community_id, signal)
        events = self._events.get(key)
        if events is None:
            events = deque(maxlen=self._max_events)
            self._events[key] = events
        events.append(event)

    def events_since(
        self,
        community_id: int,
        signal: str,
        window: float,
        actor_id: Optional[int] = None,
    ) -> List[TrackedEvent]:
        """
        Events strictly newer than now - window, oldest first.

        Args:
            community_id: Community to read.
            signal: Signal name (e.g. "join", "action:channel_delete").
            window: Window length in seconds.
            actor_id: Only count events by this actor when given.
        """
        self.register_window(window)

        events = self._events.get((community_id, signal))
        if not events:
            return []

        cutoff = self._clock.now() - window
        matched: List[TrackedEvent] = []
        for event in reversed(events):
            if event.timestamp <= cutoff:
                break
            if actor_id is None or event.actor_id == actor_id:
                matched.append(event)
        matched.reverse()
        return matched

    def count_since(
        self,
        community_id: int,
        signal: str,
        window: float,
        actor_id: Optional[int] = None,
    ) -> int:
        return len(self.events_since(community_id, signal, window, actor_id))

    # =========================================================================
    # Cleanup
    # =========================================================================

    def cleanup(self) -> int:
        """
        Evict events older than the largest window in use.

        Returns:
            Number of events evicted.
        """
        cutoff = self._clock.now() - self._largest_window
        evicted = 0

        for key in list(self._events):
            events = self._events[key]
            while events and events[0].timestamp <= cutoff:
                events.popleft()
                evicted += 1
            if not events:
                del self._events[key]

        if evicted:
            logger.debug("Tracker Cleanup", [
                ("Evicted", str(evicted)),
                ("Keys Remaining", str(len(self._events))),
                ("Window", f"{self._largest_window:.0f}s"),
            ])
        return evicted

    def clear_community(self, community_id: int) -> None:
        for key in [k for k in self._events if k[0] == community_id]:
            del self._events[key]

    def __len__(self) -> int:
        return sum(len(events) for events in self._events.values())


__all__ = ["SlidingWindowTracker"]
