"""
Bastion - Sliding-Window Tracker Tests
======================================

Window counting, actor filtering and eviction.
"""

from bastion.core.models import TrackedEvent
from bastion.services.tracker import SlidingWindowTracker


def _event(ts: float, actor_id: int = 1) -> TrackedEvent:
    return TrackedEvent(actor_id=actor_id, type="channel_delete", target_id=None, metadata={}, timestamp=ts)


class TestCounting:
    """Tests for events_since / count_since."""

    def test_counts_events_inside_window(self, tracker, clock):
        now = clock.now()
        for offset in (9, 5, 1):
            tracker.record(1, "sig", _event(now - offset))

        assert tracker.count_since(1, "sig", 10) == 3
        assert tracker.count_since(1, "sig", 6) == 2

    def test_event_exactly_at_window_edge_is_excluded(self, tracker, clock):
        tracker.record(1, "sig", _event(clock.now() - 10))
        assert tracker.count_since(1, "sig", 10) == 0

    def test_filters_by_actor(self, tracker, clock):
        now = clock.now()
        tracker.record(1, "sig", _event(now, actor_id=1))
        tracker.record(1, "sig", _event(now, actor_id=2))
        tracker.record(1, "sig", _event(now, actor_id=1))

        assert tracker.count_since(1, "sig", 10, actor_id=1) == 2
        assert tracker.count_since(1, "sig", 10, actor_id=2) == 1

    def test_communities_and_signals_are_isolated(self, tracker, clock):
        tracker.record(1, "a", _event(clock.now()))
        assert tracker.count_since(2, "a", 10) == 0
        assert tracker.count_since(1, "b", 10) == 0

    def test_events_returned_oldest_first(self, tracker, clock):
        now = clock.now()
        tracker.record(1, "sig", _event(now - 3))
        tracker.record(1, "sig", _event(now - 1))

        events = tracker.events_since(1, "sig", 10)
        assert [e.timestamp for e in events] == [now - 3, now - 1]


class TestCleanup:
    """Tests for eviction."""

    def test_cleanup_evicts_events_older_than_largest_window(self, tracker, clock):
        tracker.record(1, "sig", _event(clock.now()))
        tracker.count_since(1, "sig", 120)

        clock.advance(61)
        assert tracker.cleanup() == 0

        clock.advance(60)
        assert tracker.cleanup() == 1
        assert len(tracker) == 0

    def test_register_window_only_grows(self, tracker):
        tracker.register_window(300)
        tracker.register_window(10)
        assert tracker.largest_window == 300

    def test_per_key_cap(self, clock):
        tracker = SlidingWindowTracker(clock=clock, max_events_per_key=5)
        for _ in range(10):
            tracker.record(1, "sig", _event(clock.now()))
        assert tracker.count_since(1, "sig", 60) == 5

    def test_clear_community(self, tracker, clock):
        tracker.record(1, "a", _event(clock.now()))
        tracker.record(2, "a", _event(clock.now()))
        tracker.clear_community(1)
        assert tracker.count_since(1, "a", 60) == 0
        assert tracker.count_since(2, "a", 60) == 1

    def test_cleanup_keeps_newer_and_is_idempotent(self, tracker, clock):
        now = clock.now()
        tracker.record(1, "sig", _event(now - 120))
        tracker.record(1, "sig", _event(now - 30))

        assert tracker.cleanup() == 1
        assert tracker.cleanup() == 0
        assert tracker.count_since(1, "sig", 60) == 1
