"""
Bastion - Database Tests
========================

Tests for the database layer to ensure data integrity.
"""

import sqlite3

import pytest

from bastion.core.database.snapshots import INSERT_SNAPSHOT, _snapshot_params
from bastion.core.models import (
    ChannelState,
    Correlation,
    CorrelationKind,
    LockdownState,
    OverwriteState,
    RoleState,
    Snapshot,
    ThreatReport,
)


def _snapshot(community_id=1, created_at=1000.0, manual=False) -> Snapshot:
    return Snapshot(
        community_id=community_id,
        created_at=created_at,
        reason="test",
        channels=(ChannelState(10, "general", "text", None, 0),),
        roles=(RoleState(20, "Mod", 8, 1, 0xFF0000),),
        overwrites=(OverwriteState(10, 20, "role", 1024, 0),),
        manual=manual,
    )


class TestCommunitySettings:
    """Tests for per-community settings storage."""

    def test_missing_settings(self, test_db):
        assert test_db.get_community_settings(1) is None

    def test_save_and_replace(self, test_db):
        assert test_db.save_community_settings(1, {"raid_action": "ban"}) is True
        test_db.save_community_settings(1, {"raid_action": "kick"})

        assert test_db.get_community_settings(1) == {"raid_action": "kick"}
        assert test_db.list_configured_communities() == [1]


class TestLockdownState:
    """Tests for persisted lockdowns."""

    def test_start_and_end(self, test_db):
        state = LockdownState(1, True, 42, "instant_burst", 1000.0)
        test_db.start_lockdown(state)

        stored = test_db.get_lockdown_state(1)
        assert stored.triggered_by == 42
        assert stored.reason == "instant_burst"
        assert [s.community_id for s in test_db.get_active_lockdowns()] == [1]

        test_db.end_lockdown(1)
        assert test_db.get_lockdown_state(1) is None


class TestSnapshots:
    """Tests for snapshot storage and retention."""

    def test_round_trip(self, test_db):
        saved = test_db.save_snapshot(_snapshot())
        loaded = test_db.get_snapshot(saved.id)

        assert loaded == saved
        assert loaded.roles[0].name == "Mod"

    def test_latest_time(self, test_db):
        assert test_db.get_latest_snapshot_time(1) is None
        test_db.save_snapshot(_snapshot(created_at=1000.0))
        test_db.save_snapshot(_snapshot(created_at=2000.0))
        assert test_db.get_latest_snapshot_time(1) == 2000.0

    def test_purge_spares_manual(self, test_db):
        test_db.save_snapshot(_snapshot(created_at=1.0, manual=True))
        for i in range(5):
            test_db.save_snapshot(_snapshot(created_at=10.0 + i))

        assert test_db.purge_automatic_snapshots(1, keep=2) == 3

        remaining = test_db.list_snapshots(1)
        assert [s.created_at for s in remaining] == [14.0, 13.0, 1.0]

    def test_save_with_retention(self, test_db):
        test_db.save_snapshot(_snapshot(created_at=1.0, manual=True))
        for i in range(3):
            test_db.save_snapshot(_snapshot(created_at=10.0 + i))

        saved, purged = test_db.save_snapshot_with_retention(_snapshot(created_at=20.0), keep=2)

        assert saved.id is not None
        assert purged == 2
        remaining = test_db.list_snapshots(1)
        assert [s.created_at for s in remaining] == [20.0, 12.0, 1.0]
        assert test_db.get_snapshot(saved.id) == saved

    def test_transaction_rolls_back_on_error(self, test_db):
        snapshot = _snapshot(created_at=20.0)

        with pytest.raises(sqlite3.Error):
            with test_db.transaction() as tx:
                tx.execute(INSERT_SNAPSHOT, _snapshot_params(snapshot))
                tx.execute("DELETE FROM no_such_table")

        assert test_db.list_snapshots(1) == []
        # The lock is released, so plain writes still go through
        assert test_db.save_snapshot(snapshot) is not None

    def test_purge_is_per_community(self, test_db):
        for i in range(3):
            test_db.save_snapshot(_snapshot(community_id=1, created_at=float(i)))
            test_db.save_snapshot(_snapshot(community_id=2, created_at=float(i)))

        test_db.purge_automatic_snapshots(1, keep=1)
        assert len(test_db.list_snapshots(2)) == 3

    def test_stats(self, test_db):
        test_db.save_snapshot(_snapshot(created_at=10.0, manual=True))
        test_db.save_snapshot(_snapshot(created_at=100.0))
        stats = test_db.get_snapshot_stats(since=50.0)
        assert stats == {"total": 2, "communities": 1, "recent": 1, "manual": 1}


class TestThreats:
    """Tests for threat reports and correlations."""

    def test_reports_since(self, test_db):
        for ts in (10.0, 20.0, 30.0):
            test_db.save_threat_report(ThreatReport(1, 5, "member_ban", 2, {"trigger": None}, ts))

        reports = test_db.get_threat_reports_since(15.0)
        assert [r.timestamp for r in reports] == [20.0, 30.0]
        assert reports[0].metadata == {"trigger": None}

    def test_purge_reports(self, test_db):
        test_db.save_threat_report(ThreatReport(1, None, "raid", 3, {}, 10.0))
        test_db.save_threat_report(ThreatReport(1, None, "raid", 3, {}, 100.0))
        assert test_db.purge_threat_reports(50.0) == 1

    def test_correlation_round_trip(self, test_db):
        correlation = Correlation(
            kind=CorrelationKind.PATTERN,
            threat_type="channel_create",
            affected_communities=frozenset({3, 1, 2}),
            confidence=0.75,
            detected_at=100.0,
            signature='{"name":"nuked"}',
            report_count=3,
        )
        row_id = test_db.save_correlation(correlation)

        stored = test_db.get_recent_correlations()[0]
        assert stored.id == row_id
        assert stored.affected_communities == frozenset({1, 2, 3})
        assert stored.signature == '{"name":"nuked"}'
        assert stored.actor_id is None
