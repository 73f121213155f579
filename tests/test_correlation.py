"""
Bastion - Threat Correlation Tests
==================================

Correlators, the fast path, publication gates and de-duplication.
"""

import asyncio

import pytest

from bastion.core.models import CorrelationKind, ThreatReport
from bastion.services.correlation import CorrelationSettings, ThreatCorrelationEngine, analyze, metadata_signature
from bastion.services.correlation.analysis import (
    actor_confidence,
    correlate_actors,
    correlate_patterns,
    correlate_time,
)

ACTOR = 424242


def _report(community_id, actor_id=ACTOR, type="channel_delete", severity=3, metadata=None, timestamp=0.0):
    return ThreatReport(
        community_id=community_id,
        actor_id=actor_id,
        type=type,
        severity=severity,
        metadata=metadata or {},
        timestamp=timestamp,
    )


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def engine(test_db, clock, alerts):
    return ThreatCorrelationEngine(test_db, alert_sink=alerts.append, clock=clock)


# =============================================================================
# Pure Analysis
# =============================================================================

class TestMetadataSignature:

    def test_ids_are_ignored(self):
        a = metadata_signature({"name": "nuked", "channel_id": 1, "id": 5, "role_ids": [1]})
        b = metadata_signature({"name": "nuked", "channel_id": 2, "id": 9, "role_ids": [3]})
        assert a == b

    def test_key_order_is_irrelevant(self):
        assert metadata_signature({"a": 1, "b": 2}) == metadata_signature({"b": 2, "a": 1})

    def test_different_values_differ(self):
        assert metadata_signature({"name": "a"}) != metadata_signature({"name": "b"})


class TestCorrelators:

    def test_actor_at_threshold(self):
        settings = CorrelationSettings()
        reports = [_report(cid) for cid in (1, 2, 3)]

        results = correlate_actors(reports, settings, now=100.0)

        assert len(results) == 1
        assert results[0].affected_communities == frozenset({1, 2, 3})
        assert results[0].confidence == pytest.approx(0.7)

    def test_actor_below_threshold(self):
        reports = [_report(cid) for cid in (1, 2)] + [_report(2)]
        assert correlate_actors(reports, CorrelationSettings(), now=100.0) == []

    def test_actor_confidence_grows(self):
        settings = CorrelationSettings()
        assert actor_confidence(5, settings) == pytest.approx(0.9)
        assert actor_confidence(50, settings) == 1.0

    def test_actor_groups_by_type(self):
        reports = [
            _report(1, type="channel_delete"),
            _report(2, type="channel_delete"),
            _report(3, type="role_delete"),
        ]
        assert correlate_actors(reports, CorrelationSettings(), now=0.0) == []

    def test_pattern_needs_distinct_actors(self):
        settings = CorrelationSettings()
        reports = [
            _report(cid, actor_id=100 + cid, metadata={"name": "nuked", "channel_id": cid})
            for cid in (1, 2, 3)
        ]

        results = correlate_patterns(reports, settings, now=0.0)

        assert len(results) == 1
        assert results[0].kind == CorrelationKind.PATTERN
        assert results[0].confidence == pytest.approx(0.75)

        same_actor = [_report(cid, metadata={"name": "nuked"}) for cid in (1, 2, 3)]
        assert correlate_patterns(same_actor, settings, now=0.0) == []

    def test_time_burst(self):
        reports = [
            _report(cid % 3, actor_id=None, metadata={"n": i}, timestamp=float(i))
            for i, cid in enumerate(range(10))
        ]

        results = correlate_time(reports, CorrelationSettings(), now=100.0)

        assert len(results) == 1
        assert results[0].report_count == 10
        assert results[0].affected_communities == frozenset({0, 1, 2})

    def test_time_burst_spread_too_wide(self):
        reports = [_report(i % 3, actor_id=None, timestamp=i * 10.0) for i in range(10)]
        assert correlate_time(reports, CorrelationSettings(), now=100.0) == []

    def test_time_burst_too_few_communities(self):
        reports = [_report(i % 2, actor_id=None, timestamp=float(i)) for i in range(12)]
        assert correlate_time(reports, CorrelationSettings(), now=100.0) == []

    def test_analyze_combines_kinds(self):
        reports = [_report(cid) for cid in (1, 2, 3)]
        kinds = {c.kind for c in analyze(reports, CorrelationSettings(), now=0.0)}
        assert CorrelationKind.ACTOR in kinds


# =============================================================================
# Engine Fast Path
# =============================================================================

class TestFastPath:

    def test_threshold_minus_one_publishes_nothing(self, engine, clock, alerts):
        for cid in (1, 2):
            assert engine.report_threat(_report(cid, timestamp=clock.now())) is None
        assert alerts == []

    def test_exactly_threshold_publishes_once(self, engine, clock, alerts):
        results = [engine.report_threat(_report(cid, timestamp=clock.now())) for cid in (1, 2, 3)]

        published = [r for r in results if r is not None]
        assert len(published) == 1
        assert published[0].affected_communities == frozenset({1, 2, 3})
        assert sorted(a.community_id for a in alerts) == [1, 2, 3]
        assert all(a.kind == "threat_correlation" for a in alerts)

        # Another report from a covered community is not news
        assert engine.report_threat(_report(2, timestamp=clock.now())) is None
        assert len(engine.get_recent_correlations()) == 1

    def test_spread_to_new_community_republishes(self, engine, clock):
        for cid in (1, 2, 3):
            engine.report_threat(_report(cid, timestamp=clock.now()))
        again = engine.report_threat(_report(4, timestamp=clock.now()))

        assert again is not None
        assert again.affected_communities == frozenset({1, 2, 3, 4})
        assert again.confidence == pytest.approx(0.8)

    def test_reports_outside_window_do_not_count(self, engine, clock):
        engine.report_threat(_report(1, timestamp=clock.now()))
        engine.report_threat(_report(2, timestamp=clock.now()))
        clock.advance(301)
        assert engine.report_threat(_report(3, timestamp=clock.now())) is None

    def test_low_severity_is_ignored(self, engine, clock, test_db):
        for cid in (1, 2, 3):
            assert engine.report_threat(_report(cid, severity=0, timestamp=clock.now())) is None
        assert test_db.get_threat_reports_since(0) == []
        assert engine.get_stats()["reports_below_severity"] == 3

    def test_reports_without_actor_are_stored_only(self, engine, clock, test_db):
        for cid in (1, 2, 3):
            assert engine.report_threat(_report(cid, actor_id=None, timestamp=clock.now())) is None
        assert len(test_db.get_threat_reports_since(0)) == 3

    def test_failing_alert_sink_does_not_block(self, test_db, clock):
        def broken(alert):
            raise RuntimeError("sink down")

        engine = ThreatCorrelationEngine(test_db, alert_sink=broken, clock=clock)
        results = [engine.report_threat(_report(cid, timestamp=clock.now())) for cid in (1, 2, 3)]
        assert results[-1] is not None


# =============================================================================
# Engine Periodic Run
# =============================================================================

class TestPeriodicRun:

    @pytest.mark.asyncio
    async def test_run_publishes_actor_correlation_once(self, engine, test_db, clock):
        for cid in (1, 2, 3):
            test_db.save_threat_report(_report(cid, timestamp=clock.now() - 10))

        first = await engine.run_analysis()
        second = await engine.run_analysis()

        actor = [c for c in first if c.kind == CorrelationKind.ACTOR]
        assert len(actor) == 1
        assert actor[0].id is not None
        assert second == []

    @pytest.mark.asyncio
    async def test_run_after_fast_path_is_deduped(self, engine, clock):
        for cid in (1, 2, 3):
            # Off the loop thread, report_threat persists inline
            await asyncio.to_thread(engine.report_threat, _report(cid, timestamp=clock.now()))

        published = await engine.run_analysis()
        assert [c for c in published if c.kind == CorrelationKind.ACTOR] == []

    @pytest.mark.asyncio
    async def test_run_ignores_reports_outside_window(self, engine, test_db, clock):
        for cid in (1, 2, 3):
            test_db.save_threat_report(_report(cid, timestamp=clock.now() - 400))
        assert await engine.run_analysis() == []

    @pytest.mark.asyncio
    async def test_time_correlation_published(self, engine, test_db, clock, alerts):
        for i in range(12):
            test_db.save_threat_report(
                _report(i % 3, actor_id=None, type="raid", metadata={"n": i}, timestamp=clock.now() - 30 + i),
            )

        published = await engine.run_analysis()

        assert [c.kind for c in published] == [CorrelationKind.TIME]
        assert published[0].confidence == pytest.approx(12 / 14, rel=1e-4)
        assert {a.community_id for a in alerts} == {0, 1, 2}

    @pytest.mark.asyncio
    async def test_failed_writes_are_retried(self, engine, test_db, clock, monkeypatch):
        original = test_db.save_threat_report
        monkeypatch.setattr(test_db, "save_threat_report", lambda report: False)
        for cid in (1, 2):
            await asyncio.to_thread(engine.report_threat, _report(cid, timestamp=clock.now()))
        assert engine.pending_reports == 2

        monkeypatch.setattr(test_db, "save_threat_report", original)
        await engine.run_analysis()

        assert engine.pending_reports == 0
        assert len(test_db.get_threat_reports_since(0)) == 2

    def test_report_failing_during_flush_stays_queued(self, engine, test_db, clock, monkeypatch):
        queued = _report(1, timestamp=clock.now())
        late = _report(2, timestamp=clock.now())
        monkeypatch.setattr(test_db, "save_threat_report", lambda report: False)
        engine._store_report(queued)

        def save_while_flushing(report):
            if report is queued:
                engine._store_report(late)
            return False

        monkeypatch.setattr(test_db, "save_threat_report", save_while_flushing)
        assert engine._flush_pending() == 0

        assert engine.pending_reports == 2
        assert engine._pending == [queued, late]
        assert engine.get_stats()["write_failures"] == 2


class TestMaintenance:

    def test_cleanup_cache_drops_stale_entries(self, engine, clock):
        for cid in (1, 2, 3):
            engine.report_threat(_report(cid, timestamp=clock.now()))
        clock.advance(301)
        # One actor entry and one dedupe key
        assert engine.cleanup_cache() == 2

    def test_purge_reports(self, engine, test_db, clock):
        test_db.save_threat_report(_report(1, timestamp=clock.now() - 2 * 86400))
        test_db.save_threat_report(_report(1, timestamp=clock.now()))
        assert engine.purge_reports() == 1

    def test_stats(self, engine, clock):
        for cid in (1, 2, 3):
            engine.report_threat(_report(cid, timestamp=clock.now()))
        stats = engine.get_stats()
        assert stats["fast_path"] == 1
        assert stats["last_24h"]["reports"] == 3
        assert stats["last_24h"]["correlations"] == {"actor": 1}
