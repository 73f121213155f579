"""
Bastion - Anti-Nuke Tests
=========================

Action-rate monitor paths, exemptions and the lockdown state machine.
"""

from bastion.core.models import ActionKind, EventType, Verdict
from bastion.services.antinuke import LockdownManager, LockdownStatus, Trigger, match_attack_signature

from conftest import ATTACKER_ID, COMMUNITY_ID, OWNER_ID, SYSTEM_ID


class TestAttackSignatures:

    def test_known_names(self):
        assert match_attack_signature("NUKED BY X") == "nuked"
        assert match_attack_signature("get-raided") == "raid"
        assert match_attack_signature("!!!!") == "symbol_spam"

    def test_normal_names(self):
        assert match_attack_signature("general") is None
        assert match_attack_signature(None) is None

    def test_words_containing_signatures_pass(self):
        for name in ("raid-logs", "raiders-guide", "raid-reports", "unhacked-ideas", "denuked"):
            assert match_attack_signature(name) is None, name

    def test_signature_words_inside_names(self):
        assert match_attack_signature("server-hacked") == "hacked"
        assert match_attack_signature("raid by x") == "raid"
        assert match_attack_signature("nuked-lol") == "nuked"


class TestInstantPath:
    """Structural bursts and signatures."""

    def test_two_structural_changes_in_window_flag(self, monitor, make_action):
        first = monitor.evaluate(make_action(EventType.CHANNEL_DELETE))
        second = monitor.evaluate(make_action(EventType.ROLE_DELETE))

        assert first.verdict == Verdict.PASS
        assert second.verdict == Verdict.FLAG
        assert second.trigger == Trigger.INSTANT_BURST
        assert second.lockdown_activated is True

    def test_burst_outside_window_passes(self, monitor, make_action, clock):
        monitor.evaluate(make_action(EventType.CHANNEL_DELETE))
        clock.advance(11)
        decision = monitor.evaluate(make_action(EventType.CHANNEL_DELETE))
        assert decision.verdict == Verdict.PASS

    def test_burst_counts_per_actor(self, monitor, make_action):
        monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=1))
        decision = monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=2))
        assert decision.verdict == Verdict.PASS

    def test_signature_flags_single_action(self, monitor, make_action):
        decision = monitor.evaluate(make_action(EventType.CHANNEL_CREATE, name="nuked-lol"))

        assert decision.verdict == Verdict.FLAG
        assert decision.trigger == Trigger.SIGNATURE
        kinds = {(a.action, a.target_type) for a in decision.actions}
        assert (ActionKind.DELETE, "channel") in kinds
        assert (ActionKind.BAN, "member") in kinds

    def test_owner_still_hits_burst_path(self, monitor, make_action):
        monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=OWNER_ID))
        decision = monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=OWNER_ID))

        assert decision.verdict == Verdict.FLAG
        # Owners are not banned from their own community
        assert all(a.target_id != OWNER_ID for a in decision.actions)
        assert decision.alerts[0].kind == "nuke_detected"


    def test_whitelisted_single_creation_passes_but_burst_flags(self, monitor, config_provider, make_action):
        config_provider.add_to_whitelist(COMMUNITY_ID, ATTACKER_ID)

        first = monitor.evaluate(make_action(EventType.ROLE_CREATE))
        second = monitor.evaluate(make_action(EventType.CHANNEL_CREATE))

        assert first.verdict == Verdict.PASS
        assert second.verdict == Verdict.FLAG
        assert second.exemption is not None


class TestAccumulatingPath:

    def test_bans_at_threshold(self, monitor, make_action):
        decisions = [monitor.evaluate(make_action(EventType.MEMBER_BAN)) for _ in range(3)]

        assert [d.verdict for d in decisions] == [Verdict.PASS, Verdict.PASS, Verdict.FLAG]
        assert decisions[-1].trigger == Trigger.THRESHOLD
        assert decisions[-1].count == 3

    def test_whitelisted_actor_bypasses_counters(self, monitor, config_provider, make_action):
        config_provider.add_to_whitelist(COMMUNITY_ID, ATTACKER_ID)
        decisions = [monitor.evaluate(make_action(EventType.MEMBER_BAN)) for _ in range(10)]

        assert all(d.verdict == Verdict.PASS for d in decisions)
        assert decisions[-1].reason == "exempt:whitelist"

    def test_custom_threshold(self, monitor, config_provider, make_action):
        config_provider.update(COMMUNITY_ID, action_thresholds={"member_kick": {"count": 5, "window": 5}})
        decisions = [monitor.evaluate(make_action(EventType.MEMBER_KICK)) for _ in range(5)]
        assert [d.verdict for d in decisions].index(Verdict.FLAG) == 4


class TestExemptionsAndSuppression:

    def test_system_actor_always_passes(self, monitor, make_action, threat_reports):
        decisions = [monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=SYSTEM_ID)) for _ in range(5)]

        assert all(d.verdict == Verdict.PASS for d in decisions)
        assert threat_reports == []

    def test_restore_in_progress_suppresses(self, monitor, restore_guard, make_action, lockdown, threat_reports):
        restore_guard.try_acquire(COMMUNITY_ID)
        decisions = [monitor.evaluate(make_action(EventType.CHANNEL_CREATE)) for _ in range(5)]

        assert all(d.verdict == Verdict.SUPPRESSED for d in decisions)
        assert not lockdown.is_locked(COMMUNITY_ID)
        assert threat_reports == []

    def test_disabled_community(self, monitor, config_provider, make_action):
        config_provider.update(COMMUNITY_ID, antinuke_enabled=False)
        decisions = [monitor.evaluate(make_action(EventType.CHANNEL_DELETE)) for _ in range(5)]
        assert all(d.reason == "disabled" for d in decisions)


class TestLockdownBehaviour:

    def test_locked_reverses_non_exempt_creations(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.WEBHOOK_CREATE, actor_id=12345, target_id=42))

        assert decision.verdict == Verdict.REVERSE
        assert decision.actions[0].action == ActionKind.DELETE
        assert decision.actions[0].target_type == "webhook"
        assert decision.actions[0].target_id == 42

    def test_locked_bot_add_is_kicked(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.BOT_ADD, actor_id=12345, target_id=77))

        assert decision.actions[0].action == ActionKind.KICK
        assert decision.actions[0].target_id == 77

    def test_locked_ban_is_scored_not_reversed(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.MEMBER_BAN, actor_id=12345, target_id=999))

        assert decision.verdict == Verdict.PASS
        assert decision.actions == ()

    def test_locked_kick_is_scored_not_reversed(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.MEMBER_KICK, actor_id=12345, target_id=999))

        assert decision.verdict == Verdict.PASS
        assert all(a.target_id != 12345 for a in decision.actions)

    def test_locked_ban_burst_still_flagged(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decisions = [
            monitor.evaluate(make_action(EventType.MEMBER_BAN, actor_id=12345, target_id=900 + i))
            for i in range(3)
        ]

        assert [d.verdict for d in decisions] == [Verdict.PASS, Verdict.PASS, Verdict.FLAG]
        assert decisions[-1].trigger == Trigger.THRESHOLD
        assert decisions[-1].actions[-1].target_id == 12345

    def test_locked_deletion_is_scored_not_reversed(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.CHANNEL_DELETE, actor_id=12345, target_id=11))

        assert decision.verdict == Verdict.PASS
        assert decision.actions == ()

    def test_locked_owner_is_scored_not_reversed(self, monitor, lockdown, make_action):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        decision = monitor.evaluate(make_action(EventType.CHANNEL_CREATE, actor_id=OWNER_ID))
        assert decision.verdict == Verdict.PASS

    def test_every_evaluated_action_is_reported(self, monitor, make_action, threat_reports):
        monitor.evaluate(make_action(EventType.MEMBER_BAN))
        monitor.evaluate(make_action(EventType.MEMBER_BAN))

        assert len(threat_reports) == 2
        assert all(r.type == "member_ban" for r in threat_reports)
        assert threat_reports[0].severity == 0

    def test_flagged_report_severity(self, monitor, make_action, threat_reports):
        monitor.evaluate(make_action(EventType.CHANNEL_CREATE, name="raided"))
        assert threat_reports[-1].severity == 3
        assert threat_reports[-1].metadata["trigger"] == "signature"


class TestLockdownManager:

    def test_state_machine(self, lockdown):
        assert lockdown.status(COMMUNITY_ID) == LockdownStatus.NORMAL
        assert lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="threshold") is True
        assert lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="threshold") is False
        assert lockdown.status(COMMUNITY_ID) == LockdownStatus.LOCKED

        assert lockdown.clear(COMMUNITY_ID, cleared_by=OWNER_ID) is True
        assert lockdown.clear(COMMUNITY_ID) is False
        assert lockdown.status(COMMUNITY_ID) == LockdownStatus.NORMAL

    def test_no_automatic_expiry(self, lockdown, clock):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        clock.advance(7 * 86400)
        assert lockdown.is_locked(COMMUNITY_ID)

    def test_survives_restart(self, lockdown, test_db, clock):
        lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="instant_burst")

        restarted = LockdownManager(test_db, clock=clock)
        assert restarted.load() == 1
        state = restarted.get_state(COMMUNITY_ID)
        assert state.triggered_by == ATTACKER_ID
        assert state.reason == "instant_burst"

    def test_clear_is_persisted(self, lockdown, test_db, clock):
        lockdown.activate(COMMUNITY_ID, None, reason="raid")
        lockdown.clear(COMMUNITY_ID)

        restarted = LockdownManager(test_db, clock=clock)
        assert restarted.load() == 0

    def test_writes_finishing_out_of_order_match_final_state(self, lockdown, test_db, monkeypatch):
        queued = []
        monkeypatch.setattr(
            "bastion.services.antinuke.lockdown.run_blocking",
            lambda func, *args, name="": queued.append((func, args)),
        )
        lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="instant_burst")
        lockdown.clear(COMMUNITY_ID, cleared_by=OWNER_ID)

        for func, args in reversed(queued):
            func(*args)

        assert test_db.get_lockdown_state(COMMUNITY_ID) is None

    def test_reactivation_survives_stale_clear_write(self, lockdown, test_db, clock, monkeypatch):
        queued = []
        monkeypatch.setattr(
            "bastion.services.antinuke.lockdown.run_blocking",
            lambda func, *args, name="": queued.append((func, args)),
        )
        lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="instant_burst")
        lockdown.clear(COMMUNITY_ID)
        lockdown.activate(COMMUNITY_ID, ATTACKER_ID, reason="raid")

        for func, args in reversed(queued):
            func(*args)

        restarted = LockdownManager(test_db, clock=clock)
        assert restarted.load() == 1
        assert restarted.get_state(COMMUNITY_ID).reason == "raid"
