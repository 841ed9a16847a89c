"""
Unit tests for the cooldown manager.

Covers the Eligible -> Shown -> Cooling -> Eligible lifecycle, the per-child
cache, pruning, fail-open on unreadable state and serialized writes.
"""

import logging
import threading
from datetime import timedelta
from unittest.mock import MagicMock

from services.coaching import (
    CancellationToken,
    CooldownManager,
    CooldownRecord,
    CooldownStoreCorrupt,
    InMemoryCooldownStore,
    SignalType,
)

from coaching_factories import NOW, CHILD_ID, make_signal


class TestLifecycle:
    """Suppression window after a card is shown."""

    def test_never_shown_is_eligible(self, cooldown_manager):
        assert cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW) is False

    def test_cooling_inside_window(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

        assert cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=1))
        assert cooldown_manager.is_on_cooldown(
            CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=7) - timedelta(seconds=1)
        )

    def test_eligible_again_once_window_elapses(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

        assert not cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=7))
        assert not cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=8))

    def test_cooldown_is_per_type_and_per_child(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        later = NOW + timedelta(days=1)

        assert not cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_STALLED, later)
        assert not cooldown_manager.is_on_cooldown("child-2", SignalType.GOAL_AT_RISK, later)

    def test_per_type_override(self, cooldown_store):
        manager = CooldownManager(cooldown_store, cooldown_days=7, overrides={SignalType.POSITIVE_STREAK: 2})
        manager.record_many(CHILD_ID, [SignalType.POSITIVE_STREAK, SignalType.GOAL_AT_RISK], NOW)
        later = NOW + timedelta(days=3)

        assert not manager.is_on_cooldown(CHILD_ID, SignalType.POSITIVE_STREAK, later)
        assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, later)

    def test_reshowing_overwrites_record(self, cooldown_manager, cooldown_store):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=10))

        records = cooldown_store.load(CHILD_ID)
        assert len(records) == 1
        assert records[0].last_shown_at == NOW + timedelta(days=10)

    def test_cooldown_ends_at(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        assert cooldown_manager.cooldown_ends_at(CHILD_ID, SignalType.GOAL_AT_RISK) == NOW + timedelta(days=7)
        assert cooldown_manager.cooldown_ends_at(CHILD_ID, SignalType.GOAL_STALLED) is None

    def test_active_cooldowns(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.ROUTINE_FORMING, NOW)
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW - timedelta(days=10))

        active = cooldown_manager.active_cooldowns(CHILD_ID, NOW + timedelta(hours=1))
        assert active == [(SignalType.ROUTINE_FORMING, NOW + timedelta(days=7))]


class TestFilterEligible:
    def test_drops_cooling_signals(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        cooling = make_signal(SignalType.GOAL_AT_RISK, 90, ["a"])
        fresh = make_signal(SignalType.ROUTINE_FORMING, 50, ["b"])

        assert cooldown_manager.filter_eligible([cooling, fresh], NOW + timedelta(days=1)) == [fresh]

    def test_uses_given_snapshot(self, cooldown_manager):
        snapshot = cooldown_manager.snapshot(CHILD_ID)
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        signal = make_signal(SignalType.GOAL_AT_RISK, 90, ["a"])

        assert cooldown_manager.filter_eligible([signal], NOW, snapshot=snapshot) == [signal]
        assert cooldown_manager.filter_eligible([signal], NOW) == []


class TestCache:
    def test_store_is_read_once_per_child(self, cooldown_manager, cooldown_store):
        for _ in range(5):
            cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        assert cooldown_store.load_calls == 1

    def test_write_updates_cache_without_reload(self, cooldown_manager, cooldown_store):
        cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

        assert cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        assert cooldown_store.load_calls == 1

    def test_invalidate_forces_reload(self, cooldown_manager, cooldown_store):
        cooldown_manager.snapshot(CHILD_ID)
        cooldown_manager.invalidate_cache(CHILD_ID)
        cooldown_manager.snapshot(CHILD_ID)
        assert cooldown_store.load_calls == 2

    def test_state_survives_a_new_manager(self, cooldown_store):
        CooldownManager(cooldown_store).record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        restarted = CooldownManager(cooldown_store)
        assert restarted.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=1))

    def test_duplicate_records_keep_latest(self):
        store = InMemoryCooldownStore({CHILD_ID: [
            CooldownRecord(CHILD_ID, SignalType.GOAL_AT_RISK, NOW),
            CooldownRecord(CHILD_ID, SignalType.GOAL_AT_RISK, NOW - timedelta(days=20)),
        ]})
        manager = CooldownManager(store)
        assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW + timedelta(days=1))


class TestWrites:
    def test_record_many_saves_once(self, cooldown_manager, cooldown_store):
        cooldown_manager.record_many(
            CHILD_ID, [SignalType.GOAL_AT_RISK, SignalType.ROUTINE_FORMING, SignalType.GOAL_AT_RISK], NOW
        )
        assert cooldown_store.save_calls == 1
        assert {r.signal_type for r in cooldown_store.load(CHILD_ID)} == {
            SignalType.GOAL_AT_RISK,
            SignalType.ROUTINE_FORMING,
        }

    def test_old_records_are_pruned_on_write(self, cooldown_store):
        manager = CooldownManager(cooldown_store, retention_days=30)
        manager.record_shown(CHILD_ID, SignalType.GOAL_STALLED, NOW - timedelta(days=31))
        manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

        assert [r.signal_type for r in cooldown_store.load(CHILD_ID)] == [SignalType.GOAL_AT_RISK]

    def test_cancelled_token_blocks_write(self, cooldown_manager, cooldown_store):
        token = CancellationToken()
        token.cancel()

        written = cooldown_manager.record_many(CHILD_ID, [SignalType.GOAL_AT_RISK], NOW, token)
        assert written is False
        assert cooldown_store.save_calls == 0
        assert not cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

    def test_clear_child(self, cooldown_manager):
        cooldown_manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)
        cooldown_manager.clear_child(CHILD_ID)
        assert not cooldown_manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

    def test_concurrent_writes_for_one_child_all_land(self, cooldown_manager, cooldown_store):
        types = list(SignalType)
        threads = [
            threading.Thread(target=cooldown_manager.record_shown, args=(CHILD_ID, t, NOW))
            for t in types
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert {r.signal_type for r in cooldown_store.load(CHILD_ID)} == set(types)


class TestFailures:
    """Unreadable or unwritable state never fails the caller."""

    def test_corrupt_state_fails_open(self, caplog):
        store = MagicMock()
        store.load.side_effect = CooldownStoreCorrupt(CHILD_ID, "invalid JSON")
        manager = CooldownManager(store)

        with caplog.at_level(logging.WARNING, logger="services.coaching.cooldown"):
            assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW) is False

        assert any(r.levelno == logging.WARNING and "unreadable" in r.getMessage() for r in caplog.records)

    def test_failed_load_is_retried(self):
        store = MagicMock()
        store.load.side_effect = [
            CooldownStoreCorrupt(CHILD_ID, "invalid JSON"),
            [CooldownRecord(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)],
        ]
        manager = CooldownManager(store)

        assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW) is False
        assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW) is True

    def test_save_failure_is_logged_not_raised(self, caplog):
        store = MagicMock()
        store.load.return_value = []
        store.save.side_effect = ConnectionError("redis down")
        manager = CooldownManager(store)

        with caplog.at_level(logging.ERROR, logger="services.coaching.cooldown"):
            manager.record_shown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW)

        assert any("redis down" in r.getMessage() for r in caplog.records)
        # Cache was dropped, so the next read goes back to the store.
        assert manager.is_on_cooldown(CHILD_ID, SignalType.GOAL_AT_RISK, NOW) is False
        assert store.load.call_count == 2
