# @even rygh
"""
Tests for ExpiringStore and MitigationController.
"""

import threading

import pytest

from counter_store import ExpiringStore
from mitigation import MitigationController


class TestExpiringStore:
    def test_missing_key_reads_as_default(self, store):
        assert store.get("nope") is None
        assert store.get("nope", 0) == 0
        assert store.delete("nope") is False
        assert store.ttl("nope") is None

    def test_increment_starts_at_zero(self, store):
        assert store.increment("k", 60) == 1
        assert store.increment("k", 60) == 2
        assert store.increment("k", 60, amount=3) == 5

    def test_entry_expires_after_ttl(self, store, clock):
        store.set("k", "v", 10)
        clock.advance(9)
        assert store.get("k") == "v"
        clock.advance(1)
        assert store.get("k") is None

    def test_increment_renews_ttl(self, store, clock):
        store.increment("k", 60)
        clock.advance(50)
        store.increment("k", 60)
        clock.advance(50)
        assert store.get("k") == 2
        assert store.ttl("k") == pytest.approx(10)

    def test_expired_counter_restarts(self, store, clock):
        store.increment("k", 60)
        clock.advance(61)
        assert store.increment("k", 60) == 1

    def test_items_by_prefix(self, store):
        store.set("a:1", 1, 60)
        store.set("a:2", 2, 60)
        store.set("b:1", 3, 60)
        assert sorted(store.items("a:")) == [("a:1", 1), ("a:2", 2)]

    def test_purge_expired(self, store, clock):
        store.set("short", 1, 5)
        store.set("long", 1, 500)
        clock.advance(10)
        assert store.purge_expired() == 1
        assert len(store) == 1

    def test_oldest_entry_evicted_when_full(self, clock):
        small = ExpiringStore(max_entries=2, clock=clock)
        small.set("a", 1, 60)
        small.set("b", 2, 60)
        small.set("c", 3, 60)
        assert small.get("a") is None
        assert small.get("c") == 3
        assert small.get_stats() == {"entries": 2, "max_entries": 2}

    def test_protected_entries_survive_eviction(self, clock):
        small = ExpiringStore(max_entries=3, clock=clock, protected_prefixes=("blocked:",))
        mitigation = MitigationController(small)
        mitigation.block("203.0.113.7", "brute_force", 600)
        for i in range(3):
            small.increment(f"count:xmlrpc_flood:10.0.0.{i}", 60)

        assert mitigation.is_blocked("203.0.113.7")
        assert small.get("count:xmlrpc_flood:10.0.0.0") is None
        assert small.get("count:xmlrpc_flood:10.0.0.2") == 1

    def test_expired_entries_are_purged_before_evicting(self, clock):
        small = ExpiringStore(max_entries=2, clock=clock)
        small.set("short", 1, 5)
        small.set("long", 2, 60)
        clock.advance(10)
        small.set("new", 3, 60)
        assert small.get("long") == 2
        assert small.get("new") == 3

    def test_only_protected_entries_left_may_overflow(self, clock):
        small = ExpiringStore(max_entries=1, clock=clock, protected_prefixes=("blocked:",))
        small.set("blocked:a", {}, 60)
        small.set("blocked:b", {}, 60)
        assert small.get("blocked:a") == {}
        assert small.get("blocked:b") == {}

    def test_concurrent_increments_see_distinct_values(self):
        store = ExpiringStore()
        seen = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                value = store.increment("shared", 60)
                with lock:
                    seen.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(seen) == list(range(1, 1601))


class TestMitigationController:
    def test_block_and_expire(self, store, clock):
        mitigation = MitigationController(store, default_duration_seconds=600)
        entry = mitigation.block("203.0.113.5", "brute_force")

        assert mitigation.is_blocked("203.0.113.5")
        assert (entry.expires_at - entry.blocked_at).total_seconds() == 600

        clock.advance(601)
        assert not mitigation.is_blocked("203.0.113.5")
        assert mitigation.list_blocked() == []

    def test_unblock(self, store):
        mitigation = MitigationController(store)
        mitigation.block("203.0.113.5", "xss", 60)
        assert mitigation.unblock("203.0.113.5") is True
        assert mitigation.unblock("203.0.113.5") is False
        assert not mitigation.is_blocked("203.0.113.5")

    def test_reblock_overwrites(self, store, clock):
        mitigation = MitigationController(store)
        mitigation.block("203.0.113.5", "xss", 60)
        clock.advance(30)
        mitigation.block("203.0.113.5", "sql_injection", 60)
        clock.advance(45)
        entry = mitigation.get_block("203.0.113.5")
        assert entry is not None
        assert entry.reason == "sql_injection"

    def test_list_blocked_is_newest_first(self, store, clock):
        mitigation = MitigationController(store)
        mitigation.block("198.51.100.1", "brute_force", 600)
        clock.advance(1)
        mitigation.block("198.51.100.2", "brute_force", 600)
        assert [e.source for e in mitigation.list_blocked()] == ["198.51.100.2", "198.51.100.1"]
