"""
tests/test_presence.py — Presence Registry Tests
=================================================
"""

from __future__ import annotations

import threading

import pytest

from marketchat.engine.presence import PresenceRegistry


@pytest.fixture
def registry(clock) -> PresenceRegistry:
    return PresenceRegistry(clock)


class TestConnect:
    def test_connect_registers_user(self, registry):
        entry, evicted = registry.connect("u1", "trader", "Una")
        assert evicted is None
        assert registry.is_online("u1")
        assert registry.connection("u1") is entry
        assert entry.channels == set()

    def test_reconnect_evicts_previous_session(self, registry):
        first, _ = registry.connect("u1", "trader", "Una")
        registry.join("u1", "c1")
        registry.join("u1", "c2")

        second, evicted = registry.connect("u1", "trader", "Una")
        assert second.session_id != first.session_id
        assert evicted.removed
        assert evicted.channel_counts == {"c1": 0, "c2": 0}
        assert registry.online_count("c1") == 0
        assert registry.joined_channels("u1") == frozenset()

    def test_stale_disconnect_keeps_new_session(self, registry):
        first, _ = registry.connect("u1", "trader", "Una")
        registry.connect("u1", "trader", "Una")
        registry.join("u1", "c1")

        result = registry.disconnect("u1", first.session_id)
        assert not result.removed
        assert registry.is_online("u1")
        assert registry.is_member("u1", "c1")


class TestMembership:
    def test_join_is_idempotent(self, registry):
        registry.connect("u1", "trader", "Una")
        first = registry.join("u1", "c1")
        second = registry.join("u1", "c1")
        assert first.newly_joined and not second.newly_joined
        assert first.online_count == second.online_count == 1

    def test_join_requires_connection(self, registry):
        with pytest.raises(KeyError):
            registry.join("ghost", "c1")

    def test_join_from_replaced_session_rejected(self, registry):
        old, _ = registry.connect("u1", "trader", "Una")
        new, _ = registry.connect("u1", "trader", "Una")
        with pytest.raises(KeyError):
            registry.join("u1", "c1", session_id=old.session_id)
        assert registry.joined_channels("u1") == frozenset()
        assert registry.join("u1", "c1", session_id=new.session_id).newly_joined

    def test_leave_when_not_joined_is_safe(self, registry):
        registry.connect("u1", "trader", "Una")
        assert registry.leave("u1", "c1") == 0

    def test_leave_returns_remaining_count(self, registry):
        for uid in ("u1", "u2"):
            registry.connect(uid, "trader", uid)
            registry.join(uid, "c1")
        assert registry.leave("u1", "c1") == 1
        assert registry.member_ids("c1") == frozenset({"u2"})

    def test_online_users_sorted_by_id(self, registry):
        for uid in ("u3", "u1", "u2"):
            registry.connect(uid, "trader", uid.upper())
            registry.join(uid, "c1")
        assert [e.user_id for e in registry.online_users("c1")] == ["u1", "u2", "u3"]
        assert registry.online_users("c1")[0].to_dict()["userName"] == "U1"


class TestDisconnect:
    def test_disconnect_cascades_through_channels(self, registry):
        registry.connect("u1", "trader", "Una")
        registry.connect("u2", "trader", "Ben")
        for channel in ("c1", "c2", "c3"):
            registry.join("u1", channel)
        registry.join("u2", "c2")

        result = registry.disconnect("u1")
        assert result.removed
        assert result.channel_counts == {"c1": 0, "c2": 1, "c3": 0}
        assert not registry.is_online("u1")
        for channel in ("c1", "c2", "c3"):
            assert not registry.is_member("u1", channel)

    def test_disconnect_unknown_user_is_noop(self, registry):
        assert not registry.disconnect("ghost").removed

    def test_membership_bijection_under_threads(self, registry):
        users = [f"u{i}" for i in range(20)]
        for uid in users:
            registry.connect(uid, "trader", uid)

        def churn(uid):
            for i in range(50):
                registry.join(uid, f"c{i % 5}")
                registry.leave(uid, f"c{(i + 2) % 5}")

        threads = [threading.Thread(target=churn, args=(uid,)) for uid in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for uid in users:
            for channel in registry.joined_channels(uid):
                assert registry.is_member(uid, channel)
        for i in range(5):
            for uid in registry.member_ids(f"c{i}"):
                assert f"c{i}" in registry.joined_channels(uid)


class TestTouchAndStats:
    def test_touch_updates_last_activity(self, registry, clock):
        entry, _ = registry.connect("u1", "trader", "Una")
        clock.advance(30)
        assert registry.touch("u1").last_activity == clock()
        assert entry.connected_at < entry.last_activity

    def test_touch_unknown_user(self, registry):
        assert registry.touch("ghost") is None

    def test_stats(self, registry):
        registry.connect("u1", "trader", "Una")
        registry.connect("u2", "trader", "Ben")
        registry.join("u1", "c1")
        registry.join("u2", "c1")
        stats = registry.stats()
        assert stats["total_connected"] == 2
        assert stats["total_channels"] == 1
        assert stats["users_by_channel"] == [{"channelId": "c1", "userCount": 2}]
