"""
tests/test_typing.py — Typing Tracker Tests
============================================
"""

from __future__ import annotations

import pytest

from marketchat.engine.typing_tracker import TypingTracker


@pytest.fixture
def tracker(clock) -> TypingTracker:
    return TypingTracker(clock=clock)


class TestTypingTracker:
    def test_snapshot_lists_only_others(self, tracker):
        tracker.start_typing("u1", "Una", "c1")
        snapshot = tracker.start_typing("u2", "Ben", "c1")
        assert snapshot.user_names == ["Una"]
        assert snapshot.count == 1

    def test_names_capped_at_five_but_count_is_full(self, tracker):
        for i in range(7):
            tracker.start_typing(f"u{i}", f"User {i}", "c1")
        snapshot = tracker.start_typing("me", "Me", "c1")
        assert len(snapshot.user_names) == 5
        assert snapshot.count == 7

    def test_stop_reports_whether_typing(self, tracker):
        tracker.start_typing("u1", "Una", "c1")
        assert tracker.stop_typing("u1", "c1")
        assert not tracker.stop_typing("u1", "c1")

    def test_entries_expire_after_ttl(self, tracker, clock):
        tracker.start_typing("u1", "Una", "c1")
        clock.advance(4)
        assert tracker.is_typing("u1", "c1")
        clock.advance(1)
        assert not tracker.is_typing("u1", "c1")
        assert tracker.start_typing("u2", "Ben", "c1").count == 0

    def test_refresh_extends_ttl(self, tracker, clock):
        tracker.start_typing("u1", "Una", "c1")
        clock.advance(4)
        tracker.start_typing("u1", "Una", "c1")
        clock.advance(4)
        assert tracker.typing_users("c1") == ["u1"]

    def test_stop_all_returns_affected_channels(self, tracker):
        tracker.start_typing("u1", "Una", "c1")
        tracker.start_typing("u1", "Una", "c2")
        tracker.start_typing("u2", "Ben", "c2")
        assert sorted(tracker.stop_all("u1")) == ["c1", "c2"]
        assert tracker.typing_users("c2") == ["u2"]
        assert tracker.typing_users("c1") == []
