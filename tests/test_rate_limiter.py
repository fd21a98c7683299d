"""
tests/test_rate_limiter.py — Sliding-Window Posting Limit Tests
================================================================

Policy tests run against a tiny in-memory history; the window query itself
is covered against SQLite at the bottom.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

from conftest import run_async

from marketchat.database.models import ChannelType
from marketchat.engine.clock import ManualClock
from marketchat.engine.rate_limiter import RateLimiter
from marketchat.engine.records import ChannelInfo


class FakeHistory:
    """Just enough of the store for the limiter: timestamps per (user, channel)."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.sent: dict[tuple[str, str], list] = {}

    def post(self, user_id: str, channel_id: str, n: int = 1) -> None:
        self.sent.setdefault((user_id, channel_id), []).extend([self.clock()] * n)

    def _window(self, user_id, channel_id, window_seconds):
        since = self.clock() - timedelta(seconds=window_seconds)
        return [ts for ts in self.sent.get((user_id, channel_id), []) if ts > since]

    async def count_recent_messages(self, user_id, channel_id, window_seconds):
        return len(self._window(user_id, channel_id, window_seconds))

    async def oldest_recent_message_at(self, user_id, channel_id, window_seconds):
        recent = self._window(user_id, channel_id, window_seconds)
        return min(recent) if recent else None


def _limiter(clock: ManualClock) -> tuple[RateLimiter, FakeHistory]:
    history = FakeHistory(clock)
    return RateLimiter(history, clock=clock), history


class TestBoundary:
    def test_tenth_message_allowed_eleventh_rejected(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1", 9)
        assert not run_async(limiter.check_rate_limit("u1", "c1", 10)).is_limited

        history.post("u1", "c1")
        result = run_async(limiter.check_rate_limit("u1", "c1", 10))
        assert result.is_limited
        assert result.remaining == 0
        assert result.limit == 10
        assert result.retry_after_seconds > 0

    def test_retry_after_tracks_oldest_message(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1")
        clock.advance(20)
        history.post("u1", "c1", 9)
        result = run_async(limiter.check_rate_limit("u1", "c1", 10))
        assert result.is_limited
        assert result.retry_after_seconds == 40

    def test_retry_after_is_at_least_one_second(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1", 10)
        clock.advance(59.9)
        assert run_async(limiter.check_rate_limit("u1", "c1", 10)).retry_after_seconds == 1

    def test_window_reopens_after_sixty_seconds(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1", 10)
        clock.advance(60)
        result = run_async(limiter.check_rate_limit("u1", "c1", 10))
        assert not result.is_limited
        assert result.remaining == 10

    def test_limits_are_per_channel_and_per_user(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1", 10)
        assert not run_async(limiter.check_rate_limit("u1", "c2", 10)).is_limited
        assert not run_async(limiter.check_rate_limit("u2", "c1", 10)).is_limited

    def test_non_positive_limit_is_clamped_to_one(self, clock):
        limiter, history = _limiter(clock)
        assert not run_async(limiter.check_rate_limit("u1", "c1", 0)).is_limited
        history.post("u1", "c1")
        result = run_async(limiter.check_rate_limit("u1", "c1", -5))
        assert result.is_limited
        assert result.limit == 1


class TestWarning:
    def test_warns_at_eighty_percent(self, clock):
        limiter, history = _limiter(clock)
        history.post("u1", "c1", 7)
        assert not run_async(limiter.check_rate_limit("u1", "c1", 10)).should_warn

        history.post("u1", "c1")
        result = run_async(limiter.check_rate_limit("u1", "c1", 10))
        assert result.should_warn
        assert result.remaining == 2


class TestPolicy:
    CHANNEL = ChannelInfo(id="c1", analyst_id="analyst-1", channel_name="General")

    def test_owner_gets_analyst_limit(self, clock):
        limiter, _ = _limiter(clock)
        assert limiter.limit_for(self.CHANNEL, "analyst-1") == 30

    def test_member_gets_channel_limit(self, clock):
        limiter, _ = _limiter(clock)
        assert limiter.limit_for(replace(self.CHANNEL, message_rate_limit=5), "u1") == 5

    def test_member_falls_back_to_default(self, clock):
        limiter, _ = _limiter(clock)
        assert limiter.limit_for(replace(self.CHANNEL, message_rate_limit=None), "u1") == 10

    def test_only_owner_in_announcement_channel_bypasses(self, clock):
        limiter, _ = _limiter(clock)
        announcement = replace(self.CHANNEL, channel_type=ChannelType.ANNOUNCEMENT)
        assert limiter.bypasses(announcement, "analyst-1")
        assert not limiter.bypasses(announcement, "u1")
        assert not limiter.bypasses(self.CHANNEL, "analyst-1")


class TestAgainstSqlStore:
    """The window query is ``created_at > now - 60s`` on non-deleted rows."""

    def test_counts_only_the_window(self, store, market, clock):
        async def scenario():
            for _ in range(3):
                await store.create_message(
                    channel_id=market.general,
                    user_id=market.premium.user_id,
                    analyst_id=market.analyst.user_id,
                    text="old",
                )
            clock.advance(45)
            await store.create_message(
                channel_id=market.general,
                user_id=market.premium.user_id,
                analyst_id=market.analyst.user_id,
                text="new",
            )
            inside = await store.count_recent_messages(
                market.premium.user_id, market.general, 60
            )
            clock.advance(16)
            later = await store.count_recent_messages(market.premium.user_id, market.general, 60)
            return inside, later

        assert run_async(scenario()) == (4, 1)

    def test_retry_after_from_sql_timestamps(self, store, market, clock):
        limiter = RateLimiter(store, clock=clock)

        async def scenario():
            for _ in range(10):
                await store.create_message(
                    channel_id=market.general,
                    user_id=market.premium.user_id,
                    analyst_id=market.analyst.user_id,
                    text="hi",
                )
            clock.advance(15)
            return await limiter.check_rate_limit(market.premium.user_id, market.general, 10)

        result = run_async(scenario())
        assert result.is_limited
        assert result.retry_after_seconds == 45
