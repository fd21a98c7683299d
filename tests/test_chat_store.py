"""
tests/test_chat_store.py — SQLAlchemy Chat Store Tests
=======================================================
"""

from __future__ import annotations

from datetime import UTC
from unittest.mock import patch

import pytest
from conftest import make_channel, run_async, subscribe
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from marketchat.database.models import ChatChannel, ChatMessage
from marketchat.engine.errors import ChannelNotFound, MessageNotFound, UpstreamFailure


def _post(store, market, text, *, user=None, **kwargs):
    return run_async(
        store.create_message(
            channel_id=market.general,
            user_id=(user or market.premium).user_id,
            analyst_id=market.analyst.user_id,
            text=text,
            **kwargs,
        )
    )


class TestChannels:
    def test_get_channel_resolves_tier_rank(self, store, market):
        channel = run_async(store.get_channel(market.vip))
        assert channel.channel_name == "VIP Room"
        assert channel.minimum_tier_rank == 2
        assert channel.analyst_id == market.analyst.user_id
        assert not channel.is_deleted

    def test_missing_channel(self, store, market):
        with pytest.raises(ChannelNotFound):
            run_async(store.get_channel("nope"))

    def test_soft_deleted_channel_is_flagged(self, store, market, db_engine, clock):
        with Session(db_engine) as session:
            session.get(ChatChannel, market.general).deleted_at = clock()
            session.commit()
        assert run_async(store.get_channel(market.general)).is_deleted

    def test_community_channel_has_no_owner(self, store, market):
        channel = run_async(store.get_channel(market.community))
        assert channel.is_community
        assert channel.analyst_id is None


class TestSubscriptions:
    def test_active_subscription(self, store, market):
        sub = run_async(
            store.get_active_subscription(market.premium.user_id, market.analyst.user_id)
        )
        assert sub.tier_name == "premium"
        assert sub.is_paid

    def test_no_subscription(self, store, market):
        assert run_async(
            store.get_active_subscription(market.outsider.user_id, market.analyst.user_id)
        ) is None

    def test_cancelled_subscription_ignored(self, store, market, db_engine):
        subscribe(db_engine, market.outsider.user_id, market.analyst.user_id, "premium",
                  status="cancelled")
        assert run_async(
            store.get_active_subscription(market.outsider.user_id, market.analyst.user_id)
        ) is None

    def test_any_analyst_picks_highest_rank(self, store, market, db_engine):
        from conftest import make_user

        other = make_user(db_engine, "analyst-2", "Bo Analyst", "analyst")
        subscribe(db_engine, market.free.user_id, other, "basic")
        sub = run_async(store.get_active_subscription(market.free.user_id, None))
        assert sub.tier_name == "basic"


class TestMessages:
    def test_create_sets_author_and_clock_time(self, store, market, clock):
        msg = _post(store, market, "Long NIFTY above 22k")
        assert msg.user_name == "Pat Premium"
        assert msg.user_role == "trader"
        assert msg.created_at.replace(tzinfo=UTC) == clock()

    def test_recent_messages_are_chronological(self, store, market, clock):
        for text in ("one", "two", "three"):
            _post(store, market, text)
            clock.advance(1)
        history = run_async(store.get_recent_messages(market.general, limit=2))
        assert [m.message for m in history] == ["two", "three"]

    def test_recent_messages_offset(self, store, market, clock):
        for text in ("one", "two", "three"):
            _post(store, market, text)
            clock.advance(1)
        history = run_async(store.get_recent_messages(market.general, limit=2, offset=1))
        assert [m.message for m in history] == ["one", "two"]

    def test_reply_includes_parent(self, store, market):
        parent = _post(store, market, "Entry at 100")
        reply = _post(store, market, "Target?", user=market.analyst, reply_to=parent.id)
        assert reply.reply_to["id"] == parent.id
        assert reply.reply_to["message"] == "Entry at 100"
        assert reply.reply_to["user_name"] == "Pat Premium"

    def test_pinned_messages(self, store, market, db_engine, clock):
        msg = _post(store, market, "Rules")
        _post(store, market, "chatter")
        with Session(db_engine) as session:
            row = session.get(ChatMessage, msg.id)
            row.is_pinned = True
            row.pinned_at = clock()
            session.commit()
        pinned = run_async(store.get_pinned_messages(market.general))
        assert [m.id for m in pinned] == [msg.id]

    def test_soft_delete(self, store, market):
        msg = _post(store, market, "oops")
        deleted = run_async(store.delete_message(msg.id, market.analyst.user_id, "off-topic"))
        assert deleted.is_deleted
        assert run_async(store.get_recent_messages(market.general)) == []
        with pytest.raises(MessageNotFound):
            run_async(store.delete_message(msg.id, market.analyst.user_id, "again"))

    def test_deleted_messages_leave_the_rate_window(self, store, market):
        msg = _post(store, market, "oops")
        run_async(store.delete_message(msg.id, market.premium.user_id, "mine"))
        assert run_async(
            store.count_recent_messages(market.premium.user_id, market.general, 60)
        ) == 0

    def test_get_message_missing(self, store, market):
        with pytest.raises(MessageNotFound):
            run_async(store.get_message("missing"))


class TestCounters:
    def test_channel_stats(self, store, market, db_engine, clock):
        assert run_async(store.update_channel_stats(market.general))
        assert run_async(store.update_channel_stats(market.general))
        with Session(db_engine) as session:
            channel = session.get(ChatChannel, market.general)
            assert channel.total_messages == 2
            assert channel.last_message_at is not None

    def test_active_members_count(self, store, market, db_engine):
        assert run_async(store.update_active_members_count(market.general, 7))
        with Session(db_engine) as session:
            assert session.scalar(
                select(ChatChannel.active_members_count).where(ChatChannel.id == market.general)
            ) == 7

    def test_counter_failure_is_swallowed(self, store, market):
        with patch.object(store, "_bump_stats", side_effect=OperationalError("x", {}, None)):
            assert run_async(store.update_channel_stats(market.general)) is False

    def test_query_failure_becomes_upstream_failure(self, store, market):
        with patch.object(store, "_load_channel", side_effect=OperationalError("x", {}, None)):
            with pytest.raises(UpstreamFailure):
                run_async(store.get_channel(market.general))
