"""
marketchat.services.chat_store — Persistence collaborator for the relay
========================================================================

The chat engine never touches SQLAlchemy directly.  It talks to a
:class:`ChatStore`, whose every method is a coroutine and therefore a
suspension point.  :class:`SqlChatStore` implements it with synchronous
sessions shipped to the thread pool through :func:`run_db`.

Database errors surface as :class:`UpstreamFailure`; the two best-effort
counter writes log and swallow their failures instead.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketchat.database.engine import get_session, run_db
from marketchat.database.models import (
    ChatChannel,
    ChatMessage,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    User,
)
from marketchat.engine.clock import Clock, utcnow
from marketchat.engine.errors import ChannelNotFound, MessageNotFound, UpstreamFailure
from marketchat.engine.records import ChannelInfo, MessageInfo, SubscriptionInfo

logger = logging.getLogger(__name__)


class ChatStore(Protocol):
    """What the relay needs from persistence."""

    async def get_channel(self, channel_id: str) -> ChannelInfo: ...

    async def get_active_subscription(
        self, user_id: str, analyst_id: str | None
    ) -> SubscriptionInfo | None: ...

    async def get_recent_messages(
        self, channel_id: str, limit: int = 100, offset: int = 0
    ) -> list[MessageInfo]: ...

    async def get_pinned_messages(self, channel_id: str, limit: int = 10) -> list[MessageInfo]: ...

    async def get_message(self, message_id: str) -> MessageInfo: ...

    async def create_message(
        self,
        *,
        channel_id: str,
        user_id: str,
        analyst_id: str | None,
        text: str,
        message_type: str = "text",
        reply_to: str | None = None,
    ) -> MessageInfo: ...

    async def delete_message(self, message_id: str, actor_id: str, reason: str) -> MessageInfo: ...

    async def count_recent_messages(
        self, user_id: str, channel_id: str, window_seconds: int
    ) -> int: ...

    async def oldest_recent_message_at(
        self, user_id: str, channel_id: str, window_seconds: int
    ) -> datetime | None: ...

    async def update_active_members_count(self, channel_id: str, count: int) -> bool: ...

    async def update_channel_stats(self, channel_id: str) -> bool: ...


class SqlChatStore:
    """:class:`ChatStore` over a synchronous SQLAlchemy engine."""

    def __init__(self, engine: Engine, *, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    async def _call(self, func_, *args, **kwargs):
        try:
            return await run_db(func_, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Chat store query failed: %s", exc)
            raise UpstreamFailure("Chat storage is temporarily unavailable") from exc

    # -----------------------------------------------------------------------
    # Channels & subscriptions
    # -----------------------------------------------------------------------
    async def get_channel(self, channel_id: str) -> ChannelInfo:
        """Fetch a channel snapshot.  Soft-deleted rows come back flagged."""
        info = await self._call(self._load_channel, channel_id)
        if info is None:
            raise ChannelNotFound(channel_id)
        return info

    def _load_channel(self, channel_id: str) -> ChannelInfo | None:
        with Session(self.engine) as session:
            row = session.execute(
                select(ChatChannel, SubscriptionTier.rank)
                .outerjoin(
                    SubscriptionTier,
                    SubscriptionTier.id == ChatChannel.minimum_tier_required,
                )
                .where(ChatChannel.id == channel_id)
            ).first()
            if row is None:
                return None
            channel, tier_rank = row
            return ChannelInfo(
                id=channel.id,
                analyst_id=channel.analyst_id,
                channel_name=channel.channel_name,
                channel_type=channel.channel_type,
                is_read_only=channel.is_read_only,
                message_rate_limit=channel.message_rate_limit,
                require_subscription=channel.require_subscription,
                minimum_tier_required=channel.minimum_tier_required,
                minimum_tier_rank=tier_rank,
                is_active=channel.is_active,
                is_archived=channel.is_archived,
                is_deleted=channel.deleted_at is not None,
                active_members_count=channel.active_members_count,
            )

    async def get_active_subscription(
        self, user_id: str, analyst_id: str | None
    ) -> SubscriptionInfo | None:
        """Highest-ranked active subscription of *user_id* to *analyst_id*.

        With ``analyst_id=None`` (community channels) any analyst counts.
        """
        return await self._call(self._load_subscription, user_id, analyst_id)

    def _load_subscription(self, user_id: str, analyst_id: str | None) -> SubscriptionInfo | None:
        with Session(self.engine) as session:
            stmt = (
                select(SubscriptionTier.id, SubscriptionTier.tier_name, SubscriptionTier.rank)
                .join(Subscription, Subscription.tier_id == SubscriptionTier.id)
                .where(
                    Subscription.user_id == user_id,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
                .order_by(SubscriptionTier.rank.desc())
                .limit(1)
            )
            if analyst_id is not None:
                stmt = stmt.where(Subscription.analyst_id == analyst_id)
            row = session.execute(stmt).first()
            if row is None:
                return None
            return SubscriptionInfo(tier_id=row.id, tier_name=row.tier_name, rank=row.rank)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------
    async def get_recent_messages(
        self, channel_id: str, limit: int = 100, offset: int = 0
    ) -> list[MessageInfo]:
        """Newest *limit* non-deleted messages, returned oldest first."""
        return await self._call(self._load_recent, channel_id, limit, offset)

    def _load_recent(self, channel_id: str, limit: int, offset: int) -> list[MessageInfo]:
        with Session(self.engine) as session:
            rows = session.execute(
                select(ChatMessage, User.full_name, User.role)
                .join(User, User.id == ChatMessage.user_id)
                .where(ChatMessage.channel_id == channel_id, ChatMessage.is_deleted.is_(False))
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
                .offset(offset)
            ).all()
            return [_to_info(session, m, name, role) for m, name, role in reversed(rows)]

    async def get_pinned_messages(self, channel_id: str, limit: int = 10) -> list[MessageInfo]:
        return await self._call(self._load_pinned, channel_id, limit)

    def _load_pinned(self, channel_id: str, limit: int) -> list[MessageInfo]:
        with Session(self.engine) as session:
            rows = session.execute(
                select(ChatMessage, User.full_name, User.role)
                .join(User, User.id == ChatMessage.user_id)
                .where(
                    ChatMessage.channel_id == channel_id,
                    ChatMessage.is_pinned.is_(True),
                    ChatMessage.is_deleted.is_(False),
                )
                .order_by(ChatMessage.pinned_at.desc())
                .limit(limit)
            ).all()
            return [_to_info(session, m, name, role) for m, name, role in rows]

    async def get_message(self, message_id: str) -> MessageInfo:
        info = await self._call(self._load_message, message_id)
        if info is None:
            raise MessageNotFound(message_id)
        return info

    def _load_message(self, message_id: str) -> MessageInfo | None:
        with Session(self.engine) as session:
            row = session.execute(
                select(ChatMessage, User.full_name, User.role)
                .join(User, User.id == ChatMessage.user_id)
                .where(ChatMessage.id == message_id)
            ).first()
            if row is None:
                return None
            return _to_info(session, *row)

    async def create_message(
        self,
        *,
        channel_id: str,
        user_id: str,
        analyst_id: str | None,
        text: str,
        message_type: str = "text",
        reply_to: str | None = None,
    ) -> MessageInfo:
        return await self._call(
            self._insert_message, channel_id, user_id, analyst_id, text, message_type, reply_to
        )

    def _insert_message(
        self,
        channel_id: str,
        user_id: str,
        analyst_id: str | None,
        text: str,
        message_type: str,
        reply_to: str | None,
    ) -> MessageInfo:
        with get_session(self.engine) as session:
            msg = ChatMessage(
                channel_id=channel_id,
                user_id=user_id,
                analyst_id=analyst_id,
                message=text,
                message_type=str(message_type),
                reply_to_message_id=reply_to,
                created_at=self._clock(),
            )
            session.add(msg)
            session.flush()
            author = session.get(User, user_id)
            return _to_info(
                session,
                msg,
                author.full_name if author else None,
                author.role if author else None,
            )

    async def delete_message(self, message_id: str, actor_id: str, reason: str) -> MessageInfo:
        """Soft-delete; raises :class:`MessageNotFound` if missing or already deleted."""
        info = await self._call(self._soft_delete, message_id, actor_id, reason)
        if info is None:
            raise MessageNotFound(message_id)
        return info

    def _soft_delete(self, message_id: str, actor_id: str, reason: str) -> MessageInfo | None:
        with get_session(self.engine) as session:
            msg = session.get(ChatMessage, message_id)
            if msg is None or msg.is_deleted:
                return None
            msg.is_deleted = True
            msg.deleted_by = actor_id
            msg.deleted_at = self._clock()
            msg.deletion_reason = reason
            session.flush()
            return _to_info(session, msg, None, None)

    # -----------------------------------------------------------------------
    # Rate-limit window
    # -----------------------------------------------------------------------
    async def count_recent_messages(
        self, user_id: str, channel_id: str, window_seconds: int
    ) -> int:
        return await self._call(self._count_recent, user_id, channel_id, window_seconds)

    def _window_filter(self, user_id: str, channel_id: str, window_seconds: int):
        since = self._clock() - timedelta(seconds=window_seconds)
        return (
            ChatMessage.user_id == user_id,
            ChatMessage.channel_id == channel_id,
            ChatMessage.created_at > since,
            ChatMessage.is_deleted.is_(False),
        )

    def _count_recent(self, user_id: str, channel_id: str, window_seconds: int) -> int:
        with Session(self.engine) as session:
            return session.scalar(
                select(func.count(ChatMessage.id)).where(
                    *self._window_filter(user_id, channel_id, window_seconds)
                )
            ) or 0

    async def oldest_recent_message_at(
        self, user_id: str, channel_id: str, window_seconds: int
    ) -> datetime | None:
        return await self._call(self._oldest_recent, user_id, channel_id, window_seconds)

    def _oldest_recent(self, user_id: str, channel_id: str, window_seconds: int) -> datetime | None:
        with Session(self.engine) as session:
            return session.scalar(
                select(func.min(ChatMessage.created_at)).where(
                    *self._window_filter(user_id, channel_id, window_seconds)
                )
            )

    # -----------------------------------------------------------------------
    # Best-effort denormalized counters
    # -----------------------------------------------------------------------
    async def update_active_members_count(self, channel_id: str, count: int) -> bool:
        try:
            await run_db(self._write_members_count, channel_id, count)
            return True
        except SQLAlchemyError:
            logger.warning(
                "Failed to update active member count for channel %s", channel_id,
                exc_info=True,
            )
            return False

    def _write_members_count(self, channel_id: str, count: int) -> None:
        with get_session(self.engine) as session:
            session.execute(
                update(ChatChannel)
                .where(ChatChannel.id == channel_id, ChatChannel.deleted_at.is_(None))
                .values(active_members_count=count)
            )

    async def update_channel_stats(self, channel_id: str) -> bool:
        try:
            await run_db(self._bump_stats, channel_id)
            return True
        except SQLAlchemyError:
            logger.warning("Failed to update stats for channel %s", channel_id, exc_info=True)
            return False

    def _bump_stats(self, channel_id: str) -> None:
        with get_session(self.engine) as session:
            session.execute(
                update(ChatChannel)
                .where(ChatChannel.id == channel_id, ChatChannel.deleted_at.is_(None))
                .values(
                    total_messages=ChatChannel.total_messages + 1,
                    last_message_at=self._clock(),
                )
            )


def _to_info(
    session: Session,
    msg: ChatMessage,
    user_name: str | None,
    user_role: str | None,
) -> MessageInfo:
    reply = None
    if msg.reply_to_message_id:
        parent = session.get(ChatMessage, msg.reply_to_message_id)
        if parent is not None:
            parent_author = session.get(User, parent.user_id)
            reply = {
                "id": parent.id,
                "message": parent.message,
                "user_name": parent_author.full_name if parent_author else None,
                "created_at": parent.created_at.isoformat() if parent.created_at else None,
            }
    return MessageInfo(
        id=msg.id,
        channel_id=msg.channel_id,
        user_id=msg.user_id,
        analyst_id=msg.analyst_id,
        message=msg.message,
        message_type=msg.message_type,
        created_at=msg.created_at,
        reply_to_message_id=msg.reply_to_message_id,
        user_name=user_name,
        user_role=user_role,
        is_deleted=msg.is_deleted,
        is_pinned=msg.is_pinned,
        reply_to=reply,
    )
