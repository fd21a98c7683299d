"""
marketchat.engine.relay — Message Relay
========================================

The coordinator.  Owns the presence registry, typing tracker, moderation
store and rate limiter; consults the access policy; persists through the
:class:`ChatStore`; and fans events out to connections.

Each connection has an outbound FIFO (:class:`ChatConnection`).  Fan-out
enqueues synchronously, so every recipient observes room events in the
same order.  The transport drains the queue on its own task.

Per connection, inbound events are handled strictly in arrival order by
the transport's receive loop.  Every store call is a suspension point, so
moderation is re-checked after the last store await before a message is
persisted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from marketchat.config import ChatConfig
from marketchat.engine.access import AccessDecision, check_access
from marketchat.engine.clock import Clock, utcnow
from marketchat.engine.errors import (
    AuthorizationDenied,
    ChannelNotFound,
    ChatError,
    MessageNotFound,
    ValidationFailure,
)
from marketchat.engine.events import (
    BanUser,
    ChannelJoined,
    ClientEvent,
    DeleteMessage,
    ErrorNotice,
    GetOnlineUsers,
    JoinChannel,
    LeaveChannel,
    MessageDeleted,
    ModerationSuccess,
    MuteSuccess,
    MuteUser,
    OnlineUsers,
    PresenceNotice,
    PresenceUpdate,
    RateLimitExceeded,
    RateLimitWarning,
    SendMessage,
    ServerEvent,
    TypingIndicator,
    TypingStart,
    TypingStop,
    UnbanUser,
    UnmuteUser,
    UserBanned,
    UserBannedNotification,
    UserJoined,
    UserLeft,
    UserMuted,
    UserStatus,
    UserUnbanned,
    UserUnmuted,
    frame,
    parse_event,
)
from marketchat.engine.moderation import PERMANENT, BanEntry, ModerationStore, MuteEntry
from marketchat.engine.presence import PresenceRegistry
from marketchat.engine.rate_limiter import RateLimiter
from marketchat.engine.records import ChannelInfo, Identity, SubscriptionInfo
from marketchat.engine.typing_tracker import TypingTracker
from marketchat.services.chat_store import ChatStore

logger = logging.getLogger(__name__)

NO_ACCESS = "You do not have access to this channel"
BANNED_NOTICE = "You are banned from this channel"
REPLY_MISSING = "The message you are replying to does not exist"

# Bad input on these is dropped without an error frame.
_SILENT_EVENTS = frozenset({
    ClientEvent.LEAVE_CHANNEL,
    ClientEvent.TYPING_START,
    ClientEvent.TYPING_STOP,
    ClientEvent.PRESENCE_UPDATE,
})

_FAILURE_MESSAGES: dict[ClientEvent, str] = {
    ClientEvent.JOIN_CHANNEL: "Failed to join channel",
    ClientEvent.LEAVE_CHANNEL: "Failed to leave channel",
    ClientEvent.SEND_MESSAGE: "Failed to send message",
    ClientEvent.TYPING_START: "Failed to update typing status",
    ClientEvent.TYPING_STOP: "Failed to update typing status",
    ClientEvent.DELETE_MESSAGE: "Failed to delete message",
    ClientEvent.MUTE_USER: "Failed to mute user",
    ClientEvent.UNMUTE_USER: "Failed to unmute user",
    ClientEvent.BAN_USER: "Failed to ban user",
    ClientEvent.UNBAN_USER: "Failed to unban user",
    ClientEvent.GET_ONLINE_USERS: "Failed to get online users",
    ClientEvent.PRESENCE_UPDATE: "Failed to update presence",
}


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------
class ChatConnection:
    """One authenticated socket, seen from the relay.

    Outbound frames are queued; ``None`` in the queue means the relay has
    closed this connection (disconnect or replaced by a reconnect).
    """

    def __init__(self, identity: Identity) -> None:
        self.identity = identity
        self.session_id: str | None = None
        self.closed = False
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def role(self) -> str:
        return self.identity.role

    @property
    def display_name(self) -> str:
        return self.identity.display_name

    def push(self, message: dict[str, Any]) -> None:
        if not self.closed:
            self._outbox.put_nowait(message)

    def send(self, event: ServerEvent, payload: Any) -> None:
        self.push(frame(event, payload))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._outbox.put_nowait(None)

    async def next_frame(self) -> dict[str, Any] | None:
        """Wait for the next outbound frame; ``None`` once closed."""
        return await self._outbox.get()

    def drain(self) -> list[dict[str, Any]]:
        """Pop every queued frame without waiting."""
        frames = []
        while not self._outbox.empty():
            item = self._outbox.get_nowait()
            if item is not None:
                frames.append(item)
        return frames

    def __repr__(self) -> str:
        return f"<ChatConnection user={self.user_id} session={self.session_id}>"


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------
class MessageRelay:
    """Routes inbound chat events and owns all volatile chat state."""

    def __init__(
        self,
        store: ChatStore,
        cfg: ChatConfig | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.cfg = cfg or ChatConfig()
        self._clock = clock
        self.presence = PresenceRegistry(clock)
        self.typing = TypingTracker(
            ttl_seconds=self.cfg.typing_ttl_seconds,
            max_names=self.cfg.max_typing_names,
            clock=clock,
        )
        self.moderation = ModerationStore(clock)
        self.rate_limiter = RateLimiter(
            store,
            default_limit=self.cfg.default_rate_limit,
            analyst_limit=self.cfg.analyst_rate_limit,
            window_seconds=self.cfg.rate_window_seconds,
            warning_ratio=self.cfg.rate_warning_ratio,
            clock=clock,
        )
        self._connections: dict[str, ChatConnection] = {}

        self._handlers: dict[ClientEvent, Callable[[ChatConnection, Any], Awaitable[None]]] = {
            ClientEvent.JOIN_CHANNEL: self._on_join_channel,
            ClientEvent.LEAVE_CHANNEL: self._on_leave_channel,
            ClientEvent.SEND_MESSAGE: self._on_send_message,
            ClientEvent.TYPING_START: self._on_typing_start,
            ClientEvent.TYPING_STOP: self._on_typing_stop,
            ClientEvent.DELETE_MESSAGE: self._on_delete_message,
            ClientEvent.MUTE_USER: self._on_mute_user,
            ClientEvent.UNMUTE_USER: self._on_unmute_user,
            ClientEvent.BAN_USER: self._on_ban_user,
            ClientEvent.UNBAN_USER: self._on_unban_user,
            ClientEvent.GET_ONLINE_USERS: self._on_get_online_users,
            ClientEvent.PRESENCE_UPDATE: self._on_presence_update,
        }
        missing = set(ClientEvent) - set(self._handlers)
        if missing:
            raise RuntimeError(f"unhandled client events: {sorted(missing)}")

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------
    async def connect(self, identity: Identity) -> ChatConnection:
        """Register an authenticated socket and announce the user online."""
        conn = ChatConnection(identity)
        entry, evicted = self.presence.connect(
            identity.user_id, identity.role, identity.display_name
        )
        conn.session_id = entry.session_id

        previous = self._connections.get(identity.user_id)
        self._connections[identity.user_id] = conn
        if previous is not None:
            previous.close()
        if evicted is not None:
            self.typing.stop_all(identity.user_id)
            self._announce_departure(identity, evicted.channel_counts)

        logger.info(
            "User connected: %s (%s) session=%s",
            identity.display_name, identity.user_id, entry.session_id,
        )
        self._broadcast_all(
            ServerEvent.USER_ONLINE,
            UserStatus(
                user_id=identity.user_id,
                user_name=identity.display_name,
                timestamp=self._clock(),
            ),
            exclude=identity.user_id,
        )
        if evicted is not None:
            for channel_id, count in evicted.channel_counts.items():
                await self._sync_member_count(channel_id, count)
        return conn

    async def disconnect(self, conn: ChatConnection) -> None:
        """Tear down *conn*.  A stale connection (already replaced) only closes."""
        conn.close()
        result = self.presence.disconnect(conn.user_id, conn.session_id)
        if not result.removed:
            return
        if self._connections.get(conn.user_id) is conn:
            del self._connections[conn.user_id]

        self.typing.stop_all(conn.user_id)
        self._announce_departure(conn.identity, result.channel_counts)
        self._broadcast_all(
            ServerEvent.USER_OFFLINE,
            UserStatus(
                user_id=conn.user_id,
                user_name=conn.display_name,
                timestamp=self._clock(),
            ),
        )
        logger.info("User disconnected: %s (%s)", conn.display_name, conn.user_id)
        for channel_id, count in result.channel_counts.items():
            await self._sync_member_count(channel_id, count)

    def _announce_departure(self, identity: Identity, channel_counts: dict[str, int]) -> None:
        for channel_id, count in channel_counts.items():
            self._broadcast(
                channel_id,
                ServerEvent.USER_LEFT,
                UserLeft(
                    channel_id=channel_id,
                    user_id=identity.user_id,
                    user_name=identity.display_name,
                    online_count=count,
                    timestamp=self._clock(),
                ),
            )

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------
    async def handle(self, conn: ChatConnection, name: str, data: Any) -> None:
        """Validate and route one inbound event.  Never raises."""
        try:
            event, payload = parse_event(name, data)
        except ValidationFailure as exc:
            if name in _SILENT_EVENTS:
                logger.debug("Dropped malformed %s from %s", name, conn.user_id)
                return
            conn.send(ServerEvent.ERROR, ErrorNotice(event=str(name), message=exc.message))
            return

        logger.debug("Event %s from user %s", event, conn.user_id)
        try:
            await self._handlers[event](conn, payload)
        except ChatError as exc:
            conn.send(ServerEvent.ERROR, ErrorNotice(event=event, message=exc.message))
        except Exception:
            logger.exception("Error handling %s for user %s", event, conn.user_id)
            conn.send(
                ServerEvent.ERROR,
                ErrorNotice(event=event, message=_FAILURE_MESSAGES[event]),
            )

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------
    async def _on_join_channel(self, conn: ChatConnection, payload: JoinChannel) -> None:
        channel = await self.store.get_channel(payload.channel_id)
        decision = await self._access(conn, channel)
        if not decision.has_access:
            raise AuthorizationDenied(decision.reason or NO_ACCESS)
        if self.moderation.is_banned(channel.id, conn.user_id):
            conn.send(
                ServerEvent.USER_BANNED,
                UserBanned(channel_id=channel.id, message=BANNED_NOTICE),
            )
            return

        messages = await self.store.get_recent_messages(channel.id, self.cfg.history_limit)
        pinned = await self.store.get_pinned_messages(channel.id, self.cfg.pinned_limit)

        # Nothing below awaits until the room has been told.  A reconnect or a
        # ban that landed during the loads above ends the join here.
        if not self._is_current(conn):
            logger.debug("Dropped join from replaced session of %s", conn.user_id)
            return
        if self.moderation.is_banned(channel.id, conn.user_id):
            return
        try:
            joined = self.presence.join(conn.user_id, channel.id, session_id=conn.session_id)
        except KeyError:
            logger.debug("Join from %s raced with its disconnect", conn.user_id)
            return

        conn.send(
            ServerEvent.CHANNEL_JOINED,
            ChannelJoined(
                channel_id=channel.id,
                channel=channel.to_dict(),
                messages=[m.to_dict() for m in messages],
                pinned_messages=[m.to_dict() for m in pinned],
                online_count=joined.online_count,
                can_post=decision.can_post,
                is_analyst=decision.is_analyst,
                timestamp=self._clock(),
            ),
        )
        if joined.newly_joined:
            logger.info("User %s joined channel %s", conn.user_id, channel.id)
            self._broadcast(
                channel.id,
                ServerEvent.USER_JOINED,
                UserJoined(
                    channel_id=channel.id,
                    user_id=conn.user_id,
                    user_name=conn.display_name,
                    user_role=str(conn.role),
                    online_count=joined.online_count,
                    timestamp=self._clock(),
                ),
                exclude=conn.user_id,
            )
        await self._sync_member_count(channel.id, joined.online_count)

    async def _on_leave_channel(self, conn: ChatConnection, payload: LeaveChannel) -> None:
        channel_id = payload.channel_id
        if not self.presence.is_member(conn.user_id, channel_id):
            return
        count = self.presence.leave(conn.user_id, channel_id)
        self._stop_typing(conn, channel_id)
        self._broadcast(
            channel_id,
            ServerEvent.USER_LEFT,
            UserLeft(
                channel_id=channel_id,
                user_id=conn.user_id,
                user_name=conn.display_name,
                online_count=count,
                timestamp=self._clock(),
            ),
        )
        await self._sync_member_count(channel_id, count)
        logger.info("User %s left channel %s", conn.user_id, channel_id)

    async def _on_send_message(self, conn: ChatConnection, payload: SendMessage) -> None:
        text = payload.message.strip()
        if not text:
            raise ValidationFailure("Message cannot be empty")
        if len(text) > self.cfg.max_message_length:
            raise ValidationFailure(
                f"Message too long (max {self.cfg.max_message_length} characters)"
            )

        channel = await self.store.get_channel(payload.channel_id)
        decision = await self._access(conn, channel)
        if not decision.has_access:
            raise AuthorizationDenied(NO_ACCESS)
        if not decision.can_post:
            raise AuthorizationDenied(decision.reason or NO_ACCESS)
        if payload.reply_to_message_id is not None:
            await self._check_reply_target(channel.id, payload.reply_to_message_id)

        if self._blocked_by_moderation(conn, channel.id):
            return

        warning = None
        if not self.rate_limiter.bypasses(channel, conn.user_id):
            limit = self.rate_limiter.limit_for(channel, conn.user_id)
            result = await self.rate_limiter.check_rate_limit(conn.user_id, channel.id, limit)
            if result.is_limited:
                conn.send(
                    ServerEvent.RATE_LIMIT_EXCEEDED,
                    RateLimitExceeded(
                        channel_id=channel.id,
                        message=(
                            f"Rate limit exceeded. Please wait "
                            f"{result.retry_after_seconds} seconds."
                        ),
                        retry_after=result.retry_after_seconds,
                        limit=result.limit,
                    ),
                )
                return
            if result.should_warn:
                warning = RateLimitWarning(
                    channel_id=channel.id,
                    message=(
                        f"Approaching rate limit: {result.remaining} "
                        f"of {result.limit} messages remaining"
                    ),
                    remaining=result.remaining,
                )
            # a mute or ban may have landed while the count was in flight
            if self._blocked_by_moderation(conn, channel.id):
                return

        message = await self.store.create_message(
            channel_id=channel.id,
            user_id=conn.user_id,
            analyst_id=channel.analyst_id,
            text=text,
            message_type=payload.message_type,
            reply_to=payload.reply_to_message_id,
        )
        await self.store.update_channel_stats(channel.id)
        self._stop_typing(conn, channel.id)

        body = message.to_dict()
        body["user_name"] = body["user_name"] or conn.display_name
        body["user_role"] = body["user_role"] or str(conn.role)
        self._broadcast(channel.id, ServerEvent.MESSAGE, body)
        if warning is not None:
            conn.send(ServerEvent.RATE_LIMIT_WARNING, warning)

    async def _on_typing_start(self, conn: ChatConnection, payload: TypingStart) -> None:
        channel_id = payload.channel_id
        if not self.presence.is_member(conn.user_id, channel_id):
            return
        snapshot = self.typing.start_typing(conn.user_id, conn.display_name, channel_id)
        self._broadcast(
            channel_id,
            ServerEvent.TYPING_INDICATOR,
            TypingIndicator(
                channel_id=channel_id,
                user_id=conn.user_id,
                user_name=conn.display_name,
                typing_users=snapshot.user_names,
                typing_count=snapshot.count,
            ),
            exclude=conn.user_id,
        )

    async def _on_typing_stop(self, conn: ChatConnection, payload: TypingStop) -> None:
        if not self.presence.is_member(conn.user_id, payload.channel_id):
            return
        self._stop_typing(conn, payload.channel_id)

    async def _on_delete_message(self, conn: ChatConnection, payload: DeleteMessage) -> None:
        message = await self.store.get_message(payload.message_id)
        if message.channel_id != payload.channel_id or message.is_deleted:
            raise MessageNotFound(payload.message_id)
        channel = await self.store.get_channel(payload.channel_id)
        if message.user_id != conn.user_id and not channel.is_owner(conn.user_id):
            raise AuthorizationDenied("You can only delete your own messages")

        await self.store.delete_message(message.id, conn.user_id, payload.reason)
        logger.info(
            "Message %s deleted in channel %s by %s", message.id, channel.id, conn.user_id
        )
        self._broadcast(
            channel.id,
            ServerEvent.MESSAGE_DELETED,
            MessageDeleted(
                channel_id=channel.id,
                message_id=message.id,
                deleted_by=conn.user_id,
                reason=payload.reason,
                timestamp=self._clock(),
            ),
        )

    async def _on_mute_user(self, conn: ChatConnection, payload: MuteUser) -> None:
        channel = await self._moderated_channel(conn, payload.channel_id, payload.target_user_id)
        duration = (
            payload.duration if payload.duration is not None else self.cfg.default_mute_minutes
        )
        entry = await self.mute_user_direct(
            channel.id, payload.target_user_id, duration, actor_id=conn.user_id
        )
        conn.send(
            ServerEvent.MUTE_SUCCESS,
            MuteSuccess(
                channel_id=channel.id,
                target_user_id=payload.target_user_id,
                duration=duration,
                mute_until=entry.until,
            ),
        )

    async def _on_unmute_user(self, conn: ChatConnection, payload: UnmuteUser) -> None:
        channel = await self._moderated_channel(conn, payload.channel_id, payload.target_user_id)
        if not await self.unmute_user_direct(channel.id, payload.target_user_id):
            raise ValidationFailure("User is not muted in this channel")
        conn.send(
            ServerEvent.UNMUTE_SUCCESS,
            ModerationSuccess(channel_id=channel.id, target_user_id=payload.target_user_id),
        )

    async def _on_ban_user(self, conn: ChatConnection, payload: BanUser) -> None:
        channel = await self._moderated_channel(conn, payload.channel_id, payload.target_user_id)
        await self.ban_user_direct(
            channel.id, payload.target_user_id, payload.reason, actor_id=conn.user_id
        )
        conn.send(
            ServerEvent.BAN_SUCCESS,
            ModerationSuccess(
                channel_id=channel.id,
                target_user_id=payload.target_user_id,
                reason=payload.reason,
            ),
        )

    async def _on_unban_user(self, conn: ChatConnection, payload: UnbanUser) -> None:
        channel = await self._moderated_channel(conn, payload.channel_id, payload.target_user_id)
        if not await self.unban_user_direct(channel.id, payload.target_user_id):
            raise ValidationFailure("User is not banned from this channel")
        conn.send(
            ServerEvent.UNBAN_SUCCESS,
            ModerationSuccess(channel_id=channel.id, target_user_id=payload.target_user_id),
        )

    async def _on_get_online_users(self, conn: ChatConnection, payload: GetOnlineUsers) -> None:
        channel = await self.store.get_channel(payload.channel_id)
        decision = await self._access(conn, channel)
        if not decision.has_access:
            raise AuthorizationDenied(NO_ACCESS)
        users = self.online_users_snapshot(channel.id)
        conn.send(
            ServerEvent.ONLINE_USERS,
            OnlineUsers(channel_id=channel.id, users=users, count=len(users)),
        )

    async def _on_presence_update(self, conn: ChatConnection, payload: PresenceUpdate) -> None:
        entry = self.presence.touch(conn.user_id)
        if entry is None:
            return
        notice = PresenceNotice(
            user_id=conn.user_id,
            user_name=conn.display_name,
            last_activity=entry.last_activity,
        )
        for channel_id in self.presence.joined_channels(conn.user_id):
            self._broadcast(
                channel_id, ServerEvent.PRESENCE_UPDATE, notice, exclude=conn.user_id
            )

    # -----------------------------------------------------------------------
    # Shared checks
    # -----------------------------------------------------------------------
    async def _access(self, conn: ChatConnection, channel: ChannelInfo) -> AccessDecision:
        subscription: SubscriptionInfo | None = None
        if not channel.is_owner(conn.user_id) and not channel.is_deleted:
            subscription = await self.store.get_active_subscription(
                conn.user_id, channel.analyst_id
            )
        return check_access(channel, conn.user_id, conn.role, subscription)

    async def _check_reply_target(self, channel_id: str, message_id: str) -> None:
        try:
            parent = await self.store.get_message(message_id)
        except MessageNotFound:
            raise ValidationFailure(REPLY_MISSING) from None
        if parent.channel_id != channel_id or parent.is_deleted:
            raise ValidationFailure(REPLY_MISSING)

    def _blocked_by_moderation(self, conn: ChatConnection, channel_id: str) -> bool:
        """Emit ``user_muted`` or ``user_banned`` and return True if blocked."""
        status = self.moderation.is_muted(channel_id, conn.user_id)
        if status.muted:
            if status.permanent:
                text = "You are permanently muted in this channel"
            else:
                text = f"You are muted for {status.remaining_minutes} more minute(s)"
            conn.send(
                ServerEvent.USER_MUTED,
                UserMuted(
                    channel_id=channel_id,
                    message=text,
                    mute_until=status.until,
                    remaining_minutes=status.remaining_minutes,
                ),
            )
            return True
        if self.moderation.is_banned(channel_id, conn.user_id):
            conn.send(
                ServerEvent.USER_BANNED,
                UserBanned(channel_id=channel_id, message=BANNED_NOTICE),
            )
            return True
        return False

    async def _moderated_channel(
        self, conn: ChatConnection, channel_id: str, target_user_id: str
    ) -> ChannelInfo:
        """Load *channel_id* and verify *conn* may moderate *target_user_id* in it."""
        channel = await self.store.get_channel(channel_id)
        if channel.is_deleted:
            raise ChannelNotFound(channel_id)
        if not channel.is_owner(conn.user_id):
            raise AuthorizationDenied("Only the channel owner can moderate this channel")
        if channel.is_owner(target_user_id):
            raise ValidationFailure("You cannot moderate yourself")
        return channel

    def _stop_typing(self, conn: ChatConnection, channel_id: str) -> None:
        self._stop_typing_for(conn.user_id, conn.display_name, channel_id)

    def _stop_typing_for(self, user_id: str, user_name: str, channel_id: str) -> None:
        if not self.typing.stop_typing(user_id, channel_id):
            return
        self._broadcast(
            channel_id,
            ServerEvent.TYPING_INDICATOR,
            TypingIndicator(
                channel_id=channel_id,
                user_id=user_id,
                user_name=user_name,
                stopped=True,
            ),
            exclude=user_id,
        )

    def _is_current(self, conn: ChatConnection) -> bool:
        """False once *conn* was closed or replaced by a newer session."""
        return not conn.closed and self._connections.get(conn.user_id) is conn

    async def _sync_member_count(self, channel_id: str, count: int) -> None:
        try:
            await self.store.update_active_members_count(channel_id, count)
        except ChatError as exc:
            logger.warning(
                "Could not record member count for channel %s: %s", channel_id, exc.message
            )

    # -----------------------------------------------------------------------
    # Fan-out
    # -----------------------------------------------------------------------
    def _broadcast(
        self,
        channel_id: str,
        event: ServerEvent,
        payload: Any,
        *,
        exclude: str | None = None,
    ) -> int:
        message = frame(event, payload)
        sent = 0
        for user_id in sorted(self.presence.member_ids(channel_id)):
            if user_id == exclude:
                continue
            conn = self._connections.get(user_id)
            if conn is not None:
                conn.push(message)
                sent += 1
        return sent

    def _broadcast_all(self, event: ServerEvent, payload: Any, *, exclude: str | None = None) -> int:
        message = frame(event, payload)
        sent = 0
        for user_id, conn in list(self._connections.items()):
            if user_id != exclude:
                conn.push(message)
                sent += 1
        return sent

    def _send_to_user(self, user_id: str, event: ServerEvent, payload: Any) -> bool:
        conn = self._connections.get(user_id)
        if conn is None:
            return False
        conn.send(event, payload)
        return True

    def _display_name(self, user_id: str) -> str:
        entry = self.presence.connection(user_id)
        return entry.display_name if entry else "User"

    # -----------------------------------------------------------------------
    # Administrative API (REST fallbacks, other services)
    # -----------------------------------------------------------------------
    async def mute_user_direct(
        self,
        channel_id: str,
        target_user_id: str,
        duration_minutes: int,
        *,
        actor_id: str | None = None,
    ) -> MuteEntry:
        """Mute without an owner check and notify the target if connected."""
        entry = self.moderation.mute(
            channel_id, target_user_id, duration_minutes, actor_id=actor_id
        )
        if duration_minutes == PERMANENT:
            text = "You have been permanently muted in this channel"
        else:
            text = f"You have been muted for {duration_minutes} minute(s)"
        self._send_to_user(
            target_user_id,
            ServerEvent.USER_MUTED,
            UserMuted(
                channel_id=channel_id,
                message=text,
                duration=duration_minutes,
                mute_until=entry.until,
            ),
        )
        return entry

    async def unmute_user_direct(self, channel_id: str, target_user_id: str) -> bool:
        removed = self.moderation.unmute(channel_id, target_user_id)
        if removed:
            self._send_to_user(
                target_user_id,
                ServerEvent.USER_UNMUTED,
                UserUnmuted(channel_id=channel_id, message="You have been unmuted"),
            )
        return removed

    async def ban_user_direct(
        self,
        channel_id: str,
        target_user_id: str,
        reason: str = "Banned by analyst",
        *,
        actor_id: str | None = None,
    ) -> BanEntry:
        """Ban, force the target out of the room and notify everyone concerned."""
        entry = self.moderation.ban(channel_id, target_user_id, reason, actor_id=actor_id)

        was_member = self.presence.is_member(target_user_id, channel_id)
        count = self.presence.leave(target_user_id, channel_id)
        self._stop_typing_for(
            target_user_id, self._display_name(target_user_id), channel_id
        )

        self._send_to_user(
            target_user_id,
            ServerEvent.USER_BANNED,
            UserBanned(channel_id=channel_id, message=BANNED_NOTICE, reason=entry.reason),
        )
        self._broadcast(
            channel_id,
            ServerEvent.USER_BANNED_NOTIFICATION,
            UserBannedNotification(
                channel_id=channel_id,
                target_user_id=target_user_id,
                banned_by=actor_id or "system",
            ),
        )
        if was_member:
            self._broadcast(
                channel_id,
                ServerEvent.USER_LEFT,
                UserLeft(
                    channel_id=channel_id,
                    user_id=target_user_id,
                    user_name=self._display_name(target_user_id),
                    online_count=count,
                    timestamp=self._clock(),
                ),
            )
            await self._sync_member_count(channel_id, count)
        return entry

    async def unban_user_direct(self, channel_id: str, target_user_id: str) -> bool:
        removed = self.moderation.unban(channel_id, target_user_id)
        if removed:
            self._send_to_user(
                target_user_id,
                ServerEvent.USER_UNBANNED,
                UserUnbanned(channel_id=channel_id, message="You have been unbanned"),
            )
        return removed

    def online_users_snapshot(self, channel_id: str) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.presence.online_users(channel_id)]

    def is_user_online(self, user_id: str) -> bool:
        return self.presence.is_online(user_id)

    def online_user_ids(self) -> list[str]:
        return self.presence.connected_user_ids()

    def send_notification_to_user(self, user_id: str, notification: dict[str, Any]) -> bool:
        """Push a ``new_notification`` event; False when the user is offline."""
        return self._send_to_user(user_id, ServerEvent.NEW_NOTIFICATION, notification)

    def broadcast_to_channel(
        self, channel_id: str, event: ServerEvent | str, payload: dict[str, Any]
    ) -> int:
        """Emit *event* to every member of *channel_id*.  Returns recipients."""
        return self._broadcast(channel_id, ServerEvent(event), payload)

    def chat_stats(self) -> dict[str, Any]:
        return {**self.presence.stats(), **self.moderation.stats()}
