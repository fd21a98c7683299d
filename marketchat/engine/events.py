"""
marketchat.engine.events — Typed chat events
=============================================

The closed set of events a client may send and the server may emit, with a
pydantic model per payload.  Wire frames look like::

    {"event": "send_message", "data": {"channelId": "…", "message": "hi"}}

Field names on the wire keep the camelCase/snake_case mix existing clients
already speak; Python attributes are snake_case throughout.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from marketchat.database.models import MessageType
from marketchat.engine.errors import ValidationFailure

__all__ = [
    "ClientEvent",
    "ServerEvent",
    "INBOUND_MODELS",
    "parse_event",
    "frame",
]


class ClientEvent(enum.StrEnum):
    """Inbound events, one handler each in the relay."""
    JOIN_CHANNEL = "join_channel"
    LEAVE_CHANNEL = "leave_channel"
    SEND_MESSAGE = "send_message"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    DELETE_MESSAGE = "delete_message"
    MUTE_USER = "mute_user"
    UNMUTE_USER = "unmute_user"
    BAN_USER = "ban_user"
    UNBAN_USER = "unban_user"
    GET_ONLINE_USERS = "get_online_users"
    PRESENCE_UPDATE = "presence_update"


class ServerEvent(enum.StrEnum):
    """Outbound events."""
    CHANNEL_JOINED = "channel_joined"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    MESSAGE = "message"
    MESSAGE_DELETED = "message_deleted"
    TYPING_INDICATOR = "typing_indicator"
    USER_MUTED = "user_muted"
    USER_UNMUTED = "user_unmuted"
    USER_BANNED = "user_banned"
    USER_UNBANNED = "user_unbanned"
    USER_BANNED_NOTIFICATION = "user_banned_notification"
    MUTE_SUCCESS = "mute_success"
    UNMUTE_SUCCESS = "unmute_success"
    BAN_SUCCESS = "ban_success"
    UNBAN_SUCCESS = "unban_success"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    RATE_LIMIT_WARNING = "rate_limit_warning"
    ONLINE_USERS = "online_users"
    PRESENCE_UPDATE = "presence_update"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    NEW_NOTIFICATION = "new_notification"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------
class _Inbound(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )


class _ChannelScoped(_Inbound):
    channel_id: str = Field(alias="channelId", min_length=1)


class JoinChannel(_ChannelScoped):
    pass


class LeaveChannel(_ChannelScoped):
    pass


class SendMessage(_ChannelScoped):
    message: str
    message_type: MessageType = Field(default=MessageType.TEXT, alias="messageType")
    reply_to_message_id: str | None = Field(default=None, alias="replyToMessageId")


class TypingStart(_ChannelScoped):
    pass


class TypingStop(_ChannelScoped):
    pass


class DeleteMessage(_ChannelScoped):
    message_id: str = Field(alias="messageId", min_length=1)
    reason: str = "Deleted by user"


class MuteUser(_ChannelScoped):
    target_user_id: str = Field(alias="targetUserId", min_length=1)
    duration: int | None = None  # minutes; -1 is permanent


class UnmuteUser(_ChannelScoped):
    target_user_id: str = Field(alias="targetUserId", min_length=1)


class BanUser(_ChannelScoped):
    target_user_id: str = Field(alias="targetUserId", min_length=1)
    reason: str = "Banned by analyst"


class UnbanUser(_ChannelScoped):
    target_user_id: str = Field(alias="targetUserId", min_length=1)


class GetOnlineUsers(_ChannelScoped):
    pass


class PresenceUpdate(_Inbound):
    status: str | None = None


INBOUND_MODELS: dict[ClientEvent, type[_Inbound]] = {
    ClientEvent.JOIN_CHANNEL: JoinChannel,
    ClientEvent.LEAVE_CHANNEL: LeaveChannel,
    ClientEvent.SEND_MESSAGE: SendMessage,
    ClientEvent.TYPING_START: TypingStart,
    ClientEvent.TYPING_STOP: TypingStop,
    ClientEvent.DELETE_MESSAGE: DeleteMessage,
    ClientEvent.MUTE_USER: MuteUser,
    ClientEvent.UNMUTE_USER: UnmuteUser,
    ClientEvent.BAN_USER: BanUser,
    ClientEvent.UNBAN_USER: UnbanUser,
    ClientEvent.GET_ONLINE_USERS: GetOnlineUsers,
    ClientEvent.PRESENCE_UPDATE: PresenceUpdate,
}

if set(INBOUND_MODELS) != set(ClientEvent):
    raise RuntimeError("every ClientEvent needs a payload model")

_REQUIRED_MESSAGES: dict[ClientEvent, str] = {
    ClientEvent.SEND_MESSAGE: "Channel ID and message are required",
    ClientEvent.DELETE_MESSAGE: "Message ID and Channel ID are required",
    ClientEvent.MUTE_USER: "Channel ID and Target User ID are required",
    ClientEvent.UNMUTE_USER: "Channel ID and Target User ID are required",
    ClientEvent.BAN_USER: "Channel ID and Target User ID are required",
    ClientEvent.UNBAN_USER: "Channel ID and Target User ID are required",
}


def parse_event(name: str, data: Any) -> tuple[ClientEvent, _Inbound]:
    """Validate one inbound frame.

    Raises
    ------
    ValidationFailure
        For unknown event names or payloads that don't fit the model.
    """
    try:
        event = ClientEvent(name)
    except ValueError:
        raise ValidationFailure(f"Unknown event: {name!r}") from None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationFailure("Event payload must be an object")

    try:
        return event, INBOUND_MODELS[event].model_validate(data)
    except ValidationError as exc:
        raise ValidationFailure(_describe(event, exc)) from None


def _describe(event: ClientEvent, exc: ValidationError) -> str:
    missing = any(err["type"] in ("missing", "string_too_short") for err in exc.errors())
    if missing:
        return _REQUIRED_MESSAGES.get(event, "Channel ID is required")
    err = exc.errors()[0]
    field = ".".join(str(part) for part in err["loc"]) or "payload"
    return f"Invalid {field}: {err['msg']}"


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------
class _Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class _ChannelNotice(_Outbound):
    channel_id: str = Field(alias="channelId")


class ChannelJoined(_ChannelNotice):
    channel: dict[str, Any]
    messages: list[dict[str, Any]]
    pinned_messages: list[dict[str, Any]]
    online_count: int
    can_post: bool
    is_analyst: bool
    timestamp: datetime


class UserJoined(_ChannelNotice):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    user_role: str = Field(alias="userRole")
    online_count: int
    timestamp: datetime


class UserLeft(_ChannelNotice):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    online_count: int
    timestamp: datetime


class MessageDeleted(_ChannelNotice):
    message_id: str = Field(alias="messageId")
    deleted_by: str = Field(alias="deletedBy")
    reason: str
    timestamp: datetime


class TypingIndicator(_ChannelNotice):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    typing_users: list[str] | None = None
    typing_count: int | None = None
    stopped: bool | None = None


class UserMuted(_ChannelNotice):
    message: str
    duration: int | None = None
    mute_until: datetime | None = None
    remaining_minutes: int | None = None


class UserUnmuted(_ChannelNotice):
    message: str


class UserBanned(_ChannelNotice):
    message: str
    reason: str | None = None


class UserUnbanned(_ChannelNotice):
    message: str


class UserBannedNotification(_ChannelNotice):
    target_user_id: str = Field(alias="targetUserId")
    banned_by: str = Field(alias="bannedBy")


class MuteSuccess(_ChannelNotice):
    target_user_id: str = Field(alias="targetUserId")
    duration: int
    mute_until: datetime | None = None


class ModerationSuccess(_ChannelNotice):
    target_user_id: str = Field(alias="targetUserId")
    reason: str | None = None


class RateLimitExceeded(_ChannelNotice):
    message: str
    retry_after: int
    limit: int


class RateLimitWarning(_ChannelNotice):
    message: str
    remaining: int


class OnlineUsers(_ChannelNotice):
    users: list[dict[str, Any]]
    count: int


class PresenceNotice(_Outbound):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    last_activity: datetime = Field(alias="lastActivity")


class UserStatus(_Outbound):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    timestamp: datetime


class ErrorNotice(_Outbound):
    event: str
    message: str


def frame(event: ServerEvent, payload: _Outbound | dict[str, Any]) -> dict[str, Any]:
    """Build the JSON-ready wire frame for one outbound event."""
    if isinstance(payload, BaseModel):
        data = payload.model_dump(by_alias=True, mode="json", exclude_none=True)
    else:
        data = payload
    return {"event": str(event), "data": data}
