"""
marketchat.engine.records — Immutable snapshots handed to the engine
=====================================================================

The store returns these plain snapshots instead of live ORM rows, so no
component ever touches a session after the store call returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from marketchat.database.models import ChannelType, SubscriptionStatus, UserRole


@dataclass(frozen=True, slots=True)
class ChannelInfo:
    id: str
    analyst_id: str | None
    channel_name: str
    channel_type: str = ChannelType.GENERAL
    is_read_only: bool = False
    message_rate_limit: int | None = 10
    require_subscription: bool = True
    minimum_tier_required: int | None = None
    minimum_tier_rank: int | None = None
    is_active: bool = True
    is_archived: bool = False
    is_deleted: bool = False
    active_members_count: int = 0

    @property
    def is_community(self) -> bool:
        return self.channel_type == ChannelType.COMMUNITY

    @property
    def is_announcement(self) -> bool:
        return self.channel_type == ChannelType.ANNOUNCEMENT

    def is_owner(self, user_id: str) -> bool:
        return self.analyst_id is not None and self.analyst_id == user_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "analyst_id": self.analyst_id,
            "channel_name": self.channel_name,
            "channel_type": str(self.channel_type),
            "is_read_only": self.is_read_only,
            "message_rate_limit": self.message_rate_limit,
            "require_subscription": self.require_subscription,
            "minimum_tier_required": self.minimum_tier_required,
            "is_active": self.is_active,
            "is_archived": self.is_archived,
            "active_members_count": self.active_members_count,
        }


@dataclass(frozen=True, slots=True)
class SubscriptionInfo:
    """The caller's subscription to one analyst."""

    tier_id: int
    tier_name: str
    rank: int
    status: str = SubscriptionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_paid(self) -> bool:
        return self.rank > 0


@dataclass(frozen=True, slots=True)
class MessageInfo:
    id: str
    channel_id: str
    user_id: str
    message: str
    message_type: str
    created_at: datetime
    analyst_id: str | None = None
    reply_to_message_id: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    is_deleted: bool = False
    is_pinned: bool = False
    reply_to: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "analyst_id": self.analyst_id,
            "message": self.message,
            "message_type": self.message_type,
            "reply_to_message_id": self.reply_to_message_id,
            "reply_to": self.reply_to,
            "user_name": self.user_name,
            "user_role": self.user_role,
            "is_deleted": self.is_deleted,
            "is_pinned": self.is_pinned,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class Identity:
    """An authenticated caller, produced by the handshake."""

    user_id: str
    role: str = UserRole.TRADER
    display_name: str = "User"
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
