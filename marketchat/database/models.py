"""
marketchat.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- users              — Marketplace accounts (traders, analysts, admins)
- subscription_tiers — Ranked tiers; rank 0 is the free tier
- subscriptions      — A trader's subscription to one analyst
- chat_channels      — Analyst-owned or platform-wide community channels
- chat_messages      — Channel message history with soft delete and pinning

Presence, typing and moderation state are deliberately absent: they live in
process memory (see :mod:`marketchat.engine.relay`).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all marketchat ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(enum.StrEnum):
    TRADER = "trader"
    ANALYST = "analyst"
    ADMIN = "admin"


class ChannelType(enum.StrEnum):
    """Channel flavours.  ``announcement`` channels are analyst broadcast only."""
    ANNOUNCEMENT = "announcement"
    GENERAL = "general"
    TRADING = "trading"
    IDEAS = "ideas"
    COMMUNITY = "community"


class SubscriptionStatus(enum.StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MessageType(enum.StrEnum):
    TEXT = "text"
    IMAGE = "image"
    CALL = "call"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.TRADER)
    profile_image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    subscriptions: Mapped[list[Subscription]] = relationship(
        back_populates="user",
        foreign_keys="Subscription.user_id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.full_name!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Subscription tiers — ranked so "at or above tier X" is a comparison
# ---------------------------------------------------------------------------
class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tier_name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        CheckConstraint("rank >= 0", name="ck_subscription_tiers_rank"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionTier id={self.id} name={self.tier_name!r} rank={self.rank}>"


# ---------------------------------------------------------------------------
# Subscriptions — (trader, analyst, tier)
# ---------------------------------------------------------------------------
class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    analyst_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscription_tiers.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE
    )
    subscribed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(
        back_populates="subscriptions", foreign_keys=[user_id]
    )
    tier: Mapped[SubscriptionTier] = relationship()

    __table_args__ = (
        Index("ix_subscriptions_user_analyst", "user_id", "analyst_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription user={self.user_id} analyst={self.analyst_id} "
            f"tier={self.tier_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Chat channels
# ---------------------------------------------------------------------------
class ChatChannel(Base):
    """A Discord-style channel.

    ``analyst_id`` is NULL only for platform-wide community channels.
    ``message_rate_limit`` is enforced >= 1 at the schema level so the rate
    limiter never sees a non-positive configured value from the store.
    """
    __tablename__ = "chat_channels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    analyst_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    channel_name: Mapped[str] = mapped_column(String(100), nullable=False)
    channel_description: Mapped[str | None] = mapped_column(Text, default=None)
    channel_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ChannelType.GENERAL
    )
    icon: Mapped[str | None] = mapped_column(String(16), default=None)
    is_read_only: Mapped[bool] = mapped_column(Boolean, default=False)
    message_rate_limit: Mapped[int] = mapped_column(Integer, default=10)
    require_subscription: Mapped[bool] = mapped_column(Boolean, default=True)
    minimum_tier_required: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("subscription_tiers.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    active_members_count: Mapped[int] = mapped_column(Integer, default=0)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    minimum_tier: Mapped[SubscriptionTier | None] = relationship()

    __table_args__ = (
        UniqueConstraint("analyst_id", "channel_name", name="uq_chat_channels_analyst_name"),
        CheckConstraint("message_rate_limit >= 1", name="ck_chat_channels_rate_limit"),
        Index("ix_chat_channels_analyst", "analyst_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatChannel id={self.id} name={self.channel_name!r} "
            f"type={self.channel_type}>"
        )


# ---------------------------------------------------------------------------
# Chat messages
# ---------------------------------------------------------------------------
class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    channel_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chat_channels.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    analyst_id: Mapped[str | None] = mapped_column(String(36), default=None)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MessageType.TEXT
    )
    attachment_url: Mapped[str | None] = mapped_column(String(500), default=None)
    reply_to_message_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_by: Mapped[str | None] = mapped_column(String(36), default=None)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    deletion_reason: Mapped[str | None] = mapped_column(Text, default=None)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    pinned_by: Mapped[str | None] = mapped_column(String(36), default=None)
    pinned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    author: Mapped[User] = relationship(foreign_keys=[user_id])

    __table_args__ = (
        CheckConstraint("length(message) > 0", name="ck_chat_messages_not_empty"),
        Index("ix_chat_messages_channel_time", "channel_id", "created_at"),
        Index("ix_chat_messages_user_channel_time", "user_id", "channel_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} channel={self.channel_id} user={self.user_id}>"
