"""Create chat schema: users, tiers, subscriptions, channels, messages

Revision ID: 3c5e7a9b1d20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c5e7a9b1d20"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="trader"),
        sa.Column("profile_image_url", sa.String(500), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "subscription_tiers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tier_name", sa.String(50), nullable=False, unique=True),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.CheckConstraint("rank >= 0", name="ck_subscription_tiers_rank"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "analyst_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tier_id", sa.Integer(), sa.ForeignKey("subscription_tiers.id"), nullable=False
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "subscribed_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_subscriptions_user_analyst", "subscriptions", ["user_id", "analyst_id"]
    )

    op.create_table(
        "chat_channels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "analyst_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("channel_name", sa.String(100), nullable=False),
        sa.Column("channel_description", sa.Text(), nullable=True),
        sa.Column("channel_type", sa.String(20), nullable=False, server_default="general"),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("is_read_only", sa.Boolean(), server_default=sa.false()),
        sa.Column("message_rate_limit", sa.Integer(), server_default="10"),
        sa.Column("require_subscription", sa.Boolean(), server_default=sa.true()),
        sa.Column(
            "minimum_tier_required",
            sa.Integer(),
            sa.ForeignKey("subscription_tiers.id"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.false()),
        sa.Column("total_messages", sa.Integer(), server_default="0"),
        sa.Column("active_members_count", sa.Integer(), server_default="0"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "analyst_id", "channel_name", name="uq_chat_channels_analyst_name"
        ),
        sa.CheckConstraint("message_rate_limit >= 1", name="ck_chat_channels_rate_limit"),
    )
    op.create_index("ix_chat_channels_analyst", "chat_channels", ["analyst_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "channel_id",
            sa.String(36),
            sa.ForeignKey("chat_channels.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("analyst_id", sa.String(36), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(20), nullable=False, server_default="text"),
        sa.Column("attachment_url", sa.String(500), nullable=True),
        sa.Column(
            "reply_to_message_id",
            sa.String(36),
            sa.ForeignKey("chat_messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false()),
        sa.Column("deleted_by", sa.String(36), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deletion_reason", sa.Text(), nullable=True),
        sa.Column("is_pinned", sa.Boolean(), server_default=sa.false()),
        sa.Column("pinned_by", sa.String(36), nullable=True),
        sa.Column("pinned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.CheckConstraint("length(message) > 0", name="ck_chat_messages_not_empty"),
    )
    op.create_index(
        "ix_chat_messages_channel_time", "chat_messages", ["channel_id", "created_at"]
    )
    op.create_index(
        "ix_chat_messages_user_channel_time",
        "chat_messages",
        ["user_id", "channel_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_chat_messages_user_channel_time", table_name="chat_messages")
    op.drop_index("ix_chat_messages_channel_time", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_channels_analyst", table_name="chat_channels")
    op.drop_table("chat_channels")
    op.drop_index("ix_subscriptions_user_analyst", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("subscription_tiers")
    op.drop_table("users")
