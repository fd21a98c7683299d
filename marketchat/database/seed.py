"""
marketchat.database.seed — Default Tiers & Analyst Channels
============================================================

Idempotent seeders: only inserts rows that don't already exist.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from marketchat.database.engine import get_session
from marketchat.database.models import ChannelType, ChatChannel, SubscriptionTier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogues
# ---------------------------------------------------------------------------
# name → (rank, description).  Rank 0 is the free tier.
DEFAULT_TIERS: dict[str, tuple[int, str]] = {
    "free": (0, "Read-only access to public channels"),
    "basic": (1, "Post in community channels"),
    "premium": (2, "Access to premium trading channels"),
}

DEFAULT_ANALYST_CHANNELS: list[dict] = [
    {
        "channel_name": "Announcements",
        "channel_description": "Important updates and announcements from the analyst",
        "channel_type": ChannelType.ANNOUNCEMENT,
        "icon": "\U0001f4e2",  # 📢
        "is_read_only": True,
        "message_rate_limit": 30,
    },
    {
        "channel_name": "General Discussion",
        "channel_description": "Chat about anything related to markets and trading",
        "channel_type": ChannelType.GENERAL,
        "icon": "\U0001f4ac",  # 💬
        "is_read_only": False,
        "message_rate_limit": 10,
    },
    {
        "channel_name": "Today's Calls",
        "channel_description": "Discuss current trading calls and strategies",
        "channel_type": ChannelType.TRADING,
        "icon": "\U0001f4ca",  # 📊
        "is_read_only": False,
        "message_rate_limit": 10,
    },
    {
        "channel_name": "Trade Ideas",
        "channel_description": "Share and discuss trade ideas with the community",
        "channel_type": ChannelType.IDEAS,
        "icon": "\U0001f3af",  # 🎯
        "is_read_only": False,
        "message_rate_limit": 10,
    },
]


def seed_default_tiers(engine: Engine) -> int:
    """Insert any missing default tiers.  Returns the number inserted."""
    with get_session(engine) as session:
        existing = set(session.scalars(select(SubscriptionTier.tier_name)).all())
        inserted = 0
        for name, (rank, description) in DEFAULT_TIERS.items():
            if name in existing:
                continue
            session.add(SubscriptionTier(tier_name=name, rank=rank, description=description))
            inserted += 1

    if inserted:
        logger.info("Seeded %d subscription tiers.", inserted)
    return inserted


def create_default_channels(engine: Engine, analyst_id: str) -> list[ChatChannel]:
    """Create the four default channels for a new analyst.

    Channels the analyst already has (matched by name) are left untouched
    and included in the returned list, so calling this twice is harmless.
    """
    with get_session(engine) as session:
        existing = {
            c.channel_name: c
            for c in session.scalars(
                select(ChatChannel).where(
                    ChatChannel.analyst_id == analyst_id,
                    ChatChannel.deleted_at.is_(None),
                )
            ).all()
        }

        channels: list[ChatChannel] = []
        for spec in DEFAULT_ANALYST_CHANNELS:
            row = existing.get(spec["channel_name"])
            if row is None:
                row = ChatChannel(analyst_id=analyst_id, require_subscription=True, **spec)
                session.add(row)
                logger.info(
                    "Created default channel %r for analyst %s",
                    spec["channel_name"], analyst_id,
                )
            channels.append(row)
        session.flush()

    return channels
