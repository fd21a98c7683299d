"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from datetime import timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of marketchat.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from marketchat.config import ChatConfig  # noqa: E402
from marketchat.database.engine import get_session  # noqa: E402
from marketchat.database.models import (  # noqa: E402
    Base,
    ChannelType,
    ChatChannel,
    Subscription,
    SubscriptionTier,
    User,
    UserRole,
)
from marketchat.database.seed import create_default_channels, seed_default_tiers  # noqa: E402
from marketchat.engine.clock import ManualClock  # noqa: E402
from marketchat.engine.records import Identity  # noqa: E402
from marketchat.engine.relay import MessageRelay  # noqa: E402
from marketchat.services.chat_store import SqlChatStore  # noqa: E402


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every chat table and the default tiers.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` inside ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_tiers(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_user(engine: Engine, user_id: str, name: str, role: str = UserRole.TRADER) -> str:
    with get_session(engine) as session:
        session.add(
            User(id=user_id, email=f"{user_id}@example.com", full_name=name, role=role)
        )
    return user_id


def tier_id(engine: Engine, name: str) -> int:
    with Session(engine) as session:
        return session.scalar(select(SubscriptionTier.id).where(SubscriptionTier.tier_name == name))


def subscribe(
    engine: Engine, user_id: str, analyst_id: str, tier: str, status: str = "active"
) -> None:
    with get_session(engine) as session:
        session.add(
            Subscription(
                user_id=user_id,
                analyst_id=analyst_id,
                tier_id=tier_id(engine, tier),
                status=status,
            )
        )


def make_channel(engine: Engine, analyst_id: str | None, name: str, **fields) -> str:
    with get_session(engine) as session:
        channel = ChatChannel(analyst_id=analyst_id, channel_name=name, **fields)
        session.add(channel)
        session.flush()
        return channel.id


# ---------------------------------------------------------------------------
# A small marketplace
# ---------------------------------------------------------------------------
@dataclass
class Marketplace:
    analyst: Identity
    premium: Identity   # paid subscriber
    free: Identity      # free-tier subscriber
    outsider: Identity  # no subscription at all
    announcements: str
    general: str
    preview: str        # free reads, premium posting
    vip: str            # premium only
    community: str


@pytest.fixture
def market(db_engine: Engine) -> Marketplace:
    analyst = make_user(db_engine, "analyst-1", "Asha Analyst", UserRole.ANALYST)
    premium = make_user(db_engine, "trader-premium", "Pat Premium")
    free = make_user(db_engine, "trader-free", "Fran Free")
    outsider = make_user(db_engine, "trader-none", "Olly Outsider")
    subscribe(db_engine, premium, analyst, "premium")
    subscribe(db_engine, free, analyst, "free")

    defaults = {c.channel_name: c.id for c in create_default_channels(db_engine, analyst)}
    preview = make_channel(
        db_engine, analyst, "Preview",
        require_subscription=False,
        minimum_tier_required=tier_id(db_engine, "premium"),
    )
    vip = make_channel(
        db_engine, analyst, "VIP Room",
        minimum_tier_required=tier_id(db_engine, "premium"),
    )
    community = make_channel(
        db_engine, None, "Lobby",
        channel_type=ChannelType.COMMUNITY,
        require_subscription=False,
    )
    return Marketplace(
        analyst=Identity(analyst, UserRole.ANALYST, "Asha Analyst"),
        premium=Identity(premium, UserRole.TRADER, "Pat Premium"),
        free=Identity(free, UserRole.TRADER, "Fran Free"),
        outsider=Identity(outsider, UserRole.TRADER, "Olly Outsider"),
        announcements=defaults["Announcements"],
        general=defaults["General Discussion"],
        preview=preview,
        vip=vip,
        community=community,
    )


# ---------------------------------------------------------------------------
# Engine components
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(db_engine: Engine, clock: ManualClock) -> SqlChatStore:
    return SqlChatStore(db_engine, clock=clock)


@pytest.fixture
def relay(store: SqlChatStore, clock: ManualClock) -> MessageRelay:
    return MessageRelay(store, ChatConfig(), clock=clock)


def only(frames: list[dict], name: str) -> list[dict]:
    return [f["data"] for f in frames if f["event"] == name]


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def make_token(
    subject: str,
    role: str = UserRole.TRADER,
    name: str = "Test User",
    *,
    expires_in: timedelta = timedelta(hours=1),
    **claims,
) -> str:
    """Create an access token the way the marketplace auth service does."""
    from datetime import UTC, datetime

    import jwt

    from marketchat.api.deps import JWT_ALGORITHM, JWT_AUDIENCE, JWT_ISSUER, JWT_SECRET

    now = datetime.now(UTC)
    payload = {
        "id": subject,
        "email": f"{subject}@example.com",
        "role": str(role),
        "full_name": name,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "exp": now + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def admin_token():
    return make_token("admin-1", UserRole.ADMIN, "Ada Admin")
