"""
marketchat — Real-time Community Chat Engine for an Analyst Marketplace
========================================================================
Discord-style channels for trading analysts and their subscribers: presence,
typing indicators, per-channel rate limiting and mute/ban moderation over
persistent WebSocket connections.

Package layout::

    marketchat/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Users, tiers, subscriptions, channels, messages
    │   └── seed.py        # Default tiers + analyst channels
    ├── engine/
    │   ├── access.py      # Channel access policy (pure)
    │   ├── rate_limiter.py # Sliding-window posting policy
    │   ├── presence.py    # Who is connected, who is in which channel
    │   ├── typing_tracker.py # Typing indicators with TTL
    │   ├── moderation.py  # Mutes and bans
    │   ├── events.py      # Typed inbound/outbound events
    │   ├── errors.py      # Error taxonomy
    │   └── relay.py       # Connection state machine + fan-out
    ├── services/
    │   └── chat_store.py  # Persistence collaborator (SQLAlchemy)
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # JWT handshake authentication
        └── routes/        # WebSocket endpoint + REST moderation fallbacks
"""

__version__ = "0.1.0"
