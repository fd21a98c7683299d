"""
marketchat.engine.presence — Presence Registry
===============================================

Tracks which users are connected, which channels each has joined, and who
occupies each channel.  Entirely volatile: rebuilt from zero on restart.

Invariant (held under ``self._lock``)::

    user in members[channel]  <=>  channel in connections[user].channels

A user has at most one live session.  A reconnect replaces the previous
session atomically, and ``disconnect`` only tears down the session it was
given, so a late disconnect from a dead socket never removes the
memberships of the user's newer connection.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock

from marketchat.engine.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    """Registry-side state for one live connection."""

    user_id: str
    role: str
    display_name: str
    session_id: str
    connected_at: datetime
    last_activity: datetime
    channels: set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "userName": self.display_name,
            "userRole": self.role,
            "connectedAt": self.connected_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class JoinResult:
    online_count: int
    newly_joined: bool


@dataclass(frozen=True, slots=True)
class DisconnectResult:
    """Channels the session had joined, with each channel's post-leave count."""

    channel_counts: dict[str, int]
    removed: bool


class PresenceRegistry:
    """Thread-safe connection and membership registry."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._lock = Lock()
        self._clock = clock
        self._connections: dict[str, PresenceEntry] = {}
        self._members: dict[str, set[str]] = {}

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------
    def connect(
        self, user_id: str, role: str, display_name: str
    ) -> tuple[PresenceEntry, DisconnectResult | None]:
        """Register a freshly authenticated session.

        If the user already had a session, its memberships are torn down
        first and reported as the second element so the caller can notify
        the affected rooms.
        """
        now = self._clock()
        with self._lock:
            evicted = None
            previous = self._connections.get(user_id)
            if previous is not None:
                evicted = self._drop_locked(previous)
                logger.info(
                    "User %s reconnected, evicted session %s", user_id, previous.session_id
                )
            entry = PresenceEntry(
                user_id=user_id,
                role=role,
                display_name=display_name,
                session_id=uuid.uuid4().hex,
                connected_at=now,
                last_activity=now,
            )
            self._connections[user_id] = entry
            return entry, evicted

    def disconnect(self, user_id: str, session_id: str | None = None) -> DisconnectResult:
        """Leave every joined channel and drop the user's entry.

        With *session_id*, a mismatch (the user has since reconnected) is a
        no-op.
        """
        with self._lock:
            entry = self._connections.get(user_id)
            if entry is None or (session_id is not None and entry.session_id != session_id):
                return DisconnectResult(channel_counts={}, removed=False)
            return self._drop_locked(entry)

    def _drop_locked(self, entry: PresenceEntry) -> DisconnectResult:
        counts: dict[str, int] = {}
        for channel_id in list(entry.channels):
            counts[channel_id] = self._leave_locked(entry.user_id, channel_id)
        self._connections.pop(entry.user_id, None)
        return DisconnectResult(channel_counts=counts, removed=True)

    def touch(self, user_id: str) -> PresenceEntry | None:
        """Record a heartbeat.  Returns the entry, or None if not connected."""
        with self._lock:
            entry = self._connections.get(user_id)
            if entry is not None:
                entry.last_activity = self._clock()
            return entry

    # -----------------------------------------------------------------------
    # Membership
    # -----------------------------------------------------------------------
    def join(
        self, user_id: str, channel_id: str, session_id: str | None = None
    ) -> JoinResult:
        """Add *user_id* to *channel_id*.  Joining twice changes nothing.

        Raises
        ------
        KeyError
            If the user has no live connection, or *session_id* is given and
            is no longer the user's live session.
        """
        with self._lock:
            entry = self._connections.get(user_id)
            if entry is None:
                raise KeyError(f"user {user_id} is not connected")
            if session_id is not None and entry.session_id != session_id:
                raise KeyError(f"session {session_id} of user {user_id} was replaced")
            members = self._members.setdefault(channel_id, set())
            newly = user_id not in members
            members.add(user_id)
            entry.channels.add(channel_id)
            return JoinResult(online_count=len(members), newly_joined=newly)

    def leave(self, user_id: str, channel_id: str) -> int:
        """Remove both directions of the relation; safe when not joined."""
        with self._lock:
            return self._leave_locked(user_id, channel_id)

    def _leave_locked(self, user_id: str, channel_id: str) -> int:
        entry = self._connections.get(user_id)
        if entry is not None:
            entry.channels.discard(channel_id)
        members = self._members.get(channel_id)
        if members is None:
            return 0
        members.discard(user_id)
        if not members:
            del self._members[channel_id]
            return 0
        return len(members)

    # -----------------------------------------------------------------------
    # Read-only snapshots
    # -----------------------------------------------------------------------
    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._connections

    def is_member(self, user_id: str, channel_id: str) -> bool:
        with self._lock:
            return user_id in self._members.get(channel_id, ())

    def connection(self, user_id: str) -> PresenceEntry | None:
        with self._lock:
            return self._connections.get(user_id)

    def online_count(self, channel_id: str) -> int:
        with self._lock:
            return len(self._members.get(channel_id, ()))

    def online_users(self, channel_id: str) -> list[PresenceEntry]:
        with self._lock:
            return [
                self._connections[uid]
                for uid in sorted(self._members.get(channel_id, ()))
                if uid in self._connections
            ]

    def member_ids(self, channel_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._members.get(channel_id, ()))

    def joined_channels(self, user_id: str) -> frozenset[str]:
        with self._lock:
            entry = self._connections.get(user_id)
            return frozenset(entry.channels) if entry else frozenset()

    def connected_user_ids(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def stats(self) -> dict:
        with self._lock:
            return {
                "total_connected": len(self._connections),
                "total_channels": len(self._members),
                "users_by_channel": [
                    {"channelId": cid, "userCount": len(members)}
                    for cid, members in self._members.items()
                ],
            }
