"""
marketchat.engine.typing_tracker — Typing indicators with expiry
================================================================

Per channel, the users currently typing.  A client that crashes mid-type
never sends ``typing_stop``, so every entry carries its last refresh time
and is dropped once it is older than ``ttl_seconds``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from marketchat.engine.clock import Clock, utcnow

DEFAULT_TTL_SECONDS = 5.0
DEFAULT_MAX_NAMES = 5


@dataclass(frozen=True, slots=True)
class TypingSnapshot:
    """Who else is typing, from the point of view of one user."""

    user_names: list[str]
    count: int


class TypingTracker:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_names: int = DEFAULT_MAX_NAMES,
        clock: Clock = utcnow,
    ) -> None:
        self._lock = Lock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_names = max_names
        self._clock = clock
        # channel_id → {user_id: (display_name, refreshed_at)}
        self._typing: dict[str, dict[str, tuple[str, datetime]]] = {}

    def start_typing(self, user_id: str, display_name: str, channel_id: str) -> TypingSnapshot:
        """Mark *user_id* as typing (or refresh) and report the others."""
        now = self._clock()
        with self._lock:
            users = self._expire_locked(channel_id, now)
            users[user_id] = (display_name, now)
            others = [name for uid, (name, _) in users.items() if uid != user_id]
            return TypingSnapshot(user_names=others[: self._max_names], count=len(others))

    def stop_typing(self, user_id: str, channel_id: str) -> bool:
        """Remove *user_id*; returns whether they were (unexpired) typing."""
        now = self._clock()
        with self._lock:
            users = self._expire_locked(channel_id, now)
            was_typing = users.pop(user_id, None) is not None
            if not users:
                self._typing.pop(channel_id, None)
            return was_typing

    def stop_all(self, user_id: str) -> list[str]:
        """Stop *user_id* typing everywhere.  Returns the affected channels."""
        with self._lock:
            affected = []
            for channel_id, users in list(self._typing.items()):
                if users.pop(user_id, None) is not None:
                    affected.append(channel_id)
                if not users:
                    del self._typing[channel_id]
            return affected

    def typing_users(self, channel_id: str) -> list[str]:
        now = self._clock()
        with self._lock:
            users = self._expire_locked(channel_id, now)
            result = list(users)
            if not users:
                self._typing.pop(channel_id, None)
            return result

    def is_typing(self, user_id: str, channel_id: str) -> bool:
        return user_id in self.typing_users(channel_id)

    def _expire_locked(self, channel_id: str, now: datetime) -> dict[str, tuple[str, datetime]]:
        users = self._typing.setdefault(channel_id, {})
        cutoff = now - self._ttl
        for uid in [uid for uid, (_, ts) in users.items() if ts <= cutoff]:
            del users[uid]
        return users
