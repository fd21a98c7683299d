"""
marketchat.engine.moderation — Per-channel mutes and bans
==========================================================

Volatile, in-process moderation state: a restart clears every mute and ban.
This store does not authorize anyone; the relay verifies that the actor
owns the channel before calling in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from marketchat.engine.clock import Clock, utcnow
from marketchat.engine.errors import ValidationFailure

logger = logging.getLogger(__name__)

PERMANENT = -1


@dataclass(frozen=True, slots=True)
class MuteEntry:
    until: datetime | None  # None → permanent
    actor_id: str | None
    duration_minutes: int

    @property
    def permanent(self) -> bool:
        return self.until is None


@dataclass(frozen=True, slots=True)
class MuteStatus:
    muted: bool
    remaining_minutes: int | None = None  # None when permanent or not muted
    permanent: bool = False
    until: datetime | None = None


@dataclass(frozen=True, slots=True)
class BanEntry:
    reason: str
    actor_id: str | None
    banned_at: datetime


class ModerationStore:
    """Thread-safe mute/ban registry keyed by channel then user."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._lock = Lock()
        self._clock = clock
        self._mutes: dict[str, dict[str, MuteEntry]] = {}
        self._bans: dict[str, dict[str, BanEntry]] = {}

    # -----------------------------------------------------------------------
    # Mutes
    # -----------------------------------------------------------------------
    def mute(
        self,
        channel_id: str,
        target_user_id: str,
        duration_minutes: int,
        *,
        actor_id: str | None = None,
    ) -> MuteEntry:
        """Mute for *duration_minutes*, or permanently with ``-1``.

        The last mute wins: a shorter mute replaces a longer one.

        Raises
        ------
        ValidationFailure
            If the duration is neither ``-1`` nor a positive number of minutes,
            or ends past the latest representable date.
        """
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationFailure("Mute duration must be a whole number of minutes")
        if duration_minutes != PERMANENT and duration_minutes <= 0:
            raise ValidationFailure("Mute duration must be positive, or -1 for permanent")

        until = None
        if duration_minutes != PERMANENT:
            try:
                until = self._clock() + timedelta(minutes=duration_minutes)
            except OverflowError:
                raise ValidationFailure("Mute duration is too long") from None
        entry = MuteEntry(until=until, actor_id=actor_id, duration_minutes=duration_minutes)
        with self._lock:
            self._mutes.setdefault(channel_id, {})[target_user_id] = entry
        logger.info(
            "Muted user %s in channel %s (%s)",
            target_user_id, channel_id,
            "permanent" if until is None else f"{duration_minutes} min",
        )
        return entry

    def unmute(self, channel_id: str, target_user_id: str) -> bool:
        with self._lock:
            removed = self._pop_locked(self._mutes, channel_id, target_user_id)
        if removed:
            logger.info("Unmuted user %s in channel %s", target_user_id, channel_id)
        return removed

    def is_muted(self, channel_id: str, user_id: str) -> MuteStatus:
        """Report the mute state, dropping the entry first if it has expired."""
        now = self._clock()
        with self._lock:
            entry = self._mutes.get(channel_id, {}).get(user_id)
            if entry is None:
                return MuteStatus(muted=False)
            if entry.until is None:
                return MuteStatus(muted=True, permanent=True)
            if now >= entry.until:
                self._pop_locked(self._mutes, channel_id, user_id)
                return MuteStatus(muted=False)
            remaining = math.ceil((entry.until - now).total_seconds() / 60)
            return MuteStatus(muted=True, remaining_minutes=remaining, until=entry.until)

    # -----------------------------------------------------------------------
    # Bans
    # -----------------------------------------------------------------------
    def ban(
        self,
        channel_id: str,
        target_user_id: str,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> BanEntry:
        """Ban permanently.  Banning twice keeps the original entry."""
        with self._lock:
            bans = self._bans.setdefault(channel_id, {})
            entry = bans.get(target_user_id)
            if entry is None:
                entry = BanEntry(reason=reason, actor_id=actor_id, banned_at=self._clock())
                bans[target_user_id] = entry
                logger.info("Banned user %s from channel %s", target_user_id, channel_id)
            return entry

    def unban(self, channel_id: str, target_user_id: str) -> bool:
        with self._lock:
            removed = self._pop_locked(self._bans, channel_id, target_user_id)
        if removed:
            logger.info("Unbanned user %s from channel %s", target_user_id, channel_id)
        return removed

    def is_banned(self, channel_id: str, user_id: str) -> bool:
        with self._lock:
            return user_id in self._bans.get(channel_id, {})

    def banned_users(self, channel_id: str) -> list[str]:
        with self._lock:
            return list(self._bans.get(channel_id, {}))

    # -----------------------------------------------------------------------
    # Stats
    # -----------------------------------------------------------------------
    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "muted_users_count": sum(len(m) for m in self._mutes.values()),
                "banned_users_count": sum(len(b) for b in self._bans.values()),
            }

    @staticmethod
    def _pop_locked(table: dict[str, dict], channel_id: str, user_id: str) -> bool:
        entries = table.get(channel_id)
        if not entries or user_id not in entries:
            return False
        del entries[user_id]
        if not entries:
            del table[channel_id]
        return True
