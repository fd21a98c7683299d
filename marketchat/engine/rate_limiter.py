"""
marketchat.engine.rate_limiter — Per-user, per-channel posting limits
======================================================================

Sliding 60-second window over the user's own messages in one channel.
The window contents live in the message store (the count is a history
query); this module owns the *policy*: thresholds, the early warning, the
retry-after computation and the announcement bypass.

Policy:
  - Owning analyst: ``analyst_limit`` per window (default 30).
  - Everyone else: the channel's ``message_rate_limit``, else
    ``default_limit`` (default 10).
  - Owning analyst in an ``announcement`` channel: never limited.
  - ``count >= limit`` → blocked, retry after the oldest message ages out.
  - ``count >= warning_ratio * limit`` → allowed with a warning.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from marketchat.engine.clock import Clock, normalize_dt, utcnow
from marketchat.engine.records import ChannelInfo

if TYPE_CHECKING:
    from marketchat.services.chat_store import ChatStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
ANALYST_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_WARNING_RATIO = 0.8


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    is_limited: bool
    retry_after_seconds: int
    remaining: int
    limit: int
    message_count: int
    should_warn: bool = False


class RateLimiter:
    """Sliding-window posting policy backed by the store's message history."""

    def __init__(
        self,
        store: ChatStore,
        *,
        default_limit: int = DEFAULT_LIMIT,
        analyst_limit: int = ANALYST_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        warning_ratio: float = DEFAULT_WARNING_RATIO,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.default_limit = max(1, default_limit)
        self.analyst_limit = max(1, analyst_limit)
        self.window_seconds = max(1, window_seconds)
        self.warning_ratio = warning_ratio
        self._clock = clock

    # -- policy -------------------------------------------------------------
    def bypasses(self, channel: ChannelInfo, user_id: str) -> bool:
        """The owning analyst is never limited in their announcement channel."""
        return channel.is_owner(user_id) and channel.is_announcement

    def limit_for(self, channel: ChannelInfo, user_id: str) -> int:
        if channel.is_owner(user_id):
            return self.analyst_limit
        return max(1, channel.message_rate_limit or self.default_limit)

    # -- check --------------------------------------------------------------
    async def check_rate_limit(
        self, user_id: str, channel_id: str, limit_per_minute: int
    ) -> RateLimitResult:
        """Decide whether one more message from *user_id* fits in the window.

        Non-positive limits are clamped to 1 rather than trusted.
        """
        limit = max(1, int(limit_per_minute))
        count = await self.store.count_recent_messages(
            user_id, channel_id, self.window_seconds
        )
        remaining = max(0, limit - count)

        if count >= limit:
            retry_after = await self._retry_after(user_id, channel_id)
            logger.debug(
                "Rate limited user=%s channel=%s count=%d limit=%d retry=%ds",
                user_id, channel_id, count, limit, retry_after,
            )
            return RateLimitResult(
                is_limited=True,
                retry_after_seconds=retry_after,
                remaining=0,
                limit=limit,
                message_count=count,
            )

        return RateLimitResult(
            is_limited=False,
            retry_after_seconds=0,
            remaining=remaining,
            limit=limit,
            message_count=count,
            should_warn=count >= limit * self.warning_ratio,
        )

    async def _retry_after(self, user_id: str, channel_id: str) -> int:
        oldest = await self.store.oldest_recent_message_at(
            user_id, channel_id, self.window_seconds
        )
        if oldest is None:
            return self.window_seconds
        expires = normalize_dt(oldest) + timedelta(seconds=self.window_seconds)
        seconds = (expires - self._clock()).total_seconds()
        return max(1, math.ceil(seconds))
