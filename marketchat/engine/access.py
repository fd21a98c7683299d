"""
marketchat.engine.access — Channel Access Policy
=================================================

Decides, for one user and one channel, whether they may read, post, or
moderate.  A pure function of the channel snapshot and the caller's
subscription: no I/O and no caching.  The relay fetches a fresh snapshot
and subscription on every join, send and online-user query, because a
subscription can lapse between a join and a later send.

Rules, in order:

1. Soft-deleted channels → no access ("Channel not found").
2. The owning analyst → full access, may always post.
3. Inactive or archived channels → no access for everyone else.
4. Community channels → every authenticated user may read.
5. Tier gate → posting needs an active paid subscription at or above the
   channel's minimum tier; without it the channel is read-only if it allows
   free reads (``require_subscription`` false), otherwise closed.
6. Read-only channels → nobody but the owner may post.
"""

from __future__ import annotations

from dataclasses import dataclass

from marketchat.engine.records import ChannelInfo, SubscriptionInfo

REASON_NOT_FOUND = "Channel not found"
REASON_ARCHIVED = "Channel is archived"
REASON_INACTIVE = "Channel is not active"
REASON_SUBSCRIPTION_REQUIRED = "An active subscription is required to access this channel"
REASON_UPGRADE_TO_POST = "Upgrade to Paid tier to post messages"
REASON_READ_ONLY = "This channel is read-only"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    has_access: bool
    can_post: bool
    is_analyst: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "has_access": self.has_access,
            "can_post": self.can_post,
            "is_analyst": self.is_analyst,
            "reason": self.reason,
        }


def meets_tier(channel: ChannelInfo, subscription: SubscriptionInfo | None) -> bool:
    """True when *subscription* is active and ranked at or above the channel minimum."""
    if subscription is None or not subscription.is_active:
        return False
    if channel.minimum_tier_rank is None:
        return True
    return subscription.rank >= channel.minimum_tier_rank


def check_access(
    channel: ChannelInfo,
    user_id: str,
    user_role: str,
    subscription: SubscriptionInfo | None = None,
) -> AccessDecision:
    """Evaluate the access rules for *user_id* on *channel*.

    *user_role* is accepted for audit symmetry with the handshake identity;
    ownership, not role, is what grants analyst rights.
    """
    if channel.is_deleted:
        return AccessDecision(False, False, reason=REASON_NOT_FOUND)

    if channel.is_owner(user_id):
        return AccessDecision(True, True, is_analyst=True)

    if channel.is_archived:
        return AccessDecision(False, False, reason=REASON_ARCHIVED)
    if not channel.is_active:
        return AccessDecision(False, False, reason=REASON_INACTIVE)

    if channel.is_community:
        if channel.is_read_only:
            return AccessDecision(True, False, reason=REASON_READ_ONLY)
        if channel.minimum_tier_rank is None:
            return AccessDecision(True, True)
        entitled = meets_tier(channel, subscription)
        return AccessDecision(
            True,
            entitled,
            reason=None if entitled else REASON_UPGRADE_TO_POST,
        )

    entitled = meets_tier(channel, subscription)
    has_access = entitled or not channel.require_subscription
    if not has_access:
        return AccessDecision(False, False, reason=REASON_SUBSCRIPTION_REQUIRED)

    if channel.is_read_only:
        return AccessDecision(True, False, reason=REASON_READ_ONLY)

    can_post = entitled and subscription is not None and subscription.is_paid
    return AccessDecision(
        True,
        can_post,
        reason=None if can_post else REASON_UPGRADE_TO_POST,
    )
