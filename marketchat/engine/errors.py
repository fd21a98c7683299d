"""
marketchat.engine.errors — Chat Error Taxonomy
===============================================

Rate limits, mutes and bans are returned as structured results by the
components and translated into named events by the relay.  These exceptions
unwind a handler; the relay reports each as an ``error`` event.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error the relay knows how to report."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationFailure(ChatError):
    """Handshake could not be authenticated.  Fatal to the connection."""

    close_code = 4401


class AuthorizationDenied(ChatError):
    """Caller lacks the right to read, post or moderate."""


class ValidationFailure(ChatError):
    """Malformed or out-of-range client input."""


class UpstreamFailure(ChatError):
    """The persistent store is unavailable.  Retryable by the client."""


class ChannelNotFound(ChatError):
    def __init__(self, channel_id: str) -> None:
        super().__init__("Channel not found")
        self.channel_id = channel_id


class MessageNotFound(ChatError):
    def __init__(self, message_id: str) -> None:
        super().__init__("Message not found")
        self.message_id = message_id
