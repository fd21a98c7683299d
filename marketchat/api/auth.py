"""
marketchat.api.auth — Handshake authentication
================================================

Turns the bearer credential on an HTTP request or WebSocket handshake into
an :class:`Identity`.  Tokens are HS256 JWTs issued by the marketplace
auth service; the chat service only verifies them.

The token is looked up, in order, in:

1. the ``accessToken`` cookie,
2. an ``Authorization: Bearer …`` header,
3. a ``token`` query parameter (browsers cannot set headers on sockets).
"""

from __future__ import annotations

import logging

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from starlette.requests import HTTPConnection

from marketchat.api import deps
from marketchat.database.models import UserRole
from marketchat.engine.errors import AuthenticationFailure
from marketchat.engine.records import Identity

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"


def extract_token(conn: HTTPConnection) -> str | None:
    token = conn.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    authorization = conn.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return conn.query_params.get("token") or None


def decode_access_token(token: str) -> Identity:
    """Verify *token* and build the caller's identity.

    Raises
    ------
    AuthenticationFailure
        If the signature, expiry, issuer or audience is wrong, or the
        token carries no user id.
    """
    try:
        claims = jwt.decode(
            token,
            deps.JWT_SECRET,
            algorithms=[deps.JWT_ALGORITHM],
            issuer=deps.JWT_ISSUER,
            audience=deps.JWT_AUDIENCE,
        )
    except ExpiredSignatureError:
        raise AuthenticationFailure("Token expired") from None
    except InvalidTokenError as exc:
        logger.debug("Rejected token: %s", exc)
        raise AuthenticationFailure("Invalid token") from None

    user_id = claims.get("id") or claims.get("user_id") or claims.get("sub")
    if not user_id:
        raise AuthenticationFailure("Invalid token payload")

    role = claims.get("role") or UserRole.TRADER
    if role not in set(UserRole):
        raise AuthenticationFailure(f"Unknown role: {role}")

    email = claims.get("email")
    display_name = (
        claims.get("full_name")
        or claims.get("name")
        or (email.split("@", 1)[0] if email else None)
        or "User"
    )
    return Identity(
        user_id=str(user_id),
        role=UserRole(role),
        display_name=display_name,
        email=email,
        claims=claims,
    )


def authenticate(conn: HTTPConnection) -> Identity:
    """Authenticate a request or socket handshake."""
    token = extract_token(conn)
    if not token:
        raise AuthenticationFailure("Authentication token required")
    return decode_access_token(token)
