"""
marketchat.api.deps — FastAPI dependency injection
====================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine

from marketchat.config import ChatConfig, load_config
from marketchat.database.engine import create_db_engine
from marketchat.engine.errors import AuthenticationFailure
from marketchat.engine.records import Identity
from marketchat.engine.relay import MessageRelay

_WEAK_SECRETS = frozenset({
    "marketchat-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "analyst-marketplace"
JWT_AUDIENCE = "analyst-marketplace-users"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> ChatConfig:
    return load_config()


def get_relay(request: Request) -> MessageRelay:
    """The relay built by the app lifespan (or installed by a test)."""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Chat relay not ready")
    return relay


def get_current_user(request: Request) -> Identity:
    """Validate the caller's JWT and return their identity. Raises 401 if invalid."""
    from marketchat.api.auth import authenticate

    try:
        return authenticate(request)
    except AuthenticationFailure as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, exc.message)


def get_current_admin(user: Annotated[Identity, Depends(get_current_user)]) -> Identity:
    if not user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return user
