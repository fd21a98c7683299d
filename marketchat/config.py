"""
marketchat.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for chat tuning values (message limits, rate limits,
typing TTL).  Secrets and infrastructure (``DATABASE_URL``, ``JWT_SECRET``)
stay in the environment and are never read from YAML.

Usage::

    from marketchat.config import load_config

    cfg = load_config()             # reads ./config.yaml by default
    print(cfg.max_message_length)   # 500
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_CONFIG_PATH = "config.yaml"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChatConfig:
    """Immutable chat tuning loaded from ``config.yaml``.

    Every field has a default so a missing file (tests, first boot) still
    yields a working engine.
    """

    service_name: str = "marketchat"

    # Messages
    max_message_length: int = 500
    history_limit: int = 100
    pinned_limit: int = 10

    # Rate limiting (messages per window)
    default_rate_limit: int = 10
    analyst_rate_limit: int = 30
    rate_window_seconds: int = 60
    rate_warning_ratio: float = 0.8

    # Typing indicators
    typing_ttl_seconds: float = 5.0
    max_typing_names: int = 5

    # Moderation
    default_mute_minutes: int = 60


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> ChatConfig:
    """Read *path* and return a :class:`ChatConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``MARKETCHAT_CONFIG`` env var, then ``config.yaml`` in the current
        working directory.  A missing file yields the defaults.

    Raises
    ------
    ValueError
        If a numeric setting is out of range (e.g. a rate limit below 1).
    """
    config_path = Path(path or os.getenv("MARKETCHAT_CONFIG", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        return ChatConfig()

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = ChatConfig()
    cfg = ChatConfig(
        service_name=str(raw.get("service_name", defaults.service_name)),
        max_message_length=int(raw.get("max_message_length", defaults.max_message_length)),
        history_limit=int(raw.get("history_limit", defaults.history_limit)),
        pinned_limit=int(raw.get("pinned_limit", defaults.pinned_limit)),
        default_rate_limit=int(raw.get("default_rate_limit", defaults.default_rate_limit)),
        analyst_rate_limit=int(raw.get("analyst_rate_limit", defaults.analyst_rate_limit)),
        rate_window_seconds=int(raw.get("rate_window_seconds", defaults.rate_window_seconds)),
        rate_warning_ratio=float(raw.get("rate_warning_ratio", defaults.rate_warning_ratio)),
        typing_ttl_seconds=float(raw.get("typing_ttl_seconds", defaults.typing_ttl_seconds)),
        max_typing_names=int(raw.get("max_typing_names", defaults.max_typing_names)),
        default_mute_minutes=int(
            raw.get("default_mute_minutes", defaults.default_mute_minutes)
        ),
    )
    _validate(cfg)
    return cfg


def _validate(cfg: ChatConfig) -> None:
    for name in (
        "max_message_length",
        "history_limit",
        "default_rate_limit",
        "analyst_rate_limit",
        "rate_window_seconds",
    ):
        if getattr(cfg, name) < 1:
            raise ValueError(f"{name} must be >= 1 (got {getattr(cfg, name)})")
    if not 0 < cfg.rate_warning_ratio <= 1:
        raise ValueError("rate_warning_ratio must be in (0, 1]")
    if cfg.typing_ttl_seconds <= 0:
        raise ValueError("typing_ttl_seconds must be positive")
