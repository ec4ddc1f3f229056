"""
beboard.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for soft, non-secret settings (pagination limits,
token lifetimes, cache TTLs, background job cadence).  Secrets and
connection strings (``JWT_SECRET``, ``DATABASE_URL``) stay in the
environment / ``.env``.

Usage::

    from beboard.config import load_config

    cfg = load_config()             # $BOARD_CONFIG or ./config.yaml
    print(cfg.community_name)       # "BeBoard"
    print(cfg.category_cache_ttl)   # 600
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BoardConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Auth
    access_token_hours: int = 12
    refresh_token_days: int = 14
    max_failed_logins: int = 5
    lockout_minutes: int = 30

    # Admin write throttle
    admin_rate_limit: int = 30
    admin_rate_limit_window_seconds: int = 60

    # Category cache TTLs (seconds)
    category_cache_ttl: int = 600
    category_detail_cache_ttl: int = 1800
    category_post_count_cache_ttl: int = 300

    # Challenges
    min_bet_amount: Decimal = Decimal("1000")
    challenge_start_interval_seconds: int = 300


_INT_KEYS = (
    "default_page_size",
    "max_page_size",
    "access_token_hours",
    "refresh_token_days",
    "max_failed_logins",
    "lockout_minutes",
    "admin_rate_limit",
    "admin_rate_limit_window_seconds",
    "category_cache_ttl",
    "category_detail_cache_ttl",
    "category_post_count_cache_ttl",
    "challenge_start_interval_seconds",
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def default_config_path() -> Path:
    return Path(os.getenv("BOARD_CONFIG", "config.yaml"))


def load_config(path: str | Path | None = None) -> BoardConfig:
    """Read *path* and return a :class:`BoardConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$BOARD_CONFIG``, falling back to ``config.yaml`` in the current
        working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If ``community_name`` is missing from the YAML file.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    overrides = {key: int(raw[key]) for key in _INT_KEYS if raw.get(key) is not None}
    if raw.get("min_bet_amount") is not None:
        overrides["min_bet_amount"] = Decimal(str(raw["min_bet_amount"]))

    return BoardConfig(community_name=raw["community_name"], **overrides)
