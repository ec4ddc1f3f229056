"""
beboard.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Query, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from beboard.config import BoardConfig, load_config
from beboard.database.engine import create_db_engine
from beboard.engine.cache import TTLCache
from beboard.engine.clock import Clock, SystemClock
from beboard.engine.notifications import ConnectionHub, NotificationPublisher, build_publisher
from beboard.identity import Identity

_WEAK_SECRETS = frozenset({
    "beboard-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


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


# ---------------------------------------------------------------------------
# Process-wide singletons
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> BoardConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_cache() -> TTLCache:
    return TTLCache()


@lru_cache(maxsize=1)
def get_hub() -> ConnectionHub:
    return ConnectionHub()


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


def get_publisher(
    engine: Annotated[Engine, Depends(get_engine)],
    hub: Annotated[ConnectionHub, Depends(get_hub)],
) -> NotificationPublisher:
    return build_publisher(engine, hub)


class Page:
    """``?page=&page_size=`` query parameters, clamped to the configured maximum."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: int | None = Query(None, ge=1),
        cfg: BoardConfig = Depends(get_config),
    ) -> None:
        self.page = page
        self.page_size = min(page_size or cfg.default_page_size, cfg.max_page_size)

    def wrap(self, total: int, items: list, key: str = "items") -> dict:
        return {
            "total": total,
            "page": self.page,
            "page_size": self.page_size,
            key: items,
        }


# ---------------------------------------------------------------------------
# Tokens → Identity
# ---------------------------------------------------------------------------
def decode_token(token: str, *, expected_type: str = "access") -> dict:
    """Decode and check a JWT.  Raises 401 on any problem."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if payload.get("type") != expected_type:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Wrong token type")
    return payload


def identity_from_payload(payload: dict) -> Identity:
    try:
        return Identity(
            id=int(payload["sub"]),
            nickname=payload.get("nickname", ""),
            role=payload.get("role", "USER"),
        )
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1]


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    """Validate the access token and return the caller. Raises 401 if invalid."""
    token = _bearer(authorization)
    if token is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return identity_from_payload(decode_token(token))


def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
) -> Identity | None:
    """Like :func:`get_current_user`, but anonymous callers get ``None``."""
    token = _bearer(authorization)
    if token is None:
        return None
    return identity_from_payload(decode_token(token))


def get_current_admin(
    user: Annotated[Identity, Depends(get_current_user)],
) -> Identity:
    if not user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return user
