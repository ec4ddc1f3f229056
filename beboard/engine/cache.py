"""
beboard.engine.cache — Explicit TTL Cache with PG LISTEN/NOTIFY Invalidation
==============================================================================

Read-heavy, rarely-written data (the category list, single categories,
per-category post counts) is cached in memory under named keys with a
per-entry TTL.  Callers read and invalidate explicitly; nothing is cached
behind their back.

Write paths call :meth:`TTLCache.invalidate` / :meth:`invalidate_prefix`
locally and :func:`notify_before_commit` so every other API process drops
the same scope when the transaction commits (PostgreSQL only; on other
dialects the NOTIFY is skipped).

Usage::

    cache = TTLCache()
    hit = cache.get(CATEGORIES_KEY)
    if hit is None:
        hit = load_categories()
        cache.set(CATEGORIES_KEY, hit, ttl=600)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# The PG channel name used for cross-process cache invalidation
NOTIFY_CHANNEL = "cache_invalidated"

# Named keys
CATEGORIES_KEY = "categories:active"
CATEGORY_PREFIX = "category:"
CATEGORY_POST_COUNT_PREFIX = "category_post_count:"

# Allowlist of scopes accepted by notify_before_commit() / handle_notify().
# A scope is a key prefix; invalidating it drops every key that starts with it.
ALLOWED_SCOPES: frozenset[str] = frozenset({
    CATEGORIES_KEY,
    CATEGORY_PREFIX,
    CATEGORY_POST_COUNT_PREFIX,
})


def category_key(category_id: int) -> str:
    return f"{CATEGORY_PREFIX}{category_id}"


def category_post_count_key(category_id: int) -> str:
    return f"{CATEGORY_POST_COUNT_PREFIX}{category_id}"


class TTLCache:
    """Thread-safe key/value cache with per-entry expiry.

    ``timer`` returns monotonic seconds; tests pass a fake one.
    """

    def __init__(self, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._lock = threading.Lock()
        # key → (expires_at, value)
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        now = self._timer()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._timer() + ttl, value)

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl: float) -> Any:
        """Return the cached value for *key*, calling *loader* on a miss.

        The loader runs outside the lock; two concurrent misses may both
        load, and the last one to finish wins.
        """
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = loader()
        self.set(key, value, ttl)
        return value

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with *prefix*; return how many were dropped."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------
    # Cross-process invalidation
    # -------------------------------------------------------------------
    def handle_notify(self, scope: str) -> None:
        """Drop a scope announced by another process over NOTIFY."""
        scope = scope.strip()
        if scope not in ALLOWED_SCOPES:
            logger.warning("Unknown cache scope in NOTIFY: %s — ignoring", scope)
            return
        dropped = self.invalidate_prefix(scope)
        logger.info("Cache invalidation for scope %s (%d keys)", scope, dropped)


def notify_before_commit(session: Session, scope: str) -> None:
    """Queue ``NOTIFY cache_invalidated, '<scope>'`` in the current transaction.

    PostgreSQL delivers the notification only if the transaction commits.
    Other dialects have no NOTIFY; the call is a no-op there.

    Raises
    ------
    ValueError
        If *scope* is not in :data:`ALLOWED_SCOPES`.
    """
    if scope not in ALLOWED_SCOPES:
        raise ValueError(
            f"Invalid cache scope for NOTIFY: '{scope}'. "
            f"Allowed: {sorted(ALLOWED_SCOPES)}"
        )
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text(f"NOTIFY {NOTIFY_CHANNEL}, '{scope}'"))
