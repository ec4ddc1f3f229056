"""
beboard.api.rate_limit — Per-Admin Mutation Rate Limiting
==========================================================

Throttles the board's admin write endpoints: category create, rename and
delete, user suspension and role changes, and the manual challenge
start.  Each admin gets ``admin_rate_limit`` mutations per
``admin_rate_limit_window_seconds`` (``config.yaml``, 30 per 60 s by
default), counted in a sliding window keyed by the admin's user id and
read from the injected :class:`~beboard.engine.clock.Clock`.  Over the
limit the request gets HTTP 429 with a ``Retry-After`` header.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from beboard.api.deps import get_current_admin
from beboard.database.models import AdminRateLimitEvent
from beboard.engine.clock import Clock, SystemClock
from beboard.identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class AdminRateLimiter:
    """Sliding-window limiter backed by the ``admin_rate_limit_events`` table,
    so the window survives restarts and is shared between API processes.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
        clock: Clock | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine
        self.clock = clock or SystemClock()

    @staticmethod
    def _aware(value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)

    def _prune(self, session: Session, admin_id: str, cutoff: datetime) -> None:
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == admin_id,
                AdminRateLimitEvent.timestamp < cutoff,
            )
        )

    def check(self, admin_id: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; info has ``remaining``, ``reset`` and ``limit``."""
        now = self.clock.now()
        with Session(self.engine) as session:
            self._prune(session, admin_id, now - timedelta(seconds=self.window_seconds))
            timestamps = session.scalars(
                select(AdminRateLimitEvent.timestamp)
                .where(AdminRateLimitEvent.admin_id == admin_id)
                .order_by(AdminRateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        if len(timestamps) >= self.max_requests:
            oldest = self._aware(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - len(timestamps),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, admin_id: str) -> dict[str, Any]:
        """Count one request against the window and return the updated info."""
        now = self.clock.now()
        with Session(self.engine) as session:
            self._prune(session, admin_id, now - timedelta(seconds=self.window_seconds))
            session.add(AdminRateLimitEvent(admin_id=admin_id, timestamp=now))
            session.flush()
            count = session.scalar(
                select(func.count())
                .select_from(AdminRateLimitEvent)
                .where(AdminRateLimitEvent.admin_id == admin_id)
            ) or 0
            session.commit()

        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, admin_id: str | None = None) -> None:
        """Clear rate limit state. If admin_id is None, clear all."""
        with Session(self.engine) as session:
            stmt = delete(AdminRateLimitEvent)
            if admin_id is not None:
                stmt = stmt.where(AdminRateLimitEvent.admin_id == admin_id)
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_limiter: AdminRateLimiter | None = None


def get_rate_limiter() -> AdminRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_requests: int = DEFAULT_RATE_LIMIT,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    clock: Clock | None = None,
) -> AdminRateLimiter:
    global _limiter
    _limiter = AdminRateLimiter(
        max_requests=max_requests, window_seconds=window_seconds,
        engine=engine, clock=clock,
    )
    return _limiter


# ---------------------------------------------------------------------------
# FastAPI dependency — chains after get_current_admin
# ---------------------------------------------------------------------------
async def rate_limited_admin(
    request: Request,
    admin: Identity = Depends(get_current_admin),
) -> Identity:
    """Validate the admin token *and* enforce the per-admin mutation limit.

    GET/HEAD/OPTIONS requests pass straight through.  Use
    ``Depends(rate_limited_admin)`` in place of ``Depends(get_current_admin)``
    on admin write endpoints.
    """
    if request.method not in _MUTATION_METHODS:
        return admin

    limiter = get_rate_limiter()
    admin_id = str(admin.id)

    allowed, info = await asyncio.to_thread(limiter.check, admin_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for admin %s: %d requests per %ds",
            admin_id, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": (
                    f"Rate limit exceeded: {limiter.max_requests} admin changes "
                    f"per {limiter.window_seconds}s."
                ),
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, admin_id)
    return admin
