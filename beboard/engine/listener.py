"""
beboard.engine.listener — PostgreSQL LISTEN Thread
====================================================

One background thread per API process holds a raw psycopg2 connection,
LISTENs on every registered channel and hands each payload to that
channel's handler.  Two channels are in use:

* ``board_notifications`` — JSON :class:`NotificationMessage` payloads,
  relayed to the live WebSocket sessions of the recipient.
* ``cache_invalidated``   — cache scopes dropped by another process.

The connection is re-established with exponential backoff + jitter when it
drops; after ``max_reconnect_attempts`` consecutive failures the listener
gives up and reports itself failed.
"""

from __future__ import annotations

import logging
import random
import re
import select as _select
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_CHANNEL_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


class PgNotifyListener:
    """Dispatch PG NOTIFY payloads to per-channel handlers.

    Usage::

        listener = PgNotifyListener(engine)
        listener.register("cache_invalidated", cache.handle_notify)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_reconnect_attempts: int = 10,
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._engine = engine
        self._handlers: dict[str, Callable[[str], None]] = {}
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff

        self._healthy = False
        self._failed = False
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Registration + dispatch
    # -------------------------------------------------------------------
    def register(self, channel: str, handler: Callable[[str], None]) -> None:
        if not _CHANNEL_NAME.match(channel):
            raise ValueError(f"Invalid LISTEN channel name: {channel!r}")
        self._handlers[channel] = handler

    @property
    def channels(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, channel: str, payload: str) -> None:
        """Run the handler for *channel*; handler errors are logged, not raised."""
        handler = self._handlers.get(channel)
        if handler is None:
            logger.debug("No handler for NOTIFY channel '%s'", channel)
            return
        try:
            handler(payload)
        except Exception:
            logger.exception("Error handling NOTIFY on '%s': %s", channel, payload)

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------
    @property
    def healthy(self) -> bool:
        """True while the thread is connected and has not given up."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True once the listener exhausted its reconnect attempts."""
        return self._failed

    def backoff_for(self, attempt: int) -> float:
        """Base delay before reconnect *attempt* (1-based), without jitter."""
        return min(self.base_backoff * (2 ** (attempt - 1)), self.max_backoff)

    # -------------------------------------------------------------------
    # Thread lifecycle
    # -------------------------------------------------------------------
    def stop(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start(self) -> None:
        """Start the background LISTEN thread (no-op without handlers)."""
        if not self._handlers:
            logger.info("PG NOTIFY listener has no channels — not started")
            return

        thread = threading.Thread(
            target=self._listen_loop, daemon=True, name="pg-notify-listener",
        )
        self._thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")

    def _listen_loop(self) -> None:
        import psycopg2

        # str(engine.url) hides the password; psycopg2 needs the real one.
        raw_url = self._engine.url.render_as_string(hide_password=False)
        dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
        attempt = 0

        while not self._shutdown_event.is_set():
            conn = None
            try:
                conn = psycopg2.connect(dsn)
                conn.set_isolation_level(0)  # autocommit
                cur = conn.cursor()
                for channel in self.channels:
                    cur.execute(f"LISTEN {channel};")
                logger.info("PG LISTEN started on channels %s", self.channels)

                attempt = 0
                self._healthy = True

                while not self._shutdown_event.is_set():
                    if _select.select([conn], [], [], 5.0) == ([], [], []):
                        continue
                    conn.poll()
                    while conn.notifies:
                        notify = conn.notifies.pop(0)
                        logger.debug(
                            "NOTIFY received on '%s': %s", notify.channel, notify.payload,
                        )
                        self.dispatch(notify.channel, notify.payload or "")

            except Exception:
                self._healthy = False
                attempt += 1

                if attempt >= self.max_reconnect_attempts:
                    logger.critical(
                        "PG LISTEN exhausted %d retries. "
                        "Live notifications and cache invalidation disabled.",
                        self.max_reconnect_attempts,
                    )
                    self._failed = True
                    break

                backoff = self.backoff_for(attempt)
                wait = backoff + random.uniform(0, backoff * 0.5)
                logger.exception(
                    "PG LISTEN connection lost (attempt %d/%d). "
                    "Reconnecting in %.1fs…",
                    attempt, self.max_reconnect_attempts, wait,
                )
                if self._shutdown_event.wait(timeout=wait):
                    break
            finally:
                if conn is not None:
                    try:
                        conn.close()
                    except Exception:
                        logger.debug("Error closing LISTEN connection", exc_info=True)
