"""
beboard.engine.notifications — Fire-and-Forget Notification Relay
===================================================================

Producers (comment, friend and challenge services) hand a
:class:`NotificationMessage` to a :class:`NotificationPublisher` after
their transaction has committed.  Delivery is best-effort: a failed
publish is logged and swallowed, it never fails the triggering request.

Transport:

1. :class:`PgNotificationPublisher` sends
   ``pg_notify('board_notifications', <json>)`` on its own connection,
   with the payload as a bound parameter.
2. Every API process runs a :class:`~beboard.engine.listener.PgNotifyListener`
   that routes the payload to :meth:`ConnectionHub.handle_notify`.
3. The hub pushes the JSON to every live WebSocket session of the
   recipient in that process.  It keeps no persisted state.

Without PostgreSQL (dev / SQLite) :class:`LocalNotificationPublisher`
short-circuits steps 1-2 and hands the message straight to the local hub.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

# The PG channel carrying notification payloads
NOTIFY_CHANNEL = "board_notifications"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more
MAX_PAYLOAD_BYTES = 7999


class NotificationType(enum.StrEnum):
    NEW_COMMENT = "NEW_COMMENT"
    COMMENT_REPLY = "COMMENT_REPLY"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    FRIEND_ACCEPTED = "FRIEND_ACCEPTED"
    CHALLENGE_INVITE = "CHALLENGE_INVITE"
    CHALLENGE_JOINED = "CHALLENGE_JOINED"
    PROGRESS_VERIFIED = "PROGRESS_VERIFIED"


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipient_id: int
    content: str
    url: str
    type: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> NotificationMessage:
        """Parse a JSON payload.  Raises ``ValueError`` if malformed."""
        try:
            data = json.loads(raw)
            return cls(
                recipient_id=int(data["recipient_id"]),
                content=str(data["content"]),
                url=str(data.get("url") or ""),
                type=str(data["type"]),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as exc:
            raise ValueError(f"Malformed notification payload: {raw!r}") from exc


class NotificationPublisher(Protocol):
    def publish(self, message: NotificationMessage) -> None:
        ...


def publish_safely(
    publisher: NotificationPublisher | None, message: NotificationMessage,
) -> None:
    """Publish *message*, logging and swallowing any failure."""
    if publisher is None:
        return
    try:
        publisher.publish(message)
    except Exception:
        logger.exception(
            "Notification delivery failed (type=%s, recipient=%s)",
            message.type, message.recipient_id,
        )


# ---------------------------------------------------------------------------
# Publishers
# ---------------------------------------------------------------------------
class PgNotificationPublisher:
    """Publish through ``NOTIFY`` on a connection of its own."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def publish(self, message: NotificationMessage) -> None:
        raw = message.to_json()
        if len(raw.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            logger.warning(
                "Notification for user %s dropped: payload too large (%d bytes)",
                message.recipient_id, len(raw.encode("utf-8")),
            )
            return
        try:
            with self._engine.connect() as conn:
                conn.execute(
                    text("SELECT pg_notify(:channel, :payload)"),
                    {"channel": NOTIFY_CHANNEL, "payload": raw},
                )
                conn.commit()
        except Exception:
            logger.exception(
                "NOTIFY %s failed for user %s", NOTIFY_CHANNEL, message.recipient_id,
            )


class LocalNotificationPublisher:
    """Deliver straight to an in-process :class:`ConnectionHub`."""

    def __init__(self, hub: ConnectionHub) -> None:
        self._hub = hub

    def publish(self, message: NotificationMessage) -> None:
        self._hub.deliver_threadsafe(message)


def build_publisher(engine: Engine, hub: ConnectionHub) -> NotificationPublisher:
    """PG NOTIFY when the database is PostgreSQL, in-process delivery otherwise."""
    if engine.dialect.name == "postgresql":
        return PgNotificationPublisher(engine)
    return LocalNotificationPublisher(hub)


# ---------------------------------------------------------------------------
# Live session fan-out
# ---------------------------------------------------------------------------
class ConnectionHub:
    """Live WebSocket sessions keyed by user id.

    All session bookkeeping happens on the event loop.  Threads (the
    LISTEN thread, sync route handlers) go through
    :meth:`deliver_threadsafe`.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, set[WebSocket]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def register(self, user_id: int, websocket: WebSocket) -> None:
        self._sessions.setdefault(user_id, set()).add(websocket)
        logger.info(
            "WebSocket session opened for user %s (%d live)",
            user_id, len(self._sessions[user_id]),
        )

    def unregister(self, user_id: int, websocket: WebSocket) -> None:
        sessions = self._sessions.get(user_id)
        if not sessions:
            return
        sessions.discard(websocket)
        if not sessions:
            del self._sessions[user_id]
        logger.info("WebSocket session closed for user %s", user_id)

    def session_count(self, user_id: int) -> int:
        return len(self._sessions.get(user_id, ()))

    async def deliver(self, message: NotificationMessage) -> int:
        """Send *message* to every session of its recipient.

        Sessions that fail to accept the frame are dropped.  Returns the
        number of sessions that received it.
        """
        sessions = list(self._sessions.get(message.recipient_id, ()))
        delivered = 0
        payload = message.as_dict()
        for websocket in sessions:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception:
                logger.debug(
                    "Dropping dead WebSocket for user %s", message.recipient_id,
                    exc_info=True,
                )
                self.unregister(message.recipient_id, websocket)
        return delivered

    def deliver_threadsafe(self, message: NotificationMessage) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(
                "Cannot deliver %s to user %s — no event loop bound",
                message.type, message.recipient_id,
            )
            return
        asyncio.run_coroutine_threadsafe(self.deliver(message), loop)

    def handle_notify(self, payload: str) -> None:
        """LISTEN-thread entry point for ``board_notifications`` payloads."""
        try:
            message = NotificationMessage.from_json(payload)
        except ValueError:
            logger.warning("Invalid notification payload: %s", payload)
            return
        self.deliver_threadsafe(message)
