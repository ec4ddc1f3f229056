"""
beboard.api.routes.notifications — Live notification stream
=============================================================

Browsers can't set an ``Authorization`` header on a WebSocket, so the
stream authenticates with ``?token=<access token>``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from beboard.api.deps import (
    decode_token,
    get_current_admin,
    get_hub,
    get_publisher,
    identity_from_payload,
)
from beboard.engine.notifications import (
    ConnectionHub,
    NotificationMessage,
    NotificationPublisher,
    NotificationType,
    publish_safely,
)
from beboard.identity import Identity

logger = logging.getLogger(__name__)
router = APIRouter(tags=["notifications"])


class NotificationBody(BaseModel):
    recipient_id: int
    content: str = Field(min_length=1, max_length=500)
    url: str = ""
    type: NotificationType


@router.websocket("/ws/notifications")
async def notification_stream(
    websocket: WebSocket,
    token: str = Query(""),
    hub: ConnectionHub = Depends(get_hub),
):
    try:
        identity = identity_from_payload(decode_token(token))
    except HTTPException:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    hub.register(identity.id, websocket)
    try:
        # Inbound frames are ignored; reading keeps the disconnect observable.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(identity.id, websocket)


@router.post("/notifications", status_code=202)
def send_notification(
    body: NotificationBody,
    admin: Identity = Depends(get_current_admin),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    """Publish an arbitrary notification (operator tooling)."""
    message = NotificationMessage(
        recipient_id=body.recipient_id, content=body.content, url=body.url, type=body.type,
    )
    publish_safely(publisher, message)
    logger.info("Admin %s sent %s to user %s", admin.id, body.type, body.recipient_id)
    return message.as_dict()
