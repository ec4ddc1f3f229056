"""
beboard.api.routes.friends — Friend requests and friend list
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from beboard.api.deps import Page, get_current_user, get_engine, get_publisher
from beboard.engine.notifications import NotificationPublisher
from beboard.identity import Identity
from beboard.services import friend_service

router = APIRouter(prefix="/friends", tags=["friends"])


class FriendRequestBody(BaseModel):
    email: EmailStr
    message: str | None = Field(default=None, max_length=255)


@router.get("")
def list_friends(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = friend_service.list_friends(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "friends")


@router.get("/requests/received")
def received(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = friend_service.list_received_requests(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "requests")


@router.get("/requests/sent")
def sent(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = friend_service.list_sent_requests(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "requests")


@router.post("/requests", status_code=201)
def send_request(
    body: FriendRequestBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    return friend_service.send_request(
        engine,
        requester_id=identity.id,
        addressee_email=body.email,
        message=body.message,
        publisher=publisher,
    )


@router.post("/requests/{request_id}/accept")
def accept(
    request_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    return friend_service.accept_request(
        engine, request_id=request_id, user_id=identity.id, publisher=publisher,
    )


@router.post("/requests/{request_id}/reject", status_code=204)
def reject(
    request_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    friend_service.reject_request(engine, request_id=request_id, user_id=identity.id)


@router.delete("/{friendship_id}", status_code=204)
def remove(
    friendship_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    friend_service.remove_friend(engine, friendship_id=friendship_id, user_id=identity.id)
