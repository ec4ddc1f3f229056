"""
beboard.services.friend_service — Friend Requests
===================================================

A request goes PENDING → ACCEPTED or PENDING → REJECTED, decided by the
addressee.  A rejected pair may try again; a pending or accepted one may
not.  Either member of an accepted friendship may end it (the row is
removed).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from beboard.database.engine import get_session
from beboard.database.models import Friend, FriendStatus, User
from beboard.engine.notifications import (
    NotificationMessage,
    NotificationPublisher,
    NotificationType,
    publish_safely,
)
from beboard.errors import AlreadyExists, Forbidden, InvalidArgument, InvalidState, NotFound

logger = logging.getLogger(__name__)


def _user_brief(u: User) -> dict[str, Any]:
    return {"id": u.id, "nickname": u.nickname, "profile_image": u.profile_image}


def friend_dict(f: Friend) -> dict[str, Any]:
    return {
        "id": f.id,
        "requester": _user_brief(f.requester),
        "addressee": _user_brief(f.addressee),
        "status": f.status,
        "message": f.message,
        "created_at": f.created_at.isoformat() if f.created_at else None,
        "updated_at": f.updated_at.isoformat() if f.updated_at else None,
    }


def _between(a: int, b: int):
    return or_(
        and_(Friend.requester_id == a, Friend.addressee_id == b),
        and_(Friend.requester_id == b, Friend.addressee_id == a),
    )


def _get_request(session: Session, request_id: int) -> Friend:
    friend = session.get(Friend, request_id)
    if friend is None:
        raise NotFound(f"Friend request {request_id} not found")
    return friend


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def send_request(
    engine,
    *,
    requester_id: int,
    addressee_email: str,
    message: str | None = None,
    publisher: NotificationPublisher | None = None,
) -> dict:
    with get_session(engine) as session:
        addressee = session.scalar(
            select(User).where(
                User.email == addressee_email.strip().lower(), User.deleted.is_(False),
            )
        )
        if addressee is None:
            raise NotFound("No user with that email")
        if addressee.id == requester_id:
            raise InvalidArgument("You cannot send a friend request to yourself")

        existing = session.scalars(
            select(Friend).where(
                _between(requester_id, addressee.id),
                Friend.status.in_([FriendStatus.PENDING, FriendStatus.ACCEPTED]),
            )
        ).first()
        if existing is not None:
            if existing.status == FriendStatus.ACCEPTED:
                raise AlreadyExists("You are already friends")
            raise AlreadyExists("A friend request is already pending")

        friend = Friend(
            requester_id=requester_id,
            addressee_id=addressee.id,
            status=FriendStatus.PENDING,
            message=message,
        )
        session.add(friend)
        session.flush()
        session.refresh(friend)
        result = friend_dict(friend)

    logger.info("User %s sent a friend request to user %s", requester_id, result["addressee"]["id"])
    publish_safely(publisher, NotificationMessage(
        recipient_id=result["addressee"]["id"],
        content=f"{result['requester']['nickname']} sent you a friend request.",
        url="/friends/requests",
        type=NotificationType.FRIEND_REQUEST,
    ))
    return result


def accept_request(
    engine, *, request_id: int, user_id: int, publisher: NotificationPublisher | None = None,
) -> dict:
    with get_session(engine) as session:
        friend = _get_request(session, request_id)
        if friend.addressee_id != user_id:
            raise Forbidden("Only the addressee may accept this request")
        if friend.status != FriendStatus.PENDING:
            raise InvalidState(f"Friend request {request_id} is {friend.status}")
        friend.status = FriendStatus.ACCEPTED
        session.flush()
        session.refresh(friend)
        result = friend_dict(friend)

    logger.info("User %s accepted friend request %s", user_id, request_id)
    publish_safely(publisher, NotificationMessage(
        recipient_id=result["requester"]["id"],
        content=f"{result['addressee']['nickname']} accepted your friend request.",
        url="/friends",
        type=NotificationType.FRIEND_ACCEPTED,
    ))
    return result


def reject_request(engine, *, request_id: int, user_id: int) -> None:
    with get_session(engine) as session:
        friend = _get_request(session, request_id)
        if friend.addressee_id != user_id:
            raise Forbidden("Only the addressee may reject this request")
        if friend.status != FriendStatus.PENDING:
            raise InvalidState(f"Friend request {request_id} is {friend.status}")
        friend.status = FriendStatus.REJECTED

    logger.info("User %s rejected friend request %s", user_id, request_id)


def remove_friend(engine, *, friendship_id: int, user_id: int) -> None:
    with get_session(engine) as session:
        friend = _get_request(session, friendship_id)
        if not friend.involves(user_id):
            raise Forbidden("Not a member of this friendship")
        if friend.status != FriendStatus.ACCEPTED:
            raise InvalidState(f"Friendship {friendship_id} is {friend.status}")
        session.delete(friend)

    logger.info("User %s removed friendship %s", user_id, friendship_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _paged(session: Session, criteria, page: int, page_size: int) -> tuple[int, list[Friend]]:
    total = session.scalar(select(func.count()).select_from(Friend).where(criteria)) or 0
    rows = session.scalars(
        select(Friend)
        .where(criteria)
        .order_by(Friend.created_at.desc(), Friend.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).unique().all()
    return total, list(rows)


def list_friends(engine, *, user_id: int, page: int = 1, page_size: int = 20) -> tuple[int, list[dict]]:
    """Accepted friendships of *user_id*, each with the other member as ``friend``."""
    criteria = and_(
        Friend.status == FriendStatus.ACCEPTED,
        or_(Friend.requester_id == user_id, Friend.addressee_id == user_id),
    )
    with Session(engine) as session:
        total, rows = _paged(session, criteria, page, page_size)
        return total, [
            {**friend_dict(f), "friend": _user_brief(f.other(user_id))} for f in rows
        ]


def list_received_requests(engine, *, user_id: int, page: int = 1, page_size: int = 20) -> tuple[int, list[dict]]:
    criteria = and_(Friend.addressee_id == user_id, Friend.status == FriendStatus.PENDING)
    with Session(engine) as session:
        total, rows = _paged(session, criteria, page, page_size)
        return total, [friend_dict(f) for f in rows]


def list_sent_requests(engine, *, user_id: int, page: int = 1, page_size: int = 20) -> tuple[int, list[dict]]:
    criteria = and_(Friend.requester_id == user_id, Friend.status == FriendStatus.PENDING)
    with Session(engine) as session:
        total, rows = _paged(session, criteria, page, page_size)
        return total, [friend_dict(f) for f in rows]
