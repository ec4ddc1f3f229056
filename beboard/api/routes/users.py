"""
beboard.api.routes.users — Profiles, directory search, "my" listings
======================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from beboard.api.auth import user_dict
from beboard.api.deps import Page, get_current_user, get_engine
from beboard.database.models import User
from beboard.identity import Identity
from beboard.services import comment_service, post_service, user_service

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    nickname: str | None = Field(default=None, min_length=2, max_length=20)
    profile_image: str | None = Field(default=None, max_length=500)


def _public_dict(u: User) -> dict:
    return {
        "id": u.id,
        "nickname": u.nickname,
        "profile_image": u.profile_image,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


@router.put("/me")
def update_me(
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    user = user_service.update_profile(
        engine, user_id=identity.id, nickname=body.nickname, profile_image=body.profile_image,
    )
    return user_dict(user)


@router.get("/me/posts")
def my_posts(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = post_service.list_user_posts(
        engine, author_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "posts")


@router.get("/me/bookmarks")
def my_bookmarks(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = post_service.list_bookmarked_posts(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "posts")


@router.get("/me/comments")
def my_comments(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, nodes = comment_service.list_user_comments(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, [n.as_dict() for n in nodes], "comments")


@router.get("/search")
def search(
    q: str = Query(min_length=1),
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, users = user_service.search_users(
        engine, term=q, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, [_public_dict(u) for u in users], "users")


@router.get("/{user_id}")
def get_user(user_id: int, engine=Depends(get_engine)):
    return _public_dict(user_service.get_user(engine, user_id))
