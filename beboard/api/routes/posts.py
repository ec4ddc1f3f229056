"""
beboard.api.routes.posts — Posts, comments on posts, bookmarks
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from beboard.api.deps import (
    Page,
    get_cache,
    get_current_user,
    get_engine,
    get_optional_user,
    get_publisher,
)
from beboard.engine.cache import TTLCache
from beboard.engine.notifications import NotificationPublisher
from beboard.identity import Identity
from beboard.services import comment_service, post_service

router = APIRouter(prefix="/posts", tags=["posts"])


class PostBody(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    category_id: int


class PostUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    category_id: int | None = None


class CommentBody(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    parent_id: int | None = None


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
@router.get("")
def list_posts(
    category_id: int | None = None,
    search: str | None = None,
    sort: str = Query("newest"),
    page: Page = Depends(),
    engine=Depends(get_engine),
):
    total, posts = post_service.list_posts(
        engine,
        category_id=category_id,
        search=search,
        sort=sort,
        page=page.page,
        page_size=page.page_size,
    )
    return page.wrap(total, posts, "posts")


@router.get("/popular")
def popular(limit: int = Query(5, ge=1, le=50), engine=Depends(get_engine)):
    return {"posts": post_service.popular_posts(engine, limit=limit)}


@router.get("/{post_id}")
def get_post(
    post_id: int,
    viewer: Identity | None = Depends(get_optional_user),
    engine=Depends(get_engine),
):
    return post_service.get_post(
        engine, post_id, viewer_id=viewer.id if viewer else None, count_view=True,
    )


@router.post("", status_code=201)
def create_post(
    body: PostBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    return post_service.create_post(
        engine,
        cache,
        author_id=identity.id,
        title=body.title,
        content=body.content,
        category_id=body.category_id,
    )


@router.put("/{post_id}")
def update_post(
    post_id: int,
    body: PostUpdate,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    return post_service.update_post(
        engine,
        cache,
        post_id=post_id,
        identity=identity,
        title=body.title,
        content=body.content,
        category_id=body.category_id,
    )


@router.delete("/{post_id}", status_code=204)
def delete_post(
    post_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    post_service.delete_post(engine, cache, post_id=post_id, identity=identity)


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------
@router.post("/{post_id}/bookmark")
def add_bookmark(
    post_id: int,
    response: Response,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    created = post_service.add_bookmark(engine, user_id=identity.id, post_id=post_id)
    response.status_code = 201 if created else 200
    return {"post_id": post_id, "bookmarked": True}


@router.delete("/{post_id}/bookmark")
def remove_bookmark(
    post_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    removed = post_service.remove_bookmark(engine, user_id=identity.id, post_id=post_id)
    return {"post_id": post_id, "bookmarked": False, "removed": removed}


# ---------------------------------------------------------------------------
# Comments on a post
# ---------------------------------------------------------------------------
@router.get("/{post_id}/comments")
def list_comments(post_id: int, page: Page = Depends(), engine=Depends(get_engine)):
    total, nodes = comment_service.list_root_comments(
        engine, post_id=post_id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, [n.as_dict() for n in nodes], "comments")


@router.post("/{post_id}/comments", status_code=201)
def create_comment(
    post_id: int,
    body: CommentBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    node = comment_service.create_comment(
        engine,
        post_id=post_id,
        content=body.content,
        author_id=identity.id,
        parent_id=body.parent_id,
        publisher=publisher,
    )
    return node.as_dict()
