"""
beboard.services.post_service — Posts and Bookmarks
=====================================================

Posts are soft-deleted; a deleted post disappears from every listing and
answers ``NotFound``.  Only the author (or an ADMIN) may edit or delete.
Creating or deleting a post changes its category's cached post count, so
those paths invalidate through :mod:`beboard.services.category_service`.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, lazyload

from beboard.database.engine import get_session
from beboard.database.models import Bookmark, Category, Comment, Post
from beboard.engine.cache import TTLCache
from beboard.errors import InvalidArgument, NotFound
from beboard.identity import Identity, ensure_owner
from beboard.services.category_service import invalidate_post_count

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("newest", "popular")


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------
def _comment_counts(session: Session, post_ids: list[int]) -> dict[int, int]:
    if not post_ids:
        return {}
    return dict(
        session.execute(
            select(Comment.post_id, func.count())
            .where(Comment.post_id.in_(post_ids), Comment.deleted.is_(False))
            .group_by(Comment.post_id)
        ).all()
    )


def _post_dict(p: Post, comment_count: int, *, bookmarked: bool | None = None) -> dict[str, Any]:
    data = {
        "id": p.id,
        "title": p.title,
        "content": p.content,
        "view_count": p.view_count,
        "comment_count": comment_count,
        "category": {"id": p.category.id, "name": p.category.name},
        "author": {"id": p.author.id, "nickname": p.author.nickname},
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }
    if bookmarked is not None:
        data["bookmarked"] = bookmarked
    return data


def _page(session: Session, query, page: int, page_size: int) -> tuple[int, list[dict]]:
    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(query.offset((page - 1) * page_size).limit(page_size)).unique().all()
    counts = _comment_counts(session, [p.id for p in rows])
    return total, [_post_dict(p, counts.get(p.id, 0)) for p in rows]


def _get_live_post(session: Session, post_id: int, *, for_update: bool = False) -> Post:
    query = select(Post).where(Post.id == post_id, Post.deleted.is_(False))
    if for_update:
        # FOR UPDATE cannot lock the nullable side of the eager outer joins
        query = query.options(lazyload("*")).with_for_update()
    post = session.scalars(query).unique().first()
    if post is None:
        raise NotFound(f"Post {post_id} not found")
    return post


def _validate(title: str, content: str) -> tuple[str, str]:
    title = title.strip()
    if not title:
        raise InvalidArgument("Title must not be blank")
    if len(title) > 200:
        raise InvalidArgument("Title must be at most 200 characters")
    if not content.strip():
        raise InvalidArgument("Content must not be blank")
    return title, content


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
def list_posts(
    engine,
    *,
    category_id: int | None = None,
    search: str | None = None,
    sort: str = "newest",
    page: int = 1,
    page_size: int = 10,
) -> tuple[int, list[dict]]:
    """Live posts, optionally filtered by category and/or a title/content search."""
    if sort not in SORT_OPTIONS:
        raise InvalidArgument(f"Unknown sort '{sort}'. Use one of {SORT_OPTIONS}")

    query = select(Post).where(Post.deleted.is_(False))
    if category_id is not None:
        query = query.where(Post.category_id == category_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(
            or_(func.lower(Post.title).like(pattern), func.lower(Post.content).like(pattern))
        )
    if sort == "popular":
        query = query.order_by(Post.view_count.desc(), Post.created_at.desc(), Post.id.desc())
    else:
        query = query.order_by(Post.created_at.desc(), Post.id.desc())

    with Session(engine) as session:
        return _page(session, query, page, page_size)


def list_user_posts(engine, *, author_id: int, page: int = 1, page_size: int = 10) -> tuple[int, list[dict]]:
    query = (
        select(Post)
        .where(Post.author_id == author_id, Post.deleted.is_(False))
        .order_by(Post.created_at.desc(), Post.id.desc())
    )
    with Session(engine) as session:
        return _page(session, query, page, page_size)


def list_bookmarked_posts(engine, *, user_id: int, page: int = 1, page_size: int = 10) -> tuple[int, list[dict]]:
    query = (
        select(Post)
        .join(Bookmark, Bookmark.post_id == Post.id)
        .where(Bookmark.user_id == user_id, Post.deleted.is_(False))
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
    )
    with Session(engine) as session:
        return _page(session, query, page, page_size)


def popular_posts(engine, *, limit: int = 5) -> list[dict]:
    query = (
        select(Post)
        .where(Post.deleted.is_(False))
        .order_by(Post.view_count.desc(), Post.id.desc())
    )
    with Session(engine) as session:
        _, posts = _page(session, query, 1, limit)
    return posts


# ---------------------------------------------------------------------------
# Single post
# ---------------------------------------------------------------------------
def get_post(
    engine, post_id: int, *, viewer_id: int | None = None, count_view: bool = False,
) -> dict:
    """Return one live post.  ``count_view`` bumps the view counter atomically."""
    with get_session(engine) as session:
        if count_view:
            session.execute(
                update(Post)
                .where(Post.id == post_id, Post.deleted.is_(False))
                .values(view_count=Post.view_count + 1)
            )
        post = _get_live_post(session, post_id)
        session.refresh(post)
        bookmarked = None
        if viewer_id is not None:
            bookmarked = session.scalar(
                select(Bookmark.id).where(
                    Bookmark.user_id == viewer_id, Bookmark.post_id == post_id,
                )
            ) is not None
        return _post_dict(
            post, _comment_counts(session, [post_id]).get(post_id, 0), bookmarked=bookmarked,
        )


def create_post(
    engine,
    cache: TTLCache | None = None,
    *,
    author_id: int,
    title: str,
    content: str,
    category_id: int,
) -> dict:
    title, content = _validate(title, content)
    with get_session(engine) as session:
        category = session.get(Category, category_id)
        if category is None or not category.active:
            raise NotFound(f"Category {category_id} not found")
        post = Post(
            title=title, content=content, category_id=category_id, author_id=author_id,
        )
        session.add(post)
        session.flush()
        session.refresh(post)
        invalidate_post_count(cache, session, category_id)
        result = _post_dict(post, 0)

    logger.info("User %s created post %s in category %s", author_id, result["id"], category_id)
    return result


def update_post(
    engine,
    cache: TTLCache | None = None,
    *,
    post_id: int,
    identity: Identity,
    title: str,
    content: str,
    category_id: int | None = None,
) -> dict:
    title, content = _validate(title, content)
    with get_session(engine) as session:
        post = _get_live_post(session, post_id, for_update=True)
        ensure_owner(identity, post.author_id, "edit this post", allow_admin=True)

        post.title = title
        post.content = content
        if category_id is not None and category_id != post.category_id:
            category = session.get(Category, category_id)
            if category is None or not category.active:
                raise NotFound(f"Category {category_id} not found")
            invalidate_post_count(cache, session, post.category_id)
            invalidate_post_count(cache, session, category_id)
            post.category_id = category_id
        session.flush()
        session.refresh(post)
        result = _post_dict(post, _comment_counts(session, [post_id]).get(post_id, 0))

    logger.info("User %s updated post %s", identity.id, post_id)
    return result


def delete_post(engine, cache: TTLCache | None = None, *, post_id: int, identity: Identity) -> None:
    with get_session(engine) as session:
        post = _get_live_post(session, post_id, for_update=True)
        ensure_owner(identity, post.author_id, "delete this post", allow_admin=True)
        post.deleted = True
        invalidate_post_count(cache, session, post.category_id)

    logger.info("User %s deleted post %s", identity.id, post_id)


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------
def add_bookmark(engine, *, user_id: int, post_id: int) -> bool:
    """Bookmark a post.  Returns False if it was already bookmarked."""
    try:
        with get_session(engine) as session:
            _get_live_post(session, post_id)
            exists = session.scalar(
                select(Bookmark.id).where(Bookmark.user_id == user_id, Bookmark.post_id == post_id)
            )
            if exists is not None:
                return False
            session.add(Bookmark(user_id=user_id, post_id=post_id))
    except IntegrityError:
        return False
    return True


def remove_bookmark(engine, *, user_id: int, post_id: int) -> bool:
    """Drop a bookmark.  Returns False if there was none."""
    with get_session(engine) as session:
        bookmark = session.scalar(
            select(Bookmark).where(Bookmark.user_id == user_id, Bookmark.post_id == post_id)
        )
        if bookmark is None:
            return False
        session.delete(bookmark)
    return True
