"""
beboard.services.category_service — Board Categories (cached)
===============================================================

Reads go through the explicit :class:`~beboard.engine.cache.TTLCache`
under three named keys:

* ``categories:active``          — active categories with post counts
* ``category:{id}``              — a single category
* ``category_post_count:{id}``   — live post count of one category

Every write invalidates the affected keys in-process and queues a
``cache_invalidated`` NOTIFY so other API processes follow suit.
Cached values are plain dicts, never ORM instances.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from beboard.database.engine import get_session
from beboard.database.models import Category, Post
from beboard.engine.cache import (
    CATEGORIES_KEY,
    CATEGORY_POST_COUNT_PREFIX,
    CATEGORY_PREFIX,
    TTLCache,
    category_key,
    category_post_count_key,
    notify_before_commit,
)
from beboard.errors import AlreadyExists, InvalidArgument, InvalidState, NotFound

logger = logging.getLogger(__name__)

CATEGORIES_TTL = 600
CATEGORY_TTL = 1800
POST_COUNT_TTL = 300


def _category_dict(c: Category, post_count: int | None = None) -> dict[str, Any]:
    data = {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "active": c.active,
        "display_order": c.display_order,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }
    if post_count is not None:
        data["post_count"] = post_count
    return data


def _count_posts(session: Session, category_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(Post).where(
            Post.category_id == category_id, Post.deleted.is_(False),
        )
    ) or 0


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------
def invalidate_category(cache: TTLCache | None, session: Session, category_id: int) -> None:
    """Drop everything derived from one category (list, detail, count)."""
    if cache is not None:
        cache.invalidate(
            CATEGORIES_KEY, category_key(category_id), category_post_count_key(category_id),
        )
    notify_before_commit(session, CATEGORIES_KEY)
    notify_before_commit(session, CATEGORY_PREFIX)
    notify_before_commit(session, CATEGORY_POST_COUNT_PREFIX)


def invalidate_post_count(cache: TTLCache | None, session: Session, category_id: int) -> None:
    """Drop the cached counts after a post was added to / removed from a category."""
    if cache is not None:
        cache.invalidate(CATEGORIES_KEY, category_post_count_key(category_id))
    notify_before_commit(session, CATEGORIES_KEY)
    notify_before_commit(session, CATEGORY_POST_COUNT_PREFIX)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _load_active_categories(engine) -> list[dict[str, Any]]:
    with Session(engine) as session:
        counts = dict(
            session.execute(
                select(Post.category_id, func.count())
                .where(Post.deleted.is_(False))
                .group_by(Post.category_id)
            ).all()
        )
        rows = session.scalars(
            select(Category)
            .where(Category.active.is_(True))
            .order_by(Category.display_order, Category.id)
        ).all()
        return [_category_dict(c, counts.get(c.id, 0)) for c in rows]


def list_active_categories(engine, cache: TTLCache, *, ttl: int = CATEGORIES_TTL) -> list[dict]:
    return cache.get_or_load(CATEGORIES_KEY, lambda: _load_active_categories(engine), ttl)


def list_all_categories(engine) -> list[dict]:
    """Every category, active or not (admin view, uncached)."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Category).order_by(Category.display_order, Category.id)
        ).all()
        return [_category_dict(c, _count_posts(session, c.id)) for c in rows]


def get_category(engine, cache: TTLCache, category_id: int, *, ttl: int = CATEGORY_TTL) -> dict:
    def _load() -> dict:
        with Session(engine) as session:
            category = session.get(Category, category_id)
            if category is None:
                raise NotFound(f"Category {category_id} not found")
            return _category_dict(category)

    return cache.get_or_load(category_key(category_id), _load, ttl)


def get_post_count(engine, cache: TTLCache, category_id: int, *, ttl: int = POST_COUNT_TTL) -> int:
    def _load() -> int:
        with Session(engine) as session:
            if session.get(Category, category_id) is None:
                raise NotFound(f"Category {category_id} not found")
            return _count_posts(session, category_id)

    return cache.get_or_load(category_post_count_key(category_id), _load, ttl)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_category(
    engine,
    cache: TTLCache | None,
    *,
    name: str,
    description: str | None = None,
    display_order: int | None = None,
) -> dict:
    """Create a category; ``display_order`` defaults to the current max + 1."""
    name = name.strip()
    if not name:
        raise InvalidArgument("Category name must not be blank")

    try:
        with get_session(engine) as session:
            if session.scalar(select(Category.id).where(Category.name == name)) is not None:
                raise AlreadyExists(f"Category '{name}' already exists")
            if display_order is None:
                current = session.scalar(select(func.max(Category.display_order)))
                display_order = (current or 0) + 1

            category = Category(
                name=name, description=description, display_order=display_order,
            )
            session.add(category)
            session.flush()
            session.refresh(category)
            invalidate_category(cache, session, category.id)
            result = _category_dict(category, 0)
    except IntegrityError as exc:
        raise AlreadyExists(f"Category '{name}' already exists") from exc

    logger.info("Created category %s (%s)", result["id"], name)
    return result


def update_category(
    engine,
    cache: TTLCache | None,
    category_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    active: bool | None = None,
    display_order: int | None = None,
) -> dict:
    try:
        with get_session(engine) as session:
            category = session.get(Category, category_id)
            if category is None:
                raise NotFound(f"Category {category_id} not found")

            if name is not None and name.strip() != category.name:
                name = name.strip()
                if not name:
                    raise InvalidArgument("Category name must not be blank")
                clash = session.scalar(
                    select(Category.id).where(Category.name == name, Category.id != category_id)
                )
                if clash is not None:
                    raise AlreadyExists(f"Category '{name}' already exists")
                category.name = name
            if description is not None:
                category.description = description
            if active is not None:
                category.active = active
            if display_order is not None:
                category.display_order = display_order

            session.flush()
            session.refresh(category)
            invalidate_category(cache, session, category_id)
            result = _category_dict(category, _count_posts(session, category_id))
    except IntegrityError as exc:
        raise AlreadyExists(f"Category '{name}' already exists") from exc

    logger.info("Updated category %s", category_id)
    return result


def delete_category(engine, cache: TTLCache | None, category_id: int) -> None:
    """Hard-delete an empty category.  Categories that still hold posts are kept."""
    with get_session(engine) as session:
        category = session.get(Category, category_id)
        if category is None:
            raise NotFound(f"Category {category_id} not found")
        has_posts = session.scalar(
            select(func.count()).select_from(Post).where(Post.category_id == category_id)
        )
        if has_posts:
            raise InvalidState(
                f"Category {category_id} still has {has_posts} post(s)"
            )
        session.delete(category)
        invalidate_category(cache, session, category_id)

    logger.info("Deleted category %s", category_id)
