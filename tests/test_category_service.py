"""
tests/test_category_service.py — Category Cache Tests
========================================================
Cached reads under the named keys, invalidation on every write path and
the rules around renaming and deleting categories.
"""

from __future__ import annotations

import pytest

from beboard.engine.cache import (
    CATEGORIES_KEY,
    TTLCache,
    category_key,
    category_post_count_key,
)
from beboard.errors import AlreadyExists, InvalidArgument, InvalidState, NotFound
from beboard.services import category_service, post_service


@pytest.fixture
def cache():
    return TTLCache()


@pytest.fixture
def author(make_user):
    return make_user("writer")


class TestReads:
    def test_active_list_is_cached(self, db_engine, cache, category):
        first = category_service.list_active_categories(db_engine, cache)
        assert [c["name"] for c in first] == ["Free talk"]
        assert CATEGORIES_KEY in cache

        # A write that bypasses the service is invisible until invalidation
        category_service.create_category(db_engine, None, name="Hidden")
        assert category_service.list_active_categories(db_engine, cache) == first

    def test_inactive_excluded_from_public_list(self, db_engine, cache, category):
        category_service.create_category(db_engine, cache, name="Archive")
        category_service.update_category(
            db_engine, cache, category.id, active=False,
        )
        names = [c["name"] for c in category_service.list_active_categories(db_engine, cache)]
        assert names == ["Archive"]
        all_names = [c["name"] for c in category_service.list_all_categories(db_engine)]
        assert all_names == ["Free talk", "Archive"]

    def test_get_category(self, db_engine, cache, category):
        got = category_service.get_category(db_engine, cache, category.id)
        assert got["name"] == "Free talk"
        assert category_key(category.id) in cache

    def test_missing_category_not_cached(self, db_engine, cache):
        with pytest.raises(NotFound):
            category_service.get_category(db_engine, cache, 999)
        assert category_key(999) not in cache

    def test_post_count_ignores_deleted_posts(self, db_engine, cache, category, author, make_post):
        from beboard.identity import Identity

        make_post(author)
        doomed = make_post(author, title="Second")
        post_service.delete_post(
            db_engine, cache, post_id=doomed["id"],
            identity=Identity(author.id, author.nickname),
        )
        assert category_service.get_post_count(db_engine, cache, category.id) == 1


class TestInvalidation:
    def test_create_drops_list(self, db_engine, cache, category):
        category_service.list_active_categories(db_engine, cache)
        created = category_service.create_category(db_engine, cache, name="News")
        assert CATEGORIES_KEY not in cache
        assert created["display_order"] == 2
        assert created["post_count"] == 0

    def test_update_drops_detail(self, db_engine, cache, category):
        category_service.get_category(db_engine, cache, category.id)
        category_service.update_category(db_engine, cache, category.id, name="Chit-chat")
        assert category_key(category.id) not in cache
        assert category_service.get_category(db_engine, cache, category.id)["name"] == "Chit-chat"

    def test_new_post_drops_count(self, db_engine, cache, category, author):
        assert category_service.get_post_count(db_engine, cache, category.id) == 0
        post_service.create_post(
            db_engine, cache, author_id=author.id, title="Hi", content="Body",
            category_id=category.id,
        )
        assert category_post_count_key(category.id) not in cache
        assert category_service.get_post_count(db_engine, cache, category.id) == 1

    def test_cross_process_notify_drops_scope(self, db_engine, cache, category):
        category_service.get_category(db_engine, cache, category.id)
        cache.handle_notify("category:")
        assert category_key(category.id) not in cache


class TestWrites:
    def test_duplicate_name(self, db_engine, cache, category):
        with pytest.raises(AlreadyExists):
            category_service.create_category(db_engine, cache, name="Free talk")

    def test_blank_name(self, db_engine, cache):
        with pytest.raises(InvalidArgument):
            category_service.create_category(db_engine, cache, name="   ")

    def test_rename_onto_existing(self, db_engine, cache, category):
        other = category_service.create_category(db_engine, cache, name="News")
        with pytest.raises(AlreadyExists):
            category_service.update_category(db_engine, cache, other["id"], name="Free talk")

    def test_update_missing(self, db_engine, cache):
        with pytest.raises(NotFound):
            category_service.update_category(db_engine, cache, 77, name="Nope")

    def test_delete_empty(self, db_engine, cache, category):
        category_service.get_category(db_engine, cache, category.id)
        category_service.delete_category(db_engine, cache, category.id)
        assert category_key(category.id) not in cache
        with pytest.raises(NotFound):
            category_service.get_category(db_engine, cache, category.id)

    def test_delete_with_posts_refused(self, db_engine, cache, category, author, make_post):
        make_post(author)
        with pytest.raises(InvalidState):
            category_service.delete_category(db_engine, cache, category.id)
