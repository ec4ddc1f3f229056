"""
tests/test_stats_service.py — Dashboard Counter Tests
=======================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from beboard.engine.clock import FixedClock
from beboard.identity import Identity
from beboard.services import comment_service, post_service, stats_service, user_service


@pytest.fixture
def now_clock():
    # Rows get server-side CURRENT_TIMESTAMP, so "today" must be the real today
    return FixedClock(datetime.now(UTC))


class TestDashboardStats:
    def test_empty_board(self, db_engine, now_clock):
        stats = stats_service.dashboard_stats(db_engine, clock=now_clock)
        assert stats["total_users"] == 0
        assert stats["total_posts"] == 0
        assert stats["active_challenges"] == 0
        assert stats["popular_categories"] == []
        assert stats["last_updated"] == now_clock.now().isoformat()

    def test_counts_skip_deleted_rows(self, db_engine, now_clock, make_user, make_post, category):
        alice, bob = make_user("alice"), make_user("bob")
        gone = make_user("gone")
        user_service.delete_account(db_engine, user_id=gone.id, clock=now_clock)

        kept = make_post(alice)
        dropped = make_post(bob)
        post_service.delete_post(
            db_engine, post_id=dropped["id"], identity=Identity(bob.id, bob.nickname),
        )
        comment_service.create_comment(
            db_engine, post_id=kept["id"], author_id=bob.id, content="Nice",
        )

        stats = stats_service.dashboard_stats(db_engine, clock=now_clock)
        assert stats["total_users"] == 2
        assert stats["new_users_today"] == 2
        assert stats["total_posts"] == 1
        assert stats["new_posts_today"] == 1
        assert stats["total_comments"] == 1
        assert stats["popular_categories"] == [
            {"id": category.id, "name": "Free talk", "post_count": 1, "view_count": 0},
        ]

    def test_active_window(self, db_engine, now_clock, make_user):
        fresh, stale = make_user("fresh"), make_user("stale")
        user_service.touch_activity(db_engine, user_id=fresh.id, clock=now_clock)
        user_service.touch_activity(
            db_engine,
            user_id=stale.id,
            clock=FixedClock(now_clock.now() - timedelta(
                minutes=stats_service.ACTIVE_WINDOW_MINUTES + 5,
            )),
        )
        stats = stats_service.dashboard_stats(db_engine, clock=now_clock)
        assert stats["active_users"] == 1
