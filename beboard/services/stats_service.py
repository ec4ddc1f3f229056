"""
beboard.services.stats_service — Admin Dashboard Counters
===========================================================
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from beboard.database.models import Category, Challenge, ChallengeStatus, Comment, Post, User
from beboard.engine.clock import Clock, SystemClock

ACTIVE_WINDOW_MINUTES = 30


def dashboard_stats(engine, *, clock: Clock | None = None, top_categories: int = 5) -> dict:
    """Totals, today's counts, active users and the busiest categories."""
    clock = clock or SystemClock()
    now = clock.now()
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    recent = now - timedelta(minutes=ACTIVE_WINDOW_MINUTES)

    with Session(engine) as session:
        def _count(model, *criteria) -> int:
            return session.scalar(select(func.count()).select_from(model).where(*criteria)) or 0

        live_users = (User.deleted.is_(False),)
        live_posts = (Post.deleted.is_(False),)
        live_comments = (Comment.deleted.is_(False),)

        popular = session.execute(
            select(
                Category.id,
                Category.name,
                func.count(Post.id).label("post_count"),
                func.coalesce(func.sum(Post.view_count), 0).label("view_count"),
            )
            .join(Post, (Post.category_id == Category.id) & Post.deleted.is_(False), isouter=True)
            .group_by(Category.id, Category.name)
            .order_by(func.count(Post.id).desc(), Category.id)
            .limit(top_categories)
        ).all()

        return {
            "total_users": _count(User, *live_users),
            "new_users_today": _count(User, *live_users, User.created_at >= start_of_day),
            "active_users": session.scalar(
                select(func.count(distinct(User.id))).where(
                    *live_users, User.last_activity_at >= recent,
                )
            ) or 0,
            "active_users_today": _count(
                User, *live_users, User.last_activity_at >= start_of_day,
            ),
            "total_posts": _count(Post, *live_posts),
            "new_posts_today": _count(Post, *live_posts, Post.created_at >= start_of_day),
            "total_comments": _count(Comment, *live_comments),
            "new_comments_today": _count(
                Comment, *live_comments, Comment.created_at >= start_of_day,
            ),
            "active_challenges": _count(
                Challenge,
                Challenge.status.in_([ChallengeStatus.RECRUITING, ChallengeStatus.IN_PROGRESS]),
            ),
            "popular_categories": [
                {
                    "id": row.id,
                    "name": row.name,
                    "post_count": row.post_count,
                    "view_count": row.view_count,
                }
                for row in popular
            ],
            "last_updated": now.isoformat(),
        }
