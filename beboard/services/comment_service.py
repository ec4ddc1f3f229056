"""
beboard.services.comment_service — Threaded Comment Tree
==========================================================

Comments are stored flat; ``parent_id`` is the only edge.  Listings
rebuild the tree at read time from a ``parent_id → [children]`` index, so
no comment ever owns another.

Deletion is soft and one-way:

* a deleted comment **with** children stays in the tree and renders as a
  placeholder until its last child goes away;
* a deleted comment **without** children is detached (``parent_id`` is
  cleared) and so vanishes from every listing;
* detaching a leaf can leave an already-deleted parent childless, in
  which case that parent is detached too, and so on up the thread.

The child count is read under a row lock in the same transaction that
writes the delete flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, aliased

from beboard.database.engine import get_session
from beboard.database.models import Comment, Post, User
from beboard.engine.notifications import (
    NotificationMessage,
    NotificationPublisher,
    NotificationType,
    publish_safely,
)
from beboard.errors import Forbidden, InvalidArgument, InvalidRelation, InvalidState, NotFound

logger = logging.getLogger(__name__)

DELETED_PLACEHOLDER = "This comment has been deleted."
MAX_CONTENT_LENGTH = 1000


@dataclass
class CommentNode:
    """A comment as rendered in a listing, with its resolved children."""

    id: int
    post_id: int
    parent_id: int | None
    author_id: int
    author_nickname: str
    content: str
    deleted: bool
    created_at: datetime | None
    updated_at: datetime | None
    children: list[CommentNode] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "parent_id": self.parent_id,
            "author": {"id": self.author_id, "nickname": self.author_nickname},
            "content": self.content,
            "deleted": self.deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "children": [child.as_dict() for child in self.children],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _newest_first(comments: list[Comment]) -> list[Comment]:
    return sorted(comments, key=lambda c: (c.created_at, c.id), reverse=True)


def _nicknames(session: Session, user_ids: set[int]) -> dict[int, str]:
    if not user_ids:
        return {}
    rows = session.execute(select(User.id, User.nickname).where(User.id.in_(user_ids))).all()
    return dict(rows)


def _node(c: Comment, nicknames: dict[int, str]) -> CommentNode:
    return CommentNode(
        id=c.id,
        post_id=c.post_id,
        parent_id=c.parent_id,
        author_id=c.author_id,
        author_nickname=nicknames.get(c.author_id, "Unknown"),
        content=DELETED_PLACEHOLDER if c.deleted else c.content,
        deleted=c.deleted,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def _build_tree(
    roots: list[Comment],
    index: dict[int, list[Comment]],
    nicknames: dict[int, str],
) -> list[CommentNode]:
    """Resolve children for each root from *index*, newest first at every level."""
    top = [_node(c, nicknames) for c in roots]
    stack = list(top)
    while stack:
        node = stack.pop()
        for child in _newest_first(index.get(node.id, [])):
            child_node = _node(child, nicknames)
            node.children.append(child_node)
            stack.append(child_node)
    return top


def _check_content(content: str) -> str:
    if content is None or not content.strip():
        raise InvalidArgument("Comment content must not be empty")
    if len(content) > MAX_CONTENT_LENGTH:
        raise InvalidArgument(
            f"Comment content must be at most {MAX_CONTENT_LENGTH} characters"
        )
    return content


def _lock_comment(session: Session, comment_id: int) -> Comment | None:
    return session.scalars(
        select(Comment).where(Comment.id == comment_id).with_for_update()
    ).first()


def _child_count(session: Session, comment_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(Comment).where(Comment.parent_id == comment_id)
    ) or 0


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_comment(
    engine,
    *,
    post_id: int,
    content: str,
    author_id: int,
    parent_id: int | None = None,
    publisher: NotificationPublisher | None = None,
) -> CommentNode:
    """Add a comment to a live post, optionally as a reply to *parent_id*.

    The post author is notified (NEW_COMMENT) when someone else comments,
    and the parent's author (COMMENT_REPLY) when someone else replies.
    """
    notices: list[NotificationMessage] = []

    with get_session(engine) as session:
        post = session.scalar(select(Post).where(Post.id == post_id, Post.deleted.is_(False)))
        if post is None:
            raise NotFound(f"Post {post_id} not found")

        parent = None
        if parent_id is not None:
            parent = session.get(Comment, parent_id)
            if parent is None or parent.deleted:
                raise NotFound(f"Parent comment {parent_id} not found")
            if parent.post_id != post_id:
                raise InvalidRelation(
                    f"Parent comment {parent_id} belongs to another post"
                )

        comment = Comment(
            content=_check_content(content),
            post_id=post_id,
            author_id=author_id,
            parent_id=parent_id,
        )
        session.add(comment)
        session.flush()
        session.refresh(comment)

        nicknames = _nicknames(session, {author_id})
        commenter = nicknames.get(author_id, "Someone")
        url = f"/posts/{post_id}"
        if post.author_id != author_id:
            notices.append(NotificationMessage(
                recipient_id=post.author_id,
                content=f"{commenter} commented on your post.",
                url=url,
                type=NotificationType.NEW_COMMENT,
            ))
        if parent is not None and parent.author_id not in (author_id, post.author_id):
            notices.append(NotificationMessage(
                recipient_id=parent.author_id,
                content=f"{commenter} replied to your comment.",
                url=url,
                type=NotificationType.COMMENT_REPLY,
            ))
        node = _node(comment, nicknames)

    logger.info(
        "Comment %s created on post %s by user %s (parent=%s)",
        node.id, post_id, author_id, parent_id,
    )
    for notice in notices:
        publish_safely(publisher, notice)
    return node


def update_comment(
    engine, *, comment_id: int, content: str, requestor_id: int,
) -> CommentNode:
    """Replace the content of a live comment.  Author only."""
    with get_session(engine) as session:
        comment = _lock_comment(session, comment_id)
        if comment is None:
            raise NotFound(f"Comment {comment_id} not found")
        if comment.author_id != requestor_id:
            raise Forbidden("Only the author may edit this comment")
        if comment.deleted:
            raise InvalidState("A deleted comment cannot be edited")

        comment.content = _check_content(content)
        session.flush()
        session.refresh(comment)
        node = _node(comment, _nicknames(session, {comment.author_id}))

    logger.info("Comment %s updated by user %s", comment_id, requestor_id)
    return node


def soft_delete_comment(engine, *, comment_id: int, requestor_id: int) -> None:
    """Mark a comment deleted and detach whatever no longer has children.

    Deleting an already-deleted comment is a no-op.
    """
    with get_session(engine) as session:
        comment = _lock_comment(session, comment_id)
        if comment is None:
            raise NotFound(f"Comment {comment_id} not found")
        if comment.author_id != requestor_id:
            raise Forbidden("Only the author may delete this comment")
        if comment.deleted:
            logger.info("Comment %s already deleted — nothing to do", comment_id)
            return

        comment.deleted = True
        detached = 0
        node = comment
        while node is not None and node.deleted and node.parent_id is not None:
            if _child_count(session, node.id) > 0:
                break
            parent_id = node.parent_id
            node.parent_id = None
            session.flush()
            detached += 1
            node = _lock_comment(session, parent_id)

    logger.info(
        "Comment %s deleted by user %s (%d node(s) detached)",
        comment_id, requestor_id, detached,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_root_comments(
    engine, *, post_id: int, page: int = 1, page_size: int = 10,
) -> tuple[int, list[CommentNode]]:
    """Top-level comments of a post, newest first, each with its full thread.

    A deleted root is listed as a placeholder while it still has children.
    Children are included whether or not they are deleted; detached
    comments are no longer anyone's child and never appear.
    """
    with Session(engine) as session:
        exists = session.scalar(
            select(Post.id).where(Post.id == post_id, Post.deleted.is_(False))
        )
        if exists is None:
            raise NotFound(f"Post {post_id} not found")

        child = aliased(Comment)
        has_children = select(child.id).where(child.parent_id == Comment.id).exists()
        root_filter = (
            Comment.post_id == post_id,
            Comment.parent_id.is_(None),
            or_(Comment.deleted.is_(False), has_children),
        )
        total = session.scalar(
            select(func.count()).select_from(Comment).where(*root_filter)
        ) or 0
        roots = session.scalars(
            select(Comment)
            .where(*root_filter)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()

        attached = session.scalars(
            select(Comment).where(Comment.post_id == post_id, Comment.parent_id.is_not(None))
        ).all()
        index: dict[int, list[Comment]] = {}
        for c in attached:
            index.setdefault(c.parent_id, []).append(c)

        nicknames = _nicknames(
            session, {c.author_id for c in roots} | {c.author_id for c in attached},
        )
        return total, _build_tree(list(roots), index, nicknames)


def list_user_comments(
    engine, *, user_id: int, page: int = 1, page_size: int = 10,
) -> tuple[int, list[CommentNode]]:
    """A user's own live comments across all posts, newest first (no children)."""
    criteria = (Comment.author_id == user_id, Comment.deleted.is_(False))
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(Comment).where(*criteria)) or 0
        rows = session.scalars(
            select(Comment)
            .where(*criteria)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        nicknames = _nicknames(session, {user_id})
        return total, [_node(c, nicknames) for c in rows]
