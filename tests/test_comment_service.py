"""
tests/test_comment_service.py — Comment Tree Tests
====================================================
Creation rules, reply notifications, soft delete with upward detach,
and the tree rebuilt by ``list_root_comments``.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from beboard.database.models import Comment
from beboard.engine.notifications import NotificationType
from beboard.errors import Forbidden, InvalidArgument, InvalidRelation, InvalidState, NotFound
from beboard.services import comment_service, post_service
from beboard.services.comment_service import DELETED_PLACEHOLDER


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def post(make_post, alice):
    return make_post(alice)


def _comment(engine, post, author, content="hi", parent=None, publisher=None):
    return comment_service.create_comment(
        engine,
        post_id=post["id"],
        content=content,
        author_id=author.id,
        parent_id=parent.id if parent is not None else None,
        publisher=publisher,
    )


def _tree(engine, post):
    _, roots = comment_service.list_root_comments(engine, post_id=post["id"])
    return roots


def _find(nodes, comment_id):
    stack = list(nodes)
    while stack:
        node = stack.pop()
        if node.id == comment_id:
            return node
        stack.extend(node.children)
    return None


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
class TestCreateComment:
    def test_root_comment_listed(self, db_engine, post, bob):
        node = _comment(db_engine, post, bob, "nice post")
        roots = _tree(db_engine, post)
        assert [r.id for r in roots] == [node.id]
        assert roots[0].content == "nice post"
        assert roots[0].author_nickname == "bob"

    def test_reply_appears_under_parent(self, db_engine, post, alice, bob):
        parent = _comment(db_engine, post, alice)
        reply = _comment(db_engine, post, bob, "reply", parent=parent)

        roots = _tree(db_engine, post)
        assert [r.id for r in roots] == [parent.id]
        assert [c.id for c in roots[0].children] == [reply.id]

    def test_missing_post(self, db_engine, bob):
        with pytest.raises(NotFound):
            comment_service.create_comment(
                db_engine, post_id=999, content="x", author_id=bob.id,
            )

    def test_deleted_post(self, db_engine, post, alice, bob):
        from beboard.identity import Identity

        post_service.delete_post(
            db_engine, post_id=post["id"], identity=Identity(alice.id, alice.nickname),
        )
        with pytest.raises(NotFound):
            _comment(db_engine, post, bob)

    def test_missing_parent(self, db_engine, post, bob):
        with pytest.raises(NotFound):
            comment_service.create_comment(
                db_engine, post_id=post["id"], content="x", author_id=bob.id, parent_id=4242,
            )

    def test_parent_on_other_post_is_invalid_relation(self, db_engine, make_post, alice, bob):
        first = make_post(alice, title="first")
        second = make_post(alice, title="second")
        parent = _comment(db_engine, first, bob)
        with pytest.raises(InvalidRelation):
            _comment(db_engine, second, bob, parent=parent)

    @pytest.mark.parametrize("content", ["", "   ", "x" * 1001])
    def test_bad_content(self, db_engine, post, bob, content):
        with pytest.raises(InvalidArgument):
            _comment(db_engine, post, bob, content)


class TestCommentNotifications:
    def test_comment_on_others_post_notifies_author(self, db_engine, post, alice, bob):
        publisher = MagicMock()
        _comment(db_engine, post, bob, publisher=publisher)

        publisher.publish.assert_called_once()
        message = publisher.publish.call_args.args[0]
        assert message.recipient_id == alice.id
        assert message.type == NotificationType.NEW_COMMENT
        assert message.url == f"/posts/{post['id']}"

    def test_own_post_no_notification(self, db_engine, post, alice):
        publisher = MagicMock()
        _comment(db_engine, post, alice, publisher=publisher)
        publisher.publish.assert_not_called()

    def test_reply_notifies_parent_author(self, db_engine, make_user, post, alice, bob):
        carol = make_user("carol")
        parent = _comment(db_engine, post, bob)
        publisher = MagicMock()
        _comment(db_engine, post, carol, parent=parent, publisher=publisher)

        sent = [c.args[0] for c in publisher.publish.call_args_list]
        assert {(m.recipient_id, m.type) for m in sent} == {
            (alice.id, NotificationType.NEW_COMMENT),
            (bob.id, NotificationType.COMMENT_REPLY),
        }

    def test_reply_to_post_author_sends_one_notice(self, db_engine, post, alice, bob):
        parent = _comment(db_engine, post, alice)
        publisher = MagicMock()
        _comment(db_engine, post, bob, parent=parent, publisher=publisher)

        sent = [c.args[0] for c in publisher.publish.call_args_list]
        assert [(m.recipient_id, m.type) for m in sent] == [
            (alice.id, NotificationType.NEW_COMMENT),
        ]

    def test_publisher_failure_does_not_fail_request(self, db_engine, post, bob):
        publisher = MagicMock()
        publisher.publish.side_effect = RuntimeError("relay down")
        node = _comment(db_engine, post, bob, publisher=publisher)
        assert _find(_tree(db_engine, post), node.id) is not None


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------
class TestUpdateComment:
    def test_author_can_edit(self, db_engine, post, bob):
        node = _comment(db_engine, post, bob)
        updated = comment_service.update_comment(
            db_engine, comment_id=node.id, content="edited", requestor_id=bob.id,
        )
        assert updated.content == "edited"

    def test_stranger_forbidden(self, db_engine, post, alice, bob):
        node = _comment(db_engine, post, bob)
        with pytest.raises(Forbidden):
            comment_service.update_comment(
                db_engine, comment_id=node.id, content="x", requestor_id=alice.id,
            )

    def test_deleted_comment_is_invalid_state(self, db_engine, post, bob):
        node = _comment(db_engine, post, bob)
        comment_service.soft_delete_comment(db_engine, comment_id=node.id, requestor_id=bob.id)
        with pytest.raises(InvalidState):
            comment_service.update_comment(
                db_engine, comment_id=node.id, content="x", requestor_id=bob.id,
            )

    def test_missing(self, db_engine, bob):
        with pytest.raises(NotFound):
            comment_service.update_comment(
                db_engine, comment_id=1, content="x", requestor_id=bob.id,
            )


# ---------------------------------------------------------------------------
# Soft delete
# ---------------------------------------------------------------------------
class TestSoftDelete:
    def test_leaf_disappears_from_parent(self, db_engine, post, alice, bob):
        parent = _comment(db_engine, post, alice)
        leaf = _comment(db_engine, post, bob, parent=parent)

        comment_service.soft_delete_comment(db_engine, comment_id=leaf.id, requestor_id=bob.id)

        roots = _tree(db_engine, post)
        assert roots[0].children == []
        with Session(db_engine) as session:
            row = session.get(Comment, leaf.id)
            assert row.deleted is True
            assert row.parent_id is None

    def test_comment_with_children_kept_as_placeholder(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        middle = _comment(db_engine, post, bob, "middle", parent=root)
        leaf = _comment(db_engine, post, alice, "leaf", parent=middle)

        comment_service.soft_delete_comment(db_engine, comment_id=middle.id, requestor_id=bob.id)

        node = _find(_tree(db_engine, post), middle.id)
        assert node is not None
        assert node.deleted is True
        assert node.content == DELETED_PLACEHOLDER
        assert [c.id for c in node.children] == [leaf.id]
        assert node.children[0].content == "leaf"

    def test_detach_cascades_up_through_deleted_parents(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        middle = _comment(db_engine, post, bob, parent=root)
        leaf = _comment(db_engine, post, alice, parent=middle)

        comment_service.soft_delete_comment(db_engine, comment_id=middle.id, requestor_id=bob.id)
        comment_service.soft_delete_comment(db_engine, comment_id=leaf.id, requestor_id=alice.id)

        roots = _tree(db_engine, post)
        assert [r.id for r in roots] == [root.id]
        assert roots[0].children == []
        with Session(db_engine) as session:
            assert session.get(Comment, middle.id).parent_id is None

    def test_detach_stops_at_live_parent(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        middle = _comment(db_engine, post, bob, parent=root)
        leaf = _comment(db_engine, post, alice, parent=middle)

        comment_service.soft_delete_comment(db_engine, comment_id=leaf.id, requestor_id=alice.id)

        node = _find(_tree(db_engine, post), middle.id)
        assert node is not None and node.deleted is False
        assert node.children == []

    def test_detach_stops_at_parent_with_other_children(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        middle = _comment(db_engine, post, bob, parent=root)
        first = _comment(db_engine, post, alice, "first", parent=middle)
        second = _comment(db_engine, post, alice, "second", parent=middle)

        comment_service.soft_delete_comment(db_engine, comment_id=middle.id, requestor_id=bob.id)
        comment_service.soft_delete_comment(db_engine, comment_id=first.id, requestor_id=alice.id)

        node = _find(_tree(db_engine, post), middle.id)
        assert node is not None and node.deleted is True
        assert [c.id for c in node.children] == [second.id]

    def test_deleted_root_leaves_listing(self, db_engine, post, bob):
        node = _comment(db_engine, post, bob)
        comment_service.soft_delete_comment(db_engine, comment_id=node.id, requestor_id=bob.id)
        total, roots = comment_service.list_root_comments(db_engine, post_id=post["id"])
        assert total == 0 and roots == []

    def test_deleted_root_with_live_reply_stays_listed(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, bob, "root")
        reply = _comment(db_engine, post, alice, "still here", parent=root)

        comment_service.soft_delete_comment(db_engine, comment_id=root.id, requestor_id=bob.id)

        total, roots = comment_service.list_root_comments(db_engine, post_id=post["id"])
        assert total == 1
        assert roots[0].id == root.id
        assert roots[0].content == DELETED_PLACEHOLDER
        assert [(c.id, c.content) for c in roots[0].children] == [(reply.id, "still here")]

        comment_service.soft_delete_comment(db_engine, comment_id=reply.id, requestor_id=alice.id)
        total, roots = comment_service.list_root_comments(db_engine, post_id=post["id"])
        assert total == 0 and roots == []

    def test_second_delete_is_noop(self, db_engine, post, bob):
        node = _comment(db_engine, post, bob)
        comment_service.soft_delete_comment(db_engine, comment_id=node.id, requestor_id=bob.id)
        comment_service.soft_delete_comment(db_engine, comment_id=node.id, requestor_id=bob.id)

    def test_stranger_forbidden(self, db_engine, post, alice, bob):
        node = _comment(db_engine, post, bob)
        with pytest.raises(Forbidden):
            comment_service.soft_delete_comment(
                db_engine, comment_id=node.id, requestor_id=alice.id,
            )

    def test_missing(self, db_engine, bob):
        with pytest.raises(NotFound):
            comment_service.soft_delete_comment(db_engine, comment_id=77, requestor_id=bob.id)

    def test_reply_to_deleted_parent_not_found(self, db_engine, post, alice, bob):
        parent = _comment(db_engine, post, alice)
        comment_service.soft_delete_comment(db_engine, comment_id=parent.id, requestor_id=alice.id)
        with pytest.raises(NotFound):
            _comment(db_engine, post, bob, parent=parent)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------
class TestListing:
    def test_roots_newest_first_and_paginated(self, db_engine, post, bob):
        ids = [_comment(db_engine, post, bob, f"c{i}").id for i in range(5)]

        total, page1 = comment_service.list_root_comments(
            db_engine, post_id=post["id"], page=1, page_size=2,
        )
        _, page3 = comment_service.list_root_comments(
            db_engine, post_id=post["id"], page=3, page_size=2,
        )
        assert total == 5
        assert [n.id for n in page1] == [ids[4], ids[3]]
        assert [n.id for n in page3] == [ids[0]]

    def test_children_newest_first(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        older = _comment(db_engine, post, bob, "older", parent=root)
        newer = _comment(db_engine, post, bob, "newer", parent=root)
        roots = _tree(db_engine, post)
        assert [c.id for c in roots[0].children] == [newer.id, older.id]

    def test_deep_thread_resolved(self, db_engine, post, bob):
        parent = _comment(db_engine, post, bob)
        chain = [parent.id]
        for _ in range(30):
            parent = _comment(db_engine, post, bob, parent=parent)
            chain.append(parent.id)

        node = _tree(db_engine, post)[0]
        seen = [node.id]
        while node.children:
            node = node.children[0]
            seen.append(node.id)
        assert seen == chain

    def test_missing_post(self, db_engine):
        with pytest.raises(NotFound):
            comment_service.list_root_comments(db_engine, post_id=12345)

    def test_as_dict_nests_children(self, db_engine, post, alice, bob):
        root = _comment(db_engine, post, alice)
        _comment(db_engine, post, bob, "reply", parent=root)
        data = _tree(db_engine, post)[0].as_dict()
        assert data["author"] == {"id": alice.id, "nickname": "alice"}
        assert data["children"][0]["content"] == "reply"

    def test_user_comments(self, db_engine, post, alice, bob):
        _comment(db_engine, post, bob, "mine")
        _comment(db_engine, post, alice, "not mine")
        gone = _comment(db_engine, post, bob, "gone")
        comment_service.soft_delete_comment(db_engine, comment_id=gone.id, requestor_id=bob.id)

        total, nodes = comment_service.list_user_comments(db_engine, user_id=bob.id)
        assert total == 1
        assert [n.content for n in nodes] == ["mine"]
