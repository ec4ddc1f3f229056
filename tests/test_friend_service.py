"""
tests/test_friend_service.py — Friend Request Tests
=====================================================
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from beboard.engine.notifications import NotificationType
from beboard.errors import AlreadyExists, Forbidden, InvalidArgument, InvalidState, NotFound
from beboard.services import friend_service


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


def _request(engine, sender, target, publisher=None, message=None):
    return friend_service.send_request(
        engine, requester_id=sender.id, addressee_email=f"{target.nickname}@example.com",
        message=message, publisher=publisher,
    )


class TestSendRequest:
    def test_pending_and_notified(self, db_engine, alice, bob):
        publisher = MagicMock()
        req = _request(db_engine, alice, bob, publisher, message="Hi!")
        assert req["status"] == "PENDING"
        assert req["message"] == "Hi!"
        assert req["addressee"]["id"] == bob.id

        sent = publisher.publish.call_args.args[0]
        assert (sent.recipient_id, sent.type) == (bob.id, NotificationType.FRIEND_REQUEST)

    def test_unknown_email(self, db_engine, alice):
        with pytest.raises(NotFound):
            friend_service.send_request(
                db_engine, requester_id=alice.id, addressee_email="nobody@example.com",
            )

    def test_self_request(self, db_engine, alice):
        with pytest.raises(InvalidArgument):
            _request(db_engine, alice, alice)

    def test_pending_in_either_direction_blocks(self, db_engine, alice, bob):
        _request(db_engine, alice, bob)
        with pytest.raises(AlreadyExists, match="pending"):
            _request(db_engine, bob, alice)

    def test_already_friends(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        friend_service.accept_request(db_engine, request_id=req["id"], user_id=bob.id)
        with pytest.raises(AlreadyExists, match="already friends"):
            _request(db_engine, alice, bob)

    def test_retry_after_rejection(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        friend_service.reject_request(db_engine, request_id=req["id"], user_id=bob.id)
        assert _request(db_engine, alice, bob)["status"] == "PENDING"


class TestDecide:
    def test_accept_notifies_requester(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        publisher = MagicMock()
        accepted = friend_service.accept_request(
            db_engine, request_id=req["id"], user_id=bob.id, publisher=publisher,
        )
        assert accepted["status"] == "ACCEPTED"
        sent = publisher.publish.call_args.args[0]
        assert (sent.recipient_id, sent.type) == (alice.id, NotificationType.FRIEND_ACCEPTED)

    def test_requester_cannot_accept(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        with pytest.raises(Forbidden):
            friend_service.accept_request(db_engine, request_id=req["id"], user_id=alice.id)

    def test_decided_request_is_final(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        friend_service.reject_request(db_engine, request_id=req["id"], user_id=bob.id)
        with pytest.raises(InvalidState):
            friend_service.accept_request(db_engine, request_id=req["id"], user_id=bob.id)

    def test_missing_request(self, db_engine, bob):
        with pytest.raises(NotFound):
            friend_service.reject_request(db_engine, request_id=404, user_id=bob.id)


class TestFriendships:
    def test_list_friends_from_both_sides(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        friend_service.accept_request(db_engine, request_id=req["id"], user_id=bob.id)

        _, for_alice = friend_service.list_friends(db_engine, user_id=alice.id)
        _, for_bob = friend_service.list_friends(db_engine, user_id=bob.id)
        assert for_alice[0]["friend"]["id"] == bob.id
        assert for_bob[0]["friend"]["id"] == alice.id

    def test_request_queues(self, db_engine, alice, bob, make_user):
        carol = make_user("carol")
        _request(db_engine, alice, bob)
        _request(db_engine, carol, bob)

        total, received = friend_service.list_received_requests(db_engine, user_id=bob.id)
        assert total == 2
        assert {r["requester"]["id"] for r in received} == {alice.id, carol.id}
        total, sent = friend_service.list_sent_requests(db_engine, user_id=alice.id)
        assert total == 1
        assert sent[0]["addressee"]["id"] == bob.id

    def test_remove_friend(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        friend_service.accept_request(db_engine, request_id=req["id"], user_id=bob.id)
        friend_service.remove_friend(db_engine, friendship_id=req["id"], user_id=alice.id)
        total, _ = friend_service.list_friends(db_engine, user_id=bob.id)
        assert total == 0

    def test_outsider_cannot_remove(self, db_engine, alice, bob, make_user):
        req = _request(db_engine, alice, bob)
        friend_service.accept_request(db_engine, request_id=req["id"], user_id=bob.id)
        with pytest.raises(Forbidden):
            friend_service.remove_friend(
                db_engine, friendship_id=req["id"], user_id=make_user("eve").id,
            )

    def test_pending_is_not_a_friendship(self, db_engine, alice, bob):
        req = _request(db_engine, alice, bob)
        with pytest.raises(InvalidState):
            friend_service.remove_friend(db_engine, friendship_id=req["id"], user_id=alice.id)
