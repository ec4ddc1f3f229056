"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the public, member and admin API routes using the
FastAPI TestClient.

These tests verify:
- Health endpoint availability
- Auth guards on member and admin endpoints
- The register / login / refresh flow
- Domain errors mapped to ``{"error", "message"}`` JSON bodies
- Comment and challenge flows end to end
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from starlette.websockets import WebSocketDisconnect

from beboard.database.models import UserRole
from conftest import auth_header, make_token


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def admin(make_user):
    return make_user("root", role=UserRole.ADMIN)


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    """Protected endpoints must return 401/403 for missing/invalid/non-admin tokens."""

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/stats",
        "/api/admin/users",
        "/api/admin/categories",
    ]

    MEMBER_GET_ENDPOINTS = [
        "/api/auth/me",
        "/api/users/me/posts",
        "/api/challenges/my",
        "/api/friends",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS + MEMBER_GET_ENDPOINTS)
    def test_no_token_returns_401(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_non_admin_returns_403(self, client, alice, endpoint):
        assert client.get(endpoint, headers=auth_header(alice)).status_code == 403

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_allowed(self, client, admin, endpoint):
        assert client.get(endpoint, headers=auth_header(admin)).status_code == 200

    def test_garbage_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_refresh_token_rejected_as_access(self, client, alice):
        token = make_token(alice.id, token_type="refresh")
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Wrong token type"


# ===========================================================================
# Register / login / refresh
# ===========================================================================
class TestAuthFlow:
    @pytest.fixture(autouse=True)
    def _real_time(self, clock):
        # Issued tokens carry an exp checked against the wall clock
        clock.set(datetime.now(UTC))

    def test_register_login_me(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "new@example.com", "nickname": "newbie", "password": "password123",
        })
        assert resp.status_code == 201
        assert resp.json()["nickname"] == "newbie"

        resp = client.post("/api/auth/login", json={
            "email": "new@example.com", "password": "password123",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == "new@example.com"

        me = client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"},
        )
        assert me.json()["nickname"] == "newbie"

        refreshed = client.post(
            "/api/auth/refresh", json={"refresh_token": body["refresh_token"]},
        )
        assert refreshed.status_code == 200
        assert "access_token" in refreshed.json()

    def test_duplicate_registration(self, client, alice):
        resp = client.post("/api/auth/register", json={
            "email": "alice@example.com", "nickname": "alice2", "password": "password123",
        })
        assert resp.status_code == 409
        assert resp.json()["error"] == "already_exists"

    def test_invalid_body(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "not-an-email", "nickname": "x", "password": "short",
        })
        assert resp.status_code == 422

    def test_bad_password(self, client, alice):
        resp = client.post("/api/auth/login", json={
            "email": "alice@example.com", "password": "wrong-password",
        })
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthorized", "message": "Invalid email or password"}

    def test_access_token_cannot_refresh(self, client, alice):
        resp = client.post("/api/auth/refresh", json={"refresh_token": make_token(alice.id)})
        assert resp.status_code == 401


# ===========================================================================
# Posts + comments
# ===========================================================================
class TestPostsAndComments:
    def test_comment_thread(self, client, app_deps, alice, bob, category):
        post = client.post(
            "/api/posts", headers=auth_header(alice),
            json={"title": "Hi", "content": "Body", "category_id": category.id},
        ).json()

        root = client.post(
            f"/api/posts/{post['id']}/comments", headers=auth_header(bob),
            json={"content": "First!"},
        )
        assert root.status_code == 201
        reply = client.post(
            f"/api/posts/{post['id']}/comments", headers=auth_header(alice),
            json={"content": "Thanks", "parent_id": root.json()["id"]},
        )
        assert reply.status_code == 201

        listing = client.get(f"/api/posts/{post['id']}/comments").json()
        assert listing["total"] == 1
        assert listing["comments"][0]["children"][0]["content"] == "Thanks"
        assert app_deps["publisher"].publish.called

    def test_stranger_cannot_delete_comment(self, client, alice, bob, make_post):
        post = make_post(alice)
        comment = client.post(
            f"/api/posts/{post['id']}/comments", headers=auth_header(alice),
            json={"content": "Mine"},
        ).json()

        resp = client.delete(f"/api/comments/{comment['id']}", headers=auth_header(bob))
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

        assert client.delete(
            f"/api/comments/{comment['id']}", headers=auth_header(alice),
        ).status_code == 204

    def test_comment_on_missing_post(self, client, alice):
        resp = client.post("/api/posts/999/comments", headers=auth_header(alice),
                           json={"content": "Hello?"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_page_size_clamped(self, client, app_deps):
        resp = client.get("/api/posts", params={"page_size": 10_000})
        assert resp.json()["page_size"] == app_deps["config"].max_page_size

    def test_bookmark_status_codes(self, client, alice, bob, make_post):
        post = make_post(alice)
        url = f"/api/posts/{post['id']}/bookmark"
        assert client.post(url, headers=auth_header(bob)).status_code == 201
        assert client.post(url, headers=auth_header(bob)).status_code == 200
        assert client.delete(url, headers=auth_header(bob)).json()["removed"] is True


# ===========================================================================
# Challenges
# ===========================================================================
class TestChallengeRoutes:
    BODY = {
        "title": "No coffee",
        "category": "saving",
        "goal_amount": "30000",
        "bet_amount": "1000",
        "start_date": "2026-03-05",
        "end_date": "2026-03-10",
        "verification_method": "photo",
        "max_participants": 2,
    }

    def test_capacity_and_errors(self, client, alice, bob, make_user):
        created = client.post("/api/challenges", headers=auth_header(alice), json=self.BODY)
        assert created.status_code == 201
        cid = created.json()["id"]
        assert created.json()["verification_method"] == "PHOTO"

        joined = client.post(
            f"/api/challenges/{cid}/join", headers=auth_header(bob), json={"bet_amount": "1000"},
        )
        assert joined.status_code == 201

        again = client.post(
            f"/api/challenges/{cid}/join", headers=auth_header(bob), json={"bet_amount": "1000"},
        )
        assert again.json()["error"] == "already_exists"

        full = client.post(
            f"/api/challenges/{cid}/join", headers=auth_header(make_user("carol")),
            json={"bet_amount": "1000"},
        )
        assert full.status_code == 409
        assert full.json()["error"] == "capacity_exceeded"

    def test_cancel_rules(self, client, alice, bob):
        cid = client.post("/api/challenges", headers=auth_header(alice), json=self.BODY).json()["id"]

        denied = client.post(f"/api/challenges/{cid}/cancel", headers=auth_header(bob))
        assert denied.status_code == 403
        assert client.get(f"/api/challenges/{cid}").json()["status"] == "RECRUITING"

        cancelled = client.post(f"/api/challenges/{cid}/cancel", headers=auth_header(alice))
        assert cancelled.json()["status"] == "CANCELLED"

        late = client.post(
            f"/api/challenges/{cid}/join", headers=auth_header(bob), json={"bet_amount": "1000"},
        )
        assert late.status_code == 409
        assert late.json()["error"] == "invalid_state"

    def test_date_order_rejected(self, client, alice):
        body = {**self.BODY, "end_date": "2026-03-04"}
        resp = client.post("/api/challenges", headers=auth_header(alice), json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_argument"

    def test_progress_and_verification(self, client, alice, bob):
        cid = client.post("/api/challenges", headers=auth_header(alice), json=self.BODY).json()["id"]
        client.post(f"/api/challenges/{cid}/join", headers=auth_header(bob),
                    json={"bet_amount": "1000"})

        entry = client.post(
            f"/api/challenges/{cid}/progress", headers=auth_header(bob),
            json={"completed": True, "proof": "receipt.png"},
        )
        assert entry.status_code == 201
        duplicate = client.post(
            f"/api/challenges/{cid}/progress", headers=auth_header(bob), json={"completed": True},
        )
        assert duplicate.status_code == 409

        queue = client.get("/api/challenges/pending-verifications", headers=auth_header(alice))
        assert [p["id"] for p in queue.json()["progress"]] == [entry.json()["id"]]

        own = client.post(
            f"/api/challenges/progress/{entry.json()['id']}/verify",
            headers=auth_header(bob), json={"verified": True},
        )
        assert own.status_code == 409

        ok = client.post(
            f"/api/challenges/progress/{entry.json()['id']}/verify",
            headers=auth_header(alice), json={"verified": True},
        )
        assert ok.json()["verification_status"] == "VERIFIED"


# ===========================================================================
# Admin + notifications
# ===========================================================================
class TestAdminRoutes:
    def test_patch_without_fields(self, client, admin, category):
        resp = client.patch(
            f"/api/admin/categories/{category.id}", headers=auth_header(admin), json={},
        )
        assert resp.status_code == 400

    def test_create_category_visible_publicly(self, client, admin):
        resp = client.post(
            "/api/admin/categories", headers=auth_header(admin), json={"name": "News"},
        )
        assert resp.status_code == 201
        names = [c["name"] for c in client.get("/api/categories").json()["categories"]]
        assert names == ["News"]

    def test_start_due(self, client, admin):
        resp = client.post("/api/admin/challenges/start-due", headers=auth_header(admin))
        assert resp.json() == {"started": 0}

    def test_send_notification(self, client, app_deps, admin, alice):
        resp = client.post(
            "/api/notifications", headers=auth_header(admin),
            json={"recipient_id": alice.id, "content": "Welcome", "type": "NEW_COMMENT"},
        )
        assert resp.status_code == 202
        message = app_deps["publisher"].publish.call_args.args[0]
        assert (message.recipient_id, message.content) == (alice.id, "Welcome")

    def test_websocket_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/ws/notifications?token=nope"):
                pass
        assert exc_info.value.code == 4401
