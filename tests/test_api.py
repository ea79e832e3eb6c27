"""Tests for the HTTP surface over the store."""

import pytest
from fastapi.testclient import TestClient

from main import app, get_store

OWNER = {"X-User-Id": "user_owner"}
ADMIN = {"X-User-Id": "user_admin1"}


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def alice(client):
    resp = client.post(
        "/api/auth/register",
        json={
            "username": "alice",
            "nickname": "Alice",
            "enrollment_year": 2024,
            "class_number": 5,
            "password": "secret123",
            "confirm_password": "secret123",
        },
    )
    assert resp.status_code == 200
    return resp.json()


def as_user(user):
    return {"X-User-Id": user["id"]}


class TestAuthEndpoints:

    def test_register_hides_password(self, alice):
        assert alice["username"] == "alice"
        assert alice["role"] == "user"
        assert "password" not in alice

    def test_register_duplicate(self, client, alice):
        resp = client.post(
            "/api/auth/register",
            json={"username": "alice", "nickname": "A", "enrollment_year": 2024, "class_number": 5, "password": "secret123"},
        )
        assert resp.status_code == 409

    def test_login(self, client, alice):
        resp = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.json()["id"] == alice["id"]
        bad = client.post("/api/auth/login", json={"username": "alice", "password": "wrong"})
        assert bad.status_code == 401

    def test_banned_login_rejected(self, client, alice):
        assert client.post(f"/api/users/{alice['id']}/ban", json={"reason": "spam"}, headers=ADMIN).status_code == 200
        resp = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert resp.status_code == 409


class TestModerationEndpoints:

    def test_only_owner_appoints(self, client, alice):
        assert client.post(f"/api/users/{alice['id']}/admin", headers=ADMIN).status_code == 403
        resp = client.post(f"/api/users/{alice['id']}/admin", headers=OWNER)
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"

    def test_actor_header_required(self, client, alice):
        assert client.post(f"/api/users/{alice['id']}/ban", json={}).status_code == 401

    def test_delete_user(self, client, alice):
        assert client.delete(f"/api/users/{alice['id']}", headers=OWNER).json() == {"deleted": True}
        assert client.get(f"/api/users/{alice['id']}").status_code == 404


class TestPostEndpoints:

    def _post(self, client, user, **overrides):
        body = {"title": "hello", "content": "world", "tag": "其他", "visibility": "school"}
        body.update(overrides)
        resp = client.post("/api/posts", json=body, headers=as_user(user))
        assert resp.status_code == 200, resp.text
        return resp.json()

    def test_create_and_search(self, client, alice):
        school = self._post(client, alice)
        klass = self._post(client, alice, visibility="class")
        anonymous = [p["id"] for p in client.get("/api/posts").json()]
        assert anonymous == [school["id"]]
        mine = [p["id"] for p in client.get("/api/posts", headers=as_user(alice)).json()]
        assert mine == [klass["id"], school["id"]]
        assert client.get(f"/api/users/{alice['id']}").json()["post_count"] == 2

    def test_invalid_body(self, client, alice):
        resp = client.post("/api/posts", json={"title": "", "content": "x", "tag": "其他"}, headers=as_user(alice))
        assert resp.status_code == 422

    def test_view_likes_and_comments(self, client, alice):
        post = self._post(client, alice)
        assert client.get(f"/api/posts/{post['id']}").json()["views"] == 1
        assert client.post(f"/api/posts/{post['id']}/likes", headers=ADMIN).json() == {"liked": True}
        assert client.post(f"/api/posts/{post['id']}/likes", headers=ADMIN).status_code == 409
        comment = client.post(f"/api/posts/{post['id']}/comments", json={"content": "nice"}, headers=ADMIN).json()
        assert [c["id"] for c in client.get(f"/api/posts/{post['id']}/comments").json()] == [comment["id"]]
        assert client.delete(f"/api/comments/{comment['id']}", headers=as_user(alice)).status_code == 403
        assert client.delete(f"/api/comments/{comment['id']}", headers=ADMIN).json() == {"deleted": True}
        assert client.get(f"/api/posts/{post['id']}").json()["comments"] == 0

    def test_author_and_moderator_delete(self, client, alice):
        own = self._post(client, alice)
        other = self._post(client, alice)
        assert client.delete(f"/api/posts/{own['id']}", headers=as_user(alice)).json() == {"deleted": True}
        resp = client.delete(f"/api/posts/{other['id']}", params={"reason": "spam"}, headers=ADMIN)
        assert resp.json() == {"deleted": True}
        assert client.get("/api/posts", params={"include_deleted": True}, headers=ADMIN).status_code == 403
        deleted = client.get("/api/posts", params={"include_deleted": True}, headers=OWNER).json()
        assert {p["delete_reason"] for p in deleted} == {"spam", "deleted by author"}
        assert client.post(f"/api/posts/{own['id']}/restore", headers=OWNER).json() == {"restored": True}
        assert client.delete(f"/api/posts/{own['id']}/permanent", headers=ADMIN).status_code == 403

    def test_hot_posts_and_tag_counts(self, client, alice):
        quiet = self._post(client, alice, tag="伙食")
        popular = self._post(client, alice)
        client.post(f"/api/posts/{popular['id']}/likes", headers=ADMIN)
        hot = client.get("/api/posts/hot", params={"limit": 1}).json()
        assert [p["id"] for p in hot] == [popular["id"]]
        counts = client.get("/api/tags").json()
        assert counts["伙食"] == 1
        assert counts["其他"] == 1
        assert quiet["tag"] == "伙食"


class TestSiteEndpoints:

    def test_tags_owner_only(self, client):
        assert client.post("/api/tags", json={"tag": "社团"}, headers=ADMIN).status_code == 403
        assert client.post("/api/tags", json={"tag": "社团"}, headers=OWNER).json() == {"added": True}
        assert client.delete("/api/tags/社团", headers=OWNER).json() == {"removed": True}

    def test_settings(self, client):
        resp = client.patch("/api/settings", json={"allow_registration": False}, headers=OWNER)
        assert resp.status_code == 200
        assert resp.json()["allow_registration"] is False
        assert client.get("/api/settings").json()["owner_username"] == "ZJCjonathan25"
        assert client.patch("/api/settings", json={"allow_registration": True}, headers=ADMIN).status_code == 403

    def test_announcements_owner_only(self, client):
        body = {"title": "Exam week", "content": "Good luck"}
        assert client.post("/api/announcements", json=body, headers=ADMIN).status_code == 403
        created = client.post("/api/announcements", json=body, headers=OWNER).json()
        assert [a["id"] for a in client.get("/api/announcements").json()] == [created["id"]]
        client.patch(f"/api/announcements/{created['id']}", json={"is_active": False}, headers=OWNER)
        assert client.get("/api/announcements").json() == []
        assert len(client.get("/api/announcements", params={"active_only": False}).json()) == 1
        assert client.delete(f"/api/announcements/{created['id']}", headers=OWNER).json() == {"deleted": True}


class TestReadScope:

    def _class_post(self, client, user):
        body = {"title": "class only", "content": "x", "tag": "其他", "visibility": "class"}
        return client.post("/api/posts", json=body, headers=as_user(user)).json()

    def test_scoped_post_hidden_from_outsiders(self, client, store, alice):
        post = self._class_post(client, alice)
        assert client.get(f"/api/posts/{post['id']}").status_code == 404
        assert client.get(f"/api/posts/{post['id']}", headers=OWNER).status_code == 404
        assert client.get(f"/api/posts/{post['id']}/comments").status_code == 404
        assert store.get_post_by_id(post["id"]).views == 0

    def test_scoped_post_visible_to_classmate(self, client, alice):
        post = self._class_post(client, alice)
        resp = client.get(f"/api/posts/{post['id']}", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["views"] == 1
        assert client.get(f"/api/posts/{post['id']}/comments", headers=ADMIN).json() == []

    def test_unknown_actor_header(self, client):
        assert client.get("/api/posts", headers={"X-User-Id": "user_missing"}).status_code == 401


class TestInvalidUpdates:

    def test_null_setting_refused(self, client, store):
        resp = client.patch("/api/settings", json={"enrollment_years": None}, headers=OWNER)
        assert resp.status_code == 409
        assert store.get_settings().enrollment_years == [2023, 2024, 2025]

    def test_null_announcement_title_refused(self, client):
        created = client.post("/api/announcements", json={"title": "t", "content": "c"}, headers=OWNER).json()
        resp = client.patch(f"/api/announcements/{created['id']}", json={"title": None}, headers=OWNER)
        assert resp.status_code == 409
