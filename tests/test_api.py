"""
Tests for the HTTP API.

Tests cover:
- Health and metrics endpoints
- Register/login/logout sessions
- Error status mapping
- Friend, conversation, message and notification routes
- Uploads for attachments and profile pictures
"""

import inspect

import pytest
from pydantic import ValidationError as PydanticValidationError

from tests.conftest import TEST_SESSION_SECRET
from wegetchat.errors import PersistenceError
from wegetchat.security import sign_session


def register(client, username: str, password: str = "secret") -> dict:
    response = client.post("/api/register", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.json()["user"]


@pytest.fixture
def pair(make_client):
    """Two logged-in clients that are friends, plus their conversation id."""
    alice_client, bob_client = make_client(), make_client()
    alice = register(alice_client, "alice")
    bob = register(bob_client, "bob")
    assert alice_client.post(f"/api/friends/{bob['id']}").status_code == 200
    conversation_id = alice_client.get("/api/conversations").json()["conversations"][0]["id"]
    return alice_client, bob_client, alice, bob, conversation_id


class TestHealth:
    """Test health checks and metrics."""

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_session_secret_required(self, app_env, monkeypatch):
        from wegetchat.config import get_settings

        monkeypatch.delenv("SESSION_SECRET")
        get_settings.cache_clear()

        with pytest.raises(PydanticValidationError):
            get_settings()

    def test_empty_session_secret_refused(self, app_env):
        from wegetchat.config import get_settings
        from wegetchat.main import create_app

        settings = get_settings().model_copy(update={"SESSION_SECRET": ""})

        with pytest.raises(ValueError):
            create_app(settings)

    def test_metrics(self, client):
        register(client, "alice")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "mutations_total" in response.text
        assert "http_requests_total" in response.text


class TestAccounts:
    """Test registration, login and sessions."""

    def test_register_sets_session(self, client):
        user = register(client, "Alice")

        me = client.get("/api/me")

        assert me.status_code == 200
        assert me.json()["user"] == user

    def test_register_validation(self, client):
        response = client.post("/api/register", json={"username": "ab", "password": "1234"})

        assert response.status_code == 400
        assert response.json() == {"error": "Username must have at least 3 characters"}

    def test_register_conflict(self, client):
        register(client, "abc")

        response = client.post("/api/register", json={"username": "ABC", "password": "1234"})

        assert response.status_code == 409
        assert response.json() == {"error": "Username already taken"}

    def test_register_missing_fields(self, client):
        response = client.post("/api/register", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Username and password are required"}

    def test_login(self, make_client):
        register(make_client(), "alice")
        other = make_client()

        response = other.post("/api/login", json={"username": "ALICE", "password": "secret"})

        assert response.status_code == 200
        assert other.get("/api/me").json()["user"]["username"] == "alice"

    def test_login_failure(self, client):
        register(client, "alice")

        wrong = client.post("/api/login", json={"username": "alice", "password": "nope"})
        unknown = client.post("/api/login", json={"username": "nobody", "password": "nope"})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"error": "Invalid username or password"}

    def test_requires_session(self, client):
        response = client.get("/api/conversations")

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    def test_forged_session_rejected(self, client):
        client.cookies.set("session", "someone.deadbeef")

        assert client.get("/api/me").status_code == 401

    def test_token_signed_with_empty_key_rejected(self, make_client):
        victim = register(make_client(), "victim")
        attacker = make_client()
        attacker.cookies.set("session", sign_session(victim["id"], ""))

        response = attacker.get("/api/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    def test_password_routes_run_in_threadpool(self, client):
        """Routes that hash passwords must not block the event loop."""
        endpoints = {
            route.path: route.endpoint
            for route in client.app.routes
            if getattr(route, "path", None) in ("/api/register", "/api/login")
        }

        assert len(endpoints) == 2
        assert not any(inspect.iscoroutinefunction(e) for e in endpoints.values())

    def test_unknown_user_session_expired(self, client):
        client.cookies.set("session", sign_session("ghost", TEST_SESSION_SECRET))

        response = client.get("/api/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Session expired"}

    def test_logout(self, client):
        register(client, "alice")

        assert client.post("/api/logout").json() == {"ok": True}
        assert client.get("/api/me").status_code == 401


class TestSettings:
    """Test profile settings."""

    def test_update_status_and_notifications(self, client):
        register(client, "alice")

        response = client.put(
            "/api/settings",
            data={"statusText": "y" * 150, "notificationsEnabled": "false"},
        )

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["statusText"] == "y" * 140
        assert user["notificationsEnabled"] is False

    def test_upload_profile_picture(self, client):
        register(client, "alice")

        response = client.put(
            "/api/settings",
            files={"pfp": ("me.png", b"\x89PNG fake", "image/png")},
        )

        pfp_url = response.json()["user"]["pfpUrl"]
        assert pfp_url.startswith("/uploads/") and pfp_url.endswith(".png")
        assert client.get(pfp_url).content == b"\x89PNG fake"

    def test_failed_save_removes_profile_picture(self, client, tmp_path, monkeypatch):
        register(client, "alice")

        def failing_save(snapshot):
            raise PersistenceError()

        monkeypatch.setattr(client.app.state.service.store, "save", failing_save)

        response = client.put(
            "/api/settings",
            files={"pfp": ("me.png", b"\x89PNG fake", "image/png")},
        )

        assert response.status_code == 500
        assert list((tmp_path / "uploads").iterdir()) == []
        assert client.get("/api/me").json()["user"]["pfpUrl"] == ""

    def test_profile_fields_camel_case(self, client):
        user = register(client, "alice")

        assert set(user) == {"id", "username", "pfpUrl", "statusText", "notificationsEnabled"}


class TestFriends:
    """Test search and friend routes."""

    def test_search(self, make_client):
        alice_client = make_client()
        register(alice_client, "alice")
        register(make_client(), "bob")
        register(make_client(), "carol")

        response = alice_client.get("/api/users/search", params={"q": "B"})

        users = response.json()["users"]
        assert [u["username"] for u in users] == ["bob"]
        assert users[0]["isFriend"] is False

    def test_add_self(self, client):
        user = register(client, "alice")

        response = client.post(f"/api/friends/{user['id']}")

        assert response.status_code == 409
        assert response.json() == {"error": "Cannot add yourself"}

    def test_add_unknown(self, client):
        register(client, "alice")

        response = client.post("/api/friends/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}

    def test_add_friend_notifies(self, pair):
        alice_client, bob_client, alice, bob, _ = pair

        notifications = bob_client.get("/api/notifications").json()["notifications"]

        assert [n["text"] for n in notifications] == ["alice added you as a friend."]
        assert notifications[0]["read"] is False


class TestConversations:
    """Test conversation and message routes."""

    def test_send_and_read_flow(self, pair):
        alice_client, bob_client, alice, bob, conversation_id = pair

        sent = alice_client.post(f"/api/conversations/{conversation_id}/messages", data={"body": "hi"})
        assert sent.status_code == 200
        assert sent.json()["message"]["readState"] == "sent"

        summary = bob_client.get("/api/conversations").json()["conversations"][0]
        assert summary["unreadCount"] == 1
        assert summary["latestMessage"]["body"] == "hi"
        assert summary["otherUser"]["username"] == "alice"

        assert bob_client.post(f"/api/conversations/{conversation_id}/read").json() == {"ok": True}

        summary = bob_client.get("/api/conversations").json()["conversations"][0]
        assert summary["unreadCount"] == 0
        messages = alice_client.get(f"/api/conversations/{conversation_id}/messages").json()["messages"]
        assert messages[0]["readState"] == "read"

    def test_empty_message(self, pair):
        alice_client, _, _, _, conversation_id = pair

        response = alice_client.post(f"/api/conversations/{conversation_id}/messages", data={"body": " "})

        assert response.status_code == 400
        assert response.json() == {"error": "Message body or attachment required"}

    def test_attachment_only(self, pair):
        alice_client, bob_client, _, _, conversation_id = pair

        response = alice_client.post(
            f"/api/conversations/{conversation_id}/messages",
            files={"attachment": ("notes.txt", b"hello file", "text/plain")},
        )

        assert response.status_code == 200
        message = bob_client.get(f"/api/conversations/{conversation_id}/messages").json()["messages"][0]
        assert message["body"] == ""
        assert message["attachmentName"] == "notes.txt"
        assert bob_client.get(message["attachmentUrl"]).content == b"hello file"

    def test_failed_save_removes_attachment(self, pair, tmp_path, monkeypatch):
        alice_client, _, _, _, conversation_id = pair
        service = alice_client.app.state.service

        def failing_save(snapshot):
            raise PersistenceError()

        monkeypatch.setattr(service.store, "save", failing_save)

        response = alice_client.post(
            f"/api/conversations/{conversation_id}/messages",
            files={"attachment": ("notes.txt", b"hello file", "text/plain")},
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to save changes"}
        assert list((tmp_path / "uploads").iterdir()) == []

    def test_message_fields_camel_case(self, pair):
        alice_client, _, alice, _, conversation_id = pair

        message = alice_client.post(
            f"/api/conversations/{conversation_id}/messages", data={"body": "hi"}
        ).json()["message"]

        assert set(message) == {
            "id", "conversationId", "senderId", "body", "attachmentUrl",
            "attachmentName", "createdAt", "readBy", "readState",
        }
        assert message["senderId"] == alice["id"]

    def test_outsider_gets_404(self, pair, make_client):
        _, _, _, _, conversation_id = pair
        outsider = make_client()
        register(outsider, "carol")

        for response in (
            outsider.get(f"/api/conversations/{conversation_id}/messages"),
            outsider.post(f"/api/conversations/{conversation_id}/messages", data={"body": "hi"}),
            outsider.post(f"/api/conversations/{conversation_id}/read"),
        ):
            assert response.status_code == 404
            assert response.json() == {"error": "Conversation not found"}


class TestNotifications:
    """Test notification routes."""

    def test_read_all(self, pair):
        alice_client, bob_client, _, _, conversation_id = pair
        alice_client.post(f"/api/conversations/{conversation_id}/messages", data={"body": "hi"})

        assert bob_client.post("/api/notifications/read-all").json() == {"ok": True}

        notifications = bob_client.get("/api/notifications").json()["notifications"]
        assert [n["text"] for n in notifications] == [
            "New message from alice",
            "alice added you as a friend.",
        ]
        assert all(n["read"] for n in notifications)
