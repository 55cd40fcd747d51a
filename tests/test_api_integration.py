from __future__ import annotations

from typing import Dict

from fastapi.testclient import TestClient

Headers = Dict[str, str]


def _register_and_login(client: TestClient, login: str, display_name: str | None = None) -> Headers:
    password = "secret-password"
    register_payload = {"login": login, "password": password}
    if display_name:
        register_payload["display_name"] = display_name
    response = client.post("/api/auth/register", json=register_payload)
    assert response.status_code == 201, response.text

    response = client.post("/api/auth/login", json={"login": login, "password": password})
    assert response.status_code == 200, response.text
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def _user_id(client: TestClient, headers: Headers) -> int:
    response = client.get("/api/user", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["id"]


def _create_channel(client: TestClient, headers: Headers, name: str, visibility: str = "public") -> dict:
    response = client.post(
        "/api/channels",
        json={"name": name, "description": f"{name} talk", "visibility": visibility},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def _post(client: TestClient, headers: Headers, channel_id: int, content: str, **form) -> dict:
    response = client.post(
        f"/api/channels/{channel_id}/messages",
        data={"content": content, **{key: str(value) for key, value in form.items()}},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_and_root(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/").json() == {"message": "Welcome to the Huddle API"}


def test_auth_rejects_duplicates_and_bad_tokens(client: TestClient) -> None:
    _register_and_login(client, "alice")

    duplicate = client.post("/api/auth/register", json={"login": "alice", "password": "another-pass"})
    assert duplicate.status_code == 409

    wrong = client.post("/api/auth/login", json={"login": "alice", "password": "wrong-password"})
    assert wrong.status_code == 401

    anonymous = client.get("/api/channels")
    assert anonymous.status_code == 401

    garbage = client.get("/api/channels", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.headers.get("www-authenticate") == "Bearer"


def test_channel_lifecycle(client: TestClient) -> None:
    owner = _register_and_login(client, "owner")
    guest = _register_and_login(client, "guest")

    channel = _create_channel(client, owner, "general")
    assert channel["visibility"] == "public"
    assert channel["is_private"] is False

    assert client.get("/api/channels", headers=guest).json() == []

    joined = client.post(f"/api/channels/{channel['id']}/join", headers=guest)
    assert joined.status_code == 200
    again = client.post(f"/api/channels/{channel['id']}/join", headers=guest)
    assert again.status_code == 409

    ids = client.get("/api/channels/joined", headers=guest).json()["channel_ids"]
    assert ids == [channel["id"]]

    members = client.get(f"/api/channels/{channel['id']}/members", headers=guest).json()
    assert [(item["user"]["login"], item["role"]) for item in members] == [
        ("owner", "admin"),
        ("guest", "member"),
    ]

    renamed = client.put(f"/api/channels/{channel['id']}", json={"name": "lobby"}, headers=guest)
    assert renamed.status_code == 403
    renamed = client.put(f"/api/channels/{channel['id']}", json={"name": "lobby"}, headers=owner)
    assert renamed.json()["name"] == "lobby"

    owner_leave = client.post(f"/api/channels/{channel['id']}/leave", headers=owner)
    assert owner_leave.status_code == 403
    guest_leave = client.post(f"/api/channels/{channel['id']}/leave", headers=guest)
    assert guest_leave.status_code == 204

    forbidden_delete = client.delete(f"/api/channels/{channel['id']}", headers=guest)
    assert forbidden_delete.status_code == 403
    deleted = client.delete(f"/api/channels/{channel['id']}", headers=owner)
    assert deleted.status_code == 204
    assert client.get(f"/api/channels/{channel['id']}", headers=owner).status_code == 404


def test_private_channels_are_hidden_from_outsiders(client: TestClient) -> None:
    owner = _register_and_login(client, "owner")
    outsider = _register_and_login(client, "outsider")
    secret = _create_channel(client, owner, "secret", visibility="private")
    message = _post(client, owner, secret["id"], "classified")

    for response in (
        client.get(f"/api/channels/{secret['id']}", headers=outsider),
        client.get(f"/api/channels/{secret['id']}/messages", headers=outsider),
        client.post(f"/api/channels/{secret['id']}/join", headers=outsider),
        client.put(f"/api/messages/{message['id']}", json={"content": "x"}, headers=outsider),
    ):
        assert response.status_code == 404
        assert response.json()["detail"] in {"Channel not found", "Message not found"}

    missing = client.get("/api/channels/9999", headers=outsider)
    hidden = client.get(f"/api/channels/{secret['id']}", headers=outsider)
    assert missing.json() == hidden.json()

    results = client.get("/api/channels/search", params={"query": "secret"}, headers=outsider).json()
    assert results == []
    results = client.get("/api/channels/search", params={"query": "secret"}, headers=owner).json()
    assert [(item["name"], item["is_member"]) for item in results] == [("secret", True)]

    too_short = client.get("/api/channels/search", params={"query": "s"}, headers=owner)
    assert too_short.status_code == 422


def test_threads_and_pagination(client: TestClient) -> None:
    alice = _register_and_login(client, "alice", "Alice")
    bob = _register_and_login(client, "bob", "Bob")
    channel = _create_channel(client, alice, "threads")
    client.post(f"/api/channels/{channel['id']}/join", headers=bob)

    root = _post(client, alice, channel["id"], "Root message")
    first = _post(client, bob, channel["id"], "First reply", parent_message_id=root["id"])
    _post(client, bob, channel["id"], "Second reply", parent_message_id=root["id"])

    nested = client.post(
        f"/api/channels/{channel['id']}/messages",
        data={"content": "nested", "parent_message_id": str(first["id"])},
        headers=alice,
    )
    assert nested.status_code == 422

    top = client.get(f"/api/channels/{channel['id']}/messages", headers=alice).json()
    assert top["total"] == 1
    assert top["items"][0]["thread_reply_count"] == 2

    thread = client.get(
        f"/api/channels/{channel['id']}/messages",
        params={"parent_message_id": root["id"], "limit": 1},
        headers=alice,
    ).json()
    assert thread["total"] == 2 and thread["limit"] == 1
    assert [item["content"] for item in thread["items"]] == ["Second reply"]

    assert client.delete(f"/api/messages/{first['id']}", headers=bob).status_code == 204
    assert client.delete(f"/api/messages/{first['id']}", headers=bob).status_code == 404

    top = client.get(f"/api/channels/{channel['id']}/messages", headers=alice).json()
    assert top["items"][0]["thread_reply_count"] == 1

    too_many = client.get(
        f"/api/channels/{channel['id']}/messages", params={"limit": 1000}, headers=alice
    )
    assert too_many.status_code == 422


def test_edit_message_only_by_author(client: TestClient) -> None:
    alice = _register_and_login(client, "alice")
    bob = _register_and_login(client, "bob")
    channel = _create_channel(client, alice, "edits")
    client.post(f"/api/channels/{channel['id']}/join", headers=bob)
    message = _post(client, alice, channel["id"], "draft")

    denied = client.put(f"/api/messages/{message['id']}", json={"content": "hijack"}, headers=bob)
    assert denied.status_code == 403

    edited = client.put(f"/api/messages/{message['id']}", json={"content": "final"}, headers=alice)
    assert edited.status_code == 200
    assert edited.json()["content"] == "final"
    assert edited.json()["edited_at"] is not None


def test_reactions_toggle_over_http(client: TestClient) -> None:
    alice = _register_and_login(client, "alice")
    bob = _register_and_login(client, "bob")
    channel = _create_channel(client, alice, "reactions")
    client.post(f"/api/channels/{channel['id']}/join", headers=bob)
    message = _post(client, alice, channel["id"], "react")

    added = client.post(f"/api/messages/{message['id']}/reactions", json={"emoji": "👍"}, headers=bob)
    assert added.json()["state"] == "added"
    assert added.json()["message"] == "Reaction added"

    listing = client.get(f"/api/messages/{message['id']}/reactions", headers=alice).json()
    assert listing == [{"emoji": "👍", "count": 1, "reacted": False, "user_ids": [_user_id(client, bob)]}]

    removed = client.post(f"/api/messages/{message['id']}/reactions", json={"emoji": "👍"}, headers=bob)
    assert removed.json()["state"] == "removed"
    assert removed.json()["reactions"] == []


def test_attachments_upload_and_download(client: TestClient) -> None:
    alice = _register_and_login(client, "alice")
    outsider = _register_and_login(client, "outsider")
    channel = _create_channel(client, alice, "files", visibility="private")

    response = client.post(
        f"/api/channels/{channel['id']}/messages",
        data={"content": "report attached", "type": "file"},
        files=[("files", ("report.txt", b"quarterly numbers", "text/plain"))],
        headers=alice,
    )
    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["type"] == "file"
    (attachment,) = payload["attachments"]
    assert attachment["file_name"] == "report.txt"
    assert attachment["download_url"].endswith(f"/attachments/{attachment['id']}/download")

    download_path = f"/api/channels/{channel['id']}/attachments/{attachment['id']}/download"
    download = client.get(download_path, headers=alice)
    assert download.status_code == 200
    assert download.content == b"quarterly numbers"

    assert client.get(download_path, headers=outsider).status_code == 404


def test_direct_channels_and_notifications(client: TestClient) -> None:
    alice = _register_and_login(client, "alice", "Alice")
    bob = _register_and_login(client, "bob", "Bob")
    bob_id = _user_id(client, bob)

    created = client.post("/api/channels/direct", json={"user_id": bob_id}, headers=alice)
    assert created.status_code == 201
    channel = created.json()
    assert channel["visibility"] == "direct"
    assert channel["name"] == "DM: Alice & Bob"

    existing = client.post("/api/channels/direct", json={"user_id": _user_id(client, alice)}, headers=bob)
    assert existing.status_code == 200
    assert existing.json()["id"] == channel["id"]

    assert client.post("/api/channels/direct", json={"user_id": bob_id}, headers=bob).status_code == 422

    direct_only = client.get("/api/channels", params={"type": "direct"}, headers=bob).json()
    assert [item["id"] for item in direct_only] == [channel["id"]]

    _post(client, alice, channel["id"], "hello bob")

    inbox = client.get("/api/notifications", headers=bob).json()
    assert inbox["total"] == 1
    notification = inbox["items"][0]
    assert notification["type"] == "direct_message"
    assert notification["data"]["preview"] == "hello bob"
    assert notification["read_at"] is None

    assert client.post(f"/api/notifications/{notification['id']}/read", headers=alice).status_code == 404
    marked = client.post(f"/api/notifications/{notification['id']}/read", headers=bob)
    assert marked.json()["read_at"] is not None

    unread = client.get("/api/notifications", params={"read": "false"}, headers=bob).json()
    assert unread["total"] == 0
    assert client.post("/api/notifications/mark-all-read", headers=bob).json() == {"updated": 0}


def test_broadcasting_auth(client: TestClient) -> None:
    owner = _register_and_login(client, "owner", "Owner")
    outsider = _register_and_login(client, "outsider")
    channel = _create_channel(client, owner, "ops", visibility="private")
    owner_id = _user_id(client, owner)

    presence = client.post(
        "/api/broadcasting/auth",
        json={"channel_name": f"presence-channel.{channel['id']}"},
        headers=owner,
    )
    assert presence.status_code == 200
    assert presence.json() == {
        "channel_name": f"presence-channel.{channel['id']}",
        "decision": "allow-with-metadata",
        "channel_data": {"id": owner_id, "name": "Owner", "avatar_url": None},
    }

    own_feed = client.post(
        "/api/broadcasting/auth", json={"channel_name": f"private-user.{owner_id}"}, headers=owner
    )
    assert own_feed.json()["decision"] == "allow"

    for name in (f"private-channel.{channel['id']}", f"private-user.{owner_id}", "nonsense"):
        denied = client.post("/api/broadcasting/auth", json={"channel_name": name}, headers=outsider)
        assert denied.status_code == 403


def test_typing_requires_presence_over_http(client: TestClient) -> None:
    alice = _register_and_login(client, "alice")
    channel = _create_channel(client, alice, "typing")

    response = client.post(f"/api/channels/{channel['id']}/typing", headers=alice)

    assert response.status_code == 409


def test_metrics_endpoint_exposes_chat_counters(client: TestClient) -> None:
    alice = _register_and_login(client, "alice")
    channel = _create_channel(client, alice, "metrics")
    _post(client, alice, channel["id"], "count me")

    body = client.get("/metrics").text

    assert "# TYPE chat_messages_total counter" in body
    assert 'chat_messages_total{kind="message"}' in body
    assert "realtime_active_connections" in body
