"""Integration tests for the message HTTP endpoints."""

from __future__ import annotations


def _send(client, headers, receiver_id: int, content: str, **extra):
    return client.post(
        "/api/messages/send",
        json={"receiverId": receiver_id, "content": content, **extra},
        headers=headers,
    )


def test_requests_without_token_are_rejected(client):
    response = client.get("/api/messages/sessions")

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": {"code": "AUTHENTICATION_ERROR", "message": "Not authenticated"},
    }


def test_send_and_list_sessions(client, make_user, auth_headers):
    alice = make_user("alice", "Alice")
    bob = make_user("bob")

    sent = _send(client, auth_headers(alice), bob, "hello")
    assert sent.status_code == 201
    body = sent.json()
    assert body["content"] == "hello"
    assert body["status"] == "sent"
    assert body["sender"]["display_name"] == "Alice"

    sessions = client.get("/api/messages/sessions", headers=auth_headers(bob)).json()
    assert sessions["pagination"]["total"] == 1
    session = sessions["sessions"][0]
    assert session["unread_count"] == 1
    assert session["last_message"]["id"] == body["id"]

    detail = client.get(f"/api/messages/sessions/{session['id']}", headers=auth_headers(alice))
    assert detail.status_code == 200
    assert detail.json()["unread_count"] == 0


def test_invalid_payload_uses_error_envelope(client, make_user, auth_headers):
    alice = make_user("alice")

    missing = client.post("/api/messages/send", json={"content": "hi"}, headers=auth_headers(alice))
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "VALIDATION_ERROR"

    to_self = _send(client, auth_headers(alice), alice, "me")
    assert to_self.status_code == 400

    bad_page = client.get("/api/messages/sessions?limit=500", headers=auth_headers(alice))
    assert bad_page.status_code == 400
    assert "Limit" in bad_page.json()["error"]["message"]


def test_delete_by_other_user_is_forbidden(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    message_id = _send(client, auth_headers(bob), alice, "mine").json()["id"]

    response = client.delete(f"/api/messages/{message_id}", headers=auth_headers(alice))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"
    for viewer, other in ((alice, bob), (bob, alice)):
        history = client.get(f"/api/messages/chat/{other}", headers=auth_headers(viewer)).json()
        assert [item["id"] for item in history["messages"]] == [message_id]


def test_author_can_delete_edit_and_read_receipts(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    first = _send(client, auth_headers(alice), bob, "frist").json()
    second = _send(client, auth_headers(alice), bob, "second").json()

    edited = client.patch(f"/api/messages/{first['id']}", json={"content": "first"}, headers=auth_headers(alice))
    assert edited.json()["is_edited"] is True

    read = client.put(f"/api/messages/{first['id']}/read", headers=auth_headers(bob))
    assert read.status_code == 200
    assert read.json()["changed"] is True
    assert read.json()["message"]["read_by"] == [bob]
    again = client.put(f"/api/messages/{first['id']}/read", headers=auth_headers(bob))
    assert again.json()["changed"] is False

    deleted = client.delete(f"/api/messages/{second['id']}", headers=auth_headers(alice))
    assert deleted.status_code == 204
    history = client.get(f"/api/messages/chat/{bob}", headers=auth_headers(alice)).json()
    assert [item["content"] for item in history["messages"]] == ["first"]


def test_session_settings_and_recount(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    session_id = _send(client, auth_headers(alice), bob, "hi").json()["session_id"]

    pinned = client.post(f"/api/messages/sessions/{session_id}/settings/pinned", headers=auth_headers(bob))
    assert pinned.json()["settings"]["pinned"] is True

    unknown = client.post(f"/api/messages/sessions/{session_id}/settings/loud", headers=auth_headers(bob))
    assert unknown.status_code == 400

    recount = client.post(f"/api/messages/sessions/{session_id}/recount", headers=auth_headers(bob))
    assert recount.json() == {"session_id": session_id, "unread_count": 1}


def test_reply_thread_endpoint(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    root = _send(client, auth_headers(alice), bob, "question").json()
    reply = _send(client, auth_headers(bob), alice, "answer", replyTo=root["id"]).json()

    thread = client.get(f"/api/messages/{root['id']}/thread", headers=auth_headers(bob)).json()

    assert thread["root_id"] == root["id"]
    assert thread["truncated"] is False
    assert [(entry["message"]["id"], entry["depth"]) for entry in thread["entries"]] == [
        (root["id"], 0),
        (reply["id"], 1),
    ]


def test_history_reflects_messages_it_just_marked_read(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    _send(client, auth_headers(alice), bob, "are you there")

    history = client.get(f"/api/messages/chat/{alice}", headers=auth_headers(bob)).json()

    (message,) = history["messages"]
    assert message["is_read"] is True
    assert message["status"] == "read"
    assert message["read_at"] is not None


def test_receiver_still_sees_message_the_sender_deleted(client, make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    message_id = _send(client, auth_headers(alice), bob, "keep this").json()["id"]

    assert client.delete(f"/api/messages/{message_id}", headers=auth_headers(alice)).status_code == 204

    (message,) = client.get(f"/api/messages/chat/{alice}", headers=auth_headers(bob)).json()["messages"]
    assert message["content"] == "keep this"
    assert message["is_deleted"] is True
