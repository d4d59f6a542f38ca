"""Integration tests for the group HTTP endpoints."""

from __future__ import annotations


def _create_group(client, headers, **payload):
    body = {"name": "Reading Circle", **payload}
    response = client.post("/api/groups", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_third_member_is_rejected_when_group_is_full(client, make_user, auth_headers):
    owner = make_user("owner")
    first = make_user("first")
    second = make_user("second")
    group = _create_group(client, auth_headers(owner), max_members=2)

    added = client.post(f"/api/groups/{group['id']}/members", json={"userId": first}, headers=auth_headers(owner))
    assert added.status_code == 200
    rejected = client.post(
        f"/api/groups/{group['id']}/members", json={"user_id": second}, headers=auth_headers(owner)
    )

    assert rejected.status_code == 409
    assert rejected.json()["error"]["code"] == "CAPACITY_EXCEEDED"
    detail = client.get(f"/api/groups/{group['id']}", headers=auth_headers(owner)).json()
    assert len(detail["members"]) == 2
    assert detail["member_count"] == 2


def test_create_group_returns_detail_with_invite(client, make_user, auth_headers):
    owner = make_user("owner")
    outsider = make_user("outsider")

    group = _create_group(
        client,
        auth_headers(owner),
        description="Books",
        tags=["fiction"],
        settings={"slow_mode_seconds": 10},
    )

    assert group["role"] == "creator"
    assert group["admin_ids"] == [owner]
    assert group["settings"]["slow_mode_seconds"] == 10
    assert len(group["invite_code"]) == 6

    seen_by_outsider = client.get(f"/api/groups/{group['id']}", headers=auth_headers(outsider)).json()
    assert seen_by_outsider["is_member"] is False
    assert seen_by_outsider["invite_code"] is None


def test_join_leave_and_invite_code(client, make_user, auth_headers):
    owner = make_user("owner")
    guest = make_user("guest")
    secret = _create_group(client, auth_headers(owner), type="secret")

    hidden = client.get(f"/api/groups/{secret['id']}", headers=auth_headers(guest))
    assert hidden.status_code == 404
    direct = client.post(f"/api/groups/{secret['id']}/join", headers=auth_headers(guest))
    assert direct.status_code == 403

    joined = client.post("/api/groups/join", json={"code": secret["invite_code"]}, headers=auth_headers(guest))
    assert joined.status_code == 200
    assert joined.json()["is_member"] is True

    mine = client.get("/api/groups/mine", headers=auth_headers(guest)).json()
    assert [item["id"] for item in mine["groups"]] == [secret["id"]]

    left = client.post(f"/api/groups/{secret['id']}/leave", headers=auth_headers(guest))
    assert left.status_code == 204
    assert client.get("/api/groups/mine", headers=auth_headers(guest)).json()["groups"] == []


def test_group_messages_and_history(client, make_user, auth_headers):
    owner = make_user("owner")
    member = make_user("member")
    group = _create_group(client, auth_headers(owner))
    client.post(f"/api/groups/{group['id']}/join", headers=auth_headers(member))

    sent = client.post(
        f"/api/groups/{group['id']}/messages", json={"content": "welcome"}, headers=auth_headers(owner)
    )
    assert sent.status_code == 201
    assert sent.json()["group_id"] == group["id"]

    assert client.get("/api/messages/unread/count", headers=auth_headers(member)).json()["unread_count"] == 1
    history = client.get(f"/api/groups/{group['id']}/messages", headers=auth_headers(member)).json()
    assert [item["content"] for item in history["messages"]] == ["welcome"]
    assert history["messages"][0]["read_by"] == [member]
    assert client.get("/api/messages/unread/count", headers=auth_headers(member)).json()["unread_count"] == 0

    outsider = make_user("outsider")
    forbidden = client.get(f"/api/groups/{group['id']}/messages", headers=auth_headers(outsider))
    assert forbidden.status_code == 403


def test_update_roles_and_deactivate(client, make_user, auth_headers):
    owner = make_user("owner")
    helper = make_user("helper")
    group = _create_group(client, auth_headers(owner))
    client.post(f"/api/groups/{group['id']}/join", headers=auth_headers(helper))

    promoted = client.patch(
        f"/api/groups/{group['id']}/members/{helper}", json={"role": "admin"}, headers=auth_headers(owner)
    )
    assert sorted(promoted.json()["admin_ids"]) == sorted([owner, helper])

    renamed = client.patch(f"/api/groups/{group['id']}", json={"name": "Renamed"}, headers=auth_headers(helper))
    assert renamed.json()["name"] == "Renamed"

    refused = client.delete(f"/api/groups/{group['id']}", headers=auth_headers(helper))
    assert refused.status_code == 403
    removed = client.delete(f"/api/groups/{group['id']}", headers=auth_headers(owner))
    assert removed.json()["status"] == "deleted"
    assert client.get(f"/api/groups/{group['id']}", headers=auth_headers(owner)).status_code == 404


def test_search_endpoint(client, make_user, auth_headers):
    owner = make_user("owner")
    _create_group(client, auth_headers(owner), name="Chess Club", tags=["games"], category="hobby")
    _create_group(client, auth_headers(owner), name="Go Club", type="secret")

    found = client.get("/api/groups/search?q=club&tags=games", headers=auth_headers(owner)).json()

    assert [item["name"] for item in found["groups"]] == ["Chess Club"]
    assert found["pagination"]["total"] == 1
    assert client.get("/api/groups/search?limit=0", headers=auth_headers(owner)).status_code == 400
