from __future__ import annotations

from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from parley.realtime import ClientConnection, RoomRegistry, RoutingTable, group_room, private_room


class DummyWebSocket:
    def __init__(self, *, connected: bool = True) -> None:
        self.application_state = WebSocketState.CONNECTED if connected else WebSocketState.DISCONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)


def _handle(user_id: int, *, connected: bool = True) -> ClientConnection:
    return ClientConnection(websocket=DummyWebSocket(connected=connected), user_id=user_id, username=f"user{user_id}")


def test_room_names_are_order_independent():
    assert private_room(9, 3) == private_room(3, 9) == "private_3_9"
    assert group_room(12) == "group_12"


@pytest.mark.anyio("asyncio")
async def test_latest_connection_wins_and_stale_unregister_is_ignored():
    table = RoutingTable()
    first = _handle(1)
    second = _handle(1)

    assert await table.register(1, first) is None
    assert await table.register(1, second) is first
    assert table.resolve(1) is second

    assert await table.unregister(first) is False
    assert table.is_online(1)

    assert await table.unregister(second) is True
    assert not table.is_online(1)
    assert table.online_user_ids() == []


@pytest.mark.anyio("asyncio")
async def test_send_to_offline_or_closed_user_returns_false():
    table = RoutingTable()
    closed = _handle(2, connected=False)
    await table.register(2, closed)

    assert await table.send_to_user(1, {"type": "ping"}) is False
    assert await table.send_to_user(2, {"type": "ping"}) is False
    assert closed.websocket.sent == []


@pytest.mark.anyio("asyncio")
async def test_broadcast_skips_excluded_handles():
    table = RoutingTable()
    alice, bob = _handle(1), _handle(2)
    await table.register(1, alice)
    await table.register(2, bob)

    sent = await table.broadcast({"type": "user_online", "userId": 1}, exclude=[alice])

    assert sent == 1
    assert alice.websocket.sent == []
    assert bob.websocket.sent == [{"type": "user_online", "userId": 1}]


@pytest.mark.anyio("asyncio")
async def test_rooms_track_membership_and_cleanup():
    rooms = RoomRegistry()
    alice, bob = _handle(1), _handle(2)

    assert await rooms.join("group_1", alice) is True
    assert await rooms.join("group_1", alice) is False
    await rooms.join("group_1", bob)
    await rooms.join("private_1_2", alice)

    delivered = await rooms.broadcast("group_1", {"type": "message_received"}, exclude=[bob])
    assert delivered == 1
    assert alice.websocket.sent == [{"type": "message_received"}]

    assert await rooms.leave_all(alice) == ["group_1", "private_1_2"]
    assert alice.rooms == set()
    assert rooms.members("group_1") == [bob]
    assert "private_1_2" not in rooms.rooms()

    assert await rooms.leave("group_1", bob) is True
    assert rooms.rooms() == []
