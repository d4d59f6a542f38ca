"""Named rooms grouping connections that follow the same conversation."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, Iterable, Set

from .presence import ClientConnection


def private_room(user_a: int, user_b: int) -> str:
    low, high = sorted((user_a, user_b))
    return f"private_{low}_{high}"


def group_room(group_id: int) -> str:
    return f"group_{group_id}"


class RoomRegistry:
    """Track which connections joined which room."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[ClientConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def join(self, room: str, handle: ClientConnection) -> bool:
        async with self._lock:
            members = self._rooms[room]
            if handle in members:
                return False
            members.add(handle)
            handle.rooms.add(room)
            return True

    async def leave(self, room: str, handle: ClientConnection) -> bool:
        async with self._lock:
            members = self._rooms.get(room)
            if not members or handle not in members:
                return False
            members.discard(handle)
            handle.rooms.discard(room)
            if not members:
                self._rooms.pop(room, None)
            return True

    async def leave_all(self, handle: ClientConnection) -> list[str]:
        async with self._lock:
            left = sorted(handle.rooms)
            for room in left:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(handle)
                if not members:
                    self._rooms.pop(room, None)
            handle.rooms.clear()
            return left

    def members(self, room: str) -> list[ClientConnection]:
        return list(self._rooms.get(room, ()))

    def rooms(self) -> list[str]:
        return list(self._rooms)

    async def broadcast(
        self,
        room: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[ClientConnection] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        sent = 0
        for handle in self.members(room):
            if handle in exclude_set:
                continue
            if await handle.send(payload):
                sent += 1
        return sent

    async def clear(self) -> None:
        async with self._lock:
            for members in self._rooms.values():
                for handle in members:
                    handle.rooms.clear()
            self._rooms.clear()
