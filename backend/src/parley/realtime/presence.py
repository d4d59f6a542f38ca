"""In-memory routing table mapping online users to their live connection."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from fastapi.websockets import WebSocket

from .sockets import safe_send_json

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ClientConnection:
    """One authenticated socket and the rooms it has joined."""

    websocket: WebSocket
    user_id: int
    username: str
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    async def send(self, payload: dict[str, Any]) -> bool:
        return await safe_send_json(self.websocket, payload)


class RoutingTable:
    """Authoritative user -> connection mapping for this process.

    The most recent connection of a user wins. Unregistering a handle that
    has already been replaced leaves the newer registration untouched.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, ClientConnection] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: int, handle: ClientConnection) -> ClientConnection | None:
        async with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = handle
        if previous is not None and previous is not handle:
            logger.info(
                "Connection %s for user %s replaced by %s",
                previous.connection_id,
                user_id,
                handle.connection_id,
            )
            return previous
        return None

    async def unregister(self, handle: ClientConnection) -> bool:
        async with self._lock:
            current = self._connections.get(handle.user_id)
            if current is not handle:
                return False
            del self._connections[handle.user_id]
            return True

    def is_online(self, user_id: int) -> bool:
        return user_id in self._connections

    def resolve(self, user_id: int) -> ClientConnection | None:
        return self._connections.get(user_id)

    def online_user_ids(self) -> list[int]:
        return list(self._connections)

    def connections(self) -> list[ClientConnection]:
        return list(self._connections.values())

    async def send_to_user(self, user_id: int, payload: dict[str, Any]) -> bool:
        handle = self.resolve(user_id)
        if handle is None:
            return False
        return await handle.send(payload)

    async def broadcast(
        self,
        payload: dict[str, Any],
        *,
        exclude: Iterable[ClientConnection] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        sent = 0
        for handle in self.connections():
            if handle in exclude_set:
                continue
            if await handle.send(payload):
                sent += 1
        return sent

    async def clear(self) -> None:
        async with self._lock:
            self._connections.clear()
