"""Realtime chat primitives: routing table, rooms and the socket gateway."""

from .presence import ClientConnection, RoutingTable
from .rooms import RoomRegistry, group_room, private_room

__all__ = [
    "ClientConnection",
    "RoutingTable",
    "RoomRegistry",
    "group_room",
    "private_room",
]
