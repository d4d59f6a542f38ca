"""Authenticated chat socket: presence, message fan-out, typing and receipts."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable

from fastapi import WebSocket, status
from fastapi.websockets import WebSocketDisconnect
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.core.exceptions import AppException, AuthenticationError, ForbiddenError
from app.database import get_db_session
from app.models import Group, GroupMember, Message
from app.schemas import (
    AuthEvent,
    MarkReadEvent,
    RoomEvent,
    SendMessageEvent,
    TypingEvent,
    serialize_message,
)
from app.services import groups as group_directory
from app.services import messages as message_store
from app.services.identity import extract_bearer_token, verify_bearer_token

from .presence import ClientConnection, RoutingTable
from .rooms import RoomRegistry, group_room, private_room
from .sockets import iter_keepalive_messages, receive_frame, safe_send_json

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]
EventHandler = Callable[[ClientConnection, Dict[str, Any]], Awaitable[None]]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class OutboundMessage:
    """A persisted message ready to be pushed to connected clients."""

    payload: dict[str, Any]
    message_id: int
    session_id: int
    sender_id: int
    sender_username: str
    recipient_ids: list[int]
    room: str

    @classmethod
    def from_message(cls, message: Message, db: Session) -> "OutboundMessage":
        if message.group_id is not None:
            member_ids = db.execute(
                select(GroupMember.user_id).where(GroupMember.group_id == message.group_id)
            ).scalars()
            recipients = sorted(user_id for user_id in member_ids if user_id != message.sender_id)
            room = group_room(message.group_id)
        else:
            recipients = [message.receiver_id]
            room = private_room(message.sender_id, message.receiver_id)
        return cls(
            payload=serialize_message(message).model_dump(mode="json"),
            message_id=message.id,
            session_id=message.session_id,
            sender_id=message.sender_id,
            sender_username=message.sender.username,
            recipient_ids=recipients,
            room=room,
        )


class ChatGateway:
    """Drive one chat socket per authenticated user.

    Each connection moves through connecting, authenticated, active and
    disconnected. Frames of a connection are handled one at a time in
    arrival order. Database work happens in a short-lived session per event.
    """

    def __init__(
        self,
        routing_table: RoutingTable,
        rooms: RoomRegistry,
        *,
        session_scope: SessionScope | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.routing = routing_table
        self.rooms = rooms
        self._session_scope = session_scope
        self.settings = settings or get_settings()
        self._handlers: Dict[str, EventHandler] = {
            "send_message": self._handle_send_message,
            "typing_start": self._handle_typing_start,
            "typing_stop": self._handle_typing_stop,
            "mark_read": self._handle_mark_read,
            "join_room": self._handle_join_room,
            "leave_room": self._handle_leave_room,
            "ping": self._handle_ping,
            "pong": self._handle_noop,
            "auth": self._handle_noop,
        }

    def db_session(self) -> AbstractContextManager[Session]:
        scope = self._session_scope or get_db_session
        return scope()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def handle_connection(self, websocket: WebSocket) -> None:
        identity = await self.authenticate(websocket)
        if identity is None:
            return

        user_id, username = identity
        handle = ClientConnection(websocket=websocket, user_id=user_id, username=username)
        try:
            await self._on_connected(handle)
            async for frame in iter_keepalive_messages(
                websocket,
                lambda: receive_frame(websocket),
                timeout_seconds=self.settings.websocket_keepalive_timeout_seconds,
                ping_interval_seconds=self.settings.websocket_keepalive_ping_interval_seconds,
            ):
                await self.dispatch(handle, frame)
        finally:
            await self._on_disconnected(handle)

    async def authenticate(self, websocket: WebSocket) -> tuple[int, str] | None:
        """Verify the bearer credential; return ``(user_id, username)`` or close the socket."""

        token = websocket.query_params.get("token") or extract_bearer_token(
            websocket.headers.get("Authorization")
        )
        if token:
            try:
                identity = self._verify(token)
            except AuthenticationError as exc:
                logger.info("Rejected chat socket before accept: %s", exc.message)
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
                return None
            await websocket.accept()
            return identity

        await websocket.accept()
        try:
            frame = await asyncio.wait_for(
                receive_frame(websocket),
                timeout=self.settings.websocket_auth_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._reject(websocket, "Authentication timed out")
            return None
        except (WebSocketDisconnect, RuntimeError):
            return None

        try:
            event = AuthEvent.model_validate(json.loads(frame))
        except (ValueError, PayloadValidationError):
            await self._reject(websocket, "Authentication required")
            return None
        if event.type != "auth":
            await self._reject(websocket, "Authentication required")
            return None

        try:
            return self._verify(event.token)
        except AuthenticationError as exc:
            await self._reject(websocket, exc.message)
            return None

    def _verify(self, token: str) -> tuple[int, str]:
        with self.db_session() as db:
            user = verify_bearer_token(token, db)
            return user.id, user.username

    async def _reject(self, websocket: WebSocket, reason: str) -> None:
        logger.info("Rejected chat socket: %s", reason)
        await safe_send_json(
            websocket,
            {"type": "error", "message": reason, "code": AuthenticationError().code},
        )
        try:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)
        except RuntimeError:
            logger.debug("Socket already closed while rejecting authentication")

    async def _on_connected(self, handle: ClientConnection) -> None:
        replaced = await self.routing.register(handle.user_id, handle)
        logger.info("User %s connected (%s)", handle.user_id, handle.connection_id)
        await handle.send({"type": "connected", "userId": handle.user_id, "username": handle.username})

        with self.db_session() as db:
            delivered = message_store.mark_pending_delivered(handle.user_id, db)
            notices = [
                (
                    message.sender_id,
                    {
                        "type": "message_status",
                        "messageId": message.id,
                        "status": message.status.value,
                        "userId": handle.user_id,
                    },
                )
                for message in delivered
            ]
        for sender_id, payload in notices:
            await self.routing.send_to_user(sender_id, payload)

        if replaced is None:
            await self.routing.broadcast(
                {
                    "type": "user_online",
                    "userId": handle.user_id,
                    "username": handle.username,
                    "timestamp": _timestamp(),
                },
                exclude=[handle],
            )

    async def _on_disconnected(self, handle: ClientConnection) -> None:
        removed = await self.routing.unregister(handle)
        await self.rooms.leave_all(handle)
        logger.info("User %s disconnected (%s)", handle.user_id, handle.connection_id)
        if removed:
            await self.routing.broadcast(
                {
                    "type": "user_offline",
                    "userId": handle.user_id,
                    "username": handle.username,
                    "timestamp": _timestamp(),
                }
            )

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, handle: ClientConnection, frame: str) -> None:
        try:
            data = json.loads(frame)
        except ValueError:
            await self._send_error(handle, "Malformed JSON payload", "VALIDATION_ERROR")
            return
        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            await self._send_error(handle, "Event type is required", "VALIDATION_ERROR")
            return

        event_type = data["type"]
        client_id = data.get("clientId")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Unknown event %r from user %s", event_type, handle.user_id)
            await self._send_error(
                handle, f"Unknown event type '{event_type}'", "UNKNOWN_EVENT", event=event_type
            )
            return

        try:
            await handler(handle, data)
        except AppException as exc:
            logger.debug("Event %s from user %s rejected: %s", event_type, handle.user_id, exc.message)
            await self._send_error(handle, exc.message, exc.code, event=event_type, client_id=client_id)
        except PayloadValidationError as exc:
            message = exc.errors()[0].get("msg", "Invalid payload") if exc.errors() else "Invalid payload"
            await self._send_error(
                handle, message, "VALIDATION_ERROR", event=event_type, client_id=client_id
            )
        except Exception:
            logger.exception("Unexpected failure handling %s for user %s", event_type, handle.user_id)
            await self._send_error(
                handle, "Internal server error", "INTERNAL_ERROR", event=event_type, client_id=client_id
            )

    async def _send_error(
        self,
        handle: ClientConnection,
        message: str,
        code: str,
        *,
        event: str | None = None,
        client_id: Any = None,
    ) -> None:
        payload: dict[str, Any] = {"type": "error", "message": message, "code": code}
        if event is not None:
            payload["event"] = event
        if client_id is not None:
            payload["clientId"] = client_id
        await handle.send(payload)

    async def _handle_noop(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        return None

    async def _handle_ping(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        await handle.send({"type": "pong", "timestamp": _timestamp()})

    async def _handle_send_message(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        event = SendMessageEvent.model_validate(data)
        file_info = event.file_info.model_dump() if event.file_info is not None else None
        with self.db_session() as db:
            if event.receiver_id is not None:
                message = message_store.create_direct_message(
                    handle.user_id,
                    event.receiver_id,
                    event.content,
                    event.message_type,
                    db,
                    reply_to_id=event.reply_to,
                    forwarded_from_id=event.forwarded_from,
                    file_info=file_info,
                )
            else:
                message = message_store.create_group_message(
                    handle.user_id,
                    event.group_id,
                    event.content,
                    event.message_type,
                    db,
                    reply_to_id=event.reply_to,
                    forwarded_from_id=event.forwarded_from,
                    file_info=file_info,
                )
            outbound = OutboundMessage.from_message(message, db)

        ack: dict[str, Any] = {
            "type": "message_sent",
            "message": outbound.payload,
            "sessionId": outbound.session_id,
        }
        if event.client_id is not None:
            ack["clientId"] = event.client_id
        await handle.send(ack)
        await self.publish_message(outbound, origin=handle)

    async def publish_message(
        self, outbound: OutboundMessage, *, origin: ClientConnection | None = None
    ) -> list[int]:
        """Push a stored message to online recipients and the conversation room.

        Recipients reached directly are marked as delivered and the sender is
        told about the status change. Returns the ids of those recipients.
        """

        sender = {"id": outbound.sender_id, "username": outbound.sender_username}
        pushed: list[int] = []
        reached: list[ClientConnection] = []
        for recipient_id in outbound.recipient_ids:
            recipient = self.routing.resolve(recipient_id)
            if recipient is None:
                continue
            sent = await recipient.send(
                {
                    "type": "new_message",
                    "message": outbound.payload,
                    "sessionId": outbound.session_id,
                    "sender": sender,
                }
            )
            if sent:
                pushed.append(recipient_id)
                reached.append(recipient)

        exclude = list(reached)
        if origin is not None:
            exclude.append(origin)
        await self.rooms.broadcast(
            outbound.room,
            {
                "type": "message_received",
                "message": outbound.payload,
                "sessionId": outbound.session_id,
                "sender": sender,
            },
            exclude=exclude,
        )

        if pushed:
            await self._record_delivery(outbound, pushed)
        return pushed

    async def _record_delivery(self, outbound: OutboundMessage, recipient_ids: Iterable[int]) -> None:
        status_value = None
        with self.db_session() as db:
            for recipient_id in recipient_ids:
                try:
                    message, changed = message_store.mark_as_delivered(outbound.message_id, recipient_id, db)
                except AppException as exc:
                    logger.debug("Could not mark message %s delivered: %s", outbound.message_id, exc.message)
                    continue
                if changed:
                    status_value = message.status.value
        if status_value is not None:
            await self.routing.send_to_user(
                outbound.sender_id,
                {
                    "type": "message_status",
                    "messageId": outbound.message_id,
                    "status": status_value,
                },
            )

    async def _handle_typing_start(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        await self._relay_typing(handle, data, "user_typing")

    async def _handle_typing_stop(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        await self._relay_typing(handle, data, "user_stopped_typing")

    async def _relay_typing(self, handle: ClientConnection, data: Dict[str, Any], event_type: str) -> None:
        try:
            event = TypingEvent.model_validate(data)
        except PayloadValidationError:
            logger.debug("Ignoring malformed typing event from user %s", handle.user_id)
            return

        payload: dict[str, Any] = {
            "type": event_type,
            "userId": handle.user_id,
            "username": handle.username,
        }
        targets: set[ClientConnection] = set()
        if event.receiver_id is not None:
            if event.receiver_id == handle.user_id:
                return
            payload["receiverId"] = event.receiver_id
            room = private_room(handle.user_id, event.receiver_id)
            recipient = self.routing.resolve(event.receiver_id)
            if recipient is not None:
                targets.add(recipient)
        else:
            with self.db_session() as db:
                group = db.get(Group, event.group_id)
                if group is None or not group_directory.is_member(group, handle.user_id):
                    logger.debug("Ignoring typing event for group %s from non-member", event.group_id)
                    return
            payload["groupId"] = event.group_id
            room = group_room(event.group_id)

        targets.update(self.rooms.members(room))
        targets.discard(handle)
        for target in targets:
            await target.send(payload)

    async def _handle_mark_read(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        try:
            event = MarkReadEvent.model_validate(data)
            with self.db_session() as db:
                message, changed = message_store.mark_as_read(event.message_id, handle.user_id, db)
                sender_id = message.sender_id
                read_by = list(message.read_by)
                read_at = (message.read_at or datetime.now(timezone.utc)).isoformat()
                unread = message_store.count_unread_for_user(handle.user_id, db)
        except (AppException, PayloadValidationError) as exc:
            logger.debug("Ignoring mark_read from user %s: %s", handle.user_id, exc)
            return

        if changed:
            await self.notify_read(sender_id, event.message_id, read_by, read_at, handle.user_id)
        await handle.send({"type": "unread_count", "count": unread})

    async def notify_read(
        self, sender_id: int, message_id: int, read_by: list[int], read_at: str, reader_id: int
    ) -> bool:
        return await self.routing.send_to_user(
            sender_id,
            {
                "type": "message_read",
                "messageId": message_id,
                "readBy": read_by,
                "readAt": read_at,
                "userId": reader_id,
            },
        )

    async def notify_unread_count(self, user_id: int, count: int) -> bool:
        return await self.routing.send_to_user(user_id, {"type": "unread_count", "count": count})

    async def _resolve_room(
        self, handle: ClientConnection, data: Dict[str, Any], *, check_membership: bool = True
    ) -> str:
        event = RoomEvent.model_validate(data)
        if event.other_user_id is not None:
            return private_room(handle.user_id, event.other_user_id)
        if not check_membership:
            return group_room(event.group_id)
        with self.db_session() as db:
            group = group_directory.get_group(event.group_id, db)
            if not group_directory.is_member(group, handle.user_id):
                raise ForbiddenError("You are not a member of this group")
        return group_room(event.group_id)

    async def _handle_join_room(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        room = await self._resolve_room(handle, data)
        await self.rooms.join(room, handle)
        await handle.send({"type": "room_joined", "room": room})

    async def _handle_leave_room(self, handle: ClientConnection, data: Dict[str, Any]) -> None:
        room = await self._resolve_room(handle, data, check_membership=False)
        await self.rooms.leave(room, handle)
        await handle.send({"type": "room_left", "room": room})


routing_table = RoutingTable()
room_registry = RoomRegistry()
chat_gateway = ChatGateway(routing_table, room_registry)


def get_chat_gateway() -> ChatGateway:
    return chat_gateway


def get_routing_table() -> RoutingTable:
    return routing_table


def get_room_registry() -> RoomRegistry:
    return room_registry
