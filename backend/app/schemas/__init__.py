"""Pydantic schemas for API payloads."""

from .common import Pagination
from .events import AuthEvent, MarkReadEvent, RoomEvent, SendMessageEvent, TypingEvent
from .groups import (
    GroupCreate,
    GroupDetail,
    GroupList,
    GroupMemberAdd,
    GroupMemberRead,
    GroupRead,
    GroupRoleUpdate,
    GroupUpdate,
    InviteCodeJoin,
    serialize_group,
    serialize_group_detail,
)
from .messages import (
    DirectMessageCreate,
    FileInfoPayload,
    GroupMessageCreate,
    MessageHistory,
    MessageRead,
    MessageUpdate,
    ReadReceiptRead,
    ReplyThreadRead,
    ThreadEntry,
    UnreadCountRead,
    serialize_message,
    serialize_thread,
)
from .sessions import ChatSessionList, ChatSessionRead, RecountRead, serialize_session
from .users import PublicUser

__all__ = [
    "Pagination",
    "PublicUser",
    "AuthEvent",
    "MarkReadEvent",
    "RoomEvent",
    "SendMessageEvent",
    "TypingEvent",
    "FileInfoPayload",
    "MessageRead",
    "DirectMessageCreate",
    "GroupMessageCreate",
    "MessageUpdate",
    "MessageHistory",
    "ReadReceiptRead",
    "UnreadCountRead",
    "ThreadEntry",
    "ReplyThreadRead",
    "serialize_message",
    "serialize_thread",
    "ChatSessionRead",
    "ChatSessionList",
    "RecountRead",
    "serialize_session",
    "GroupCreate",
    "GroupUpdate",
    "GroupMemberAdd",
    "GroupRoleUpdate",
    "InviteCodeJoin",
    "GroupMemberRead",
    "GroupRead",
    "GroupDetail",
    "GroupList",
    "serialize_group",
    "serialize_group_detail",
]
