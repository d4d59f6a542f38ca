"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models import ConversationKind, Message, MessageKind, MessageStatus

from .common import Pagination
from .users import PublicUser

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from app.services.messages import ThreadNode


class FileInfoPayload(BaseModel):
    """Attachment metadata for image, file and audio messages."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, max_length=255, validation_alias=AliasChoices("name", "fileName"))
    mime_type: str | None = Field(
        default=None, max_length=128, validation_alias=AliasChoices("mime_type", "mimeType")
    )
    size: int | None = Field(default=None, ge=0)
    url: str | None = Field(default=None, max_length=1024)


class MessageRead(BaseModel):
    """Serialized representation of a chat message."""

    id: int
    session_id: int
    conversation_kind: ConversationKind
    sender_id: int
    sender: PublicUser | None = None
    receiver_id: int | None = None
    group_id: int | None = None
    content: str
    kind: MessageKind
    status: MessageStatus
    created_at: datetime
    updated_at: datetime
    reply_to_id: int | None = None
    forwarded_from_message_id: int | None = None
    forwarded_from_user_id: int | None = None
    file: FileInfoPayload | None = None
    is_read: bool = False
    read_at: datetime | None = None
    read_by: list[int] = Field(default_factory=list)
    delivered_to: list[int] = Field(default_factory=list)
    is_edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = Field(default=False, description="The sender deleted this message from their own view.")
    deleted_at: datetime | None = None


def serialize_message(message: Message) -> MessageRead:
    file_info = None
    if any((message.file_name, message.file_mime_type, message.file_size, message.file_url)):
        file_info = FileInfoPayload(
            name=message.file_name,
            mime_type=message.file_mime_type,
            size=message.file_size,
            url=message.file_url,
        )
    return MessageRead(
        id=message.id,
        session_id=message.session_id,
        conversation_kind=message.conversation_kind,
        sender_id=message.sender_id,
        sender=PublicUser.model_validate(message.sender) if message.sender is not None else None,
        receiver_id=message.receiver_id,
        group_id=message.group_id,
        content=message.content,
        kind=message.kind,
        status=message.status,
        created_at=message.created_at,
        updated_at=message.updated_at,
        reply_to_id=message.reply_to_id,
        forwarded_from_message_id=message.forwarded_from_message_id,
        forwarded_from_user_id=message.forwarded_from_user_id,
        file=file_info,
        is_read=message.is_read,
        read_at=message.read_at,
        read_by=message.read_by,
        delivered_to=message.delivered_to,
        is_edited=message.is_edited,
        edited_at=message.edited_at,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
    )


class _MessageCreateBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., description="Message body; surrounding whitespace is trimmed.")
    message_type: MessageKind = Field(
        default=MessageKind.TEXT,
        validation_alias=AliasChoices("message_type", "messageType"),
    )
    reply_to: int | None = Field(default=None, validation_alias=AliasChoices("reply_to", "replyTo"))
    forwarded_from: int | None = Field(
        default=None, validation_alias=AliasChoices("forwarded_from", "forwardedFrom")
    )
    file_info: FileInfoPayload | None = Field(
        default=None, validation_alias=AliasChoices("file_info", "fileInfo")
    )


class DirectMessageCreate(_MessageCreateBase):
    """Payload for sending a direct message over HTTP."""

    receiver_id: int = Field(..., validation_alias=AliasChoices("receiver_id", "receiverId"))


class GroupMessageCreate(_MessageCreateBase):
    """Payload for sending a message to a group over HTTP."""


class MessageUpdate(BaseModel):
    """Payload for editing a message."""

    content: str


class MessageHistory(BaseModel):
    """One page of a conversation, oldest message first."""

    messages: list[MessageRead]
    pagination: Pagination
    session_id: int | None = None


class ReadReceiptRead(BaseModel):
    message: MessageRead
    changed: bool


class UnreadCountRead(BaseModel):
    unread_count: int = Field(..., ge=0)


class ThreadEntry(BaseModel):
    """A message inside a reply thread with its position in the tree."""

    message: MessageRead
    parent_id: int | None = None
    depth: int = Field(..., ge=0)


class ReplyThreadRead(BaseModel):
    """Reply tree below a message, flattened in depth-first order."""

    root_id: int
    entries: list[ThreadEntry]
    truncated: bool = False


def serialize_thread(root: "ThreadNode") -> ReplyThreadRead:
    entries: list[ThreadEntry] = []
    stack: list[tuple["ThreadNode", int | None, int]] = [(root, None, 0)]
    while stack:
        node, parent_id, depth = stack.pop()
        entries.append(ThreadEntry(message=serialize_message(node.message), parent_id=parent_id, depth=depth))
        for child in reversed(node.replies):
            stack.append((child, node.message.id, depth + 1))
    return ReplyThreadRead(root_id=root.message.id, entries=entries, truncated=root.truncated)
