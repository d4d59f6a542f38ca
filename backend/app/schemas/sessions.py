"""Schemas related to chat sessions."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models import ChatSession, ConversationKind, ParticipantRole

from .common import Pagination
from .messages import MessageRead, serialize_message
from .users import PublicUser


class ParticipantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    user: PublicUser | None = None
    role: ParticipantRole
    joined_at: datetime
    last_seen_at: datetime


class SessionSettingsRead(BaseModel):
    """Per-viewer flags of a chat session."""

    muted: bool = False
    blocked: bool = False
    pinned: bool = False
    archived: bool = False


class ChatSessionRead(BaseModel):
    """Chat session as seen by one participant."""

    id: int
    kind: ConversationKind
    conversation_key: str
    group_id: int | None = None
    name: str
    last_message: MessageRead | None = None
    last_activity_at: datetime
    participants: list[ParticipantRead] = Field(default_factory=list)
    unread_count: int = Field(0, ge=0)
    settings: SessionSettingsRead = Field(default_factory=SessionSettingsRead)


class ChatSessionList(BaseModel):
    sessions: list[ChatSessionRead]
    pagination: Pagination


class RecountRead(BaseModel):
    session_id: int
    unread_count: int = Field(..., ge=0)


def serialize_session(chat_session: ChatSession, viewer_id: int) -> ChatSessionRead:
    participant = chat_session.participant_for(viewer_id)
    view = SessionSettingsRead()
    unread = 0
    if participant is not None:
        unread = participant.unread_count
        view = SessionSettingsRead(
            muted=participant.muted,
            blocked=participant.blocked,
            pinned=participant.pinned,
            archived=participant.archived,
        )
    last_message = chat_session.last_message
    if last_message is not None and viewer_id in last_message.deleted_for:
        last_message = None
    return ChatSessionRead(
        id=chat_session.id,
        kind=chat_session.kind,
        conversation_key=chat_session.conversation_key,
        group_id=chat_session.group_id,
        name=chat_session.name,
        last_message=serialize_message(last_message) if last_message is not None else None,
        last_activity_at=chat_session.last_activity_at,
        participants=[ParticipantRead.model_validate(item) for item in chat_session.participants],
        unread_count=unread,
        settings=view,
    )
