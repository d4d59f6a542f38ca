"""Database models package."""

from .base import Base
from .chat import (
    ChatParticipant,
    ChatSession,
    Group,
    GroupMember,
    GroupTag,
    Message,
    MessageDeletion,
    MessageReceipt,
    User,
    utcnow,
)
from .enums import (
    ConversationKind,
    GroupStatus,
    GroupType,
    MessageKind,
    MessageStatus,
    ParticipantRole,
    SessionSetting,
)

__all__ = [
    "Base",
    "User",
    "Group",
    "GroupMember",
    "GroupTag",
    "ChatSession",
    "ChatParticipant",
    "Message",
    "MessageReceipt",
    "MessageDeletion",
    "ConversationKind",
    "GroupStatus",
    "GroupType",
    "MessageKind",
    "MessageStatus",
    "ParticipantRole",
    "SessionSetting",
    "utcnow",
]
