from __future__ import annotations

from enum import Enum


class MessageKind(str, Enum):
    """Kinds of content a message can carry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    """Lifecycle of a message from the sender's point of view."""

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ConversationKind(str, Enum):
    """Whether a conversation is one-to-one or many-to-many."""

    PRIVATE = "private"
    GROUP = "group"


class ParticipantRole(str, Enum):
    """Roles a user can hold inside a chat session or group."""

    MEMBER = "member"
    ADMIN = "admin"
    CREATOR = "creator"


class GroupType(str, Enum):
    """Visibility of a group."""

    PUBLIC = "public"
    PRIVATE = "private"
    SECRET = "secret"


class GroupStatus(str, Enum):
    """Administrative state of a group."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class SessionSetting(str, Enum):
    """Per-participant boolean flags on a chat session."""

    MUTED = "muted"
    BLOCKED = "blocked"
    PINNED = "pinned"
    ARCHIVED = "archived"
