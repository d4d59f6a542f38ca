from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import (
    ConversationKind,
    GroupStatus,
    GroupType,
    MessageKind,
    MessageStatus,
    ParticipantRole,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda enum_cls: [member.value for member in enum_cls],
    )


class User(Base):
    """Account referenced by the messaging core."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128))
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    @property
    def public_name(self) -> str:
        return self.display_name or self.username


class Group(Base):
    """Many-to-many conversation with membership and roles."""

    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[GroupType] = mapped_column(
        _enum_column(GroupType, "group_type"), default=GroupType.PUBLIC, nullable=False
    )
    status: Mapped[GroupStatus] = mapped_column(
        _enum_column(GroupStatus, "group_status"), default=GroupStatus.ACTIVE, nullable=False
    )
    max_members: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    invite_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    invite_link: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    allow_member_invites: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    require_admin_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_member_editing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    slow_mode_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    creator: Mapped[User] = relationship(foreign_keys=[creator_id])
    members: Mapped[list["GroupMember"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", order_by="GroupMember.joined_at"
    )
    tags: Mapped[list["GroupTag"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", order_by="GroupTag.name"
    )

    @property
    def admin_ids(self) -> set[int]:
        return {
            member.user_id
            for member in self.members
            if member.role in (ParticipantRole.ADMIN, ParticipantRole.CREATOR)
        }

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]


class GroupMember(Base):
    """Membership of a user in a group."""

    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        Index("ix_group_members_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[ParticipantRole] = mapped_column(
        _enum_column(ParticipantRole, "participant_role"),
        default=ParticipantRole.MEMBER,
        nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    group: Mapped[Group] = relationship(back_populates="members")
    user: Mapped[User] = relationship()


class GroupTag(Base):
    """Free-form label used to categorise groups."""

    __tablename__ = "group_tags"
    __table_args__ = (
        UniqueConstraint("group_id", "name", name="uq_group_tag"),
        Index("ix_group_tags_name", "name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    group: Mapped[Group] = relationship(back_populates="tags")


class ChatSession(Base):
    """Conversation aggregate holding participants and unread bookkeeping."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint("conversation_key", name="uq_chat_session_key"),
        Index("ix_chat_sessions_last_activity", "last_activity_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[ConversationKind] = mapped_column(
        _enum_column(ConversationKind, "conversation_kind"), nullable=False
    )
    conversation_key: Mapped[str] = mapped_column(String(128), nullable=False)
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), unique=True, nullable=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_message_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL", use_alter=True, name="fk_chat_session_last_message"),
        nullable=True,
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    participants: Mapped[list["ChatParticipant"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="ChatParticipant.id"
    )
    group: Mapped[Group | None] = relationship()
    last_message: Mapped["Message | None"] = relationship(
        foreign_keys=[last_message_id], post_update=True
    )

    def participant_for(self, user_id: int) -> "ChatParticipant | None":
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    @property
    def participant_ids(self) -> list[int]:
        return [participant.user_id for participant in self.participants]


class ChatParticipant(Base):
    """Per-user view of a chat session: role, unread counter and settings."""

    __tablename__ = "chat_participants"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_chat_participant"),
        Index("ix_chat_participants_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[ParticipantRole] = mapped_column(
        _enum_column(ParticipantRole, "participant_role"),
        default=ParticipantRole.MEMBER,
        nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    session: Mapped[ChatSession] = relationship(back_populates="participants")
    user: Mapped[User] = relationship()


class Message(Base):
    """Direct or group message with read, delivery and soft-delete state."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "(conversation_kind = 'private' AND receiver_id IS NOT NULL AND group_id IS NULL)"
            " OR (conversation_kind = 'group' AND group_id IS NOT NULL AND receiver_id IS NULL)",
            name="ck_message_target",
        ),
        Index("ix_messages_session_created_at", "session_id", "created_at"),
        Index("ix_messages_receiver_read", "receiver_id", "is_read"),
        Index("ix_messages_group_created_at", "group_id", "created_at"),
        Index("ix_messages_reply_to", "reply_to_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )
    conversation_kind: Mapped[ConversationKind] = mapped_column(
        _enum_column(ConversationKind, "conversation_kind"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    receiver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[MessageKind] = mapped_column(
        _enum_column(MessageKind, "message_kind"), default=MessageKind.TEXT, nullable=False
    )
    status: Mapped[MessageStatus] = mapped_column(
        _enum_column(MessageStatus, "message_status"), default=MessageStatus.SENDING, nullable=False
    )
    reply_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    forwarded_from_message_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    forwarded_from_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    file_name: Mapped[str | None] = mapped_column(String(255))
    file_mime_type: Mapped[str | None] = mapped_column(String(128))
    file_size: Mapped[int | None] = mapped_column(Integer)
    file_url: Mapped[str | None] = mapped_column(String(1024))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    sender: Mapped[User] = relationship(foreign_keys=[sender_id])
    receiver: Mapped[User | None] = relationship(foreign_keys=[receiver_id])
    group: Mapped[Group | None] = relationship()
    session: Mapped[ChatSession] = relationship(foreign_keys=[session_id])
    reply_to: Mapped["Message | None"] = relationship(
        remote_side="Message.id", foreign_keys=[reply_to_id]
    )
    receipts: Mapped[list["MessageReceipt"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )
    deletions: Mapped[list["MessageDeletion"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )

    @property
    def read_by(self) -> list[int]:
        if self.conversation_kind == ConversationKind.PRIVATE:
            return [self.receiver_id] if self.is_read and self.receiver_id is not None else []
        return sorted(receipt.user_id for receipt in self.receipts if receipt.read_at is not None)

    @property
    def delivered_to(self) -> list[int]:
        if self.conversation_kind == ConversationKind.PRIVATE:
            delivered = self.status in (MessageStatus.DELIVERED, MessageStatus.READ)
            return [self.receiver_id] if delivered and self.receiver_id is not None else []
        return sorted(
            receipt.user_id for receipt in self.receipts if receipt.delivered_at is not None
        )

    @property
    def deleted_for(self) -> list[int]:
        return sorted(deletion.user_id for deletion in self.deletions)


class MessageReceipt(Base):
    """Per-user delivery and read receipts for group messages."""

    __tablename__ = "message_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_receipt"),
        Index("ix_receipts_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    message: Mapped[Message] = relationship(back_populates="receipts")


class MessageDeletion(Base):
    """Marks a message as hidden for a single viewer."""

    __tablename__ = "message_deletions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_deletion"),
        Index("ix_message_deletions_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    message: Mapped[Message] = relationship(back_populates="deletions")
