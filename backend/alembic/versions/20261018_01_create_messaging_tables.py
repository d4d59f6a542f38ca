"""create messaging tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


CONVERSATION_KIND = sa.Enum("private", "group", name="conversation_kind")
PARTICIPANT_ROLE = sa.Enum("member", "admin", "creator", name="participant_role")
GROUP_TYPE = sa.Enum("public", "private", "secret", name="group_type")
GROUP_STATUS = sa.Enum("active", "inactive", "suspended", "deleted", name="group_status")
MESSAGE_KIND = sa.Enum("text", "image", "file", "audio", "system", name="message_kind")
MESSAGE_STATUS = sa.Enum("sending", "sent", "delivered", "read", "failed", name="message_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("creator_id", sa.Integer(), nullable=False),
        sa.Column("type", GROUP_TYPE, nullable=False, server_default="public"),
        sa.Column("status", GROUP_STATUS, nullable=False, server_default="active"),
        sa.Column("max_members", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("invite_code", sa.String(length=32), nullable=False),
        sa.Column("invite_link", sa.String(length=512), nullable=False),
        sa.Column("allow_member_invites", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("require_admin_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_member_editing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("slow_mode_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["creator_id"], ["users.id"]),
        sa.UniqueConstraint("invite_code", name="uq_groups_invite_code"),
        sa.UniqueConstraint("invite_link", name="uq_groups_invite_link"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", PARTICIPANT_ROLE, nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_group_members_user", "group_members", ["user_id"])

    op.create_table(
        "group_tags",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("group_id", "name", name="uq_group_tag"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_group_tags_name", "group_tags", ["name"])

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("kind", CONVERSATION_KIND, nullable=False),
        sa.Column("conversation_key", sa.String(length=128), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("last_message_id", sa.Integer(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("conversation_key", name="uq_chat_session_key"),
        sa.UniqueConstraint("group_id", name="uq_chat_session_group"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_chat_sessions_last_activity", "chat_sessions", ["last_activity_at"])

    op.create_table(
        "chat_participants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", PARTICIPANT_ROLE, nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["session_id"], ["chat_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_chat_participant"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_chat_participants_user", "chat_participants", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("conversation_kind", CONVERSATION_KIND, nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("receiver_id", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("kind", MESSAGE_KIND, nullable=False, server_default="text"),
        sa.Column("status", MESSAGE_STATUS, nullable=False, server_default="sending"),
        sa.Column("reply_to_id", sa.Integer(), nullable=True),
        sa.Column("forwarded_from_message_id", sa.Integer(), nullable=True),
        sa.Column("forwarded_from_user_id", sa.Integer(), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_mime_type", sa.String(length=128), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("file_url", sa.String(length=1024), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["chat_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reply_to_id"], ["messages.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["forwarded_from_message_id"], ["messages.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["forwarded_from_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "(conversation_kind = 'private' AND receiver_id IS NOT NULL AND group_id IS NULL)"
            " OR (conversation_kind = 'group' AND group_id IS NOT NULL AND receiver_id IS NULL)",
            name="ck_message_target",
        ),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_messages_session_created_at", "messages", ["session_id", "created_at"])
    op.create_index("ix_messages_receiver_read", "messages", ["receiver_id", "is_read"])
    op.create_index("ix_messages_group_created_at", "messages", ["group_id", "created_at"])
    op.create_index("ix_messages_reply_to", "messages", ["reply_to_id"])

    op.create_foreign_key(
        "fk_chat_session_last_message",
        "chat_sessions",
        "messages",
        ["last_message_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "message_receipts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_receipt"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_receipts_user", "message_receipts", ["user_id"])

    op.create_table(
        "message_deletions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_deletion"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_message_deletions_user", "message_deletions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_message_deletions_user", table_name="message_deletions")
    op.drop_table("message_deletions")
    op.drop_index("ix_receipts_user", table_name="message_receipts")
    op.drop_table("message_receipts")
    op.drop_constraint("fk_chat_session_last_message", "chat_sessions", type_="foreignkey")
    op.drop_index("ix_messages_reply_to", table_name="messages")
    op.drop_index("ix_messages_group_created_at", table_name="messages")
    op.drop_index("ix_messages_receiver_read", table_name="messages")
    op.drop_index("ix_messages_session_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_chat_participants_user", table_name="chat_participants")
    op.drop_table("chat_participants")
    op.drop_index("ix_chat_sessions_last_activity", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_index("ix_group_tags_name", table_name="group_tags")
    op.drop_table("group_tags")
    op.drop_index("ix_group_members_user", table_name="group_members")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        MESSAGE_STATUS,
        MESSAGE_KIND,
        GROUP_STATUS,
        GROUP_TYPE,
        PARTICIPANT_ROLE,
        CONVERSATION_KIND,
    ):
        enum.drop(bind, checkfirst=True)
