"""Persistence of direct and group messages with receipts and soft deletes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import (
    ChatParticipant,
    ChatSession,
    ConversationKind,
    Group,
    GroupMember,
    GroupStatus,
    Message,
    MessageDeletion,
    MessageKind,
    MessageReceipt,
    MessageStatus,
    ParticipantRole,
    utcnow,
)
from app.services import sessions as session_store
from app.services.identity import find_user_by_id
from app.services.pagination import validate_page

logger = logging.getLogger(__name__)

settings = get_settings()

_STATUS_RANK = {
    MessageStatus.SENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


@dataclass(slots=True)
class FileInfo:
    """Attachment metadata carried by non-text messages."""

    name: str | None = None
    mime_type: str | None = None
    size: int | None = None
    url: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "FileInfo | None":
        if not data:
            return None
        size = data.get("size")
        return cls(
            name=data.get("name") or data.get("fileName"),
            mime_type=data.get("mime_type") or data.get("mimeType"),
            size=int(size) if size is not None else None,
            url=data.get("url"),
        )


@dataclass(slots=True)
class ThreadNode:
    message: Message
    replies: list["ThreadNode"] = field(default_factory=list)
    truncated: bool = False


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def advance_status(message: Message, target: MessageStatus) -> bool:
    """Move *message* forward to *target*; never backwards, never out of ``failed``."""

    current = message.status
    if current == MessageStatus.FAILED:
        return False
    if target == MessageStatus.FAILED:
        if current != MessageStatus.SENDING:
            return False
        message.status = target
        return True
    if _STATUS_RANK[target] <= _STATUS_RANK[current]:
        return False
    message.status = target
    return True


def _coerce_kind(kind: MessageKind | str | None) -> MessageKind:
    if kind is None:
        return MessageKind.TEXT
    if isinstance(kind, MessageKind):
        return kind
    try:
        return MessageKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown message type '{kind}'") from None


def _validate_content(content: str | None, limit: int) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    if len(text) > limit:
        raise ValidationError(f"Message content cannot exceed {limit} characters")
    return text


def _message_query():
    return select(Message).options(
        selectinload(Message.receipts),
        selectinload(Message.deletions),
        selectinload(Message.sender),
    )


def get_message(message_id: int, db: Session) -> Message:
    message = db.execute(_message_query().where(Message.id == message_id)).scalar_one_or_none()
    if message is None:
        raise NotFoundError("Message not found")
    return message


def _group_member(group_id: int, user_id: int, db: Session) -> GroupMember | None:
    stmt = select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    return db.execute(stmt).scalar_one_or_none()


def can_view(message: Message, viewer_id: int, db: Session) -> bool:
    if viewer_id in message.deleted_for:
        return False
    if message.conversation_kind == ConversationKind.PRIVATE:
        return viewer_id in (message.sender_id, message.receiver_id)
    return _group_member(message.group_id, viewer_id, db) is not None


def _attach_extras(
    message: Message,
    chat_session: ChatSession,
    sender_id: int,
    db: Session,
    *,
    reply_to_id: int | None,
    forwarded_from_id: int | None,
    file_info: FileInfo | Mapping[str, Any] | None,
) -> None:
    if reply_to_id is not None:
        target = db.get(Message, reply_to_id)
        if target is None or target.session_id != chat_session.id:
            raise ValidationError("Reply target does not exist in this conversation")
        message.reply_to_id = target.id

    if forwarded_from_id is not None:
        original = db.get(Message, forwarded_from_id)
        if original is None or not can_view(original, sender_id, db):
            raise ValidationError("Forwarded message does not exist")
        message.forwarded_from_message_id = original.id
        message.forwarded_from_user_id = original.sender_id

    if isinstance(file_info, Mapping):
        file_info = FileInfo.from_mapping(file_info)
    if file_info is not None:
        message.file_name = file_info.name
        message.file_mime_type = file_info.mime_type
        message.file_size = file_info.size
        message.file_url = file_info.url


def create_direct_message(
    sender_id: int,
    receiver_id: int,
    content: str,
    kind: MessageKind | str | None,
    db: Session,
    *,
    reply_to_id: int | None = None,
    forwarded_from_id: int | None = None,
    file_info: FileInfo | Mapping[str, Any] | None = None,
) -> Message:
    """Persist a one-to-one message and bump the receiver's unread counter."""

    message_kind = _coerce_kind(kind)
    text = _validate_content(content, settings.direct_message_max_length)
    if sender_id == receiver_id:
        raise ValidationError("Cannot send a message to yourself")
    if find_user_by_id(receiver_id, db) is None:
        raise ValidationError("Receiver does not exist")
    if find_user_by_id(sender_id, db) is None:
        raise NotFoundError("Sender not found")

    chat_session = session_store.find_or_create_private_session(sender_id, receiver_id, db)
    receiver_view = chat_session.participant_for(receiver_id)
    if receiver_view is not None and receiver_view.blocked:
        raise ForbiddenError("This user is not accepting messages from you")

    message = Message(
        session_id=chat_session.id,
        conversation_kind=ConversationKind.PRIVATE,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=text,
        kind=message_kind,
        status=MessageStatus.SENDING,
    )
    _attach_extras(
        message,
        chat_session,
        sender_id,
        db,
        reply_to_id=reply_to_id,
        forwarded_from_id=forwarded_from_id,
        file_info=file_info,
    )
    db.add(message)
    db.flush()
    advance_status(message, MessageStatus.SENT)
    session_store.record_new_message(chat_session, message, db)
    db.commit()
    return get_message(message.id, db)


def _enforce_slow_mode(group: Group, member: GroupMember, db: Session) -> None:
    interval = group.slow_mode_seconds or 0
    if interval <= 0 or member.role in (ParticipantRole.ADMIN, ParticipantRole.CREATOR):
        return
    last_sent = db.execute(
        select(func.max(Message.created_at)).where(
            Message.group_id == group.id,
            Message.sender_id == member.user_id,
        )
    ).scalar_one_or_none()
    if last_sent is None:
        return
    remaining = _as_aware(last_sent) + timedelta(seconds=interval) - utcnow()
    if remaining.total_seconds() > 0:
        wait = int(remaining.total_seconds()) + 1
        raise ValidationError(f"Slow mode is enabled. Wait {wait} seconds before sending again")


def create_group_message(
    sender_id: int,
    group_id: int,
    content: str,
    kind: MessageKind | str | None,
    db: Session,
    *,
    reply_to_id: int | None = None,
    forwarded_from_id: int | None = None,
    file_info: FileInfo | Mapping[str, Any] | None = None,
) -> Message:
    """Persist a group message and bump every other member's unread counter."""

    group = db.get(Group, group_id)
    if group is None:
        raise NotFoundError("Group not found")
    if group.status != GroupStatus.ACTIVE:
        raise ValidationError("Group is not active")
    member = _group_member(group.id, sender_id, db)
    if member is None:
        raise ValidationError("You are not a member of this group")

    message_kind = _coerce_kind(kind)
    text = _validate_content(content, settings.group_message_max_length)
    _enforce_slow_mode(group, member, db)

    chat_session = session_store.find_or_create_group_session(group, db)
    message = Message(
        session_id=chat_session.id,
        conversation_kind=ConversationKind.GROUP,
        sender_id=sender_id,
        group_id=group.id,
        content=text,
        kind=message_kind,
        status=MessageStatus.SENDING,
    )
    _attach_extras(
        message,
        chat_session,
        sender_id,
        db,
        reply_to_id=reply_to_id,
        forwarded_from_id=forwarded_from_id,
        file_info=file_info,
    )
    db.add(message)
    db.flush()
    advance_status(message, MessageStatus.SENT)
    session_store.record_new_message(chat_session, message, db)
    db.execute(
        update(Group)
        .where(Group.id == group.id)
        .values(message_count=Group.message_count + 1)
        .execution_options(synchronize_session="fetch")
    )
    member.last_seen_at = utcnow()
    db.commit()
    return get_message(message.id, db)


def _not_deleted_for(viewer_id: int):
    return ~exists().where(
        MessageDeletion.message_id == Message.id,
        MessageDeletion.user_id == viewer_id,
    )


def resolve_conversation(
    viewer_id: int,
    db: Session,
    *,
    other_user_id: int | None = None,
    group_id: int | None = None,
) -> ChatSession | None:
    """Return the session for a history request after access checks."""

    if (other_user_id is None) == (group_id is None):
        raise ValidationError("Specify exactly one of other user or group")

    if other_user_id is not None:
        if other_user_id == viewer_id:
            raise ValidationError("Cannot open a conversation with yourself")
        if find_user_by_id(other_user_id, db) is None:
            raise NotFoundError("User not found")
        return session_store.get_private_session(viewer_id, other_user_id, db)

    group = db.get(Group, group_id)
    if group is None:
        raise NotFoundError("Group not found")
    if _group_member(group.id, viewer_id, db) is None:
        raise ForbiddenError("You are not a member of this group")
    return session_store.get_group_session(group.id, db)


def list_conversation_history(
    viewer_id: int,
    db: Session,
    *,
    other_user_id: int | None = None,
    group_id: int | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> tuple[list[Message], int]:
    """Return one page of a conversation, oldest first, and the total visible count.

    Page 1 holds the most recent messages.
    """

    if page_size is None:
        page_size = settings.chat_history_default_limit
    offset = validate_page(page, page_size, settings.chat_history_max_limit)

    chat_session = resolve_conversation(viewer_id, db, other_user_id=other_user_id, group_id=group_id)
    if chat_session is None:
        return [], 0

    conditions = (Message.session_id == chat_session.id, _not_deleted_for(viewer_id))
    total = db.execute(select(func.count(Message.id)).where(*conditions)).scalar_one()
    stmt = (
        _message_query()
        .where(*conditions)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    messages = list(db.execute(stmt).scalars())
    messages.reverse()
    return messages, total


def _other_member_ids(message: Message, db: Session) -> set[int]:
    stmt = select(GroupMember.user_id).where(GroupMember.group_id == message.group_id)
    return {user_id for user_id in db.execute(stmt).scalars() if user_id != message.sender_id}


def _receipt_for(message: Message, user_id: int) -> MessageReceipt | None:
    for receipt in message.receipts:
        if receipt.user_id == user_id:
            return receipt
    return None


def _promote_group_status(message: Message, db: Session) -> None:
    others = _other_member_ids(message, db)
    readers = {receipt.user_id for receipt in message.receipts if receipt.read_at is not None}
    if any(receipt.delivered_at is not None for receipt in message.receipts):
        advance_status(message, MessageStatus.DELIVERED)
    if others and others <= readers:
        advance_status(message, MessageStatus.READ)


def _apply_group_read(message: Message, reader_id: int, when: datetime) -> bool:
    receipt = _receipt_for(message, reader_id)
    if receipt is not None and receipt.read_at is not None:
        return False
    if receipt is None:
        receipt = MessageReceipt(user_id=reader_id)
        message.receipts.append(receipt)
    receipt.read_at = when
    if receipt.delivered_at is None:
        receipt.delivered_at = when
    return True


def _ensure_group_recipient(message: Message, user_id: int, db: Session) -> None:
    if message.sender_id == user_id:
        raise ForbiddenError("Cannot acknowledge your own message")
    if _group_member(message.group_id, user_id, db) is None:
        raise ForbiddenError("You are not a member of this group")


def mark_as_read(message_id: int, reader_id: int, db: Session) -> tuple[Message, bool]:
    """Record that *reader_id* read the message; repeat calls change nothing."""

    message = get_message(message_id, db)
    now = utcnow()

    if message.conversation_kind == ConversationKind.PRIVATE:
        if message.receiver_id != reader_id:
            raise ForbiddenError("Only the receiver can mark this message as read")
        changed = not message.is_read
        if changed:
            message.is_read = True
            message.read_at = now
            advance_status(message, MessageStatus.READ)
    elif message.sender_id == reader_id:
        # senders are never listed in their own read_by
        if _group_member(message.group_id, reader_id, db) is None:
            raise ForbiddenError("You are not a member of this group")
        changed = False
    else:
        _ensure_group_recipient(message, reader_id, db)
        changed = _apply_group_read(message, reader_id, now)
        if changed:
            db.flush()
            _promote_group_status(message, db)

    chat_session = db.get(ChatSession, message.session_id)
    if chat_session is not None and chat_session.participant_for(reader_id) is not None:
        session_store.recount_unread(chat_session, reader_id, db)
    db.commit()
    return get_message(message.id, db), changed


def mark_as_delivered(message_id: int, user_id: int, db: Session) -> tuple[Message, bool]:
    message = get_message(message_id, db)

    if message.conversation_kind == ConversationKind.PRIVATE:
        if message.receiver_id != user_id:
            raise ForbiddenError("Only the receiver can acknowledge delivery")
        changed = advance_status(message, MessageStatus.DELIVERED)
    else:
        _ensure_group_recipient(message, user_id, db)
        receipt = _receipt_for(message, user_id)
        changed = receipt is None or receipt.delivered_at is None
        if receipt is None:
            receipt = MessageReceipt(user_id=user_id)
            message.receipts.append(receipt)
        if receipt.delivered_at is None:
            receipt.delivered_at = utcnow()
        advance_status(message, MessageStatus.DELIVERED)

    if changed:
        db.commit()
        message = get_message(message.id, db)
    return message, changed


def mark_pending_delivered(user_id: int, db: Session) -> list[Message]:
    """Mark every queued direct message addressed to *user_id* as delivered."""

    stmt = _message_query().where(
        Message.conversation_kind == ConversationKind.PRIVATE,
        Message.receiver_id == user_id,
        Message.status == MessageStatus.SENT,
    ).order_by(Message.created_at, Message.id)
    pending = list(db.execute(stmt).scalars())
    for message in pending:
        advance_status(message, MessageStatus.DELIVERED)
    if pending:
        db.commit()
        logger.debug("Marked %s queued messages delivered for user %s", len(pending), user_id)
    return pending


def mark_conversation_read(viewer_id: int, chat_session: ChatSession, db: Session) -> int:
    """Read every unread message for *viewer_id* in the session and zero the counter."""

    participant = chat_session.participant_for(viewer_id)
    if participant is None:
        raise ForbiddenError("You are not a participant of this chat session")
    now = utcnow()

    if chat_session.kind == ConversationKind.PRIVATE:
        stmt = select(Message).where(
            Message.session_id == chat_session.id,
            Message.receiver_id == viewer_id,
            Message.is_read.is_(False),
        )
        unread = list(db.execute(stmt).scalars())
        for message in unread:
            message.is_read = True
            message.read_at = now
            advance_status(message, MessageStatus.READ)
        marked = len(unread)
    else:
        read_receipt = exists().where(
            MessageReceipt.message_id == Message.id,
            MessageReceipt.user_id == viewer_id,
            MessageReceipt.read_at.is_not(None),
        )
        stmt = (
            _message_query()
            .where(
                Message.session_id == chat_session.id,
                Message.sender_id != viewer_id,
                Message.created_at >= participant.joined_at,
                ~read_receipt,
            )
        )
        unread = list(db.execute(stmt).scalars())
        for message in unread:
            _apply_group_read(message, viewer_id, now)
        db.flush()
        for message in unread:
            _promote_group_status(message, db)
        marked = len(unread)

    session_store.reset_unread(chat_session, viewer_id, db)
    db.commit()
    return marked


def soft_delete(message_id: int, requester_id: int, db: Session) -> None:
    """Hide a message from its sender's view; other participants keep it."""

    message = get_message(message_id, db)
    if message.sender_id != requester_id:
        raise ForbiddenError("You can only delete your own messages")
    if requester_id not in message.deleted_for:
        message.deletions.append(MessageDeletion(user_id=requester_id))
    if not message.is_deleted:
        message.is_deleted = True
        message.deleted_at = utcnow()
    db.commit()


def edit_message(message_id: int, editor_id: int, content: str, db: Session) -> Message:
    message = get_message(message_id, db)
    if message.sender_id != editor_id:
        raise ForbiddenError("You can only edit your own messages")
    if message.is_deleted:
        raise ValidationError("Deleted messages cannot be edited")
    limit = (
        settings.direct_message_max_length
        if message.conversation_kind == ConversationKind.PRIVATE
        else settings.group_message_max_length
    )
    message.content = _validate_content(content, limit)
    message.is_edited = True
    message.edited_at = utcnow()
    db.commit()
    return get_message(message.id, db)


def count_unread_for_user(user_id: int, db: Session) -> int:
    """Sum of the user's per-session counters."""

    stmt = select(func.coalesce(func.sum(ChatParticipant.unread_count), 0)).where(
        ChatParticipant.user_id == user_id
    )
    return int(db.execute(stmt).scalar_one())


def count_unread_messages(user_id: int, db: Session, *, session_id: int | None = None) -> int:
    """Count unread messages from the message rows themselves."""

    return int(db.execute(session_store.unread_messages_query(user_id, session_id=session_id)).scalar_one())


def load_reply_thread(message_id: int, viewer_id: int, db: Session) -> ThreadNode:
    """Materialise the reply tree below a message breadth first.

    Traversal uses a frontier and a visited set, so cycles or very deep
    chains cannot blow the stack. At most ``reply_thread_max_nodes`` messages
    are loaded; ``truncated`` is set on the root when the limit cut it short.
    """

    root_message = get_message(message_id, db)
    if not can_view(root_message, viewer_id, db):
        raise ForbiddenError("You cannot view this message")

    limit = max(settings.reply_thread_max_nodes, 1)
    root = ThreadNode(message=root_message)
    nodes = {root_message.id: root}
    visited = {root_message.id}
    frontier = [root_message.id]

    while frontier and len(visited) < limit:
        stmt = (
            _message_query()
            .where(Message.reply_to_id.in_(frontier), _not_deleted_for(viewer_id))
            .order_by(Message.created_at, Message.id)
        )
        next_frontier: list[int] = []
        for child in db.execute(stmt).scalars():
            if child.id in visited:
                continue
            if len(visited) >= limit:
                root.truncated = True
                break
            visited.add(child.id)
            node = ThreadNode(message=child)
            nodes[child.id] = node
            nodes[child.reply_to_id].replies.append(node)
            next_frontier.append(child.id)
        frontier = next_frontier

    if frontier and len(visited) >= limit:
        root.truncated = True
    return root
