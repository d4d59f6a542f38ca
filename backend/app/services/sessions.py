"""Chat session bookkeeping: conversation lookup, unread counters and settings."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import (
    ChatParticipant,
    ChatSession,
    ConversationKind,
    Group,
    Message,
    MessageReceipt,
    ParticipantRole,
    SessionSetting,
    utcnow,
)
from app.services.pagination import validate_page

logger = logging.getLogger(__name__)

settings = get_settings()


def conversation_key(user_a: int, user_b: int) -> str:
    low, high = sorted((user_a, user_b))
    return f"{low}_{high}"


def group_conversation_key(group_id: int) -> str:
    return f"group_{group_id}"


def _get_by_key(key: str, db: Session) -> ChatSession | None:
    stmt = (
        select(ChatSession)
        .where(ChatSession.conversation_key == key)
        .options(selectinload(ChatSession.participants))
    )
    return db.execute(stmt).scalar_one_or_none()


def get_private_session(user_a: int, user_b: int, db: Session) -> ChatSession | None:
    return _get_by_key(conversation_key(user_a, user_b), db)


def get_group_session(group_id: int, db: Session) -> ChatSession | None:
    return _get_by_key(group_conversation_key(group_id), db)


def find_or_create_private_session(user_a: int, user_b: int, db: Session) -> ChatSession:
    """Return the single session shared by two users, creating it on first use.

    The new row is committed immediately. A concurrent creator loses on the
    unique conversation key, rolls back and reads the winner's row.
    """

    if user_a == user_b:
        raise ValidationError("Cannot open a conversation with yourself")

    key = conversation_key(user_a, user_b)
    existing = _get_by_key(key, db)
    if existing is not None:
        return existing

    low, high = sorted((user_a, user_b))
    chat_session = ChatSession(
        kind=ConversationKind.PRIVATE,
        conversation_key=key,
        name=key,
        created_by_id=user_a,
    )
    chat_session.participants = [
        ChatParticipant(user_id=low),
        ChatParticipant(user_id=high),
    ]
    db.add(chat_session)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = _get_by_key(key, db)
        if winner is None:
            raise
        logger.debug("Private session %s was created concurrently", key)
        return winner

    db.refresh(chat_session)
    return chat_session


def find_or_create_group_session(group: Group, db: Session) -> ChatSession:
    """Return the session backing a group, mirroring its current members."""

    existing = get_group_session(group.id, db)
    if existing is not None:
        return existing

    chat_session = ChatSession(
        kind=ConversationKind.GROUP,
        conversation_key=group_conversation_key(group.id),
        group_id=group.id,
        name=group.name,
        created_by_id=group.creator_id,
    )
    chat_session.participants = [
        ChatParticipant(user_id=member.user_id, role=member.role, joined_at=member.joined_at)
        for member in group.members
    ]
    db.add(chat_session)
    db.flush()
    return chat_session


def get_session_for_user(session_id: int, user_id: int, db: Session) -> ChatSession:
    stmt = (
        select(ChatSession)
        .where(ChatSession.id == session_id)
        .options(selectinload(ChatSession.participants))
    )
    chat_session = db.execute(stmt).scalar_one_or_none()
    if chat_session is None:
        raise NotFoundError("Chat session not found")
    if chat_session.participant_for(user_id) is None:
        raise ForbiddenError("You are not a participant of this chat session")
    return chat_session


def record_new_message(chat_session: ChatSession, message: Message, db: Session) -> None:
    """Point the session at *message* and bump every other participant's counter.

    Runs inside the caller's transaction; the caller commits.
    """

    chat_session.last_message_id = message.id
    chat_session.last_activity_at = message.created_at
    db.execute(
        update(ChatParticipant)
        .where(
            ChatParticipant.session_id == chat_session.id,
            ChatParticipant.user_id != message.sender_id,
        )
        .values(unread_count=ChatParticipant.unread_count + 1, archived=False)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()


def reset_unread(chat_session: ChatSession, user_id: int, db: Session) -> None:
    participant = chat_session.participant_for(user_id)
    if participant is None:
        raise ForbiddenError("You are not a participant of this chat session")
    participant.unread_count = 0
    participant.last_seen_at = utcnow()
    db.flush()


def unread_messages_query(user_id: int, *, session_id: int | None = None):
    """Build a ``SELECT count(*)`` over the messages *user_id* has not read."""

    read_receipt = exists().where(
        MessageReceipt.message_id == Message.id,
        MessageReceipt.user_id == user_id,
        MessageReceipt.read_at.is_not(None),
    )
    private_unread = and_(
        Message.conversation_kind == ConversationKind.PRIVATE,
        Message.receiver_id == user_id,
        Message.is_read.is_(False),
    )
    group_unread = and_(
        Message.conversation_kind == ConversationKind.GROUP,
        Message.sender_id != user_id,
        Message.created_at >= ChatParticipant.joined_at,
        ~read_receipt,
    )
    stmt = (
        select(func.count(Message.id))
        .join(
            ChatParticipant,
            and_(
                ChatParticipant.session_id == Message.session_id,
                ChatParticipant.user_id == user_id,
            ),
        )
        .where(or_(private_unread, group_unread))
    )
    if session_id is not None:
        stmt = stmt.where(Message.session_id == session_id)
    return stmt


def recount_unread(chat_session: ChatSession, user_id: int, db: Session) -> int:
    """Overwrite the participant's counter with the count derived from messages."""

    participant = chat_session.participant_for(user_id)
    if participant is None:
        raise ForbiddenError("You are not a participant of this chat session")
    db.flush()
    actual = db.execute(unread_messages_query(user_id, session_id=chat_session.id)).scalar_one()
    if participant.unread_count != actual:
        logger.info(
            "Reconciled unread counter for user %s in session %s: %s -> %s",
            user_id,
            chat_session.id,
            participant.unread_count,
            actual,
        )
    participant.unread_count = actual
    db.flush()
    return actual


def list_sessions_for_user(
    user_id: int,
    db: Session,
    *,
    page: int = 1,
    page_size: int | None = None,
    include_archived: bool = False,
) -> tuple[list[ChatSession], int]:
    """Return the user's sessions, most recently active first, plus the total."""

    if page_size is None:
        page_size = settings.chat_sessions_default_limit
    offset = validate_page(page, page_size, settings.chat_sessions_max_limit)

    conditions = [ChatParticipant.user_id == user_id]
    if not include_archived:
        conditions.append(ChatParticipant.archived.is_(False))

    total = db.execute(
        select(func.count(ChatSession.id))
        .join(ChatParticipant, ChatParticipant.session_id == ChatSession.id)
        .where(*conditions)
    ).scalar_one()

    stmt = (
        select(ChatSession)
        .join(ChatParticipant, ChatParticipant.session_id == ChatSession.id)
        .where(*conditions)
        .options(
            selectinload(ChatSession.participants).selectinload(ChatParticipant.user),
            selectinload(ChatSession.last_message),
        )
        .order_by(ChatSession.last_activity_at.desc(), ChatSession.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    return list(db.execute(stmt).scalars().unique()), total


def toggle_setting(chat_session: ChatSession, user_id: int, setting_name: str, db: Session) -> ChatSession:
    """Flip one of the caller's per-session flags and persist it."""

    try:
        setting = SessionSetting(setting_name)
    except ValueError:
        allowed = ", ".join(item.value for item in SessionSetting)
        raise ValidationError(f"Unknown setting '{setting_name}'. Expected one of: {allowed}") from None

    participant = chat_session.participant_for(user_id)
    if participant is None:
        raise ForbiddenError("You are not a participant of this chat session")

    setattr(participant, setting.value, not getattr(participant, setting.value))
    db.commit()
    db.refresh(chat_session)
    return chat_session


def add_participant(
    chat_session: ChatSession,
    user_id: int,
    db: Session,
    role: ParticipantRole = ParticipantRole.MEMBER,
) -> ChatParticipant:
    participant = chat_session.participant_for(user_id)
    if participant is not None:
        return participant
    participant = ChatParticipant(user_id=user_id, role=role)
    chat_session.participants.append(participant)
    db.flush()
    return participant


def remove_participant(chat_session: ChatSession, user_id: int, db: Session) -> bool:
    participant = chat_session.participant_for(user_id)
    if participant is None:
        return False
    chat_session.participants.remove(participant)
    db.flush()
    return True


def update_participant_role(
    chat_session: ChatSession, user_id: int, role: ParticipantRole, db: Session
) -> ChatParticipant | None:
    participant = chat_session.participant_for(user_id)
    if participant is None:
        return None
    participant.role = role
    db.flush()
    return participant


def other_participant_ids(chat_session: ChatSession, user_id: int) -> Sequence[int]:
    return [candidate for candidate in chat_session.participant_ids if candidate != user_id]
