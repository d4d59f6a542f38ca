"""HTTP endpoints for direct messages and chat sessions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_gateway
from app.config import get_settings
from app.database import get_db
from app.models import User, utcnow
from app.schemas import (
    ChatSessionList,
    ChatSessionRead,
    DirectMessageCreate,
    MessageHistory,
    MessageRead,
    MessageUpdate,
    Pagination,
    ReadReceiptRead,
    RecountRead,
    ReplyThreadRead,
    UnreadCountRead,
    serialize_message,
    serialize_session,
    serialize_thread,
)
from app.services import messages as message_store
from app.services import sessions as session_store
from parley.realtime import gateway as realtime_gateway

router = APIRouter(prefix="/messages", tags=["messages"])

settings = get_settings()


@router.post("/send", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_direct_message(
    payload: DirectMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> MessageRead:
    """Store a direct message and push it to the receiver when online."""

    message = message_store.create_direct_message(
        current_user.id,
        payload.receiver_id,
        payload.content,
        payload.message_type,
        db,
        reply_to_id=payload.reply_to,
        forwarded_from_id=payload.forwarded_from,
        file_info=payload.file_info.model_dump() if payload.file_info is not None else None,
    )
    outbound = realtime_gateway.OutboundMessage.from_message(message, db)
    await gateway.publish_message(outbound)
    db.expire_all()
    return serialize_message(message_store.get_message(message.id, db))


@router.get("/chat/{target_user_id}", response_model=MessageHistory)
async def get_chat_history(
    target_user_id: int,
    page: int = Query(1),
    limit: int = Query(settings.chat_history_default_limit),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> MessageHistory:
    """Return one page of the conversation with another user and mark it read."""

    messages, total = message_store.list_conversation_history(
        current_user.id, db, other_user_id=target_user_id, page=page, page_size=limit
    )
    chat_session = session_store.get_private_session(current_user.id, target_user_id, db)
    if chat_session is not None:
        message_store.mark_conversation_read(current_user.id, chat_session, db)
        db.expire_all()
        await gateway.notify_unread_count(
            current_user.id, message_store.count_unread_for_user(current_user.id, db)
        )

    return MessageHistory(
        messages=[serialize_message(message) for message in messages],
        pagination=Pagination.build(page, limit, total),
        session_id=chat_session.id if chat_session is not None else None,
    )


@router.get("/sessions", response_model=ChatSessionList)
def list_chat_sessions(
    page: int = Query(1),
    limit: int = Query(settings.chat_sessions_default_limit),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChatSessionList:
    sessions, total = session_store.list_sessions_for_user(
        current_user.id, db, page=page, page_size=limit, include_archived=include_archived
    )
    return ChatSessionList(
        sessions=[serialize_session(item, current_user.id) for item in sessions],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/sessions/{session_id}", response_model=ChatSessionRead)
def get_chat_session(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChatSessionRead:
    chat_session = session_store.get_session_for_user(session_id, current_user.id, db)
    return serialize_session(chat_session, current_user.id)


@router.post("/sessions/{session_id}/settings/{setting}", response_model=ChatSessionRead)
def toggle_session_setting(
    session_id: int,
    setting: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChatSessionRead:
    """Flip one of ``muted``, ``blocked``, ``pinned`` or ``archived`` for the caller."""

    chat_session = session_store.get_session_for_user(session_id, current_user.id, db)
    chat_session = session_store.toggle_setting(chat_session, current_user.id, setting, db)
    return serialize_session(chat_session, current_user.id)


@router.post("/sessions/{session_id}/recount", response_model=RecountRead)
def recount_session_unread(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RecountRead:
    chat_session = session_store.get_session_for_user(session_id, current_user.id, db)
    count = session_store.recount_unread(chat_session, current_user.id, db)
    db.commit()
    return RecountRead(session_id=chat_session.id, unread_count=count)


@router.get("/unread/count", response_model=UnreadCountRead)
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnreadCountRead:
    return UnreadCountRead(unread_count=message_store.count_unread_for_user(current_user.id, db))


@router.delete(
    "/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Hide one of the caller's own messages from the caller's history."""

    message_store.soft_delete(message_id, current_user.id, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{message_id}/read", response_model=ReadReceiptRead)
async def mark_message_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> ReadReceiptRead:
    message, changed = message_store.mark_as_read(message_id, current_user.id, db)
    if changed:
        read_at = (message.read_at or utcnow()).isoformat()
        await gateway.notify_read(message.sender_id, message.id, message.read_by, read_at, current_user.id)
        await gateway.notify_unread_count(
            current_user.id, message_store.count_unread_for_user(current_user.id, db)
        )
    return ReadReceiptRead(message=serialize_message(message), changed=changed)


@router.patch("/{message_id}", response_model=MessageRead)
def edit_message(
    message_id: int,
    payload: MessageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message = message_store.edit_message(message_id, current_user.id, payload.content, db)
    return serialize_message(message)


@router.get("/{message_id}/thread", response_model=ReplyThreadRead)
def get_reply_thread(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ReplyThreadRead:
    root = message_store.load_reply_thread(message_id, current_user.id, db)
    return serialize_thread(root)
