"""HTTP endpoints for groups and group conversations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_gateway
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import (
    GroupCreate,
    GroupDetail,
    GroupList,
    GroupMemberAdd,
    GroupMessageCreate,
    GroupRead,
    GroupRoleUpdate,
    GroupUpdate,
    InviteCodeJoin,
    MessageHistory,
    MessageRead,
    Pagination,
    serialize_group,
    serialize_group_detail,
    serialize_message,
)
from app.services import groups as group_directory
from app.services import messages as message_store
from app.services import sessions as session_store
from parley.realtime import gateway as realtime_gateway

router = APIRouter(prefix="/groups", tags=["groups"])

settings = get_settings()


@router.post("", response_model=GroupDetail, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    options = group_directory.GroupOptions(
        type=payload.type,
        max_members=payload.max_members,
        avatar_url=payload.avatar_url,
        category=payload.category,
        tags=list(payload.tags),
        allow_member_invites=payload.settings.allow_member_invites,
        require_admin_approval=payload.settings.require_admin_approval,
        allow_member_editing=payload.settings.allow_member_editing,
        slow_mode_seconds=payload.settings.slow_mode_seconds,
    )
    group = group_directory.create_group(
        current_user.id, payload.name, payload.description, db, options=options
    )
    return serialize_group_detail(group, current_user.id)


@router.get("/mine", response_model=GroupList)
def list_my_groups(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupList:
    groups = group_directory.list_user_groups(current_user.id, db)
    return GroupList(groups=[serialize_group(group, current_user.id) for group in groups])


@router.get("/search", response_model=GroupList)
def search_groups(
    q: str | None = Query(None, description="Substring matched against name and description"),
    type: str | None = Query(None),
    category: str | None = Query(None),
    tags: str | None = Query(None, description="Comma separated tag names"),
    page: int = Query(1),
    limit: int = Query(settings.group_search_default_limit),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupList:
    tag_list = [tag for tag in (tags or "").split(",") if tag.strip()]
    groups, total = group_directory.search_groups(
        db,
        query=q,
        group_type=type,
        category=category,
        tags=tag_list,
        page=page,
        page_size=limit,
    )
    return GroupList(
        groups=[serialize_group(group, current_user.id) for group in groups],
        pagination=Pagination.build(page, limit, total),
    )


@router.post("/join", response_model=GroupDetail)
def join_group_by_code(
    payload: InviteCodeJoin,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.join_by_invite_code(payload.code, current_user.id, db)
    return serialize_group_detail(group, current_user.id)


@router.get("/{group_id}", response_model=GroupDetail)
def get_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.get_visible_group(group_id, current_user.id, db)
    return serialize_group_detail(group, current_user.id)


@router.patch("/{group_id}", response_model=GroupDetail)
def update_group(
    group_id: int,
    payload: GroupUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    changes = payload.model_dump(exclude_unset=True)
    group = group_directory.update_group(group_id, current_user.id, changes, db)
    return serialize_group_detail(group, current_user.id)


@router.delete("/{group_id}", response_model=GroupRead)
def deactivate_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupRead:
    group = group_directory.deactivate_group(group_id, current_user.id, db)
    return serialize_group(group, current_user.id)


@router.post("/{group_id}/join", response_model=GroupDetail)
def join_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.join_group(group_id, current_user.id, db)
    return serialize_group_detail(group, current_user.id)


@router.post(
    "/{group_id}/leave",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def leave_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    group_directory.leave_group(group_id, current_user.id, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/members", response_model=GroupDetail)
def add_group_member(
    group_id: int,
    payload: GroupMemberAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.get_group(group_id, db)
    group = group_directory.add_member_as(group, current_user.id, payload.user_id, db, role=payload.role)
    return serialize_group_detail(group, current_user.id)


@router.delete("/{group_id}/members/{user_id}", response_model=GroupDetail)
def remove_group_member(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.get_group(group_id, db)
    group = group_directory.remove_member_as(group, current_user.id, user_id, db)
    return serialize_group_detail(group, current_user.id)


@router.patch("/{group_id}/members/{user_id}", response_model=GroupDetail)
def change_member_role(
    group_id: int,
    user_id: int,
    payload: GroupRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupDetail:
    group = group_directory.get_group(group_id, db)
    group = group_directory.change_role_as(group, current_user.id, user_id, payload.role, db)
    return serialize_group_detail(group, current_user.id)


@router.post("/{group_id}/invite/regenerate", response_model=GroupRead)
def regenerate_invite(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GroupRead:
    group = group_directory.regenerate_invite_code(group_id, current_user.id, db)
    return serialize_group(group, current_user.id)


@router.post("/{group_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_group_message(
    group_id: int,
    payload: GroupMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> MessageRead:
    message = message_store.create_group_message(
        current_user.id,
        group_id,
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


@router.get("/{group_id}/messages", response_model=MessageHistory)
async def get_group_history(
    group_id: int,
    page: int = Query(1),
    limit: int = Query(settings.chat_history_default_limit),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> MessageHistory:
    messages, total = message_store.list_conversation_history(
        current_user.id, db, group_id=group_id, page=page, page_size=limit
    )
    chat_session = session_store.get_group_session(group_id, db)
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
