"""Schemas related to groups."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, constr

from app.models import Group, GroupStatus, GroupType, ParticipantRole

from .common import Pagination
from .messages import GroupMessageCreate
from .users import PublicUser


class GroupSettingsPayload(BaseModel):
    allow_member_invites: bool = True
    require_admin_approval: bool = False
    allow_member_editing: bool = False
    slow_mode_seconds: int = Field(0, ge=0)


class GroupCreate(BaseModel):
    """Payload for creating a group."""

    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    description: constr(strip_whitespace=True, max_length=500) | None = None
    avatar_url: str | None = Field(default=None, max_length=512)
    type: GroupType = GroupType.PUBLIC
    max_members: int | None = Field(default=None, ge=2, le=10000)
    category: str | None = Field(default=None, max_length=100)
    tags: list[constr(strip_whitespace=True, min_length=1, max_length=50)] = Field(default_factory=list)
    settings: GroupSettingsPayload = Field(default_factory=GroupSettingsPayload)


class GroupUpdate(BaseModel):
    """Partial update of group information; omitted fields are left unchanged."""

    name: constr(strip_whitespace=True, min_length=1, max_length=100) | None = None
    description: constr(strip_whitespace=True, max_length=500) | None = None
    avatar_url: str | None = Field(default=None, max_length=512)
    type: GroupType | None = None
    max_members: int | None = Field(default=None, ge=2, le=10000)
    category: str | None = Field(default=None, max_length=100)
    tags: list[constr(strip_whitespace=True, min_length=1, max_length=50)] | None = None
    allow_member_invites: bool | None = None
    require_admin_approval: bool | None = None
    allow_member_editing: bool | None = None
    slow_mode_seconds: int | None = Field(default=None, ge=0)


class GroupMemberAdd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., validation_alias=AliasChoices("user_id", "userId"))
    role: ParticipantRole = ParticipantRole.MEMBER


class GroupRoleUpdate(BaseModel):
    role: ParticipantRole


class InviteCodeJoin(BaseModel):
    code: constr(strip_whitespace=True, min_length=1, max_length=32)


class GroupMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    user: PublicUser | None = None
    role: ParticipantRole
    joined_at: datetime
    last_seen_at: datetime


class GroupRead(BaseModel):
    """Serialized representation of a group."""

    id: int
    name: str
    description: str | None = None
    avatar_url: str | None = None
    creator_id: int
    type: GroupType
    status: GroupStatus
    max_members: int
    member_count: int
    message_count: int
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    settings: GroupSettingsPayload
    invite_code: str | None = None
    invite_link: str | None = None
    is_member: bool = False
    role: ParticipantRole | None = None
    created_at: datetime
    updated_at: datetime


class GroupDetail(GroupRead):
    members: list[GroupMemberRead] = Field(default_factory=list)
    admin_ids: list[int] = Field(default_factory=list)


class GroupList(BaseModel):
    groups: list[GroupRead]
    pagination: Pagination | None = None


def _group_fields(group: Group, viewer_id: int) -> dict:
    membership = next((member for member in group.members if member.user_id == viewer_id), None)
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "avatar_url": group.avatar_url,
        "creator_id": group.creator_id,
        "type": group.type,
        "status": group.status,
        "max_members": group.max_members,
        "member_count": len(group.members),
        "message_count": group.message_count,
        "category": group.category,
        "tags": group.tag_names,
        "settings": GroupSettingsPayload(
            allow_member_invites=group.allow_member_invites,
            require_admin_approval=group.require_admin_approval,
            allow_member_editing=group.allow_member_editing,
            slow_mode_seconds=group.slow_mode_seconds,
        ),
        # invite credentials are only disclosed to members
        "invite_code": group.invite_code if membership is not None else None,
        "invite_link": group.invite_link if membership is not None else None,
        "is_member": membership is not None,
        "role": membership.role if membership is not None else None,
        "created_at": group.created_at,
        "updated_at": group.updated_at,
    }


def serialize_group(group: Group, viewer_id: int) -> GroupRead:
    return GroupRead(**_group_fields(group, viewer_id))


def serialize_group_detail(group: Group, viewer_id: int) -> GroupDetail:
    return GroupDetail(
        **_group_fields(group, viewer_id),
        members=[GroupMemberRead.model_validate(member) for member in group.members],
        admin_ids=sorted(group.admin_ids),
    )


__all__ = [
    "GroupCreate",
    "GroupUpdate",
    "GroupMemberAdd",
    "GroupRoleUpdate",
    "InviteCodeJoin",
    "GroupMemberRead",
    "GroupRead",
    "GroupDetail",
    "GroupList",
    "GroupMessageCreate",
    "serialize_group",
    "serialize_group_detail",
]
