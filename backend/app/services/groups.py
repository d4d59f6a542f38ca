"""Group directory: membership, roles, invite codes and discovery."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.exceptions import (
    CapacityError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models import (
    Group,
    GroupMember,
    GroupStatus,
    GroupTag,
    GroupType,
    ParticipantRole,
)
from app.services import sessions as session_store
from app.services.identity import find_user_by_id
from app.services.pagination import validate_page

logger = logging.getLogger(__name__)

settings = get_settings()

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
MIN_GROUP_SIZE = 2
MAX_GROUP_SIZE = 10000
ADMIN_ROLES = (ParticipantRole.ADMIN, ParticipantRole.CREATOR)

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "avatar_url",
    "type",
    "max_members",
    "category",
    "tags",
    "allow_member_invites",
    "require_admin_approval",
    "allow_member_editing",
    "slow_mode_seconds",
)
_ADMIN_ONLY_FIELDS = (
    "type",
    "max_members",
    "allow_member_invites",
    "require_admin_approval",
    "allow_member_editing",
    "slow_mode_seconds",
)
# an explicit null leaves these untouched
_REQUIRED_FIELDS = ("name", "tags") + _ADMIN_ONLY_FIELDS


@dataclass(slots=True)
class GroupOptions:
    """Optional attributes accepted when a group is created."""

    type: GroupType = GroupType.PUBLIC
    max_members: int | None = None
    avatar_url: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    allow_member_invites: bool = True
    require_admin_approval: bool = False
    allow_member_editing: bool = False
    slow_mode_seconds: int = 0


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Group name is required")
    if len(cleaned) > 100:
        raise ValidationError("Group name cannot exceed 100 characters")
    return cleaned


def _clean_description(description: str | None) -> str | None:
    if description is None:
        return None
    cleaned = description.strip()
    if len(cleaned) > 500:
        raise ValidationError("Group description cannot exceed 500 characters")
    return cleaned or None


def _clean_max_members(value: int | None) -> int:
    if value is None:
        return settings.group_default_max_members
    if value < MIN_GROUP_SIZE or value > MAX_GROUP_SIZE:
        raise ValidationError(f"Max members must be between {MIN_GROUP_SIZE} and {MAX_GROUP_SIZE}")
    return value


def _clean_slow_mode(value: int | None) -> int:
    if value is None:
        return 0
    if value < 0:
        raise ValidationError("Slow mode interval cannot be negative")
    return value


def _clean_tags(tags: list[str] | None) -> list[str]:
    cleaned: list[str] = []
    for tag in tags or []:
        value = tag.strip().lower()
        if not value:
            continue
        if len(value) > 50:
            raise ValidationError("Tags cannot exceed 50 characters")
        if value not in cleaned:
            cleaned.append(value)
    return cleaned


def _coerce_type(value: GroupType | str) -> GroupType:
    try:
        return GroupType(value)
    except ValueError:
        raise ValidationError(f"Unknown group type '{value}'") from None


def _coerce_role(value: ParticipantRole | str) -> ParticipantRole:
    try:
        return ParticipantRole(value)
    except ValueError:
        raise ValidationError(f"Unknown role '{value}'") from None


def invite_link_for(code: str) -> str:
    return f"{settings.frontend_url}/group/join/{code}"


def _generate_invite_code(db: Session) -> str:
    length = settings.group_invite_code_length
    for _ in range(settings.group_invite_code_attempts):
        candidate = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))
        existing = db.execute(
            select(Group.id).where(
                or_(Group.invite_code == candidate, Group.invite_link == invite_link_for(candidate))
            )
        ).scalar_one_or_none()
        if existing is None:
            return candidate
    raise ConflictError("Unable to generate unique invite code")


def _group_query():
    return select(Group).options(
        selectinload(Group.members).selectinload(GroupMember.user),
        selectinload(Group.tags),
        selectinload(Group.creator),
    )


def get_group(group_id: int, db: Session) -> Group:
    group = db.execute(_group_query().where(Group.id == group_id)).scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group not found")
    return group


def get_visible_group(group_id: int, viewer_id: int, db: Session) -> Group:
    """Load a group for display; deleted groups and foreign secret groups are hidden."""

    group = get_group(group_id, db)
    if group.status == GroupStatus.DELETED:
        raise NotFoundError("Group not found")
    if group.type == GroupType.SECRET and not is_member(group, viewer_id):
        raise NotFoundError("Group not found")
    return group


def member_of(group: Group, user_id: int) -> GroupMember | None:
    for member in group.members:
        if member.user_id == user_id:
            return member
    return None


def is_member(group: Group, user_id: int) -> bool:
    return member_of(group, user_id) is not None


def is_admin(group: Group, user_id: int) -> bool:
    return user_id == group.creator_id or user_id in group.admin_ids


def is_creator(group: Group, user_id: int) -> bool:
    return group.creator_id == user_id


def _count_user_groups(user_id: int, db: Session) -> int:
    stmt = (
        select(func.count(GroupMember.id))
        .join(Group, Group.id == GroupMember.group_id)
        .where(GroupMember.user_id == user_id, Group.status != GroupStatus.DELETED)
    )
    return db.execute(stmt).scalar_one()


def _sync_member_count(group: Group) -> None:
    group.member_count = len(group.members)


def create_group(
    creator_id: int,
    name: str,
    description: str | None,
    db: Session,
    *,
    options: GroupOptions | None = None,
) -> Group:
    """Create a group with its creator as the first member and its chat session."""

    options = options or GroupOptions()
    cleaned_name = _clean_name(name)
    cleaned_description = _clean_description(description)
    max_members = _clean_max_members(options.max_members)
    group_type = _coerce_type(options.type)

    if find_user_by_id(creator_id, db) is None:
        raise NotFoundError("User not found")
    if _count_user_groups(creator_id, db) >= settings.group_max_per_user:
        raise CapacityError(f"You cannot belong to more than {settings.group_max_per_user} groups")

    code = _generate_invite_code(db)
    group = Group(
        name=cleaned_name,
        description=cleaned_description,
        avatar_url=options.avatar_url,
        creator_id=creator_id,
        type=group_type,
        status=GroupStatus.ACTIVE,
        max_members=max_members,
        invite_code=code,
        invite_link=invite_link_for(code),
        allow_member_invites=options.allow_member_invites,
        require_admin_approval=options.require_admin_approval,
        allow_member_editing=options.allow_member_editing,
        slow_mode_seconds=_clean_slow_mode(options.slow_mode_seconds),
        category=options.category,
    )
    group.members = [GroupMember(user_id=creator_id, role=ParticipantRole.CREATOR)]
    group.tags = [GroupTag(name=tag) for tag in _clean_tags(options.tags)]
    _sync_member_count(group)
    db.add(group)
    db.flush()
    session_store.find_or_create_group_session(group, db)
    db.commit()
    logger.info("Group %s created by user %s", group.id, creator_id)
    return get_group(group.id, db)


def add_member(
    group: Group,
    user_id: int,
    db: Session,
    role: ParticipantRole | str = ParticipantRole.MEMBER,
) -> Group:
    """Add a user to the group; adding an existing member changes nothing."""

    if is_member(group, user_id):
        return group
    member_role = _coerce_role(role)
    if member_role == ParticipantRole.CREATOR:
        raise ForbiddenError("A group can only have one creator")
    if find_user_by_id(user_id, db) is None:
        raise NotFoundError("User not found")
    if len(group.members) >= group.max_members:
        raise CapacityError("Group is full")

    member = GroupMember(user_id=user_id, role=member_role)
    group.members.append(member)
    _sync_member_count(group)
    db.flush()
    chat_session = session_store.find_or_create_group_session(group, db)
    participant = session_store.add_participant(chat_session, user_id, db, role=member_role)
    participant.joined_at = member.joined_at
    db.commit()
    logger.info("User %s joined group %s as %s", user_id, group.id, member_role.value)
    return get_group(group.id, db)


def remove_member(group: Group, user_id: int, db: Session) -> Group:
    if is_creator(group, user_id):
        raise ForbiddenError("The group creator cannot be removed")
    member = member_of(group, user_id)
    if member is None:
        raise NotFoundError("User is not a member of this group")

    group.members.remove(member)
    _sync_member_count(group)
    chat_session = session_store.get_group_session(group.id, db)
    if chat_session is not None:
        session_store.remove_participant(chat_session, user_id, db)
    db.commit()
    logger.info("User %s left group %s", user_id, group.id)
    return get_group(group.id, db)


def update_member_role(
    group: Group, user_id: int, new_role: ParticipantRole | str, db: Session
) -> Group:
    role = _coerce_role(new_role)
    member = member_of(group, user_id)
    if member is None:
        raise NotFoundError("User is not a member of this group")
    if role == ParticipantRole.CREATOR or member.role == ParticipantRole.CREATOR:
        raise ForbiddenError("The creator role cannot be assigned or changed")
    if member.role == role:
        return group

    member.role = role
    chat_session = session_store.get_group_session(group.id, db)
    if chat_session is not None:
        session_store.update_participant_role(chat_session, user_id, role, db)
    db.commit()
    return get_group(group.id, db)


def _require_member(group: Group, user_id: int) -> GroupMember:
    member = member_of(group, user_id)
    if member is None:
        raise ForbiddenError("You are not a member of this group")
    return member


def _require_admin(group: Group, user_id: int, action: str) -> None:
    if not is_admin(group, user_id):
        raise ForbiddenError(f"Only admins can {action}")


def _require_active(group: Group) -> None:
    if group.status != GroupStatus.ACTIVE:
        raise ValidationError("Group is not active")


def add_member_as(
    group: Group,
    actor_id: int,
    user_id: int,
    db: Session,
    role: ParticipantRole | str = ParticipantRole.MEMBER,
) -> Group:
    _require_active(group)
    _require_member(group, actor_id)
    member_role = _coerce_role(role)
    actor_is_admin = is_admin(group, actor_id)
    if not actor_is_admin and (not group.allow_member_invites or group.require_admin_approval):
        raise ForbiddenError("Only admins can add members")
    if member_role == ParticipantRole.ADMIN and not is_creator(group, actor_id):
        raise ForbiddenError("Only the group creator can appoint admins")
    if is_member(group, user_id):
        raise ValidationError("User is already a member of this group")
    return add_member(group, user_id, db, role=member_role)


def remove_member_as(group: Group, actor_id: int, user_id: int, db: Session) -> Group:
    if actor_id == user_id:
        return leave_group(group.id, actor_id, db)
    _require_admin(group, actor_id, "remove members")
    if not is_member(group, user_id):
        raise ValidationError("User is not a member of this group")
    if is_creator(group, user_id):
        raise ForbiddenError("The group creator cannot be removed")
    if is_admin(group, user_id) and not is_creator(group, actor_id):
        raise ForbiddenError("Only the group creator can remove admins")
    return remove_member(group, user_id, db)


def change_role_as(
    group: Group, actor_id: int, user_id: int, new_role: ParticipantRole | str, db: Session
) -> Group:
    role = _coerce_role(new_role)
    _require_admin(group, actor_id, "change member roles")
    if is_admin(group, user_id) and not is_creator(group, actor_id):
        raise ForbiddenError("Only the group creator can demote admins")
    if role == ParticipantRole.ADMIN and not is_creator(group, actor_id):
        raise ForbiddenError("Only the group creator can appoint admins")
    return update_member_role(group, user_id, role, db)


def join_group(group_id: int, user_id: int, db: Session) -> Group:
    group = get_group(group_id, db)
    if group.status == GroupStatus.DELETED:
        raise NotFoundError("Group not found")
    _require_active(group)
    if is_member(group, user_id):
        raise ValidationError("You are already a member of this group")
    if group.type == GroupType.SECRET:
        raise ForbiddenError("This group is secret and cannot be joined directly")
    if group.require_admin_approval:
        raise ForbiddenError("This group requires an invitation from an admin")
    return add_member(group, user_id, db)


def join_by_invite_code(code: str, user_id: int, db: Session) -> Group:
    normalized = (code or "").strip().upper()
    group = db.execute(_group_query().where(Group.invite_code == normalized)).scalar_one_or_none()
    if group is None or group.status == GroupStatus.DELETED:
        raise NotFoundError("Invite code is not valid")
    _require_active(group)
    if is_member(group, user_id):
        raise ValidationError("You are already a member of this group")
    return add_member(group, user_id, db)


def leave_group(group_id: int, user_id: int, db: Session) -> Group:
    group = get_group(group_id, db)
    if not is_member(group, user_id):
        raise ValidationError("You are not a member of this group")
    if is_creator(group, user_id):
        raise ForbiddenError("The group creator cannot leave the group")
    return remove_member(group, user_id, db)


def update_group(group_id: int, actor_id: int, changes: Mapping[str, Any], db: Session) -> Group:
    """Apply a partial update; admins always, members when editing is allowed."""

    group = get_group(group_id, db)
    if group.status == GroupStatus.DELETED:
        raise NotFoundError("Group not found")
    member = _require_member(group, actor_id)
    if member.role not in ADMIN_ROLES:
        if not group.allow_member_editing:
            raise ForbiddenError("Only admins can update group information")
        if any(key in _ADMIN_ONLY_FIELDS for key in changes):
            raise ForbiddenError("Only admins can change group settings")

    try:
        for key, value in changes.items():
            if key in _UPDATABLE_FIELDS:
                _apply_change(group, key, value)
    except ValidationError:
        db.rollback()
        raise

    chat_session = session_store.get_group_session(group.id, db)
    if chat_session is not None and chat_session.name != group.name:
        chat_session.name = group.name
    db.commit()
    logger.info("Group %s updated by user %s", group.id, actor_id)
    return get_group(group.id, db)


def _apply_change(group: Group, key: str, value: Any) -> None:
    if value is None and key in _REQUIRED_FIELDS:
        return
    if key == "name":
        group.name = _clean_name(value)
    elif key == "description":
        group.description = _clean_description(value)
    elif key == "type":
        group.type = _coerce_type(value)
    elif key == "max_members":
        max_members = _clean_max_members(value)
        if max_members < len(group.members):
            raise ValidationError("Max members cannot be lower than the current member count")
        group.max_members = max_members
    elif key == "tags":
        wanted = _clean_tags(value)
        current = set(group.tag_names)
        group.tags = [tag for tag in group.tags if tag.name in wanted] + [
            GroupTag(name=name) for name in wanted if name not in current
        ]
    elif key == "slow_mode_seconds":
        group.slow_mode_seconds = _clean_slow_mode(value)
    elif key in ("allow_member_invites", "require_admin_approval", "allow_member_editing"):
        setattr(group, key, bool(value))
    else:
        setattr(group, key, value)


def deactivate_group(group_id: int, actor_id: int, db: Session) -> Group:
    group = get_group(group_id, db)
    if not is_creator(group, actor_id):
        raise ForbiddenError("Only the group creator can delete the group")
    if group.status != GroupStatus.DELETED:
        group.status = GroupStatus.DELETED
        db.commit()
        logger.info("Group %s deactivated by user %s", group.id, actor_id)
    return get_group(group.id, db)


def regenerate_invite_code(group_id: int, actor_id: int, db: Session) -> Group:
    group = get_group(group_id, db)
    _require_active(group)
    _require_admin(group, actor_id, "regenerate the invite code")
    code = _generate_invite_code(db)
    group.invite_code = code
    group.invite_link = invite_link_for(code)
    db.commit()
    return get_group(group.id, db)


def list_user_groups(user_id: int, db: Session) -> list[Group]:
    stmt = (
        _group_query()
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id, Group.status != GroupStatus.DELETED)
        .order_by(Group.updated_at.desc(), Group.id.desc())
    )
    return list(db.execute(stmt).scalars().unique())


def search_groups(
    db: Session,
    *,
    query: str | None = None,
    group_type: GroupType | str | None = None,
    category: str | None = None,
    tags: list[str] | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> tuple[list[Group], int]:
    """Find active, discoverable groups, newest first."""

    if page_size is None:
        page_size = settings.group_search_default_limit
    offset = validate_page(page, page_size, settings.group_search_max_limit)

    conditions = [Group.status == GroupStatus.ACTIVE, Group.type != GroupType.SECRET]
    if query and query.strip():
        pattern = f"%{query.strip()}%"
        conditions.append(or_(Group.name.ilike(pattern), Group.description.ilike(pattern)))
    if group_type:
        conditions.append(Group.type == _coerce_type(group_type))
    if category:
        conditions.append(Group.category == category)
    tag_names = _clean_tags(tags)
    if tag_names:
        conditions.append(
            Group.id.in_(select(GroupTag.group_id).where(GroupTag.name.in_(tag_names)))
        )

    total = db.execute(select(func.count(Group.id)).where(*conditions)).scalar_one()
    stmt = (
        _group_query()
        .where(*conditions)
        .order_by(Group.created_at.desc(), Group.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    return list(db.execute(stmt).scalars().unique()), total
