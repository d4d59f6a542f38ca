"""Unit tests for the group directory."""

from __future__ import annotations

import pytest

from app.core.exceptions import (
    CapacityError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models import GroupStatus, GroupType, ParticipantRole, User
from app.services import groups as group_directory
from app.services import sessions as session_store


@pytest.fixture()
def users(db_session):
    people = [User(username=name) for name in ("owner", "ann", "ben", "cid")]
    db_session.add_all(people)
    db_session.commit()
    return tuple(person.id for person in people)


def _options(**kwargs) -> group_directory.GroupOptions:
    return group_directory.GroupOptions(**kwargs)


def test_create_group_adds_creator_and_session(db_session, users):
    owner, *_ = users

    group = group_directory.create_group(
        owner,
        "  Book Club  ",
        "Monthly reads",
        db_session,
        options=_options(tags=["Books", "books", " reading "], category="hobby"),
    )

    assert group.name == "Book Club"
    assert group.member_count == 1
    assert group.admin_ids == {owner}
    assert group.tag_names == ["books", "reading"]
    assert len(group.invite_code) == 6
    assert all(char in group_directory.INVITE_CODE_ALPHABET for char in group.invite_code)
    assert group.invite_link.endswith(f"/group/join/{group.invite_code}")

    chat_session = session_store.get_group_session(group.id, db_session)
    assert chat_session.participant_ids == [owner]
    assert chat_session.participant_for(owner).role == ParticipantRole.CREATOR


@pytest.mark.parametrize(
    "name, options",
    [
        ("", {}),
        ("x" * 101, {}),
        ("ok", {"max_members": 1}),
        ("ok", {"max_members": 10001}),
        ("ok", {"type": "hidden"}),
        ("ok", {"slow_mode_seconds": -1}),
    ],
)
def test_create_group_validates_input(db_session, users, name, options):
    owner, *_ = users

    with pytest.raises(ValidationError):
        group_directory.create_group(owner, name, None, db_session, options=_options(**options))


def test_user_group_limit_is_enforced(db_session, users, monkeypatch):
    owner, *_ = users
    monkeypatch.setattr(group_directory.settings, "group_max_per_user", 2)
    group_directory.create_group(owner, "one", None, db_session)
    group_directory.create_group(owner, "two", None, db_session)

    with pytest.raises(CapacityError):
        group_directory.create_group(owner, "three", None, db_session)


def test_invite_code_generation_gives_up_after_collisions(db_session, users, monkeypatch):
    owner, *_ = users
    first = group_directory.create_group(owner, "first", None, db_session)
    first.invite_code = "Q"
    db_session.commit()
    monkeypatch.setattr(group_directory.secrets, "choice", lambda alphabet: "Q")
    monkeypatch.setattr(group_directory.settings, "group_invite_code_length", 1)

    with pytest.raises(ConflictError):
        group_directory.create_group(owner, "second", None, db_session)


def test_group_capacity_is_enforced(db_session, users):
    owner, ann, ben, _ = users
    group = group_directory.create_group(owner, "Pair", None, db_session, options=_options(max_members=2))
    group = group_directory.add_member(group, ann, db_session)

    with pytest.raises(CapacityError):
        group_directory.add_member(group, ben, db_session)
    assert group_directory.get_group(group.id, db_session).member_count == 2


def test_add_member_is_idempotent(db_session, users):
    owner, ann, _, _ = users
    group = group_directory.create_group(owner, "Solo", None, db_session)

    group = group_directory.add_member(group, ann, db_session)
    group = group_directory.add_member(group, ann, db_session)

    assert [member.user_id for member in group.members] == [owner, ann]
    with pytest.raises(NotFoundError):
        group_directory.add_member(group, 9999, db_session)


def test_members_can_invite_only_when_allowed(db_session, users):
    owner, ann, ben, cid = users
    group = group_directory.create_group(
        owner, "Invite only", None, db_session, options=_options(allow_member_invites=False)
    )
    group = group_directory.add_member(group, ann, db_session)

    with pytest.raises(ForbiddenError):
        group_directory.add_member_as(group, ann, ben, db_session)
    with pytest.raises(ForbiddenError):
        group_directory.add_member_as(group, cid, ben, db_session)

    group = group_directory.add_member_as(group, owner, ben, db_session)
    assert group_directory.is_member(group, ben)
    with pytest.raises(ValidationError):
        group_directory.add_member_as(group, owner, ben, db_session)


def test_only_creator_appoints_and_removes_admins(db_session, users):
    owner, ann, ben, _ = users
    group = group_directory.create_group(owner, "Mods", None, db_session)
    group = group_directory.add_member(group, ann, db_session)
    group = group_directory.add_member(group, ben, db_session)

    group = group_directory.change_role_as(group, owner, ann, "admin", db_session)
    assert ann in group.admin_ids
    chat_session = session_store.get_group_session(group.id, db_session)
    assert chat_session.participant_for(ann).role == ParticipantRole.ADMIN

    with pytest.raises(ForbiddenError):
        group_directory.change_role_as(group, ann, ben, "admin", db_session)
    with pytest.raises(ForbiddenError):
        group_directory.remove_member_as(group, ann, owner, db_session)

    group = group_directory.remove_member_as(group, ann, ben, db_session)
    assert not group_directory.is_member(group, ben)
    assert ben not in session_store.get_group_session(group.id, db_session).participant_ids


def test_creator_cannot_leave_or_be_removed(db_session, users):
    owner, ann, _, _ = users
    group = group_directory.create_group(owner, "Sticky", None, db_session)
    group_directory.add_member(group, ann, db_session)

    with pytest.raises(ForbiddenError):
        group_directory.leave_group(group.id, owner, db_session)

    group = group_directory.leave_group(group.id, ann, db_session)
    assert group.member_count == 1
    with pytest.raises(ValidationError):
        group_directory.leave_group(group.id, ann, db_session)


def test_join_rules_follow_group_type(db_session, users):
    owner, ann, ben, cid = users
    public = group_directory.create_group(owner, "Open", None, db_session)
    secret = group_directory.create_group(owner, "Hidden", None, db_session, options=_options(type=GroupType.SECRET))
    gated = group_directory.create_group(
        owner, "Gated", None, db_session, options=_options(require_admin_approval=True)
    )

    joined = group_directory.join_group(public.id, ann, db_session)
    assert group_directory.is_member(joined, ann)
    with pytest.raises(ValidationError):
        group_directory.join_group(public.id, ann, db_session)

    with pytest.raises(ForbiddenError):
        group_directory.join_group(secret.id, ben, db_session)
    with pytest.raises(ForbiddenError):
        group_directory.join_group(gated.id, ben, db_session)

    via_code = group_directory.join_by_invite_code(secret.invite_code.lower(), cid, db_session)
    assert group_directory.is_member(via_code, cid)
    with pytest.raises(NotFoundError):
        group_directory.join_by_invite_code("NOPE00", cid, db_session)


def test_secret_groups_are_hidden_from_outsiders(db_session, users):
    owner, ann, _, _ = users
    secret = group_directory.create_group(owner, "Vault", None, db_session, options=_options(type="secret"))

    assert group_directory.get_visible_group(secret.id, owner, db_session).id == secret.id
    with pytest.raises(NotFoundError):
        group_directory.get_visible_group(secret.id, ann, db_session)


def test_update_group_respects_member_editing(db_session, users):
    owner, ann, _, _ = users
    group = group_directory.create_group(owner, "Wiki", None, db_session)
    group_directory.add_member(group, ann, db_session)

    with pytest.raises(ForbiddenError):
        group_directory.update_group(group.id, ann, {"name": "Vandalised"}, db_session)

    group = group_directory.update_group(
        group.id, owner, {"allow_member_editing": True, "tags": ["docs"]}, db_session
    )
    assert group.allow_member_editing is True
    assert group.tag_names == ["docs"]

    group = group_directory.update_group(group.id, ann, {"description": "Shared notes"}, db_session)
    assert group.description == "Shared notes"
    with pytest.raises(ForbiddenError):
        group_directory.update_group(group.id, ann, {"slow_mode_seconds": 5, "allow_member_invites": False}, db_session)

    group = group_directory.update_group(group.id, owner, {"name": "Team Wiki"}, db_session)
    assert session_store.get_group_session(group.id, db_session).name == "Team Wiki"
    with pytest.raises(ValidationError):
        group_directory.update_group(group.id, owner, {"max_members": 1}, db_session)


def test_deactivated_group_disappears(db_session, users):
    owner, ann, _, _ = users
    group = group_directory.create_group(owner, "Temp", None, db_session)
    group_directory.add_member(group, ann, db_session)

    with pytest.raises(ForbiddenError):
        group_directory.deactivate_group(group.id, ann, db_session)
    group = group_directory.deactivate_group(group.id, owner, db_session)

    assert group.status == GroupStatus.DELETED
    assert group_directory.list_user_groups(ann, db_session) == []
    with pytest.raises(NotFoundError):
        group_directory.get_visible_group(group.id, owner, db_session)
    with pytest.raises(NotFoundError):
        group_directory.join_group(group.id, ann, db_session)


def test_regenerate_invite_code_requires_admin(db_session, users):
    owner, ann, _, _ = users
    group = group_directory.create_group(owner, "Codes", None, db_session)
    group_directory.add_member(group, ann, db_session)
    previous = group.invite_code

    with pytest.raises(ForbiddenError):
        group_directory.regenerate_invite_code(group.id, ann, db_session)
    group = group_directory.regenerate_invite_code(group.id, owner, db_session)

    assert group.invite_code != previous
    assert group.invite_link == group_directory.invite_link_for(group.invite_code)


def test_search_lists_active_discoverable_groups(db_session, users):
    owner, *_ = users
    group_directory.create_group(owner, "Python Users", "snakes", db_session, options=_options(tags=["code"]))
    group_directory.create_group(owner, "Rust Users", None, db_session, options=_options(type="private"))
    group_directory.create_group(owner, "Python Secret", None, db_session, options=_options(type="secret"))
    retired = group_directory.create_group(owner, "Python Retired", None, db_session)
    group_directory.deactivate_group(retired.id, owner, db_session)

    found, total = group_directory.search_groups(db_session, query="python")
    assert total == 1
    assert [group.name for group in found] == ["Python Users"]

    by_type, _ = group_directory.search_groups(db_session, group_type="private")
    assert [group.name for group in by_type] == ["Rust Users"]

    by_tag, _ = group_directory.search_groups(db_session, tags=["CODE"])
    assert [group.name for group in by_tag] == ["Python Users"]

    with pytest.raises(ValidationError):
        group_directory.search_groups(db_session, page=0)
