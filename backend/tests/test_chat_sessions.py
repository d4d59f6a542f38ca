"""Unit tests for chat session lookup, settings and unread reconciliation."""

from __future__ import annotations

import logging

import pytest

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import ConversationKind, User
from app.services import messages as message_store
from app.services import sessions as session_store


@pytest.fixture()
def users(db_session):
    people = [User(username=name) for name in ("dora", "eli", "fay")]
    db_session.add_all(people)
    db_session.commit()
    return tuple(person.id for person in people)


def test_private_session_is_created_once_per_pair(db_session, users):
    dora, eli, _ = users

    first = session_store.find_or_create_private_session(eli, dora, db_session)
    second = session_store.find_or_create_private_session(dora, eli, db_session)

    assert first.id == second.id
    assert first.kind == ConversationKind.PRIVATE
    assert sorted(first.participant_ids) == sorted([dora, eli])
    assert first.conversation_key == session_store.conversation_key(dora, eli)


def test_private_session_with_yourself_is_rejected(db_session, users):
    dora, _, _ = users

    with pytest.raises(ValidationError):
        session_store.find_or_create_private_session(dora, dora, db_session)


def test_get_session_for_user_checks_participation(db_session, users):
    dora, eli, fay = users
    chat_session = session_store.find_or_create_private_session(dora, eli, db_session)

    assert session_store.get_session_for_user(chat_session.id, eli, db_session).id == chat_session.id
    with pytest.raises(ForbiddenError):
        session_store.get_session_for_user(chat_session.id, fay, db_session)
    with pytest.raises(NotFoundError):
        session_store.get_session_for_user(chat_session.id + 100, dora, db_session)


def test_toggle_setting_flips_only_the_callers_flag(db_session, users):
    dora, eli, fay = users
    chat_session = session_store.find_or_create_private_session(dora, eli, db_session)

    chat_session = session_store.toggle_setting(chat_session, dora, "muted", db_session)
    assert chat_session.participant_for(dora).muted is True
    assert chat_session.participant_for(eli).muted is False

    chat_session = session_store.toggle_setting(chat_session, dora, "muted", db_session)
    assert chat_session.participant_for(dora).muted is False

    with pytest.raises(ValidationError):
        session_store.toggle_setting(chat_session, dora, "starred", db_session)
    with pytest.raises(ForbiddenError):
        session_store.toggle_setting(chat_session, fay, "pinned", db_session)


def test_new_message_unarchives_the_conversation_for_receiver(db_session, users):
    dora, eli, _ = users
    chat_session = session_store.find_or_create_private_session(dora, eli, db_session)
    session_store.toggle_setting(chat_session, eli, "archived", db_session)

    hidden, hidden_total = session_store.list_sessions_for_user(eli, db_session)
    assert hidden == [] and hidden_total == 0
    archived, _ = session_store.list_sessions_for_user(eli, db_session, include_archived=True)
    assert [item.id for item in archived] == [chat_session.id]

    message_store.create_direct_message(dora, eli, "wake up", None, db_session)

    visible, total = session_store.list_sessions_for_user(eli, db_session)
    assert total == 1
    assert visible[0].participant_for(eli).archived is False


def test_sessions_are_listed_by_latest_activity(db_session, users):
    dora, eli, fay = users
    message_store.create_direct_message(eli, dora, "older", None, db_session)
    message_store.create_direct_message(fay, dora, "newer", None, db_session)

    sessions, total = session_store.list_sessions_for_user(dora, db_session)

    assert total == 2
    assert [item.last_message.content for item in sessions] == ["newer", "older"]
    with pytest.raises(ValidationError):
        session_store.list_sessions_for_user(dora, db_session, page_size=51)


def test_recount_repairs_drifted_counter(db_session, users, caplog):
    dora, eli, _ = users
    message_store.create_direct_message(dora, eli, "one", None, db_session)
    message_store.create_direct_message(dora, eli, "two", None, db_session)
    chat_session = session_store.get_private_session(dora, eli, db_session)
    chat_session.participant_for(eli).unread_count = 7
    db_session.commit()

    with caplog.at_level(logging.INFO, logger="app.services.sessions"):
        count = session_store.recount_unread(chat_session, eli, db_session)
    db_session.commit()

    assert count == 2
    assert chat_session.participant_for(eli).unread_count == 2
    assert any("Reconciled unread counter" in record.getMessage() for record in caplog.records)


def test_counter_matches_unread_messages_after_partial_read(db_session, users):
    dora, eli, _ = users
    first = message_store.create_direct_message(dora, eli, "a", None, db_session)
    message_store.create_direct_message(dora, eli, "b", None, db_session)
    message_store.create_direct_message(dora, eli, "c", None, db_session)

    message_store.mark_as_read(first.id, eli, db_session)

    assert message_store.count_unread_for_user(eli, db_session) == 2
    assert message_store.count_unread_messages(eli, db_session) == 2
