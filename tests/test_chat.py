"""Tests for chat delivery and read receipts."""
from uuid import uuid4

import pytest
from pydantic import ValidationError

from fieldsync_core import chat, schemas
from fieldsync_core.exceptions import NotFoundError, PermissionDeniedError


def _direct(db, sender_id, recipient_id, text="Hello"):
    return chat.send_message(db, sender_id, schemas.ChatMessageCreate(recipient_id=recipient_id, message=text))


def _group(db, sender_id, text="Morning everyone"):
    return chat.send_message(db, sender_id, schemas.ChatMessageCreate(is_group_message=True, message=text))


class TestMessageShape:
    """Validation of outgoing messages."""

    def test_direct_message_requires_recipient(self):
        with pytest.raises(ValidationError):
            schemas.ChatMessageCreate(message="Hi")

    def test_group_message_has_no_recipient(self):
        with pytest.raises(ValidationError):
            schemas.ChatMessageCreate(is_group_message=True, recipient_id=uuid4(), message="Hi")

    def test_text_or_image_required(self):
        with pytest.raises(ValidationError):
            schemas.ChatMessageCreate(recipient_id=uuid4(), message="   ")

        image_only = schemas.ChatMessageCreate(recipient_id=uuid4(), image_url="chat/abc.png")
        assert image_only.message == ""

    def test_message_length_limit(self):
        with pytest.raises(ValidationError):
            schemas.ChatMessageCreate(recipient_id=uuid4(), message="x" * 5001)

    def test_no_message_to_self(self, db, employee_id):
        with pytest.raises(ValueError):
            _direct(db, employee_id, employee_id)

    def test_unknown_recipient(self, db, employee_id):
        with pytest.raises(NotFoundError):
            _direct(db, employee_id, uuid4())


class TestConversations:

    def test_conversation_is_between_two_users(self, db, admin_id, employee_id, other_employee_id):
        _direct(db, admin_id, employee_id, "Can you take the 3pm?")
        _direct(db, employee_id, admin_id, "Yes")
        _direct(db, admin_id, other_employee_id, "Not for Erik")

        conversation = chat.get_conversation(db, employee_id, admin_id)

        assert [m.message for m in conversation] == ["Can you take the 3pm?", "Yes"]

    def test_group_messages_visible_to_everyone(self, db, admin_id, employee_id, other_employee_id):
        _group(db, admin_id)
        _direct(db, admin_id, other_employee_id, "Private")

        visible = chat.get_messages_for_user(db, employee_id)

        assert [m.message for m in visible] == ["Morning everyone"]
        assert [m.message for m in chat.get_group_messages(db)] == ["Morning everyone"]

    def test_get_message_hides_other_conversations(self, db, admin_id, employee_id, other_employee_id):
        message = _direct(db, admin_id, other_employee_id, "Private")

        assert chat.get_message(db, employee_id, message.id) is None
        assert chat.get_message(db, other_employee_id, message.id).id == message.id


class TestReadReceipts:

    def test_recipient_marks_read_once(self, db, admin_id, employee_id):
        message = _direct(db, admin_id, employee_id)

        first = chat.mark_read(db, employee_id, message.id)
        read_at = first.read_at
        assert read_at is not None

        again = chat.mark_read(db, employee_id, message.id)
        assert again.read_at == read_at

    def test_sender_cannot_mark_read(self, db, admin_id, employee_id):
        message = _direct(db, admin_id, employee_id)

        with pytest.raises(PermissionDeniedError):
            chat.mark_read(db, admin_id, message.id)

    def test_group_messages_have_no_receipts(self, db, admin_id, employee_id):
        message = _group(db, admin_id)

        with pytest.raises(PermissionDeniedError):
            chat.mark_read(db, employee_id, message.id)

    def test_mark_conversation_read(self, db, admin_id, employee_id, other_employee_id):
        _direct(db, admin_id, employee_id, "one")
        _direct(db, admin_id, employee_id, "two")
        _direct(db, other_employee_id, employee_id, "from Olga")

        assert chat.unread_counts(db, employee_id) == {admin_id: 2, other_employee_id: 1}

        assert chat.mark_conversation_read(db, employee_id, admin_id) == 2
        assert chat.mark_conversation_read(db, employee_id, admin_id) == 0
        assert chat.unread_counts(db, employee_id) == {other_employee_id: 1}

    def test_own_messages_are_not_marked(self, db, admin_id, employee_id):
        _direct(db, employee_id, admin_id, "sent by me")

        assert chat.mark_conversation_read(db, employee_id, admin_id) == 0
        assert chat.unread_counts(db, admin_id) == {employee_id: 1}
