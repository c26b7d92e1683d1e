"""Chat delivery and read receipts.

Delivery is implicit: a message is delivered once stored. Reading is explicit
and one-directional: only the recipient of a direct message sets ``read_at``,
once. Group messages have no read receipts.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, and_
from sqlalchemy.orm import Session

from . import models, schemas
from .change_feed import UPDATE, record_change
from .config import get_settings
from .exceptions import NotFoundError, PermissionDeniedError
from .models import utcnow

logger = logging.getLogger("fieldsync-core.chat")

CONVERSATION_LIMIT = 100


def send_message(
    db: Session,
    sender_id: UUID,
    data: schemas.ChatMessageCreate,
) -> models.ChatMessage:
    """
    Store a direct or group message.

    Args:
        db: Database session
        sender_id: Author
        data: Validated message

    Returns:
        Created ChatMessage

    Raises:
        ValueError: If the message is too long or addressed to the sender
        NotFoundError: If the recipient does not exist
    """
    max_length = get_settings().max_chat_message_length
    if len(data.message) > max_length:
        raise ValueError(f"Message is too long (maximum {max_length} characters)")

    if not data.is_group_message:
        if data.recipient_id == sender_id:
            raise ValueError("Cannot send a direct message to yourself")
        recipient = db.query(models.Profile.user_id).filter(models.Profile.user_id == data.recipient_id).first()
        if recipient is None:
            raise NotFoundError("User", data.recipient_id)

    message = models.ChatMessage(
        sender_id=sender_id,
        recipient_id=None if data.is_group_message else data.recipient_id,
        is_group_message=data.is_group_message,
        message=data.message,
        image_url=data.image_url,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.info(f"User {sender_id} sent {'group' if message.is_group_message else 'direct'} message {message.id}")
    return message


def get_conversation(
    db: Session,
    user_id: UUID,
    partner_id: UUID,
    limit: int = CONVERSATION_LIMIT,
) -> list[models.ChatMessage]:
    """Return the latest direct messages between two users, oldest first."""
    latest = db.query(models.ChatMessage).filter(
        models.ChatMessage.is_group_message.is_(False),
        or_(
            and_(models.ChatMessage.sender_id == user_id, models.ChatMessage.recipient_id == partner_id),
            and_(models.ChatMessage.sender_id == partner_id, models.ChatMessage.recipient_id == user_id),
        ),
    ).order_by(models.ChatMessage.created_at.desc()).limit(limit).all()
    return list(reversed(latest))


def get_group_messages(db: Session, limit: int = CONVERSATION_LIMIT) -> list[models.ChatMessage]:
    """Return the latest group messages, oldest first."""
    latest = db.query(models.ChatMessage).filter(
        models.ChatMessage.is_group_message.is_(True),
    ).order_by(models.ChatMessage.created_at.desc()).limit(limit).all()
    return list(reversed(latest))


def get_messages_for_user(db: Session, user_id: UUID, limit: int = 500) -> list[models.ChatMessage]:
    """Return every message the user can see (own direct messages and the group), oldest first."""
    latest = db.query(models.ChatMessage).filter(
        or_(
            models.ChatMessage.is_group_message.is_(True),
            models.ChatMessage.sender_id == user_id,
            models.ChatMessage.recipient_id == user_id,
        )
    ).order_by(models.ChatMessage.created_at.desc()).limit(limit).all()
    return list(reversed(latest))


def mark_read(db: Session, user_id: UUID, message_id: UUID) -> models.ChatMessage:
    """
    Mark a direct message read. Idempotent: the first ``read_at`` is kept.

    Raises:
        NotFoundError: If the message does not exist
        PermissionDeniedError: If the caller is not the recipient
    """
    message = db.query(models.ChatMessage).filter(models.ChatMessage.id == message_id).first()
    if not message:
        raise NotFoundError("Message", message_id)
    if message.is_group_message or message.recipient_id != user_id:
        raise PermissionDeniedError("Only the recipient can mark a message read")

    updated = db.query(models.ChatMessage).filter(
        models.ChatMessage.id == message.id,
        models.ChatMessage.read_at.is_(None),
    ).update({models.ChatMessage.read_at: utcnow()}, synchronize_session=False)
    if updated:
        record_change(
            db, models.ChatMessage, UPDATE, message.id,
            user_ids=[message.sender_id, message.recipient_id], include_admins=False,
        )
    db.commit()
    db.refresh(message)
    return message


def mark_conversation_read(db: Session, user_id: UUID, sender_id: UUID) -> int:
    """
    Mark every unread direct message from ``sender_id`` to ``user_id`` read in one update.

    Returns:
        Number of messages marked read
    """
    conditions = (
        models.ChatMessage.recipient_id == user_id,
        models.ChatMessage.sender_id == sender_id,
        models.ChatMessage.is_group_message.is_(False),
        models.ChatMessage.read_at.is_(None),
    )
    unread_ids = [row[0] for row in db.query(models.ChatMessage.id).filter(*conditions).all()]
    if not unread_ids:
        return 0

    updated = db.query(models.ChatMessage).filter(
        models.ChatMessage.id.in_(unread_ids),
        *conditions,
    ).update({models.ChatMessage.read_at: utcnow()}, synchronize_session=False)
    for message_id in unread_ids:
        record_change(
            db, models.ChatMessage, UPDATE, message_id,
            user_ids=[sender_id, user_id], include_admins=False,
        )
    db.commit()
    logger.info(f"User {user_id} read {updated} messages from {sender_id}")
    return updated


def unread_counts(db: Session, user_id: UUID) -> dict[UUID, int]:
    """Return unread direct message counts per sender."""
    rows = db.query(models.ChatMessage.sender_id, func.count(models.ChatMessage.id)).filter(
        models.ChatMessage.recipient_id == user_id,
        models.ChatMessage.is_group_message.is_(False),
        models.ChatMessage.read_at.is_(None),
    ).group_by(models.ChatMessage.sender_id).all()
    return {sender_id: count for sender_id, count in rows}


def get_message(db: Session, user_id: UUID, message_id: UUID) -> Optional[models.ChatMessage]:
    """Return a message visible to the user, or None."""
    message = db.query(models.ChatMessage).filter(models.ChatMessage.id == message_id).first()
    if message is None:
        return None
    if message.is_group_message or user_id in (message.sender_id, message.recipient_id):
        return message
    return None
