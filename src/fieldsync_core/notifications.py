"""In-app notification rows."""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .change_feed import UPDATE, record_change
from .exceptions import NotFoundError, PermissionDeniedError
from .models import utcnow

logger = logging.getLogger("fieldsync-core.notifications")


def notify(
    db: Session,
    user_id: UUID,
    type: models.NotificationType,
    title: str,
    message: str,
    related_task_id: Optional[UUID] = None,
) -> models.Notification:
    """
    Add a notification row to the current transaction (no commit).

    Args:
        db: Database session
        user_id: Recipient
        type: Notification type
        title: Short title
        message: Body text
        related_task_id: Task the notification is about

    Returns:
        The pending Notification
    """
    notification = models.Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        related_task_id=related_task_id,
    )
    db.add(notification)
    return notification


def notify_many(
    db: Session,
    user_ids: Iterable[UUID],
    type: models.NotificationType,
    title: str,
    message: str,
    related_task_id: Optional[UUID] = None,
) -> list[models.Notification]:
    """Add the same notification for several recipients (no commit)."""
    return [notify(db, uid, type, title, message, related_task_id) for uid in user_ids]


def get_notifications(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 50,
) -> list[models.Notification]:
    """Return the user's notifications, newest first."""
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if unread_only:
        query = query.filter(models.Notification.read_at.is_(None))
    return query.order_by(models.Notification.created_at.desc()).limit(limit).all()


def mark_notification_read(db: Session, user_id: UUID, notification_id: UUID) -> models.Notification:
    """
    Mark one notification read. Repeating the call keeps the first read time.

    Raises:
        NotFoundError: If the notification does not exist
        PermissionDeniedError: If it belongs to another user
    """
    notification = db.query(models.Notification).filter(models.Notification.id == notification_id).first()
    if not notification:
        raise NotFoundError("Notification", notification_id)
    if notification.user_id != user_id:
        raise PermissionDeniedError("Only the recipient can mark a notification read")

    if notification.read_at is None:
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_notifications_read(db: Session, user_id: UUID) -> int:
    """Mark every unread notification of the user read in one statement."""
    unread_ids = [
        row[0] for row in db.query(models.Notification.id).filter(
            models.Notification.user_id == user_id,
            models.Notification.read_at.is_(None),
        ).all()
    ]
    if not unread_ids:
        return 0

    updated = db.query(models.Notification).filter(
        models.Notification.id.in_(unread_ids),
        models.Notification.read_at.is_(None),
    ).update({models.Notification.read_at: utcnow()}, synchronize_session=False)
    for notification_id in unread_ids:
        record_change(db, models.Notification, UPDATE, notification_id, user_ids=[user_id], include_admins=False)
    db.commit()
    logger.info(f"Marked {updated} notifications read for user {user_id}")
    return updated
