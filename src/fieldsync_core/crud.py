"""CRUD operations for users, roles and push subscriptions."""
import logging
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .exceptions import ConflictError, NotFoundError, PermissionDeniedError
from .lifecycle import release_user_tasks
from .permissions import require_admin

logger = logging.getLogger("fieldsync-core.crud")


# ============================================================================
# Users
# ============================================================================

def get_profile(db: Session, user_id: UUID) -> Optional[models.Profile]:
    """
    Get a profile by user id.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        Profile or None if not found
    """
    return db.query(models.Profile).filter(models.Profile.user_id == user_id).first()


def get_profiles(db: Session, role: Optional[models.AppRole] = None) -> list[models.Profile]:
    """List profiles ordered by name, optionally restricted to one role."""
    query = db.query(models.Profile)
    if role is not None:
        query = query.join(models.UserRole).filter(models.UserRole.role == role)
    return query.order_by(models.Profile.first_name, models.Profile.last_name).all()


def create_user(
    db: Session,
    admin_id: UUID,
    user_data: schemas.UserCreate,
    user_id: Optional[UUID] = None,
) -> models.Profile:
    """
    Create a profile and its role (admin only).

    Credentials live with the identity provider; ``user_id`` is the id it
    issued (a new one is generated when omitted).

    Args:
        db: Database session
        admin_id: Admin creating the user
        user_data: Validated user fields
        user_id: Identity provider's user id

    Returns:
        Created Profile

    Raises:
        PermissionDeniedError: If the caller is not an admin
        ConflictError: If the email is already registered
    """
    require_admin(db, admin_id)

    if db.query(models.Profile.user_id).filter(models.Profile.email == user_data.email).first():
        raise ConflictError(f"A user with email {user_data.email} already exists")

    profile = models.Profile(
        user_id=user_id or uuid4(),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        email=user_data.email,
    )
    profile.role = models.UserRole(role=user_data.role)
    db.add(profile)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"A user with email {user_data.email} already exists") from e
    db.refresh(profile)
    logger.info(f"Created {user_data.role.value} {profile.email}")
    return profile


def delete_user(db: Session, admin_id: UUID, user_id: UUID) -> None:
    """
    Delete a user (admin only). Admins cannot delete themselves.

    Raises:
        PermissionDeniedError: If the caller is not an admin or deletes themselves
        NotFoundError: If the user does not exist
        ConflictError: If one of their tasks changed concurrently
    """
    require_admin(db, admin_id)
    if admin_id == user_id:
        raise PermissionDeniedError("You cannot delete your own account")

    profile = get_profile(db, user_id)
    if not profile:
        raise NotFoundError("User", user_id)

    # Open tasks held by the user go back to the pool
    release_user_tasks(db, admin_id, user_id)

    # Rows owned by the user; tasks they created keep existing without a creator
    for model in (
        models.SmsCodeRequest,
        models.Notification,
        models.TimeEntry,
        models.Document,
        models.PushSubscription,
    ):
        for row in db.query(model).filter(model.user_id == user_id).all():
            db.delete(row)
    for message in db.query(models.ChatMessage).filter(
        (models.ChatMessage.sender_id == user_id) | (models.ChatMessage.recipient_id == user_id)
    ).all():
        db.delete(message)

    db.delete(profile)
    db.commit()
    logger.info(f"Admin {admin_id} deleted user {user_id}")


# ============================================================================
# Push subscriptions
# ============================================================================

def save_push_subscription(
    db: Session,
    user_id: UUID,
    data: schemas.PushSubscriptionCreate,
) -> models.PushSubscription:
    """Register (or re-register) a push endpoint for the user."""
    subscription = db.query(models.PushSubscription).filter(
        models.PushSubscription.endpoint == data.endpoint
    ).first()
    if subscription is None:
        subscription = models.PushSubscription(endpoint=data.endpoint)
        db.add(subscription)
    subscription.user_id = user_id
    subscription.p256dh = data.keys.p256dh
    subscription.auth = data.keys.auth
    db.commit()
    db.refresh(subscription)
    return subscription


def get_push_subscriptions(db: Session, user_id: UUID) -> list[models.PushSubscription]:
    return db.query(models.PushSubscription).filter(models.PushSubscription.user_id == user_id).all()


def delete_push_subscription(db: Session, user_id: UUID, endpoint: str) -> bool:
    """Remove one of the user's push endpoints. Returns False when it was not registered."""
    subscription = db.query(models.PushSubscription).filter(
        models.PushSubscription.endpoint == endpoint,
        models.PushSubscription.user_id == user_id,
    ).first()
    if subscription is None:
        return False
    db.delete(subscription)
    db.commit()
    return True
