"""Presence status. Last write wins; only the owner writes their own status."""
import logging
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .exceptions import NotFoundError, PermissionDeniedError
from .models import UserStatus

logger = logging.getLogger("fieldsync-core.presence")


def set_status(db: Session, actor_id: UUID, user_id: UUID, status: UserStatus) -> models.Profile:
    """
    Set a user's presence status.

    Args:
        db: Database session
        actor_id: Caller
        user_id: Profile to update (must be the caller)
        status: New status

    Returns:
        Updated Profile

    Raises:
        PermissionDeniedError: If the caller updates someone else's status
        NotFoundError: If the profile does not exist
    """
    if actor_id != user_id:
        raise PermissionDeniedError("Users can only change their own status")
    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    if not profile:
        raise NotFoundError("User", user_id)

    if profile.status != status:
        profile.status = status
        db.commit()
        db.refresh(profile)
        logger.info(f"User {user_id} is now {status.value}")
    return profile


def sign_out(db: Session, user_id: UUID) -> models.Profile:
    """Force the user offline on sign-out."""
    return set_status(db, user_id, user_id, UserStatus.OFFLINE)
