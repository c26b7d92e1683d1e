"""Role lookups and access checks."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .exceptions import NotFoundError, PermissionDeniedError

logger = logging.getLogger("fieldsync-core.permissions")


def get_role(db: Session, user_id: UUID) -> Optional[models.AppRole]:
    """Return the user's role, or None for unknown users."""
    role = db.query(models.UserRole.role).filter(models.UserRole.user_id == user_id).scalar()
    return role


def has_role(db: Session, user_id: UUID, role: models.AppRole) -> bool:
    """
    Check whether a user holds a role.

    Args:
        db: Database session
        user_id: User UUID
        role: Role to check

    Returns:
        True if the user holds the role
    """
    return get_role(db, user_id) == role


def is_admin(db: Session, user_id: UUID) -> bool:
    return has_role(db, user_id, models.AppRole.ADMIN)


def require_admin(db: Session, user_id: UUID) -> None:
    """Raise PermissionDeniedError unless the user is an admin."""
    if not is_admin(db, user_id):
        logger.warning(f"Admin operation denied for user {user_id}")
        raise PermissionDeniedError("This operation requires the admin role")


def require_employee(db: Session, user_id: UUID) -> models.Profile:
    """
    Return the profile of an employee.

    Raises:
        NotFoundError: If the user does not exist
        ValueError: If the user is not an employee
    """
    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    if not profile:
        raise NotFoundError("User", user_id)
    if get_role(db, user_id) != models.AppRole.EMPLOYEE:
        raise ValueError(f"User {user_id} is not an employee")
    return profile


def admin_ids(db: Session) -> list[UUID]:
    """Return the ids of all admins (recipients of admin notifications)."""
    rows = db.query(models.UserRole.user_id).filter(models.UserRole.role == models.AppRole.ADMIN).all()
    return [row[0] for row in rows]
