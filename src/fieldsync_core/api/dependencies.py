"""Request identity and error translation shared by the routers.

Authentication happens upstream: the gateway verifies the session and
forwards the caller's user id in the ``X-User-Id`` header. The service only
resolves the caller's profile and role from it.
"""
import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .. import models
from ..database import get_db
from ..exceptions import ConflictError, GuardError, NotFoundError, PermissionDeniedError
from ..state_machine import StateTransitionError

logger = logging.getLogger("fieldsync-core.api")

USER_HEADER = "X-User-Id"


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller."""

    user_id: UUID
    role: models.AppRole

    @property
    def is_admin(self) -> bool:
        return self.role == models.AppRole.ADMIN


def get_current_user(
    x_user_id: UUID = Header(..., alias=USER_HEADER),
    db: Session = Depends(get_db),
) -> CurrentUser:
    """Resolve the caller from the identity header."""
    role = db.query(models.UserRole.role).filter(models.UserRole.user_id == x_user_id).scalar()
    if role is None:
        logger.warning(f"Rejected request from unknown user {x_user_id}")
        raise HTTPException(
            status_code=401,
            detail={"error": "unknown_user", "message": "Unknown or deleted user"},
        )
    return CurrentUser(user_id=x_user_id, role=role)


def require_admin_user(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency for admin-only endpoints."""
    if not current_user.is_admin:
        raise _handle_permission_error(PermissionDeniedError("This operation requires the admin role"))
    return current_user


# Business errors routers translate with http_error()
BUSINESS_ERRORS = (
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    GuardError,
    StateTransitionError,
    ValueError,
)


def _handle_permission_error(e: PermissionDeniedError) -> HTTPException:
    """Convert PermissionDeniedError to HTTPException with proper 403 response."""
    return HTTPException(
        status_code=403,
        detail={"error": "permission_denied", "message": str(e)},
    )


def http_error(e: Exception) -> HTTPException:
    """
    Translate a business error into an HTTPException.

    - PermissionDeniedError → 403 permission_denied
    - NotFoundError → 404 not_found
    - GuardError → 422 guard_failed (with the guard code)
    - ConflictError → 409 conflict
    - StateTransitionError → 409 invalid_status_transition
    - ValueError → 400 validation_failed
    """
    if isinstance(e, PermissionDeniedError):
        return _handle_permission_error(e)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail={"error": "not_found", "message": str(e)})
    if isinstance(e, GuardError):
        return HTTPException(
            status_code=422,
            detail={"error": "guard_failed", "guard": e.guard, "message": e.message},
        )
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail={"error": "conflict", "message": str(e)})
    if isinstance(e, StateTransitionError):
        return HTTPException(
            status_code=409,
            detail={
                "error": "invalid_status_transition",
                "message": str(e),
                "current_status": e.current_status.value,
                "allowed_transitions": [s.value for s in e.allowed_transitions if s != e.current_status],
            },
        )
    return HTTPException(status_code=400, detail={"error": "validation_failed", "message": str(e)})
