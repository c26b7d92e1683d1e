"""User, role and presence endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from fieldsync_core import crud, models, permissions, presence, schemas
from fieldsync_core.api.dependencies import (
    BUSINESS_ERRORS,
    CurrentUser,
    get_current_user,
    http_error,
    require_admin_user,
)
from fieldsync_core.exceptions import NotFoundError

from ...database import get_db

logger = logging.getLogger("fieldsync-core.users")

router = APIRouter(tags=["users"])


def _profile_to_response(profile: models.Profile) -> schemas.ProfileResponse:
    """Convert Profile model to ProfileResponse schema."""
    return schemas.ProfileResponse(
        user_id=profile.user_id,
        first_name=profile.first_name,
        last_name=profile.last_name,
        email=profile.email,
        avatar_url=profile.avatar_url,
        status=profile.status,
        role=profile.role.role if profile.role else None,
        updated_at=profile.updated_at,
    )


@router.get("/", response_model=list[schemas.ProfileResponse])
def list_users(
    role: Optional[models.AppRole] = Query(None, description="Filter by role"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List profiles ordered by name."""
    return [_profile_to_response(p) for p in crud.get_profiles(db, role=role)]


@router.get("/me", response_model=schemas.ProfileResponse)
def get_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the caller's own profile."""
    profile = crud.get_profile(db, current_user.user_id)
    if profile is None:
        raise http_error(NotFoundError("User", current_user.user_id))
    return _profile_to_response(profile)


@router.put("/me/status", response_model=schemas.ProfileResponse)
def update_my_status(
    update: schemas.StatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Set the caller's presence status.

    - **status**: online, busy, away or offline
    """
    try:
        profile = presence.set_status(db, current_user.user_id, current_user.user_id, update.status)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return _profile_to_response(profile)


@router.post("/me/sign-out", response_model=schemas.ProfileResponse)
def sign_out(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark the caller offline. The session itself is ended by the identity provider."""
    try:
        profile = presence.sign_out(db, current_user.user_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return _profile_to_response(profile)


@router.get("/{user_id}/has-role/{role}", response_model=schemas.HasRoleResponse)
def has_role(
    user_id: UUID,
    role: models.AppRole,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Check whether a user holds a role."""
    return schemas.HasRoleResponse(
        user_id=user_id,
        role=role,
        has_role=permissions.has_role(db, user_id, role),
    )


@router.post("/", response_model=schemas.ProfileResponse, status_code=201)
def create_user(
    user_data: schemas.UserCreate,
    user_id: Optional[UUID] = Query(None, description="User id issued by the identity provider"),
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """
    Create a user profile and role (admin only).

    - **email**: Unique email address
    - **first_name** / **last_name**: Letters, spaces, hyphens and apostrophes
    - **role**: admin or employee (default employee)
    """
    try:
        profile = crud.create_user(db, current_user.user_id, user_data, user_id=user_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return _profile_to_response(profile)


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: UUID,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Delete a user and their data (admin only). Open tasks return to the pool."""
    try:
        crud.delete_user(db, current_user.user_id, user_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return Response(status_code=204)
