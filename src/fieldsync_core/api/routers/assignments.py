"""Task assignment and SMS code request endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fieldsync_core import lifecycle, schemas, sms_workflow
from fieldsync_core.api.dependencies import (
    BUSINESS_ERRORS,
    CurrentUser,
    get_current_user,
    http_error,
    require_admin_user,
)

from ...database import get_db

logger = logging.getLogger("fieldsync-core.assignments")

router = APIRouter(tags=["assignments"])
sms_router = APIRouter(tags=["sms-requests"])


@router.get("/", response_model=list[schemas.AssignmentResponse])
def list_assignments(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List assignments visible to the caller (admins: all, employees: their own)."""
    return lifecycle.get_assignments(db, current_user.user_id)


@sms_router.get("/", response_model=list[schemas.SmsCodeRequestResponse])
def list_sms_requests(
    task_id: Optional[UUID] = Query(None, description="Filter by task"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List SMS code requests, newest first."""
    return sms_workflow.get_sms_requests(db, current_user.user_id, task_id=task_id)


@sms_router.post("/{request_id}/fulfill", response_model=schemas.SmsCodeRequestResponse)
def fulfill_sms_request(
    request_id: UUID,
    fulfillment: schemas.SmsCodeFulfill,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """
    Deliver a code on an open request (admin only).

    Returns 409 when a code was already delivered on this request.
    """
    try:
        return sms_workflow.fulfill_sms_code(db, current_user.user_id, request_id, fulfillment.sms_code)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
