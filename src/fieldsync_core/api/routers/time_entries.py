"""Time tracking endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fieldsync_core import schemas, time_tracking
from fieldsync_core.api.dependencies import BUSINESS_ERRORS, CurrentUser, get_current_user, http_error
from fieldsync_core.exceptions import PermissionDeniedError

from ...database import get_db

logger = logging.getLogger("fieldsync-core.time_entries")

router = APIRouter(tags=["time-entries"])


@router.post("/", response_model=schemas.TimeEntryResponse, status_code=201)
def record_entry(
    entry: schemas.TimeEntryCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Record a clock event for the caller.

    - **entry_type**: check_in, pause_start, pause_end or check_out

    Returns 400 when the event does not follow the current clock state.
    """
    try:
        return time_tracking.record_entry(db, current_user.user_id, entry.entry_type)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.get("/today", response_model=schemas.ClockStateResponse)
def get_today(
    user_id: Optional[UUID] = Query(None, description="Another user's clock (admin only)"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Clock state, worked time and entries of the current business day."""
    target = user_id or current_user.user_id
    if target != current_user.user_id and not current_user.is_admin:
        raise http_error(PermissionDeniedError("Only admins can view other users' time entries"))

    entries = time_tracking.entries_for_day(db, target)
    state = time_tracking.clock_state(entries)
    return schemas.ClockStateResponse(
        user_id=target,
        state=state,
        checked_in=state == time_tracking.CLOCK_IN,
        worked_seconds=time_tracking.worked_seconds(entries),
        entries=[schemas.TimeEntryResponse.model_validate(e) for e in entries],
    )
