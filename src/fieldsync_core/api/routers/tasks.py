"""Task lifecycle API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from fieldsync_core import lifecycle, schemas, models, sms_workflow
from fieldsync_core.api.dependencies import (
    BUSINESS_ERRORS,
    CurrentUser,
    get_current_user,
    http_error,
    require_admin_user,
)

from ...database import get_db

logger = logging.getLogger("fieldsync-core.tasks")

router = APIRouter(tags=["tasks"])


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """
    Create a new pending task (admin only).

    - **title**: Task title (required)
    - **customer_name**: Customer the work is done for (required)
    - **priority**: low, medium, high or urgent
    - **deadline**: Deadline (optional)
    - **special_compensation**: Extra pay, non-negative (optional)
    """
    try:
        return lifecycle.create_task(db, current_user.user_id, task_data)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.get("/", response_model=list[schemas.TaskResponse])
def list_tasks(
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    include_closed: bool = Query(True, description="Include completed/cancelled tasks"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List tasks visible to the caller.

    Admins see every task; employees see the tasks assigned to them.
    """
    return lifecycle.get_tasks(db, current_user.user_id, status=status, include_closed=include_closed)


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get a specific task by ID."""
    try:
        return lifecycle.get_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.patch("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: UUID,
    task_update: schemas.TaskUpdate,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Edit task details (admin only). Status changes use the lifecycle endpoints."""
    try:
        return lifecycle.update_task(db, current_user.user_id, task_id, task_update)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Delete a task with its assignment, code requests and history (admin only)."""
    try:
        lifecycle.delete_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return Response(status_code=204)


# ============================================================================
# Admin transitions
# ============================================================================

@router.post("/{task_id}/assign", response_model=schemas.TaskResponse)
def assign_task(
    task_id: UUID,
    assignment: schemas.TaskAssign,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """
    Assign a pending task to an employee.

    Returns 409 when the task already has an assignee (e.g. another admin was faster).
    """
    try:
        return lifecycle.assign_task(db, current_user.user_id, task_id, assignment.user_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/reassign", response_model=schemas.TaskResponse)
def reassign_task(
    task_id: UUID,
    assignment: schemas.TaskAssign,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Replace the assignee of an open task."""
    try:
        return lifecycle.reassign_task(db, current_user.user_id, task_id, assignment.user_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/approve", response_model=schemas.TaskResponse)
def approve_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Approve a task awaiting review."""
    try:
        return lifecycle.approve_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/cancel", response_model=schemas.TaskResponse)
def cancel_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
):
    """Cancel an open task."""
    try:
        return lifecycle.cancel_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


# ============================================================================
# Assignee transitions
# ============================================================================

@router.post("/{task_id}/accept", response_model=schemas.TaskResponse)
def accept_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Accept an assigned task.

    Requires being checked in (422 guard ``not_checked_in`` otherwise). Accepting
    twice is a no-op.
    """
    try:
        return lifecycle.accept_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/progress", response_model=schemas.AssignmentResponse)
def update_progress(
    task_id: UUID,
    progress: schemas.ProgressUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record progress notes and the current workflow step."""
    try:
        return lifecycle.update_progress(db, current_user.user_id, task_id, progress)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/complete", response_model=schemas.TaskResponse)
def complete_task(
    task_id: UUID,
    completion: Optional[schemas.TaskComplete] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Complete an accepted task.

    Requires at least one uploaded document for the task (422 guard ``no_documents``).
    """
    notes = completion.notes if completion else None
    try:
        return lifecycle.complete_task(db, current_user.user_id, task_id, notes=notes)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/return", response_model=schemas.TaskResponse)
def return_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Give the task back to the pool."""
    try:
        return lifecycle.return_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/resume", response_model=schemas.TaskResponse)
def resume_task(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Continue work after the SMS code arrived."""
    try:
        return sms_workflow.resume_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/{task_id}/sms-requests", response_model=schemas.SmsCodeRequestResponse, status_code=201)
def request_sms_code(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Ask the admins for a one-time code. Asking again inserts a resend request."""
    try:
        return sms_workflow.request_sms_code(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.get("/{task_id}/sms-requests/current", response_model=Optional[schemas.SmsCodeRequestResponse])
def get_current_sms_request(
    task_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current code request: the newest one with a code, else the newest one."""
    try:
        lifecycle.get_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return sms_workflow.current_sms_request(db, task_id)


@router.get("/{task_id}/history", response_model=list[schemas.TaskHistoryResponse])
def get_task_history(
    task_id: UUID,
    limit: int = Query(50, ge=1, le=100, description="Maximum number of history entries"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get change history for a task.

    - **task_id**: UUID of the task
    - **limit**: Maximum number of history entries to return (1-100)
    """
    try:
        task = lifecycle.get_task(db, current_user.user_id, task_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return lifecycle.get_task_history(db, task.id, limit)
