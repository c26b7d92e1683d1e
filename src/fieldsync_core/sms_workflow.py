"""One-time code exchange between an assignee and the admins.

The assignee asks for a code, an admin delivers it, the assignee carries on.
Request rows are append-only for the requester: asking again inserts a new
``resend_requested`` row and never rewrites an earlier one. Admins only fill
in the code of an open row.

The *current* request of a task is the most recent row carrying a code, or
the most recent row overall when no code has been delivered yet.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .change_feed import UPDATE, record_change
from .exceptions import ConflictError, NotFoundError, PermissionDeniedError
from .lifecycle import _add_history, _display_name, _get_task, _require_assignee, _set_status
from .models import SmsRequestStatus, TaskStatus, TaskChangeType, NotificationType, utcnow
from .notifications import notify, notify_many
from .permissions import admin_ids, is_admin, require_admin
from .state_machine import validate_transition

logger = logging.getLogger("fieldsync-core.sms_workflow")


def get_sms_requests(db: Session, viewer_id: UUID, task_id: Optional[UUID] = None) -> list[models.SmsCodeRequest]:
    """List code requests visible to the viewer (admins: all, employees: their own), newest first."""
    query = db.query(models.SmsCodeRequest)
    if not is_admin(db, viewer_id):
        query = query.filter(models.SmsCodeRequest.user_id == viewer_id)
    if task_id is not None:
        query = query.filter(models.SmsCodeRequest.task_id == task_id)
    return query.order_by(models.SmsCodeRequest.requested_at.desc()).all()


def current_sms_request(db: Session, task_id: UUID) -> Optional[models.SmsCodeRequest]:
    """Return the current code request of a task, if any."""
    with_code = db.query(models.SmsCodeRequest).filter(
        models.SmsCodeRequest.task_id == task_id,
        models.SmsCodeRequest.sms_code.isnot(None),
    ).order_by(models.SmsCodeRequest.requested_at.desc()).first()
    if with_code is not None:
        return with_code
    return db.query(models.SmsCodeRequest).filter(
        models.SmsCodeRequest.task_id == task_id,
    ).order_by(models.SmsCodeRequest.requested_at.desc()).first()


def request_sms_code(db: Session, user_id: UUID, task_id: UUID) -> models.SmsCodeRequest:
    """
    Ask the admins for a one-time code (in_progress → sms_requested).

    The first request of a task is ``pending``; any later one is a new
    ``resend_requested`` row.

    Args:
        db: Database session
        user_id: Assignee asking for the code
        task_id: Task UUID

    Returns:
        Created SmsCodeRequest

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        StateTransitionError: If the task is not accepted or already closed
        ConflictError: If the task changed concurrently
    """
    task = _get_task(db, task_id)
    _require_assignee(task, user_id)
    validate_transition(task.status, TaskStatus.SMS_REQUESTED)

    has_prior = db.query(models.SmsCodeRequest.id).filter(
        models.SmsCodeRequest.task_id == task.id,
    ).first() is not None
    status = SmsRequestStatus.RESEND_REQUESTED if has_prior else SmsRequestStatus.PENDING

    if task.status != TaskStatus.SMS_REQUESTED:
        _set_status(db, task, TaskStatus.SMS_REQUESTED, [TaskStatus.IN_PROGRESS], assignee_id=user_id)

    request = models.SmsCodeRequest(task_id=task.id, user_id=user_id, status=status, requested_at=utcnow())
    db.add(request)

    _add_history(db, task.id, TaskChangeType.SMS_REQUESTED, user_id, new_value=status.value)
    notify_many(
        db, admin_ids(db), NotificationType.SMS_REQUESTED,
        title="SMS code requested" if not has_prior else "SMS code resend requested",
        message=f"{_display_name(db, user_id)} needs a code for: {task.title}",
        related_task_id=task.id,
    )

    db.commit()
    db.refresh(request)
    logger.info(f"User {user_id} requested an SMS code for task {task.id} ({status.value})")
    return request


def resend_sms_code(db: Session, user_id: UUID, task_id: UUID) -> models.SmsCodeRequest:
    """Ask again for a code; always inserts a new row."""
    return request_sms_code(db, user_id, task_id)


def fulfill_sms_code(db: Session, admin_id: UUID, request_id: UUID, sms_code: str) -> models.SmsCodeRequest:
    """
    Deliver a code on an open request.

    Args:
        db: Database session
        admin_id: Admin delivering the code
        request_id: Request row
        sms_code: The code

    Returns:
        Updated SmsCodeRequest

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the request does not exist
        ValueError: If the code is blank
        ConflictError: If a code was already delivered on this row
    """
    require_admin(db, admin_id)
    sms_code = sms_code.strip()
    if not sms_code:
        raise ValueError("SMS code must not be blank")

    request = db.query(models.SmsCodeRequest).filter(models.SmsCodeRequest.id == request_id).first()
    if not request:
        raise NotFoundError("SMS code request", request_id)

    updated = db.query(models.SmsCodeRequest).filter(
        models.SmsCodeRequest.id == request.id,
        models.SmsCodeRequest.sms_code.is_(None),
    ).update({
        models.SmsCodeRequest.sms_code: sms_code,
        models.SmsCodeRequest.status: SmsRequestStatus.FULFILLED,
        models.SmsCodeRequest.fulfilled_at: utcnow(),
    }, synchronize_session=False)
    if updated == 0:
        db.rollback()
        raise ConflictError(f"A code was already delivered for request {request_id}")
    record_change(db, models.SmsCodeRequest, UPDATE, request.id, user_ids=[request.user_id])

    task = request.task
    _add_history(db, task.id, TaskChangeType.SMS_CODE_DELIVERED, admin_id)
    notify(
        db, request.user_id, NotificationType.SMS_CODE_RECEIVED,
        title="SMS code received",
        message=f"Your code for \"{task.title}\" has arrived",
        related_task_id=task.id,
    )

    db.commit()
    db.refresh(request)
    logger.info(f"Admin {admin_id} delivered the SMS code for request {request.id}")
    return request


def resume_task(db: Session, user_id: UUID, task_id: UUID) -> models.Task:
    """
    Continue work once a code has arrived (sms_requested → in_progress).

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        StateTransitionError: If the task is not waiting for a code
        ConflictError: If no code has been delivered yet or the task changed concurrently
    """
    task = _get_task(db, task_id)
    _require_assignee(task, user_id)
    if task.status == TaskStatus.IN_PROGRESS:
        return task
    validate_transition(task.status, TaskStatus.IN_PROGRESS)
    if task.status != TaskStatus.SMS_REQUESTED:
        raise PermissionDeniedError(f"Task {task_id} is {task.status.value}; only the admins can reopen it")

    current = current_sms_request(db, task.id)
    if current is None or current.sms_code is None:
        raise ConflictError("No SMS code has been delivered yet")

    _set_status(db, task, TaskStatus.IN_PROGRESS, [TaskStatus.SMS_REQUESTED], assignee_id=user_id)
    _add_history(db, task.id, TaskChangeType.STATUS_CHANGED, user_id,
                 old_value=TaskStatus.SMS_REQUESTED.value, new_value=TaskStatus.IN_PROGRESS.value)
    db.commit()
    db.refresh(task)
    logger.info(f"User {user_id} resumed task {task.id}")
    return task
