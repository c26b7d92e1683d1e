"""Task lifecycle operations.

Every operation runs as one transaction and changes task status with a
conditional ``UPDATE ... WHERE status IN (...)``. When the row no longer has
an expected status (another client got there first) nothing is written and
ConflictError is raised; callers refetch instead of retrying blindly.

Assignment relies on two safeguards in the same transaction:
- the conditional pending → assigned status update
- the unique constraint on ``task_assignments.task_id``
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .change_feed import DELETE, UPDATE, record_change
from .config import get_settings
from .documents import has_supporting_document
from .exceptions import (
    AssignmentConflictError,
    ConflictError,
    GuardError,
    NotFoundError,
    PermissionDeniedError,
)
from .models import TaskStatus, TaskChangeType, NotificationType, utcnow
from .notifications import notify, notify_many
from .permissions import admin_ids, is_admin, require_admin, require_employee
from .state_machine import (
    TERMINAL_STATUSES,
    WORKING_STATUSES,
    STATUS_SORT_ORDER,
    StateTransitionError,
    get_allowed_transitions,
    validate_transition,
    sources_for,
)
from .time_tracking import is_checked_in

logger = logging.getLogger("fieldsync-core.lifecycle")

GUARD_NOT_CHECKED_IN = "not_checked_in"
GUARD_NO_DOCUMENTS = "no_documents"


# ============================================================================
# Helpers
# ============================================================================

def _get_task(db: Session, task_id: UUID) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        raise NotFoundError("Task", task_id)
    return task


def _require_assignee(task: models.Task, user_id: UUID) -> models.TaskAssignment:
    assignment = task.assignment
    if assignment is None or assignment.user_id != user_id:
        logger.warning(f"User {user_id} is not the assignee of task {task.id}")
        raise PermissionDeniedError("Only the assigned employee can do this")
    return assignment


def _display_name(db: Session, user_id: UUID) -> str:
    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    return profile.full_name if profile else "An employee"


def _add_history(
    db: Session,
    task_id: UUID,
    change_type: TaskChangeType,
    user_id: Optional[UUID],
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    comment: Optional[str] = None,
) -> None:
    db.add(models.TaskHistory(
        task_id=task_id,
        change_type=change_type,
        old_value=old_value,
        new_value=new_value,
        comment=comment,
        changed_by=user_id,
    ))


def _set_status(
    db: Session,
    task: models.Task,
    new_status: TaskStatus,
    from_statuses: list[TaskStatus],
    assignee_id: Optional[UUID] = None,
) -> None:
    """
    Conditionally move a task to ``new_status``.

    Raises:
        ConflictError: If the task's stored status is not in ``from_statuses``
    """
    updated = db.query(models.Task).filter(
        models.Task.id == task.id,
        models.Task.status.in_(from_statuses),
    ).update(
        {models.Task.status: new_status, models.Task.updated_at: utcnow()},
        synchronize_session=False,
    )
    if updated == 0:
        db.rollback()
        logger.warning(f"Conflict moving task {task.id} to {new_status.value}: status changed concurrently")
        raise ConflictError(f"Task {task.id} was changed by someone else. Refresh and try again.")
    record_change(db, models.Task, UPDATE, task.id, user_ids=[assignee_id])


def _commit_and_refresh(db: Session, task: models.Task) -> models.Task:
    db.commit()
    db.refresh(task)
    return task


# ============================================================================
# Queries
# ============================================================================

def get_task(db: Session, viewer_id: UUID, task_id: UUID) -> models.Task:
    """
    Get a task visible to the viewer (admins see all, employees their assigned tasks).

    Raises:
        NotFoundError: If the task does not exist or is not visible
    """
    task = _get_task(db, task_id)
    if not is_admin(db, viewer_id):
        if task.assignment is None or task.assignment.user_id != viewer_id:
            raise NotFoundError("Task", task_id)
    return task


def get_tasks(
    db: Session,
    viewer_id: UUID,
    status: Optional[TaskStatus] = None,
    include_closed: bool = True,
) -> list[models.Task]:
    """
    List tasks visible to the viewer.

    Tasks are ordered by workflow urgency (see STATUS_SORT_ORDER), newest first within a status.

    Args:
        db: Database session
        viewer_id: Requesting user
        status: Only tasks with this status
        include_closed: Include completed/cancelled tasks

    Returns:
        List of Task objects
    """
    query = db.query(models.Task)
    if not is_admin(db, viewer_id):
        query = query.join(models.TaskAssignment).filter(models.TaskAssignment.user_id == viewer_id)
    if status is not None:
        query = query.filter(models.Task.status == status)
    elif not include_closed:
        query = query.filter(models.Task.status.notin_(list(TERMINAL_STATUSES)))
    tasks = query.order_by(models.Task.created_at.desc()).all()
    return sorted(tasks, key=lambda t: STATUS_SORT_ORDER.get(t.status, 99))


def get_assignments(db: Session, viewer_id: UUID) -> list[models.TaskAssignment]:
    """List assignments visible to the viewer."""
    query = db.query(models.TaskAssignment)
    if not is_admin(db, viewer_id):
        query = query.filter(models.TaskAssignment.user_id == viewer_id)
    return query.order_by(models.TaskAssignment.assigned_at.desc()).all()


def get_task_history(
    db: Session,
    task_id: UUID,
    limit: int = 50,
) -> list[models.TaskHistory]:
    """
    Get history for a task.

    Args:
        db: Database session
        task_id: Task UUID
        limit: Maximum number of entries to return

    Returns:
        List of TaskHistory entries, newest first
    """
    return db.query(models.TaskHistory).filter(
        models.TaskHistory.task_id == task_id
    ).order_by(
        models.TaskHistory.changed_at.desc()
    ).limit(limit).all()


# ============================================================================
# Admin operations
# ============================================================================

def create_task(
    db: Session,
    admin_id: UUID,
    task_data: schemas.TaskCreate,
) -> models.Task:
    """
    Create a new pending task.

    Args:
        db: Database session
        admin_id: UUID of the admin creating the task
        task_data: Validated task fields

    Returns:
        Created Task object

    Raises:
        PermissionDeniedError: If the caller is not an admin
    """
    require_admin(db, admin_id)

    task = models.Task(
        title=task_data.title,
        description=task_data.description,
        customer_name=task_data.customer_name,
        customer_phone=task_data.customer_phone,
        deadline=task_data.deadline,
        priority=task_data.priority,
        special_compensation=task_data.special_compensation,
        test_email=task_data.test_email,
        test_password=task_data.test_password,
        web_ident_url=task_data.web_ident_url,
        status=TaskStatus.PENDING,
        created_by=admin_id,
    )
    db.add(task)
    db.flush()  # Get task ID for history

    _add_history(db, task.id, TaskChangeType.CREATED, admin_id, new_value=task.title)

    _commit_and_refresh(db, task)
    logger.info(f"Created task {task.id}: {task.title}")
    return task


def update_task(
    db: Session,
    admin_id: UUID,
    task_id: UUID,
    task_update: schemas.TaskUpdate,
) -> models.Task:
    """
    Edit task details (not status).

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task does not exist
        ValueError: If the task is closed
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)
    if task.status in TERMINAL_STATUSES:
        raise ValueError(f"Task is already {task.status.value}")

    changes = task_update.model_dump(exclude_unset=True)
    for field_name in ("title", "customer_name"):
        if field_name in changes and (changes[field_name] is None or not changes[field_name].strip()):
            raise ValueError(f"{field_name} must not be blank")

    for field_name, value in changes.items():
        setattr(task, field_name, value)

    if changes:
        _add_history(db, task.id, TaskChangeType.UPDATED, admin_id, comment=f"Updated fields: {', '.join(sorted(changes))}")
    return _commit_and_refresh(db, task)


def assign_task(
    db: Session,
    admin_id: UUID,
    task_id: UUID,
    user_id: UUID,
) -> models.Task:
    """
    Assign a pending task to an employee (pending → assigned).

    Two admins assigning the same task concurrently: exactly one succeeds, the
    other gets AssignmentConflictError.

    Args:
        db: Database session
        admin_id: Admin making the assignment
        task_id: Task UUID
        user_id: Employee to assign

    Returns:
        Updated Task

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task or user does not exist
        ValueError: If the user is not an employee
        AssignmentConflictError: If the task is already assigned or no longer pending
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)
    require_employee(db, user_id)

    if task.status != TaskStatus.PENDING:
        raise AssignmentConflictError(f"Task {task_id} is {task.status.value}, not pending")

    try:
        _set_status(db, task, TaskStatus.ASSIGNED, [TaskStatus.PENDING], assignee_id=user_id)
        db.add(models.TaskAssignment(task_id=task.id, user_id=user_id))
        db.flush()
    except ConflictError as e:
        raise AssignmentConflictError(str(e)) from e
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Assignment race lost for task {task_id}: {e.orig}")
        raise AssignmentConflictError(f"Task {task_id} already has an assignee") from e

    _add_history(db, task.id, TaskChangeType.ASSIGNED, admin_id, new_value=str(user_id))
    notify(
        db, user_id, NotificationType.TASK_ASSIGNED,
        title="New task assigned",
        message=f"You have been assigned: {task.title}",
        related_task_id=task.id,
    )

    _commit_and_refresh(db, task)
    logger.info(f"Assigned task {task.id} to {user_id}")
    return task


def reassign_task(
    db: Session,
    admin_id: UUID,
    task_id: UUID,
    user_id: UUID,
) -> models.Task:
    """
    Replace a task's assignee in one transaction. The task goes back to assigned.

    A pending task is simply assigned.

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task or user does not exist
        StateTransitionError: If the task is closed
        ConflictError: If the task changed concurrently
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)
    if task.status == TaskStatus.PENDING:
        return assign_task(db, admin_id, task_id, user_id)

    require_employee(db, user_id)
    validate_transition(task.status, TaskStatus.ASSIGNED)

    previous = task.assignment
    if previous is not None and previous.user_id == user_id:
        return task

    holding_statuses = [TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED]
    _set_status(db, task, TaskStatus.ASSIGNED, holding_statuses, assignee_id=user_id)
    old_value = None
    if previous is not None:
        old_value = str(previous.user_id)
        record_change(db, models.Task, UPDATE, task.id, user_ids=[previous.user_id], include_admins=False)
        db.delete(previous)
        db.flush()

    try:
        db.add(models.TaskAssignment(task_id=task.id, user_id=user_id))
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise AssignmentConflictError(f"Task {task_id} was reassigned concurrently") from e

    _add_history(db, task.id, TaskChangeType.REASSIGNED, admin_id, old_value=old_value, new_value=str(user_id))
    notify(
        db, user_id, NotificationType.TASK_ASSIGNED,
        title="New task assigned",
        message=f"You have been assigned: {task.title}",
        related_task_id=task.id,
    )

    _commit_and_refresh(db, task)
    logger.info(f"Reassigned task {task.id} from {old_value} to {user_id}")
    return task


def approve_task(db: Session, admin_id: UUID, task_id: UUID) -> models.Task:
    """
    Approve reviewed work (pending_review → completed).

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task does not exist
        StateTransitionError: If the task is not awaiting review
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)
    if task.status != TaskStatus.PENDING_REVIEW:
        raise StateTransitionError(
            message=f"Task {task_id} is {task.status.value}, not awaiting review.",
            current_status=task.status,
            requested_status=TaskStatus.COMPLETED,
            allowed_transitions=get_allowed_transitions(task.status),
        )

    assignee_id = task.assignment.user_id if task.assignment else None
    _set_status(db, task, TaskStatus.COMPLETED, [TaskStatus.PENDING_REVIEW], assignee_id=assignee_id)
    _add_history(db, task.id, TaskChangeType.APPROVED, admin_id,
                 old_value=TaskStatus.PENDING_REVIEW.value, new_value=TaskStatus.COMPLETED.value)

    _commit_and_refresh(db, task)
    logger.info(f"Approved task {task.id}")
    return task


def cancel_task(db: Session, admin_id: UUID, task_id: UUID) -> models.Task:
    """
    Cancel a task from any non-terminal status. The assignee is notified.

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task does not exist
        StateTransitionError: If the task is already closed
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)
    validate_transition(task.status, TaskStatus.CANCELLED)
    if task.status == TaskStatus.CANCELLED:
        return task

    old_status = task.status
    assignee_id = task.assignment.user_id if task.assignment else None
    _set_status(db, task, TaskStatus.CANCELLED, sources_for(TaskStatus.CANCELLED), assignee_id=assignee_id)
    _add_history(db, task.id, TaskChangeType.CANCELLED, admin_id,
                 old_value=old_status.value, new_value=TaskStatus.CANCELLED.value)
    if assignee_id is not None:
        notify(
            db, assignee_id, NotificationType.TASK_CANCELLED,
            title="Task cancelled",
            message=f"The task \"{task.title}\" was cancelled",
            related_task_id=task.id,
        )

    _commit_and_refresh(db, task)
    logger.info(f"Cancelled task {task.id}")
    return task


def delete_task(db: Session, admin_id: UUID, task_id: UUID) -> None:
    """
    Hard-delete a task with its assignment, code requests, history and notifications.

    Documents attached to the task are kept and detached. All of it happens in
    one transaction.

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the task does not exist
    """
    require_admin(db, admin_id)
    task = _get_task(db, task_id)

    notification_rows = db.query(models.Notification.id, models.Notification.user_id).filter(
        models.Notification.related_task_id == task.id
    ).all()
    if notification_rows:
        db.query(models.Notification).filter(
            models.Notification.related_task_id == task.id
        ).delete(synchronize_session=False)
        for notification_id, owner_id in notification_rows:
            record_change(db, models.Notification, DELETE, notification_id, user_ids=[owner_id], include_admins=False)

    document_rows = db.query(models.Document.id, models.Document.user_id).filter(
        models.Document.task_id == task.id
    ).all()
    if document_rows:
        db.query(models.Document).filter(
            models.Document.task_id == task.id
        ).update({models.Document.task_id: None}, synchronize_session=False)
        for document_id, owner_id in document_rows:
            record_change(db, models.Document, UPDATE, document_id, user_ids=[owner_id])

    assignee_id = task.assignment.user_id if task.assignment else None
    if assignee_id is not None:
        record_change(db, models.Task, DELETE, task.id, user_ids=[assignee_id], include_admins=False)

    # Assignment, code requests and history go through the ORM cascade
    db.delete(task)
    db.commit()
    logger.info(f"Deleted task {task_id}")


# ============================================================================
# Assignee operations
# ============================================================================

def accept_task(
    db: Session,
    user_id: UUID,
    task_id: UUID,
    now: Optional[datetime] = None,
) -> models.Task:
    """
    Accept an assigned task (assigned → in_progress).

    Repeating the call on an accepted task is a no-op: ``accepted_at`` keeps
    its first value.

    Args:
        db: Database session
        user_id: Assignee
        task_id: Task UUID
        now: Reference time for the check-in guard (naive UTC)

    Returns:
        The task

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        StateTransitionError: If the task cannot be accepted from its status
        GuardError: If the caller is not checked in (``not_checked_in``)
        ConflictError: If the task changed concurrently
    """
    task = _get_task(db, task_id)
    assignment = _require_assignee(task, user_id)

    if assignment.accepted_at is not None:
        logger.debug(f"Task {task_id} already accepted by {user_id}; nothing to do")
        return task

    validate_transition(task.status, TaskStatus.IN_PROGRESS)
    if task.status != TaskStatus.ASSIGNED:
        raise ConflictError(f"Task {task_id} is {task.status.value}, not assigned")

    if not is_checked_in(db, user_id, now=now):
        logger.warning(f"Accept blocked for task {task_id}: user {user_id} is not checked in")
        raise GuardError(GUARD_NOT_CHECKED_IN, "You need to check in before you can accept a task.")

    accepted_at = now or utcnow()
    claimed = db.query(models.TaskAssignment).filter(
        models.TaskAssignment.id == assignment.id,
        models.TaskAssignment.accepted_at.is_(None),
    ).update({models.TaskAssignment.accepted_at: accepted_at}, synchronize_session=False)
    if claimed == 0:
        # Accepted concurrently by another session of the same user
        db.rollback()
        db.refresh(task)
        return task
    record_change(db, models.TaskAssignment, UPDATE, assignment.id, user_ids=[user_id])

    _set_status(db, task, TaskStatus.IN_PROGRESS, [TaskStatus.ASSIGNED], assignee_id=user_id)
    _add_history(db, task.id, TaskChangeType.ACCEPTED, user_id,
                 old_value=TaskStatus.ASSIGNED.value, new_value=TaskStatus.IN_PROGRESS.value)
    notify_many(
        db, admin_ids(db), NotificationType.TASK_ACCEPTED,
        title="Task accepted",
        message=f"{_display_name(db, user_id)} accepted: {task.title}",
        related_task_id=task.id,
    )

    db.commit()
    db.refresh(task)
    db.refresh(assignment)
    logger.info(f"User {user_id} accepted task {task.id}")
    return task


def update_progress(
    db: Session,
    user_id: UUID,
    task_id: UUID,
    progress: schemas.ProgressUpdate,
) -> models.TaskAssignment:
    """
    Record the assignee's notes and workflow step.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        ValueError: If the task has not been accepted or is closed
    """
    task = _get_task(db, task_id)
    assignment = _require_assignee(task, user_id)
    if task.status not in WORKING_STATUSES:
        raise ValueError(f"Progress can only be recorded on accepted, open tasks (task is {task.status.value})")

    changes = progress.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(assignment, field_name, value)

    if changes:
        _add_history(db, task.id, TaskChangeType.PROGRESS_UPDATED, user_id,
                     new_value=str(assignment.workflow_step), comment=assignment.progress_notes)
    db.commit()
    db.refresh(assignment)
    return assignment


def complete_task(
    db: Session,
    user_id: UUID,
    task_id: UUID,
    notes: Optional[str] = None,
) -> models.Task:
    """
    Complete an accepted task (in_progress/sms_requested → completed).

    With review mode enabled the task lands in pending_review instead. Admins
    get a ``task_completed`` notification either way.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        StateTransitionError: If the task cannot be completed from its status
        GuardError: If no document for the task was uploaded (``no_documents``)
        ConflictError: If the task changed concurrently
    """
    task = _get_task(db, task_id)
    assignment = _require_assignee(task, user_id)

    target = TaskStatus.PENDING_REVIEW if get_settings().require_review else TaskStatus.COMPLETED
    validate_transition(task.status, target)
    if task.status == target:
        return task

    if not has_supporting_document(db, task.id, user_id):
        logger.warning(f"Completion blocked for task {task_id}: no documents from user {user_id}")
        raise GuardError(GUARD_NO_DOCUMENTS, "Upload at least one document for this task before completing it.")

    old_status = task.status
    _set_status(db, task, target, list(WORKING_STATUSES), assignee_id=user_id)
    if notes is not None:
        assignment.progress_notes = notes

    _add_history(db, task.id, TaskChangeType.COMPLETED, user_id,
                 old_value=old_status.value, new_value=target.value, comment=notes)
    notify_many(
        db, admin_ids(db), NotificationType.TASK_COMPLETED,
        title="Task completed",
        message=f"{_display_name(db, user_id)} completed: {task.title}",
        related_task_id=task.id,
    )

    _commit_and_refresh(db, task)
    logger.info(f"User {user_id} completed task {task.id} ({target.value})")
    return task


def return_task(db: Session, user_id: UUID, task_id: UUID) -> models.Task:
    """
    Give a task back (assigned/in_progress/sms_requested → pending).

    The assignment row is removed so the task can be assigned again.

    Raises:
        NotFoundError: If the task does not exist
        PermissionDeniedError: If the caller is not the assignee
        StateTransitionError: If the task cannot be returned from its status
        ConflictError: If the task changed concurrently
    """
    task = _get_task(db, task_id)
    assignment = _require_assignee(task, user_id)
    validate_transition(task.status, TaskStatus.PENDING)

    old_status = task.status
    _set_status(
        db, task, TaskStatus.PENDING,
        [TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED],
        assignee_id=user_id,
    )
    db.delete(assignment)

    _add_history(db, task.id, TaskChangeType.RETURNED, user_id,
                 old_value=old_status.value, new_value=TaskStatus.PENDING.value)
    notify_many(
        db, admin_ids(db), NotificationType.TASK_RETURNED,
        title="Task returned",
        message=f"{_display_name(db, user_id)} returned: {task.title}",
        related_task_id=task.id,
    )

    _commit_and_refresh(db, task)
    logger.info(f"User {user_id} returned task {task.id}")
    return task


# Statuses in which a task is still held by its assignee
HOLDING_STATUSES = [TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED]


def release_user_tasks(db: Session, admin_id: UUID, user_id: UUID) -> list[UUID]:
    """
    Drop every assignment of a user who is being removed. Does not commit.

    Held tasks go back to ``pending``. Tasks awaiting review keep their status so
    the delivered work can still be approved. Closed tasks only lose the row.

    Returns:
        IDs of the tasks that went back to pending

    Raises:
        ConflictError: If a held task changed concurrently
    """
    released = []
    assignments = db.query(models.TaskAssignment).filter(models.TaskAssignment.user_id == user_id).all()
    for assignment in assignments:
        task = assignment.task
        old_status = task.status
        if old_status in HOLDING_STATUSES:
            validate_transition(old_status, TaskStatus.PENDING)
            _set_status(db, task, TaskStatus.PENDING, HOLDING_STATUSES, assignee_id=user_id)
            _add_history(db, task.id, TaskChangeType.RETURNED, admin_id,
                         old_value=old_status.value, new_value=TaskStatus.PENDING.value,
                         comment="Assignee removed")
            released.append(task.id)
        elif old_status == TaskStatus.PENDING_REVIEW:
            _add_history(db, task.id, TaskChangeType.UNASSIGNED, admin_id,
                         old_value=str(user_id), comment="Assignee removed; awaiting review")
        db.delete(assignment)

    if released:
        logger.info(f"Released {len(released)} tasks held by {user_id}")
    return released
