"""State machine validation for task lifecycle status transitions.

Enforces valid status transitions to keep field work consistent:
- A task must be assigned before it can be accepted (pending → assigned → in_progress)
- The one-time code exchange loops between in_progress and sms_requested
- Completion optionally passes through pending_review when review mode is enabled
- Completed and cancelled tasks are terminal
"""
import logging

from .models import TaskStatus

logger = logging.getLogger("fieldsync-core.state_machine")


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_status: TaskStatus,
        requested_status: TaskStatus,
        allowed_transitions: list[TaskStatus]
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# State machine transition matrix
# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.PENDING: [
        TaskStatus.PENDING,          # No-op (allowed)
        TaskStatus.ASSIGNED,         # Forward: admin assigns an employee
        TaskStatus.CANCELLED,        # Terminal: withdrawn by admin
    ],
    TaskStatus.ASSIGNED: [
        TaskStatus.ASSIGNED,         # No-op (allowed, also used by reassignment)
        TaskStatus.IN_PROGRESS,      # Forward: assignee accepts
        TaskStatus.PENDING,          # Back: assignee returns the task
        TaskStatus.CANCELLED,        # Terminal: withdrawn by admin
    ],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.IN_PROGRESS,      # No-op (allowed)
        TaskStatus.SMS_REQUESTED,    # Sub-workflow: one-time code requested
        TaskStatus.COMPLETED,        # Forward: work done
        TaskStatus.PENDING_REVIEW,   # Forward: work done, review mode
        TaskStatus.PENDING,          # Back: assignee returns the task
        TaskStatus.ASSIGNED,         # Back: admin reassigns
        TaskStatus.CANCELLED,        # Terminal: withdrawn by admin
    ],
    TaskStatus.SMS_REQUESTED: [
        TaskStatus.SMS_REQUESTED,    # No-op (allowed, resend)
        TaskStatus.IN_PROGRESS,      # Back: code delivered, work resumes
        TaskStatus.COMPLETED,        # Forward: work done
        TaskStatus.PENDING_REVIEW,   # Forward: work done, review mode
        TaskStatus.PENDING,          # Back: assignee returns the task
        TaskStatus.ASSIGNED,         # Back: admin reassigns
        TaskStatus.CANCELLED,        # Terminal: withdrawn by admin
    ],
    TaskStatus.PENDING_REVIEW: [
        TaskStatus.PENDING_REVIEW,   # No-op (allowed)
        TaskStatus.COMPLETED,        # Forward: admin approves
        TaskStatus.IN_PROGRESS,      # Back: admin sends it back for rework
        TaskStatus.CANCELLED,        # Terminal: withdrawn by admin
    ],
    TaskStatus.COMPLETED: [
        TaskStatus.COMPLETED,        # No-op (allowed)
        # Note: COMPLETED is terminal
    ],
    TaskStatus.CANCELLED: [
        TaskStatus.CANCELLED,        # No-op (allowed)
        # Note: CANCELLED is terminal
    ],
}

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})

# Statuses in which the assignee holds the task and may request codes, complete or return it
WORKING_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED)

# Statuses counted as "active" in the admin overview
ACTIVE_STATUSES: tuple[TaskStatus, ...] = (
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.SMS_REQUESTED,
    TaskStatus.PENDING_REVIEW,
)


def is_transition_valid(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> bool:
    """
    Check if a status transition is valid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
    return new_status in allowed_transitions


def validate_transition(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Raises:
        StateTransitionError: If the transition is not allowed
    """
    # No-op transitions are always allowed (setting same status)
    if current_status == new_status:
        logger.debug(f"No-op transition: {current_status.value} → {new_status.value}")
        return

    if not is_transition_valid(current_status, new_status):
        allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
        allowed_names = [s.value for s in allowed_transitions if s != current_status]

        if allowed_names:
            error_msg = (
                f"Invalid status transition: {current_status.value} → {new_status.value}. "
                f"From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."
            )
        else:
            error_msg = f"Invalid status transition: {current_status.value} → {new_status.value}."

        # Add helpful guidance based on the attempted transition
        if current_status == TaskStatus.PENDING and new_status == TaskStatus.IN_PROGRESS:
            error_msg += " The task must be assigned to an employee before it can be accepted."
        elif current_status == TaskStatus.ASSIGNED and new_status in (TaskStatus.COMPLETED, TaskStatus.SMS_REQUESTED):
            error_msg += " The assignee has to accept the task first."
        elif current_status in TERMINAL_STATUSES:
            error_msg += f" {current_status.value.capitalize()} tasks are terminal. Create a new task instead."

        logger.warning(f"Blocked transition: {error_msg}")
        raise StateTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=allowed_transitions
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    """
    Get list of allowed transitions from current status.

    Args:
        current_status: Current task status

    Returns:
        List of allowed next statuses (excluding no-op same status)
    """
    all_transitions = TRANSITION_MATRIX.get(current_status, [])
    # Filter out the no-op transition (same status)
    return [s for s in all_transitions if s != current_status]


def sources_for(new_status: TaskStatus) -> list[TaskStatus]:
    """Statuses from which ``new_status`` may be reached (excluding itself).

    Used as the ``WHERE status IN (...)`` clause of conditional updates.
    """
    return [
        current for current, allowed in TRANSITION_MATRIX.items()
        if current != new_status and new_status in allowed
    ]


# Status sort order for list queries
# Lower number = higher priority (shown first)
STATUS_SORT_ORDER: dict[TaskStatus, int] = {
    TaskStatus.SMS_REQUESTED: 1,    # Assignee is blocked on an admin
    TaskStatus.PENDING_REVIEW: 2,   # Needs admin approval
    TaskStatus.IN_PROGRESS: 3,      # Actively worked on
    TaskStatus.ASSIGNED: 4,         # Waiting for the assignee
    TaskStatus.PENDING: 5,          # Backlog
    TaskStatus.COMPLETED: 6,        # Done
    TaskStatus.CANCELLED: 7,        # Withdrawn
}
