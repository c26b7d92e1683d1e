"""Business errors raised by FieldSync Core operations.

Routers translate these to HTTP responses; transport concerns stay out of the
operation modules.
"""


class NotFoundError(LookupError):
    """Raised when a referenced row does not exist (or is not visible to the caller)."""

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class PermissionDeniedError(Exception):
    """Raised when the caller's role or relationship to a row does not permit the operation."""


class ConflictError(Exception):
    """Raised when a concurrent change won a race. Retryable after a refetch."""


class AssignmentConflictError(ConflictError):
    """Raised when a task already has an assignee or is no longer pending."""


class GuardError(Exception):
    """Raised when a transition precondition is not met.

    ``guard`` is a stable machine-readable code (e.g. ``not_checked_in``) so
    clients can render an actionable message.
    """

    def __init__(self, guard: str, message: str):
        super().__init__(message)
        self.guard = guard
        self.message = message
