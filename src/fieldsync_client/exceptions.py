"""Errors raised by store calls.

Business failures always reach the caller. Transport failures are raised as
TransportError so callers can retry or fall back.
"""


class StoreError(Exception):
    """Base class for store call failures."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PermissionDenied(StoreError):
    """The caller may not perform the operation. Not retried."""


class ValidationFailed(StoreError):
    """Input rejected, either locally before sending or by the store."""


class GuardFailed(StoreError):
    """A transition precondition is not met; ``guard`` names which one."""

    def __init__(self, guard: str, message: str, status_code: int = 422):
        super().__init__(message, status_code)
        self.guard = guard


class Conflict(StoreError):
    """The row changed or disappeared under the caller. Refetch, do not retry blindly."""


class TransportError(StoreError):
    """The store could not be reached."""
