"""
Workflow error taxonomy.

Services raise these after rolling back; the app exception handler turns
status_code into the HTTP response. Notification failures never surface
as any of these.
"""


class WorkflowError(Exception):
    """Base class for errors surfaced to the caller."""
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(WorkflowError):
    """Bad input: missing notes, non-positive word count, unknown reference."""
    status_code = 400


class PermissionDenied(WorkflowError):
    """Caller's role may not perform this operation on this order."""
    status_code = 403


class NotFound(WorkflowError):
    """Order, user or template does not exist (or is not visible)."""
    status_code = 404


class IllegalTransition(WorkflowError):
    """Requested status change is not in the caller's adjacency list."""
    status_code = 409

    def __init__(self, from_status, to_status, role, reason: str = None):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        role_value = getattr(role, "value", role)
        message = reason or f"{role_value} cannot move an order from {from_value} to {to_value}"
        super().__init__(message, from_status=from_value, to_status=to_value, role=role_value)


class ConcurrencyConflict(WorkflowError):
    """Order changed since the caller read it."""
    status_code = 409


class PersistenceError(WorkflowError):
    """Store failure; the transaction was rolled back."""
    status_code = 500

    def __init__(self, message: str = "The operation could not be completed. No changes were saved."):
        super().__init__(message)
