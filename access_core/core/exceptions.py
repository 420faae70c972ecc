"""Exception taxonomy for the access core."""

from typing import Optional, Sequence


class AccessCoreError(Exception):
    """Base exception for the access core."""

    status_code = 400

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class UnauthenticatedError(AccessCoreError):
    """Raised when no caller identity can be resolved."""
    status_code = 401


class PermissionDeniedError(AccessCoreError):
    """Raised when a role, rank, organization or management rule fails.

    ``constraint`` is the rule class shown to the client; ``resolved_role`` and
    ``required`` are kept for logging only.
    """
    status_code = 403

    def __init__(
        self,
        constraint: str,
        resolved_role: Optional[str] = None,
        required: Optional[Sequence] = None,
        message: Optional[str] = None,
    ):
        self.constraint = constraint
        self.resolved_role = resolved_role
        self.required = list(required) if required is not None else []
        super().__init__(message or f"Insufficient permissions: {constraint} requirement not met")


class NotFoundError(AccessCoreError):
    """Raised when a target is absent or outside the caller's scope."""
    status_code = 404

    def __init__(self, entity_type: str = "Resource"):
        super().__init__(f"{entity_type} not found")


class ValidationFailedError(AccessCoreError):
    """Raised when input to an operation is malformed."""
    status_code = 422


class InvalidLifecycleStateError(ValidationFailedError):
    """Raised when a record would be persisted as active but not existing."""

    def __init__(self, message: str = "active=true is not allowed when exists=false"):
        super().__init__(message)


class ConflictError(AccessCoreError):
    """Raised when an operation conflicts with the target's current state."""
    status_code = 409


class AuditImmutableError(ConflictError):
    """Raised on any attempt to change or remove an audit event."""

    def __init__(self, message: str = "Audit events are append-only"):
        super().__init__(message)


class StorageUnavailableError(AccessCoreError):
    """Raised when the persistence layer fails. Always retryable."""
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)
