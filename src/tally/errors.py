"""Error taxonomy shared by services and the HTTP edge.

Every expected outcome of an operation is one of four kinds:
- ValidationError: precondition, state or role violation the caller can fix
- NotFoundError: entity absent or outside the actor's firm
- ConflictError: concurrent duplicate creation
- PermissionDeniedError: role lacks the capability

Anything else is an unexpected failure.
"""

from __future__ import annotations

from typing import Any


class TallyError(Exception):
    """Base class for expected, typed failures."""

    code = "ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(TallyError):
    """Raised when a precondition, state or role check fails."""

    code = "VALIDATION_ERROR"


class NotFoundError(TallyError):
    """Raised when an entity does not exist within the actor's firm."""

    code = "NOT_FOUND"


class ConflictError(TallyError):
    """Raised when a concurrent request created the same entity first."""

    code = "CONFLICT"


class PermissionDeniedError(TallyError):
    """Raised when the actor's role lacks a capability."""

    code = "PERMISSION_DENIED"

    def __init__(self, message: str = "Permission denied", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class InvalidTransitionError(ValidationError):
    """Raised when an invalid pay run state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"from_status": from_status, "to_status": to_status, "reason": reason},
        )
