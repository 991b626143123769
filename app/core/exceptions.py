"""
Engine error kinds.

Every error is per-request: nothing raised here leaves an issue partially
written. Routes translate these into HTTP responses in app.main.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all issue engine errors."""

    code: str = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(EngineError):
    """Malformed input or a state transition the workflow does not allow."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    code = "INVALID_TRANSITION"


class ConflictError(EngineError):
    """Request is well-formed but conflicts with the issue's current state."""

    ALREADY_UPVOTED = "ALREADY_UPVOTED"
    NOT_UPVOTED = "NOT_UPVOTED"
    NOT_REPORTER = "NOT_REPORTER"
    NOT_TERMINAL = "NOT_TERMINAL"

    code = "CONFLICT"


class PermissionDeniedError(EngineError):
    """Actor's role does not allow the requested action."""

    code = "PERMISSION_DENIED"


class NotFoundError(EngineError):
    code = "NOT_FOUND"


class DependencyError(EngineError):
    """
    Store read/write failed or timed out.

    Always retryable from the caller's point of view; the engine itself
    never retries.
    """

    code = "DEPENDENCY_ERROR"
    retryable = True
