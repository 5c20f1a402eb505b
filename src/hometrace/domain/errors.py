"""Error taxonomy shared by services and the HTTP boundary.

Every error carries a machine-readable ``code`` and the HTTP status the API
boundary renders it with. Services raise these; ``hometrace.app.main``
converts them into the ``{"error": {...}}`` envelope.
"""

from typing import Any, Optional


class HomeTraceError(Exception):
    """Base exception for HomeTrace."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class UnauthorizedError(HomeTraceError):
    """No session, or the session could not be validated."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required", details=None):
        super().__init__(message, details)


class ForbiddenError(HomeTraceError):
    """Authenticated, but not the owner or not the right role."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access denied", details=None):
        super().__init__(message, details)


class NotFoundError(HomeTraceError):
    """Entity missing or soft-deleted."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource", details=None):
        super().__init__(f"{resource} not found", details)


class ValidationError(HomeTraceError):
    code = "VALIDATION_ERROR"
    status_code = 422


class DuplicateError(HomeTraceError):
    code = "DUPLICATE"
    status_code = 409


class InternalError(HomeTraceError):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred", details=None):
        super().__init__(message, details)


class InvalidStateTransitionError(HomeTraceError):
    """Raised when a status change is not allowed from the current status.

    The message always names both the current and the requested status.
    """

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, current_status, target_status, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        current = getattr(current_status, "value", current_status)
        target = getattr(target_status, "value", target_status)
        super().__init__(
            f"Invalid transition from {current} to {target}: {reason}",
            {"current_status": current, "requested_status": target},
        )
