from __future__ import annotations


class LifecycleError(Exception):
    """A domain rule rejected the requested operation; nothing was written."""

    status_code = 400
    code = "PRECONDITION_FAILED"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = int(status_code)

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, "error": self.code}


class PreconditionFailed(LifecycleError):
    status_code = 400
    code = "PRECONDITION_FAILED"


class Unauthorized(LifecycleError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(LifecycleError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(LifecycleError):
    status_code = 404
    code = "NOT_FOUND"
