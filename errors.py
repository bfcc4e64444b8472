"""Error taxonomy shared by the request lifecycle and the locker endpoints.

Every error carries a machine-readable ``code`` and a human-readable
``message``; ``main.py`` renders them as ``{"error": ..., "code": ...}``
with the class's ``status_code``.
"""


class LockerShareError(Exception):
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class Unauthorized(LockerShareError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class Forbidden(LockerShareError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFound(LockerShareError):
    status_code = 404
    default_code = "NOT_FOUND"


class InvalidState(LockerShareError):
    status_code = 400
    default_code = "INVALID_STATE"


class InvalidInput(LockerShareError):
    status_code = 400
    default_code = "INVALID_INPUT"


class Conflict(LockerShareError):
    status_code = 409
    default_code = "CONFLICT"


class Unavailable(LockerShareError):
    status_code = 400
    default_code = "ARTICLE_NOT_AVAILABLE"


class OwnerConflict(LockerShareError):
    status_code = 400
    default_code = "CANNOT_REQUEST_OWN_ARTICLE"


class InvalidCode(LockerShareError):
    """Code is unknown, ambiguous, expired, not approved, or bound elsewhere.

    ``reason`` is for the access log only and never reaches the caller.
    """

    status_code = 400
    default_code = "INVALID_CODE"

    def __init__(self, reason: str, request_id: str | None = None, user_id: int | None = None) -> None:
        super().__init__("Invalid or expired access code")
        self.reason = reason
        self.request_id = request_id
        self.user_id = user_id
