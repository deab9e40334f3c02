"""
Error taxonomy shared by the store layer, the HTTP API and the HTTP client.

Each error carries the HTTP status it maps to and a user-facing message.
The API renders them as {"detail": message}; FeedApiClient maps the status
back to the same class so callers handle one set of exceptions either way.
"""
from typing import Optional


class FeedServiceError(Exception):
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(FeedServiceError):
    status_code = 401
    default_message = "User not authenticated"


class PermissionDenied(FeedServiceError):
    status_code = 403
    default_message = "You do not have permission to do that"


class NotFound(FeedServiceError):
    status_code = 404
    default_message = "Not found"


class Conflict(FeedServiceError):
    status_code = 409
    default_message = "Conflict"


class ValidationFailed(FeedServiceError):
    status_code = 422
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class RemoteUnavailable(FeedServiceError):
    status_code = 503
    default_message = "Service temporarily unavailable, please try again"


_BY_STATUS = {
    cls.status_code: cls
    for cls in (Unauthenticated, PermissionDenied, NotFound, Conflict, ValidationFailed)
}


def error_for_status(status_code: int, message: Optional[str] = None) -> FeedServiceError:
    """Rebuild the domain error for an HTTP status (5xx → RemoteUnavailable)."""
    if status_code >= 500:
        return RemoteUnavailable(message)
    return _BY_STATUS.get(status_code, FeedServiceError)(message)
