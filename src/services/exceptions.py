"""Service-layer exceptions, translated to HTTP responses in api.main."""


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code: int = 500
    message: str = "Server error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class BookmarkValidationError(ServiceError):
    """Missing or malformed input; the client must correct and resubmit."""

    status_code = 400
    message = "Invalid request"


class BookmarkNotFoundError(ServiceError):
    """The referenced bookmark id does not exist."""

    status_code = 404
    message = "Bookmark not found"


class BookmarkForbiddenError(ServiceError):
    """The bookmark exists but belongs to another user."""

    status_code = 403
    message = "Unauthorized"


class BookmarkIdConflictError(ServiceError):
    """A client-supplied bookmark id is already used by another user's bookmark."""

    status_code = 409
    message = "Bookmark id already in use"


class StoreError(ServiceError):
    """The database failed; the caller should retry."""

    status_code = 500
    message = "Database error"


class IdentitySyncError(ServiceError):
    """Persisting the signed-in user failed, so the sign-in is denied."""

    status_code = 403
    message = "Sign-in denied"
