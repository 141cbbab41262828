class SlugcastError(Exception):
    """Base error for all request-terminating slugcast exceptions."""

    status_code = 500
    message = "Internal error."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(SlugcastError):
    """Raised when a required field is missing or a slug normalizes to empty."""

    status_code = 400
    message = "Invalid request."


class AuthError(SlugcastError):
    """Raised when a token or cookie does not match the configured secret."""

    status_code = 403
    message = "Forbidden"


class NotFoundError(SlugcastError):
    """Raised when a slug has no registry entry."""

    status_code = 404
    message = "File link not found."


class UpstreamError(SlugcastError):
    """Raised when the source URL cannot be fetched or returns no usable body."""

    status_code = 500
    message = "Failed to fetch the file from the source."
