"""
Domain errors raised by the service modules.

Every error carries the HTTP status the request layer answers with, so the
handlers in main.py can render them without knowing each kind.
"""


class SamvadError(Exception):
    """Base class for all recoverable domain errors."""

    status_code = 500
    error_name = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SamvadError):
    """Entity absent, or the caller is not allowed to know it exists."""

    status_code = 404
    error_name = "not_found"


class DuplicateError(SamvadError):
    """A uniqueness rule would be violated."""

    status_code = 400
    error_name = "duplicate"


class SelfReferenceError(SamvadError):
    status_code = 400
    error_name = "self_reference"


class ValidationError(SamvadError):
    """Malformed input that passed schema validation but not domain rules."""

    status_code = 400
    error_name = "validation"


class ForbiddenError(SamvadError):
    """Authenticated caller is not authorized for this action."""

    status_code = 403
    error_name = "forbidden"
