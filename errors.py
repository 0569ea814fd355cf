"""Error types raised by the library services.

Every error carries a human readable ``message`` and the HTTP status the API
layer answers with.  Nothing else about the failure is exposed to clients.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'message': self.message}


class ValidationError(LibraryError):
    """Missing or malformed input."""
    status_code = 400


class AuthenticationError(LibraryError):
    """Missing or invalid credentials."""
    status_code = 401


class ForbiddenError(LibraryError):
    """Caller lacks the role or ownership required."""
    status_code = 403


class NotFoundError(LibraryError):
    status_code = 404


class ConflictError(LibraryError):
    """State does not allow the operation (no copies, wrong state, duplicates)."""
    # The public API reports these as 400
    status_code = 400


class InternalError(LibraryError):
    """Persistence failure; the surrounding transaction was rolled back."""
    status_code = 500
