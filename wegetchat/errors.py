"""
Error taxonomy for the messaging core.

Every error carries a short human-readable message and a kind. The HTTP
layer maps kinds to status codes; nothing else crosses the boundary.
"""


class WeGetChatError(Exception):
    """Base class for errors reported to callers."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WeGetChatError):
    """Malformed or missing input."""

    kind = "validation"
    status_code = 400


class NotFoundError(WeGetChatError):
    """Entity absent, or the caller may not see it."""

    kind = "not_found"
    status_code = 404


class ConflictError(WeGetChatError):
    """Uniqueness violation (username taken, self-friend)."""

    kind = "conflict"
    status_code = 409


class InvalidCredentialError(WeGetChatError):
    kind = "invalid_credential"
    status_code = 401


class PersistenceError(WeGetChatError):
    """The durable write failed; the mutation was rolled back."""

    kind = "persistence"
    status_code = 500

    def __init__(self, message: str = "Failed to save changes"):
        super().__init__(message)
