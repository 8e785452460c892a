"""Service-level error kinds.

Services raise these; `main` maps them to HTTP responses using the
`status_code` carried by each class.
"""


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    """Unknown game, quiz, student, teacher, attempt or notification."""
    status_code = 404


class ConflictError(ServiceError):
    """Duplicate registration or a quiz attempt that is already completed."""
    status_code = 409


class ValidationError(ServiceError):
    """Missing or malformed input, raised before any state is mutated."""
    status_code = 400


class StorageFailure(ServiceError):
    """The underlying store failed; the current unit of work was rolled back."""
    status_code = 500
