"""Domain errors raised by services and mapped to HTTP responses in ``cisa.main``."""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError


class DomainError(Exception):
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DomainError):
    status_code = 422
    default_message = "Invalid input"


class Unauthenticated(DomainError):
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(DomainError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(DomainError):
    status_code = 404
    default_message = "Not found"


class Conflict(DomainError):
    status_code = 409
    default_message = "Conflict"


class RateLimited(DomainError):
    status_code = 429
    default_message = "Rate limit exceeded"


class StoreUnavailable(DomainError):
    status_code = 503
    default_message = "Data store unavailable"


class GradingError(DomainError):
    """Any failure that prevents a submission from being graded."""

    status_code = 502
    default_message = "Grading failed"


class AIServiceError(GradingError):
    default_message = "AI service call failed"


class AIResponseEmpty(GradingError):
    default_message = "AI returned no text"


class AIResponseMalformed(GradingError):
    default_message = "AI response was not valid grading JSON"


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreUnavailable(f"{operation} failed: {exc.__class__.__name__}") from exc
