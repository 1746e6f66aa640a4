from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    conflict = "conflict"
    unavailable = "unavailable"


class ServiceError(ValueError):
    kind: ErrorKind = ErrorKind.validation

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    kind = ErrorKind.validation


class NotFoundError(ServiceError):
    kind = ErrorKind.not_found


class ConflictError(ServiceError):
    kind = ErrorKind.conflict


class CacheUnavailable(ServiceError):
    """Raised by cache backends; the cache coordinator recovers from it."""

    kind = ErrorKind.unavailable
