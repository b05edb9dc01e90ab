"""
Service-layer error kinds.

Every failure raised by a service carries an ``ErrorKind``.  The HTTP layer
maps the kind to a status code in a single exception handler; nothing
downstream inspects the message text, which is for humans only.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"


class ServiceError(Exception):
    """Base class for all domain failures raised by the service layer."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN


class InvalidStateError(ServiceError):
    kind = ErrorKind.INVALID_STATE


# Status code for each kind; the only place transport concerns meet the
# error model.
HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
}
