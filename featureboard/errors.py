"""Error taxonomy shared by the server and the client core."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse failure categories surfaced to callers."""

    VALIDATION = "validation"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSPORT = "transport"

    @classmethod
    def from_status(cls, status_code: int | None) -> "ErrorKind":
        if status_code == 400 or status_code == 422:
            return cls.VALIDATION
        if status_code == 401:
            return cls.AUTH
        if status_code == 403:
            return cls.FORBIDDEN
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 409:
            return cls.CONFLICT
        return cls.TRANSPORT


class FeatureBoardError(RuntimeError):
    """Base error for feature board operations."""

    kind: ErrorKind = ErrorKind.TRANSPORT


class ValidationError(FeatureBoardError):
    """Input rejected before any network or database call."""

    kind = ErrorKind.VALIDATION


class AuthError(FeatureBoardError):
    """Missing principal, or a principal lacking the required privilege."""

    def __init__(self, message: str = "Unauthorized", *, forbidden: bool = False) -> None:
        super().__init__(message)
        self.forbidden = forbidden
        self.kind = ErrorKind.FORBIDDEN if forbidden else ErrorKind.AUTH


class NotFoundError(FeatureBoardError):
    """The targeted entity does not exist."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(FeatureBoardError):
    """The operation would violate an invariant; nothing was changed."""

    kind = ErrorKind.CONFLICT


class TransportError(FeatureBoardError):
    """Network or storage failure."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UploadError(TransportError):
    """An image could not be moved into permanent storage."""


class MutationFailed(FeatureBoardError):
    """An optimistic mutation was rejected and its local effect undone."""

    def __init__(self, message: str, *, kind: ErrorKind = ErrorKind.TRANSPORT, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
