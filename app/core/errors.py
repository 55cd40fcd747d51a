"""Domain errors raised by services and turned into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status


class HuddleError(HTTPException):
    """Base class for errors that carry their own HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal server error"

    def __init__(self, detail: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class Unauthenticated(HuddleError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(HuddleError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Forbidden"


class NotFound(HuddleError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(HuddleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class ValidationFailed(HuddleError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid input"


class Unavailable(HuddleError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable"


__all__ = [
    "HuddleError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "Conflict",
    "ValidationFailed",
    "Unavailable",
]
