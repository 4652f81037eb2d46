"""
core/errors.py
--------------
Domain error hierarchy.

Services raise these instead of HTTPException; main.py renders every
AppError as the standard envelope:

    {"success": false, "message": "...", "reason": "..."}

`reason` is only present on authorization denials and carries the
machine-readable denial tag (see services/authorization.py).
"""

from typing import Optional

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"
