"""
Error taxonomy for gating decisions.

Each gating outcome maps to its own status code and a structured ``detail``
payload so clients can tell "log in" from "wait for approval" from
"try again tomorrow" from "fix your input".
"""

from datetime import datetime
from typing import Any, Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"

    def __init__(self, message: str, headers: Optional[dict] = None, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=self.status_code,
            detail={"error": self.code, "message": message, **extra},
            headers=headers,
        )


class AuthenticationRequired(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required", **extra: Any):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class NotAuthorized(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"

    def __init__(
        self,
        message: str = "Access denied. Please wait for your account to be approved.",
        waitlisted: bool = True,
        **extra: Any,
    ):
        super().__init__(message, waitlisted=waitlisted, **extra)


class AdminRequired(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "admin_required"

    def __init__(self, message: str = "Admin access required", **extra: Any):
        super().__init__(message, **extra)


class QuotaExhausted(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "quota_exhausted"

    def __init__(
        self,
        message: str,
        limit: int,
        used_today: int,
        resets_at: datetime,
        now: Optional[datetime] = None,
    ):
        now = now or datetime.utcnow()
        retry_after = max(0, int((resets_at - now).total_seconds()))
        super().__init__(
            message,
            headers={"Retry-After": str(retry_after)},
            remaining=0,
            limit=limit,
            usedToday=used_today,
            resetsAt=resets_at.isoformat() + "Z",
        )


class ValidationFailure(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class PayloadTooLarge(AppError):
    status_code = 413
    code = "payload_too_large"


class AccountNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, message: str = "User not found", **extra: Any):
        super().__init__(message, **extra)


class GenerationFailure(Exception):
    """The image generator errored, timed out, or returned an unusable shape."""


class AccountingFailure(Exception):
    """A usage or audit write failed after a successful generation."""
