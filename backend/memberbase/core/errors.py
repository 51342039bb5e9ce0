"""Typed errors raised by services and mapped to HTTP envelopes at the boundary."""

from __future__ import annotations


class AppError(Exception):
    status_code = 500
    code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict | None = None,
        upgrade_url: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        self.upgrade_url = upgrade_url


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class AccessDeniedError(AppError):
    status_code = 403
    code = "ACCESS_DENIED"


class QuotaExceededError(AccessDeniedError):
    status_code = 429
    code = "USAGE_LIMIT_EXCEEDED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class StateConflictError(AppError):
    status_code = 400
    code = "STATE_CONFLICT"


class UpstreamError(AppError):
    status_code = 500
    code = "UPSTREAM_ERROR"
