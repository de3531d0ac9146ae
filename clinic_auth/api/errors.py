"""Shared API error codes and the auth error to HTTP response table."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, NamedTuple

from fastapi.responses import JSONResponse

from clinic_auth.api.contracts import ApiErrorResponse
from clinic_auth.auth.errors import AuthError, AuthErrorKind, CredentialError


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    DEACTIVATED = "DEACTIVATED"
    LOCKED = "LOCKED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    INVALID_TOKEN = "INVALID_TOKEN"
    FORBIDDEN = "FORBIDDEN"
    UNAVAILABLE = "UNAVAILABLE"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ErrorMapping(NamedTuple):
    status_code: int
    code: ApiErrorCode
    error: str
    message: str


AUTH_ERROR_TABLE: dict[AuthErrorKind, ErrorMapping] = {
    AuthErrorKind.MISSING_CREDENTIAL: ErrorMapping(
        401, ApiErrorCode.MISSING_CREDENTIAL, "MissingCredential", "Access token required"
    ),
    AuthErrorKind.INVALID_CREDENTIALS: ErrorMapping(
        401, ApiErrorCode.INVALID_CREDENTIALS, "InvalidCredentials", "Invalid credentials"
    ),
    AuthErrorKind.DEACTIVATED: ErrorMapping(
        403, ApiErrorCode.DEACTIVATED, "Deactivated", "Account has been deactivated"
    ),
    AuthErrorKind.LOCKED: ErrorMapping(
        423, ApiErrorCode.LOCKED, "Locked", "Account temporarily locked"
    ),
    AuthErrorKind.TOKEN_EXPIRED: ErrorMapping(
        401, ApiErrorCode.TOKEN_EXPIRED, "TokenExpired", "Token expired"
    ),
    AuthErrorKind.TOKEN_REVOKED: ErrorMapping(
        401, ApiErrorCode.TOKEN_REVOKED, "TokenRevoked", "Token has been revoked"
    ),
    AuthErrorKind.INVALID_TOKEN: ErrorMapping(
        401, ApiErrorCode.INVALID_TOKEN, "InvalidToken", "Invalid token"
    ),
    AuthErrorKind.WRONG_TOKEN_TYPE: ErrorMapping(
        401, ApiErrorCode.INVALID_TOKEN, "InvalidToken", "Invalid token"
    ),
    AuthErrorKind.USER_NOT_FOUND: ErrorMapping(
        401, ApiErrorCode.INVALID_TOKEN, "UserNotFound", "User not found"
    ),
    # Out-of-scope targets are reported exactly like role denials.
    AuthErrorKind.FORBIDDEN: ErrorMapping(
        403, ApiErrorCode.FORBIDDEN, "Forbidden", "Access denied"
    ),
    AuthErrorKind.OUT_OF_SCOPE: ErrorMapping(
        403, ApiErrorCode.FORBIDDEN, "Forbidden", "Access denied"
    ),
    AuthErrorKind.UNAVAILABLE: ErrorMapping(
        503, ApiErrorCode.UNAVAILABLE, "Unavailable", "Service temporarily unavailable"
    ),
}


def _iso(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def auth_error_payload(exc: AuthError) -> tuple[int, dict[str, Any]]:
    """Return status code and envelope for an auth error."""
    mapping = AUTH_ERROR_TABLE[exc.kind]
    until = None
    if isinstance(exc, CredentialError) and exc.until is not None:
        until = _iso(exc.until)
    body = ApiErrorResponse(
        error=mapping.error,
        code=str(mapping.code),
        message=mapping.message,
        until=until,
    )
    return mapping.status_code, body.model_dump(exclude_none=True)


def auth_error_response(exc: AuthError) -> JSONResponse:
    status_code, payload = auth_error_payload(exc)
    return JSONResponse(status_code=status_code, content=payload)


def to_error_payload(detail: Any, status_code: int) -> dict[str, Any]:
    """Normalize HTTP exception detail into the stable error envelope."""
    if isinstance(detail, dict):
        code = str(detail.get("code") or detail.get("error_code") or f"HTTP_{status_code}")
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
    else:
        code = f"HTTP_{status_code}"
        message = str(detail or "HTTP error")
    return ApiErrorResponse(error=code, code=code, message=message).model_dump(
        exclude_none=True
    )
