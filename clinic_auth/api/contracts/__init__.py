"""Public API response contracts."""

from clinic_auth.api.contracts.models import (
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    HealthResponse,
    LogoutAllResponse,
    LogoutResponse,
    SessionUserResponse,
)

__all__ = [
    "ApiErrorResponse",
    "AuthMeResponse",
    "AuthSessionResponse",
    "HealthResponse",
    "LogoutAllResponse",
    "LogoutResponse",
    "SessionUserResponse",
]
