"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    success: bool = False
    error: str = Field(description="Error kind")
    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    until: str | None = Field(default=None, description="Lock expiry (ISO-8601)")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class SessionUserResponse(CamelModel):
    """Principal snapshot returned after login."""

    id: str
    role: str
    kind: str
    tenant_id: str
    display_name: str = ""


class AuthSessionResponse(CamelModel):
    """Authentication session response payload."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: SessionUserResponse | None = None


class AuthMeResponse(CamelModel):
    """Current principal with role-scoped permissions."""

    user: SessionUserResponse
    dashboard: str
    permissions: dict[str, list[str]]


class LogoutResponse(BaseModel):
    """Logout response payload."""

    success: bool = True
    message: str = "Logged out successfully"


class LogoutAllResponse(LogoutResponse):
    """Logout-everywhere response payload."""

    revoked_sessions: int = Field(default=0, serialization_alias="revokedSessions")
