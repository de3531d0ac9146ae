"""Session guard and the HTTP middleware that enforces it."""

from __future__ import annotations

from typing import Callable

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from clinic_auth.api.errors import auth_error_response
from clinic_auth.auth.errors import AuthError, AuthErrorKind, CredentialError
from clinic_auth.auth.models import AuthContext, AuthScope
from clinic_auth.auth.repository import PrincipalRepository
from clinic_auth.auth.tokens import TokenService

PUBLIC_PATHS = frozenset(
    {
        "/health",
        "/auth/login",
        "/auth/refresh",
        "/docs",
        "/redoc",
        "/openapi.json",
    }
)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


class SessionGuard:
    """Turns a bearer header into an ``AuthContext``; never writes to the store."""

    def __init__(self, *, tokens: TokenService, repo: PrincipalRepository) -> None:
        self._tokens = tokens
        self._repo = repo

    def authenticate(self, authorization: str | None) -> AuthContext:
        token = extract_bearer_token(authorization)
        if not token:
            raise AuthError(AuthErrorKind.MISSING_CREDENTIAL, "Access token required")

        claims = self._tokens.verify_access(token)
        principal = self._repo.find_by_id(claims.sub, claims.kind)
        if principal is None:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND, "User not found")
        if not principal.is_active:
            raise CredentialError(AuthErrorKind.DEACTIVATED, "Account has been deactivated")

        return AuthContext(
            principal_id=claims.sub,
            kind=claims.kind,
            role=claims.role,
            tenant_id=claims.tenant_id,
            scope=AuthScope(assigned_patient_ids=frozenset(principal.assigned_patient_ids)),
            token_jti=claims.jti,
            token_exp=claims.exp,
        )


def create_auth_middleware(
    guard: SessionGuard, *, public_paths: frozenset[str] = PUBLIC_PATHS
) -> Callable:
    """Create middleware function that validates access tokens."""

    async def auth_middleware(request: Request, call_next: Callable):
        """Validate auth for protected paths and attach context to request state."""
        if request.method == "OPTIONS" or request.url.path in public_paths:
            return await call_next(request)

        try:
            ctx = await run_in_threadpool(
                guard.authenticate, request.headers.get("authorization")
            )
        except AuthError as exc:
            return auth_error_response(exc)

        request.state.auth = ctx
        return await call_next(request)

    return auth_middleware
