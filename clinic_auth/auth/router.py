"""Authentication API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header

from clinic_auth.api.contracts import (
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    HealthResponse,
    LogoutAllResponse,
    LogoutResponse,
    SessionUserResponse,
)
from clinic_auth.auth.middleware import extract_bearer_token
from clinic_auth.auth.models import (
    AuthContext,
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    PrincipalSnapshot,
    RefreshRequest,
    TokenPair,
)
from clinic_auth.auth.service import AuthService
from clinic_auth.authz.dependencies import current_auth
from clinic_auth.authz.policy import dashboard_variant, permitted_actions

_AUTH_ERRORS = {
    401: {"model": ApiErrorResponse},
    403: {"model": ApiErrorResponse},
    503: {"model": ApiErrorResponse},
}


def _session_user(snapshot: PrincipalSnapshot) -> SessionUserResponse:
    return SessionUserResponse(
        id=snapshot.id,
        role=str(snapshot.role),
        kind=str(snapshot.kind),
        tenant_id=snapshot.tenant_id,
        display_name=snapshot.display_name,
    )


def _session_response(
    tokens: TokenPair, user: SessionUserResponse | None = None
) -> AuthSessionResponse:
    return AuthSessionResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
        user=user,
    )


def create_auth_router(service: AuthService) -> APIRouter:
    """Build authentication router with login/refresh/logout/me endpoints."""
    router = APIRouter(tags=["auth"])

    @router.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @router.post(
        "/auth/login",
        response_model=AuthSessionResponse,
        responses={**_AUTH_ERRORS, 423: {"model": ApiErrorResponse}},
    )
    def login(req: LoginRequest) -> AuthSessionResponse:
        """Authenticate credentials and return a token pair."""
        result = service.login(req.identifier, req.password)
        return _session_response(result.tokens, _session_user(result.principal))

    @router.post(
        "/auth/refresh",
        response_model=AuthSessionResponse,
        responses=_AUTH_ERRORS,
    )
    def refresh(req: RefreshRequest) -> AuthSessionResponse:
        """Rotate refresh token and issue new session tokens."""
        return _session_response(service.refresh(req.refresh_token))

    @router.post("/auth/logout", response_model=LogoutResponse, responses=_AUTH_ERRORS)
    def logout(
        req: LogoutRequest | None = None,
        authorization: str | None = Header(default=None),
        _ctx: AuthContext = Depends(current_auth),
    ) -> LogoutResponse:
        """Revoke the presented access token and the paired refresh token if sent."""
        refresh_token = req.refresh_token if req is not None else None
        service.logout(extract_bearer_token(authorization), refresh_token)
        return LogoutResponse()

    @router.post(
        "/auth/logout-all", response_model=LogoutAllResponse, responses=_AUTH_ERRORS
    )
    def logout_all(ctx: AuthContext = Depends(current_auth)) -> LogoutAllResponse:
        """Revoke every session of the current principal."""
        revoked = service.logout_all(ctx)
        return LogoutAllResponse(
            message="Logged out from all sessions", revoked_sessions=revoked
        )

    @router.post(
        "/auth/change-password", response_model=LogoutResponse, responses=_AUTH_ERRORS
    )
    def change_password(
        req: ChangePasswordRequest, ctx: AuthContext = Depends(current_auth)
    ) -> LogoutResponse:
        """Replace the password; every existing session is signed out."""
        service.change_password(ctx, req.current_password, req.new_password)
        return LogoutResponse(message="Password changed; please sign in again")

    @router.get("/auth/me", response_model=AuthMeResponse, responses=_AUTH_ERRORS)
    def me(ctx: AuthContext = Depends(current_auth)) -> AuthMeResponse:
        """Return the current principal with its dashboard and permissions."""
        return AuthMeResponse(
            user=_session_user(service.describe(ctx)),
            dashboard=dashboard_variant(ctx.role),
            permissions=permitted_actions(ctx.role),
        )

    return router
