"""Authentication service for login, refresh, logout and password changes."""

from __future__ import annotations

import logging

from clinic_auth.auth.audit import AuditEmitter, AuditEventKind, AuditOutcome
from clinic_auth.auth.errors import AuthErrorKind, CredentialError, TokenError
from clinic_auth.auth.models import (
    AuthContext,
    LoginResult,
    Principal,
    PrincipalKind,
    PrincipalSnapshot,
    TokenPair,
)
from clinic_auth.auth.repository import PrincipalRepository
from clinic_auth.auth.tokens import TokenService
from clinic_auth.core.clock import Clock
from clinic_auth.core.config import AuthConfig
from clinic_auth.core.security import PasswordHasher

LOGGER = logging.getLogger(__name__)


class AuthService:
    """Orchestrates credential checks, lockout bookkeeping and token issuance."""

    def __init__(
        self,
        *,
        repo: PrincipalRepository,
        tokens: TokenService,
        hasher: PasswordHasher,
        clock: Clock,
        audit: AuditEmitter,
        config: AuthConfig,
    ) -> None:
        self._repo = repo
        self._tokens = tokens
        self._hasher = hasher
        self._clock = clock
        self._audit = audit
        self._config = config

    @property
    def tokens(self) -> TokenService:
        return self._tokens

    def bootstrap_clinic_admin(self) -> None:
        """Ensure a clinic admin exists from configured credentials."""
        if not self._config.bootstrap_admin or not self._config.admin_email:
            return
        if self._repo.find_by_login_identifier(self._config.admin_email) is not None:
            return
        if not self._config.admin_password:
            LOGGER.warning("AUTH_ADMIN_PASSWORD is empty; skipping clinic admin bootstrap.")
            return
        clinic_id = self._repo.save_document(
            PrincipalKind.CLINIC,
            {
                "name": "Bootstrap Clinic",
                "adminName": "Clinic Administrator",
                "adminEmail": self._config.admin_email,
                "adminUsername": self._config.admin_email.split("@", 1)[0],
                "adminPassword": self._hasher.hash(self._config.admin_password),
                "email": self._config.admin_email,
                "role": "clinic",
                "isActive": True,
                "loginAttempts": 0,
            },
        )
        LOGGER.info("Bootstrapped clinic admin", extra={"principal_id": clinic_id})

    def _invalid_credentials(self) -> CredentialError:
        return CredentialError(AuthErrorKind.INVALID_CREDENTIALS, "Invalid credentials")

    def login(self, identifier: str, password: str) -> LoginResult:
        """Authenticate credentials and issue an access/refresh token pair."""
        now = self._clock.now()
        principal = self._repo.find_by_login_identifier(identifier)
        if principal is None:
            self._hasher.dummy_verify(password)
            self._audit.emit(
                AuditEventKind.LOGIN_FAILED,
                outcome=AuditOutcome.FAILURE,
                ts=now,
                reason="unknown_identifier",
            )
            raise self._invalid_credentials()

        if not principal.is_active:
            self._audit.emit(
                AuditEventKind.LOGIN_FAILED,
                outcome=AuditOutcome.FAILURE,
                ts=now,
                principal_id=principal.id,
                reason="deactivated",
            )
            raise CredentialError(AuthErrorKind.DEACTIVATED, "Account has been deactivated")

        if principal.is_locked(now):
            self._audit.emit(
                AuditEventKind.LOGIN_FAILED,
                outcome=AuditOutcome.FAILURE,
                ts=now,
                principal_id=principal.id,
                reason="locked",
            )
            raise CredentialError(
                AuthErrorKind.LOCKED,
                "Account temporarily locked",
                until=principal.lock_until,
            )

        check = self._hasher.verify(password, principal.password_hash)
        if not check.ok:
            self._record_failure(principal, now)
            raise self._invalid_credentials()

        if check.legacy:
            self._upgrade_legacy_password(principal, password)

        self._repo.reset_login_attempts(principal.id, now, kind=principal.kind)
        snapshot = principal.snapshot()
        tokens = self._tokens.issue_pair(snapshot)
        self._audit.emit(
            AuditEventKind.LOGIN_SUCCEEDED,
            outcome=AuditOutcome.SUCCESS,
            ts=now,
            principal_id=principal.id,
            principal_kind=str(principal.kind),
            role=str(principal.role),
        )
        return LoginResult(tokens=tokens, principal=snapshot)

    def _record_failure(self, principal: Principal, now: int) -> None:
        updated = self._repo.increment_login_attempts(principal.id, now, kind=principal.kind)
        attempts = updated.login_attempts if updated is not None else principal.login_attempts + 1
        self._audit.emit(
            AuditEventKind.LOGIN_FAILED,
            outcome=AuditOutcome.FAILURE,
            ts=now,
            principal_id=principal.id,
            reason="bad_password",
            attempts=attempts,
        )
        if updated is not None and updated.is_locked(now):
            self._audit.emit(
                AuditEventKind.ACCOUNT_LOCKED,
                outcome=AuditOutcome.FAILURE,
                ts=now,
                principal_id=principal.id,
                until=updated.lock_until,
            )

    def _upgrade_legacy_password(self, principal: Principal, password: str) -> None:
        try:
            new_hash = self._hasher.hash(password)
        except ValueError:
            LOGGER.warning(
                "Legacy password cannot be rehashed; upgrade skipped",
                extra={"principal_id": principal.id},
            )
            return
        self._repo.rewrite_password(principal.id, new_hash, kind=principal.kind)
        LOGGER.info("Upgraded legacy password hash", extra={"principal_id": principal.id})

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate refresh token unless the subject is gone or deactivated."""
        claims = self._tokens.verify_refresh(refresh_token, rotating=True)
        principal = self._repo.find_by_id(claims.sub, claims.kind)
        if principal is None:
            raise TokenError(AuthErrorKind.INVALID_TOKEN, "unknown_subject", "User not found")
        if not principal.is_active:
            raise CredentialError(AuthErrorKind.DEACTIVATED, "Account has been deactivated")
        return self._tokens.refresh(refresh_token)

    def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        """Revoke the presented access token and, if given, its paired refresh token."""
        claims = self._tokens.verify_access(access_token)
        self._tokens.revoke(claims.jti, claims.exp, principal_id=claims.sub)
        if refresh_token:
            self._tokens.revoke_refresh_token(refresh_token, principal_id=claims.sub)

    def logout_all(self, ctx: AuthContext) -> int:
        """Revoke the current access token and every refresh session."""
        self._tokens.revoke(ctx.token_jti, ctx.token_exp, principal_id=ctx.principal_id)
        return self._tokens.revoke_all_for_principal(ctx.principal_id)

    def change_password(
        self, ctx: AuthContext, current_password: str, new_password: str
    ) -> None:
        """Replace the password after re-verifying the current one."""
        principal = self._repo.find_by_id(ctx.principal_id, ctx.kind)
        if principal is None or not principal.is_active:
            raise CredentialError(AuthErrorKind.DEACTIVATED, "Account has been deactivated")
        if not self._hasher.verify(current_password, principal.password_hash).ok:
            raise self._invalid_credentials()
        self._repo.rewrite_password(
            principal.id, self._hasher.hash(new_password), kind=principal.kind
        )
        self._tokens.revoke_all_for_principal(principal.id)
        LOGGER.info("Password changed", extra={"principal_id": principal.id})

    def describe(self, ctx: AuthContext) -> PrincipalSnapshot:
        """Fresh snapshot of the principal behind a request."""
        principal = self._repo.find_by_id(ctx.principal_id, ctx.kind)
        if principal is None:
            raise TokenError(AuthErrorKind.USER_NOT_FOUND, "unknown_subject", "User not found")
        return principal.snapshot()
