"""Access/refresh token issuance, verification, rotation and revocation."""

from __future__ import annotations

import logging
import uuid

from pydantic import ValidationError

from clinic_auth.auth.audit import AuditEmitter, AuditEventKind, AuditOutcome
from clinic_auth.auth.errors import AuthErrorKind, TokenError
from clinic_auth.auth.models import (
    PrincipalSnapshot,
    RefreshSessionRecord,
    TokenClaims,
    TokenPair,
    TokenType,
)
from clinic_auth.auth.token_store import TokenStore
from clinic_auth.core.clock import Clock
from clinic_auth.core.security import SigningKeyRing, TokenDecodeError, hash_token

LOGGER = logging.getLogger(__name__)


class TokenService:
    """Signs and verifies the token pair and owns the revocation set."""

    def __init__(
        self,
        *,
        keys: SigningKeyRing,
        store: TokenStore,
        clock: Clock,
        audit: AuditEmitter,
        access_ttl_seconds: int = 900,
        refresh_ttl_seconds: int = 604800,
        issuer: str = "clinic-auth",
        max_refresh_sessions: int = 5,
    ) -> None:
        self._keys = keys
        self._store = store
        self._clock = clock
        self._audit = audit
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds
        self._issuer = issuer
        self._max_sessions = max(1, int(max_refresh_sessions))

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl

    def _claims(
        self, subject: PrincipalSnapshot, typ: TokenType, now: int, ttl: int
    ) -> TokenClaims:
        return TokenClaims(
            sub=subject.id,
            kind=subject.kind,
            role=subject.role,
            tenant_id=subject.tenant_id,
            iat=now,
            exp=now + ttl,
            jti=uuid.uuid4().hex,
            typ=typ,
            iss=self._issuer,
        )

    def issue_pair(self, subject: PrincipalSnapshot) -> TokenPair:
        """Sign a fresh access/refresh pair and record the refresh session."""
        now = self._clock.now()
        access_claims = self._claims(subject, TokenType.ACCESS, now, self._access_ttl)
        refresh_claims = self._claims(subject, TokenType.REFRESH, now, self._refresh_ttl)
        access_token = self._keys.sign(access_claims.to_payload())
        refresh_token = self._keys.sign(refresh_claims.to_payload())

        self._enforce_session_cap(subject.id, now)
        self._store.save_refresh_session(
            RefreshSessionRecord(
                jti=refresh_claims.jti,
                principal_id=subject.id,
                token_hash=hash_token(refresh_token),
                issued_at=now,
                expires_at=refresh_claims.exp,
            ),
            now=now,
        )
        self._audit.emit(
            AuditEventKind.TOKEN_ISSUED,
            outcome=AuditOutcome.SUCCESS,
            ts=now,
            principal_id=subject.id,
            access_jti=access_claims.jti,
            refresh_jti=refresh_claims.jti,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_in=self._access_ttl,
            refresh_expires_in=self._refresh_ttl,
        )

    def _enforce_session_cap(self, principal_id: str, now: int) -> None:
        """Revoke oldest refresh sessions so a new one fits under the cap."""
        live = self._store.live_refresh_sessions(principal_id, now)
        while len(live) >= self._max_sessions:
            oldest = live.pop(0)
            if self._store.claim_refresh_session(oldest.jti):
                self.revoke(oldest.jti, oldest.expires_at, principal_id=principal_id)

    def _decode(
        self, token: str, expected: TokenType, *, rotating: bool = False
    ) -> TokenClaims:
        """Check signature, then expiry, then revocation, then token type.

        Only a revoked refresh token presented for rotation counts as reuse.
        """
        try:
            payload = self._keys.decode(token)
        except TokenDecodeError as exc:
            raise TokenError(AuthErrorKind.INVALID_TOKEN, exc.reason, str(exc)) from exc
        try:
            claims = TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise TokenError(
                AuthErrorKind.INVALID_TOKEN, "malformed", "Invalid token claims"
            ) from exc
        if self._issuer and claims.iss != self._issuer:
            raise TokenError(AuthErrorKind.INVALID_TOKEN, "malformed", "Invalid token issuer")

        now = self._clock.now()
        if now >= claims.exp:
            raise TokenError(AuthErrorKind.TOKEN_EXPIRED, "expired", "Token expired")
        if now < claims.iat:
            raise TokenError(AuthErrorKind.INVALID_TOKEN, "not_yet_valid", "Token not yet valid")

        if self._store.is_revoked(claims.jti):
            if rotating and claims.typ == TokenType.REFRESH:
                self._audit.emit(
                    AuditEventKind.REFRESH_REUSE_DETECTED,
                    outcome=AuditOutcome.FAILURE,
                    ts=now,
                    principal_id=claims.sub,
                    refresh_jti=claims.jti,
                )
            raise TokenError(AuthErrorKind.TOKEN_REVOKED, "revoked", "Token has been revoked")

        if claims.typ != expected:
            raise TokenError(
                AuthErrorKind.WRONG_TOKEN_TYPE,
                "wrong_type",
                f"Expected {expected.value} token",
            )
        return claims

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, TokenType.ACCESS)

    def verify_refresh(self, token: str, *, rotating: bool = False) -> TokenClaims:
        return self._decode(token, TokenType.REFRESH, rotating=rotating)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate: consume the presented refresh token and issue a new pair.

        The session is claimed atomically, so of two concurrent rotations of
        the same token exactly one succeeds.
        """
        claims = self.verify_refresh(refresh_token, rotating=True)
        session = self._store.get_refresh_session(claims.jti)
        if session is None or session.token_hash != hash_token(refresh_token):
            raise TokenError(
                AuthErrorKind.INVALID_TOKEN, "unknown_session", "Unknown refresh session"
            )
        if not self._store.claim_refresh_session(claims.jti):
            self._audit.emit(
                AuditEventKind.REFRESH_REUSE_DETECTED,
                outcome=AuditOutcome.FAILURE,
                ts=self._clock.now(),
                principal_id=claims.sub,
                refresh_jti=claims.jti,
            )
            raise TokenError(AuthErrorKind.TOKEN_REVOKED, "revoked", "Token has been revoked")
        self.revoke(claims.jti, claims.exp, principal_id=claims.sub)

        pair = self.issue_pair(
            PrincipalSnapshot(
                id=claims.sub,
                kind=claims.kind,
                role=claims.role,
                tenant_id=claims.tenant_id,
            )
        )
        self._audit.emit(
            AuditEventKind.TOKEN_REFRESHED,
            outcome=AuditOutcome.SUCCESS,
            ts=self._clock.now(),
            principal_id=claims.sub,
            previous_jti=claims.jti,
        )
        return pair

    def revoke(self, jti: str, exp: int, *, principal_id: str | None = None) -> None:
        """Reject ``jti`` until ``exp``."""
        self._store.revoke(jti, exp, now=self._clock.now())
        self._audit.emit(
            AuditEventKind.TOKEN_REVOKED,
            outcome=AuditOutcome.SUCCESS,
            ts=self._clock.now(),
            principal_id=principal_id,
            jti=jti,
        )

    def revoke_refresh_token(self, refresh_token: str, *, principal_id: str) -> bool:
        """Revoke a refresh token owned by ``principal_id``; unusable tokens are ignored."""
        try:
            claims = self.verify_refresh(refresh_token)
        except TokenError as exc:
            LOGGER.info("Skipping refresh token revocation: %s", exc.reason)
            return False
        if claims.sub != principal_id:
            LOGGER.warning(
                "Refresh token subject mismatch on logout",
                extra={"principal_id": principal_id},
            )
            return False
        self._store.claim_refresh_session(claims.jti)
        self.revoke(claims.jti, claims.exp, principal_id=principal_id)
        return True

    def revoke_all_for_principal(self, principal_id: str) -> int:
        """Revoke every live refresh session of a principal."""
        revoked = 0
        for session in self._store.live_refresh_sessions(principal_id, self._clock.now()):
            if self._store.claim_refresh_session(session.jti):
                self.revoke(session.jti, session.expires_at, principal_id=principal_id)
                revoked += 1
        return revoked

    def purge_expired(self) -> int:
        """Sweep revocations and refresh sessions that can no longer verify."""
        removed = self._store.purge_expired(self._clock.now())
        if removed:
            LOGGER.info("Purged %s expired token records", removed)
        return removed
