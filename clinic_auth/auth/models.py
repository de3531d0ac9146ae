"""Pydantic models for authentication domain."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PrincipalKind(StrEnum):
    """Actor kinds; each is stored in its own collection."""

    CLINIC = "clinic"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"


class Role(StrEnum):
    """Roles carried in tokens and evaluated by the authorization policy."""

    CLINIC = "clinic"
    DOCTOR = "doctor"
    NURSE = "nurse"
    HEAD_NURSE = "head_nurse"
    SUPERVISOR = "supervisor"
    PHARMACIST = "pharmacist"
    HEAD_PHARMACIST = "head_pharmacist"
    PHARMACY_MANAGER = "pharmacy_manager"


ROLES_BY_KIND: dict[PrincipalKind, tuple[Role, ...]] = {
    PrincipalKind.CLINIC: (Role.CLINIC,),
    PrincipalKind.DOCTOR: (Role.DOCTOR,),
    PrincipalKind.NURSE: (Role.NURSE, Role.HEAD_NURSE, Role.SUPERVISOR),
    PrincipalKind.PHARMACIST: (
        Role.PHARMACIST,
        Role.HEAD_PHARMACIST,
        Role.PHARMACY_MANAGER,
    ),
}

# Login identifier precedence for unified login.
KIND_PRECEDENCE: tuple[PrincipalKind, ...] = (
    PrincipalKind.CLINIC,
    PrincipalKind.DOCTOR,
    PrincipalKind.NURSE,
    PrincipalKind.PHARMACIST,
)


def role_for_kind(kind: PrincipalKind, raw_role: str | None) -> Role:
    """Return stored role if valid for kind, else the kind's default role."""
    allowed = ROLES_BY_KIND[kind]
    for role in allowed:
        if role.value == (raw_role or "").strip().lower():
            return role
    return allowed[0]


class Principal(BaseModel):
    """Unified actor record resolved from one of the per-kind collections."""

    id: str
    kind: PrincipalKind
    role: Role
    display_name: str = ""
    primary_email: str = ""
    login_identifiers: list[str] = Field(default_factory=list)
    password_hash: str = ""
    is_active: bool = True
    tenant_id: str
    login_attempts: int = Field(default=0, ge=0)
    lock_until: int | None = None
    last_login: int | None = None
    assigned_patient_ids: list[str] = Field(default_factory=list)

    def is_locked(self, now: int) -> bool:
        """A lock in the past counts as unlocked."""
        return self.lock_until is not None and self.lock_until > now

    def snapshot(self) -> "PrincipalSnapshot":
        return PrincipalSnapshot(
            id=self.id,
            kind=self.kind,
            role=self.role,
            tenant_id=self.tenant_id,
            display_name=self.display_name,
        )


class PrincipalSnapshot(BaseModel):
    """Frozen subject data bound into tokens and login responses."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: PrincipalKind
    role: Role
    tenant_id: str
    display_name: str = ""


class TokenType(StrEnum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenClaims(BaseModel):
    """Verified token payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sub: str
    kind: PrincipalKind
    role: Role
    tenant_id: str = Field(alias="tenantId")
    iat: int
    exp: int
    jti: str
    typ: TokenType
    iss: str = ""

    def to_payload(self) -> dict[str, str | int]:
        return self.model_dump(mode="json", by_alias=True)


class TokenPair(BaseModel):
    """Access and refresh tokens issued together."""

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


class AuthScope(BaseModel):
    """Scope fields read fresh from the principal at guard time."""

    model_config = ConfigDict(frozen=True)

    assigned_patient_ids: frozenset[str] = frozenset()


class AuthContext(BaseModel):
    """Per-request identity derived from a verified access token."""

    model_config = ConfigDict(frozen=True)

    principal_id: str
    kind: PrincipalKind
    role: Role
    tenant_id: str
    scope: AuthScope = AuthScope()
    token_jti: str = ""
    token_exp: int = 0


class LoginResult(BaseModel):
    """Successful login outcome."""

    tokens: TokenPair
    principal: PrincipalSnapshot


class RefreshSessionRecord(BaseModel):
    """Refresh token persistence record."""

    jti: str
    principal_id: str
    token_hash: str
    issued_at: int
    expires_at: int
    revoked: bool = False


class LoginRequest(BaseModel):
    """Login request payload."""

    identifier: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    """Refresh request payload."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(min_length=1, alias="refreshToken")


class LogoutRequest(BaseModel):
    """Logout request payload."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(default=None, alias="refreshToken")


class ChangePasswordRequest(BaseModel):
    """Change-password request payload."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(min_length=1, alias="currentPassword")
    new_password: str = Field(min_length=8, alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def _fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must not exceed 72 bytes")
        return value
