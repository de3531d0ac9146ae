from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from clinic_auth.auth.audit import AuditEmitter, AuditEvent, AuditEventKind
from clinic_auth.auth.middleware import SessionGuard
from clinic_auth.auth.models import PrincipalKind
from clinic_auth.auth.repository import PrincipalRepository
from clinic_auth.auth.service import AuthService
from clinic_auth.auth.token_store import TokenStore
from clinic_auth.auth.tokens import TokenService
from clinic_auth.core.config import AuthConfig
from clinic_auth.core.security import PasswordHasher, SigningKeyRing

START = 1_700_000_000

HASHER = PasswordHasher(12)
ADMIN_HASH = HASHER.hash("admin123")


@dataclass
class FakeClock:
    current: int = START

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += seconds


@dataclass
class RecordingSink:
    events: list[AuditEvent] = field(default_factory=list)

    def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[AuditEventKind]:
        return [event.kind for event in self.events]


def auth_config(**overrides: Any) -> AuthConfig:
    values: dict[str, Any] = {
        "signing_keys": {"k1": "test-secret"},
        "active_kid": "k1",
        "issuer": "clinic-auth-test",
    }
    values.update(overrides)
    return AuthConfig(**values)


@dataclass
class AuthStack:
    repo: PrincipalRepository
    store: TokenStore
    tokens: TokenService
    service: AuthService
    guard: SessionGuard
    clock: FakeClock
    sink: RecordingSink
    audit: AuditEmitter


def build_stack(tmp_path: Path, config: AuthConfig | None = None) -> AuthStack:
    config = config or auth_config()
    clock = FakeClock()
    sink = RecordingSink()
    audit = AuditEmitter([sink])
    repo = PrincipalRepository(
        db=None,
        runtime_dir=tmp_path,
        max_login_attempts=config.max_login_attempts,
        lockout_duration_seconds=config.lockout_duration_seconds,
    )
    store = TokenStore(db=None, runtime_dir=tmp_path)
    tokens = TokenService(
        keys=SigningKeyRing(config.signing_keys, config.active_kid),
        store=store,
        clock=clock,
        audit=audit,
        access_ttl_seconds=config.access_token_ttl_seconds,
        refresh_ttl_seconds=config.refresh_token_ttl_seconds,
        issuer=config.issuer,
        max_refresh_sessions=config.max_refresh_sessions,
    )
    service = AuthService(
        repo=repo,
        tokens=tokens,
        hasher=HASHER,
        clock=clock,
        audit=audit,
        config=config,
    )
    return AuthStack(
        repo=repo,
        store=store,
        tokens=tokens,
        service=service,
        guard=SessionGuard(tokens=tokens, repo=repo),
        clock=clock,
        sink=sink,
        audit=audit,
    )


def seed_clinic(
    repo: PrincipalRepository,
    *,
    email: str = "admin@testclinic.com",
    username: str = "testadmin",
    password: str = ADMIN_HASH,
    **extra: Any,
) -> str:
    doc = {
        "name": "Test Clinic",
        "adminName": "Clinic Admin",
        "adminEmail": email,
        "adminUsername": username,
        "adminPassword": password,
        "email": email,
        "isActive": True,
        "loginAttempts": 0,
    }
    doc.update(extra)
    return repo.save_document(PrincipalKind.CLINIC, doc)


def seed_staff(
    repo: PrincipalRepository,
    kind: PrincipalKind,
    clinic_id: str,
    *,
    email: str,
    password: str = ADMIN_HASH,
    **extra: Any,
) -> str:
    doc = {
        "fullName": f"Test {kind.value.title()}",
        "email": email,
        "passwordHash": password,
        "clinicId": clinic_id,
        "isActive": True,
        "loginAttempts": 0,
    }
    doc.update(extra)
    return repo.save_document(kind, doc)
