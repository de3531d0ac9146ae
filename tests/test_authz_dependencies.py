from __future__ import annotations

from types import SimpleNamespace

import pytest

from clinic_auth.auth.audit import AuditEmitter, AuditEventKind
from clinic_auth.auth.errors import AuthError, AuthErrorKind, AuthorizationError
from clinic_auth.auth.models import AuthContext, PrincipalKind, Role
from clinic_auth.authz.dependencies import current_auth, enforce, require_access
from clinic_auth.authz.policy import Action, Resource, ScopeTarget
from tests.auth_fixtures import RecordingSink

NURSE = AuthContext(principal_id="n1", kind=PrincipalKind.NURSE, role=Role.NURSE, tenant_id="c1")


def _request(ctx: AuthContext | None, audit: AuditEmitter):
    return SimpleNamespace(
        state=SimpleNamespace(auth=ctx),
        app=SimpleNamespace(state=SimpleNamespace(audit=audit)),
    )


def test_current_auth_requires_guard_context() -> None:
    with pytest.raises(AuthError) as exc:
        current_auth(_request(None, AuditEmitter([])))

    assert exc.value.kind == AuthErrorKind.MISSING_CREDENTIAL


def test_enforce_distinguishes_forbidden_and_out_of_scope() -> None:
    sink = RecordingSink()
    audit = AuditEmitter([sink])

    with pytest.raises(AuthorizationError) as forbidden:
        enforce(NURSE, Resource.AUDIT_LOG, Action.LIST, audit=audit)
    with pytest.raises(AuthorizationError) as scoped:
        enforce(
            NURSE,
            Resource.PATIENT,
            Action.READ,
            ScopeTarget(id="p9", tenant_id="c2"),
            audit=audit,
        )

    assert forbidden.value.kind == AuthErrorKind.FORBIDDEN
    assert scoped.value.kind == AuthErrorKind.OUT_OF_SCOPE
    assert sink.kinds() == [AuditEventKind.AUTHORIZATION_DENIED] * 2
    assert [event.meta["reason"] for event in sink.events] == ["forbidden", "out_of_scope"]
    assert sink.events[1].target_id == "p9"


def test_enforce_allows_silently() -> None:
    sink = RecordingSink()

    enforce(NURSE, Resource.INVOICE, Action.CREATE, audit=AuditEmitter([sink]))

    assert sink.events == []


def test_require_access_returns_context() -> None:
    dependency = require_access(Resource.APPOINTMENT, Action.LIST)
    audit = AuditEmitter([])

    assert dependency(_request(NURSE, audit)) is NURSE
    with pytest.raises(AuthorizationError):
        require_access(Resource.INVENTORY, Action.READ)(_request(NURSE, audit))


def test_require_access_leaves_listing_to_row_filter() -> None:
    sink = RecordingSink()
    request = _request(NURSE, AuditEmitter([sink]))

    assert require_access(Resource.INVENTORY, Action.LIST)(request) is NURSE
    assert sink.events == []
