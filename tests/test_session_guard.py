from __future__ import annotations

from pathlib import Path

import pytest

from clinic_auth.auth.errors import AuthError, AuthErrorKind
from clinic_auth.auth.middleware import extract_bearer_token
from clinic_auth.auth.models import PrincipalKind, Role
from tests.auth_fixtures import build_stack, seed_clinic, seed_staff


def test_extract_bearer_token() -> None:
    assert extract_bearer_token("Bearer abc") == "abc"
    assert extract_bearer_token("bearer   abc ") == "abc"
    assert extract_bearer_token("Basic abc") == ""
    assert extract_bearer_token(None) == ""
    assert extract_bearer_token("Bearer") == ""


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer "])
def test_guard_requires_bearer_credential(tmp_path: Path, header) -> None:
    stack = build_stack(tmp_path)

    with pytest.raises(AuthError) as exc:
        stack.guard.authenticate(header)

    assert exc.value.kind == AuthErrorKind.MISSING_CREDENTIAL


def test_guard_builds_context_with_fresh_scope(tmp_path: Path) -> None:
    stack = build_stack(tmp_path)
    clinic_id = seed_clinic(stack.repo)
    doctor_id = seed_staff(
        stack.repo,
        PrincipalKind.DOCTOR,
        clinic_id,
        email="doc@testclinic.com",
        assignedPatients=["p1"],
    )
    tokens = stack.service.login("doc@testclinic.com", "admin123").tokens

    ctx = stack.guard.authenticate(f"Bearer {tokens.access_token}")

    assert ctx.principal_id == doctor_id
    assert ctx.role == Role.DOCTOR
    assert ctx.tenant_id == clinic_id
    assert ctx.scope.assigned_patient_ids == frozenset({"p1"})


def test_deactivation_mid_session_rejects_next_request(tmp_path: Path) -> None:
    stack = build_stack(tmp_path)
    clinic_id = seed_clinic(stack.repo)
    tokens = stack.service.login("admin@testclinic.com", "admin123").tokens
    header = f"Bearer {tokens.access_token}"
    assert stack.guard.authenticate(header).principal_id == clinic_id

    stack.repo.set_active(clinic_id, False)

    with pytest.raises(AuthError) as exc:
        stack.guard.authenticate(header)
    assert exc.value.kind == AuthErrorKind.DEACTIVATED


def test_guard_rejects_token_for_deleted_principal(tmp_path: Path) -> None:
    stack = build_stack(tmp_path)
    seed_clinic(stack.repo)
    tokens = stack.service.login("admin@testclinic.com", "admin123").tokens
    (tmp_path / "auth_store" / "clinics.json").write_text("[]", encoding="utf-8")

    with pytest.raises(AuthError) as exc:
        stack.guard.authenticate(f"Bearer {tokens.access_token}")

    assert exc.value.kind == AuthErrorKind.USER_NOT_FOUND


def test_guard_rejects_refresh_token_as_access(tmp_path: Path) -> None:
    stack = build_stack(tmp_path)
    seed_clinic(stack.repo)
    tokens = stack.service.login("admin@testclinic.com", "admin123").tokens

    with pytest.raises(AuthError) as exc:
        stack.guard.authenticate(f"Bearer {tokens.refresh_token}")

    assert exc.value.kind == AuthErrorKind.WRONG_TOKEN_TYPE
