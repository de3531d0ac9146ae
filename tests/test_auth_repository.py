from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from clinic_auth.auth.errors import UnavailableError
from clinic_auth.auth.models import PrincipalKind, Role
from clinic_auth.auth.repository import (
    LAYOUTS,
    PrincipalRepository,
    next_failed_attempt_state,
    to_principal,
)
from tests.auth_fixtures import START, seed_clinic, seed_staff


def _repo(tmp_path: Path) -> PrincipalRepository:
    return PrincipalRepository(db=None, runtime_dir=tmp_path)


def test_find_by_login_identifier_is_case_insensitive(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo, email="Admin@TestClinic.com")

    by_email = repo.find_by_login_identifier("  admin@testclinic.COM ")
    by_username = repo.find_by_login_identifier("TESTADMIN")

    assert by_email is not None and by_email.id == clinic_id
    assert by_username is not None and by_username.id == clinic_id
    assert by_email.kind == PrincipalKind.CLINIC
    assert by_email.tenant_id == clinic_id
    assert repo.find_by_login_identifier("") is None


def test_find_by_login_identifier_prefers_clinic_over_staff(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    other_clinic = seed_clinic(repo, email="first@clinic.com", username="first")
    seed_staff(repo, PrincipalKind.DOCTOR, other_clinic, email="shared@clinic.com")
    clinic_id = seed_clinic(repo, email="owner@clinic.com", username="shared@clinic.com")

    principal = repo.find_by_login_identifier("shared@clinic.com")

    assert principal is not None
    assert principal.id == clinic_id
    assert principal.kind == PrincipalKind.CLINIC


def test_staff_principal_maps_tenant_role_and_assignments(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo)
    nurse_id = seed_staff(
        repo, PrincipalKind.NURSE, clinic_id, email="head@clinic.com", role="head_nurse"
    )
    doctor_id = seed_staff(
        repo,
        PrincipalKind.DOCTOR,
        clinic_id,
        email="doc@clinic.com",
        assignedPatients=["p1", "p2"],
    )

    nurse = repo.find_by_id(nurse_id)
    doctor = repo.find_by_id(doctor_id, PrincipalKind.DOCTOR)

    assert nurse is not None and nurse.role == Role.HEAD_NURSE
    assert nurse.tenant_id == clinic_id
    assert doctor is not None and doctor.assigned_patient_ids == ["p1", "p2"]
    assert repo.find_by_id(doctor_id, PrincipalKind.NURSE) is None


def test_unknown_role_falls_back_to_kind_default() -> None:
    principal = to_principal(
        LAYOUTS[PrincipalKind.PHARMACIST],
        {"_id": "ph1", "clinicId": "c1", "role": "clinic", "email": "ph@x"},
    )

    assert principal.role == Role.PHARMACIST


def test_to_principal_normalizes_stored_instants() -> None:
    layout = LAYOUTS[PrincipalKind.CLINIC]
    millis = to_principal(layout, {"_id": "c1", "lockUntil": START * 1000})
    stamped = to_principal(
        layout,
        {"_id": "c1", "lockUntil": datetime.fromtimestamp(START, tz=timezone.utc)},
    )
    naive_instant = datetime.fromtimestamp(START, tz=timezone.utc).replace(tzinfo=None)
    naive = to_principal(layout, {"_id": "c1", "lastLogin": naive_instant})

    assert millis.lock_until == START
    assert stamped.lock_until == START
    assert naive.last_login == START


def test_clinic_legacy_password_field_is_read_and_dropped_on_rewrite(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = repo.save_document(
        PrincipalKind.CLINIC,
        {"adminEmail": "old@clinic.com", "passwordHash": "plain", "isActive": True},
    )

    assert repo.find_by_id(clinic_id).password_hash == "plain"

    repo.rewrite_password(clinic_id, "$2b$12$new")

    rows = json.loads((tmp_path / "auth_store" / "clinics.json").read_text("utf-8"))
    assert rows[0]["adminPassword"] == "$2b$12$new"
    assert "passwordHash" not in rows[0]


def test_increment_login_attempts_locks_on_fifth_failure(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo)

    for attempt in range(1, 5):
        principal = repo.increment_login_attempts(clinic_id, START)
        assert principal.login_attempts == attempt
        assert principal.lock_until is None

    locked = repo.increment_login_attempts(clinic_id, START)

    assert locked.login_attempts == 5
    assert locked.lock_until == START + 7200
    assert repo.find_by_id(clinic_id).is_locked(START + 7199)


def test_increment_after_expired_lock_starts_over(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo, loginAttempts=5, lockUntil=START)

    principal = repo.increment_login_attempts(clinic_id, START + 1)

    assert principal.login_attempts == 1
    assert principal.lock_until is None


def test_increment_raises_unavailable_under_contention(tmp_path: Path, monkeypatch) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo)
    monkeypatch.setattr(repo, "_compare_and_set", lambda *args, **kwargs: False)

    with pytest.raises(UnavailableError):
        repo.increment_login_attempts(clinic_id, START)


def test_compare_and_set_detects_concurrent_writer(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo)
    layout = LAYOUTS[PrincipalKind.CLINIC]
    stale = repo._locate(clinic_id, None)[1]

    repo.increment_login_attempts(clinic_id, START)

    applied = repo._compare_and_set(
        layout, stale, {"loginAttempts": stale.get("loginAttempts")}, {"loginAttempts": 1}
    )
    assert applied is False
    assert repo.find_by_id(clinic_id).login_attempts == 1


def test_reset_login_attempts_clears_lock_and_stamps_last_login(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo, loginAttempts=3, lockUntil=START + 50)

    principal = repo.reset_login_attempts(clinic_id, START)

    assert principal.login_attempts == 0
    assert principal.lock_until is None
    assert principal.last_login == START


def test_set_active_and_iter_principals(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    clinic_id = seed_clinic(repo)
    seed_clinic(repo, email="second@clinic.com", username="second")

    repo.set_active(clinic_id, False)

    assert repo.find_by_id(clinic_id).is_active is False
    assert len(list(repo.iter_principals(PrincipalKind.CLINIC))) == 2
    assert list(repo.iter_principals(PrincipalKind.NURSE)) == []


def test_repository_handles_corrupted_store_file(tmp_path: Path) -> None:
    store_file = tmp_path / "auth_store" / "clinics.json"
    store_file.parent.mkdir(parents=True, exist_ok=True)
    store_file.write_text("{not-json", encoding="utf-8")
    repo = _repo(tmp_path)

    assert repo.find_by_login_identifier("admin@testclinic.com") is None


@pytest.mark.parametrize(
    ("attempts", "lock_until", "expected"),
    [
        (0, None, (1, None)),
        (3, None, (4, None)),
        (4, None, (5, START + 7200)),
        (5, START + 10, (6, START + 10)),
        (5, START, (1, None)),
        (5, START - 1, (1, None)),
    ],
)
def test_next_failed_attempt_state(attempts, lock_until, expected) -> None:
    assert (
        next_failed_attempt_state(
            attempts, lock_until, START, max_attempts=5, lockout_seconds=7200
        )
        == expected
    )
