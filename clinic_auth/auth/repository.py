"""Principal repository over the per-kind actor collections."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from bson import ObjectId
from pymongo.database import Database

from clinic_auth.auth.errors import UnavailableError
from clinic_auth.auth.models import (
    KIND_PRECEDENCE,
    Principal,
    PrincipalKind,
    role_for_kind,
)
from clinic_auth.auth.storage import JsonCollection, store_call

CAS_RETRIES = 8


@dataclass(frozen=True)
class KindLayout:
    """Where a principal kind lives and how its document fields are named."""

    kind: PrincipalKind
    collection: str
    login_fields: tuple[str, ...]
    password_fields: tuple[str, ...]
    name_fields: tuple[str, ...]
    email_field: str
    tenant_field: str | None
    assigned_patients_field: str | None = None


LAYOUTS: dict[PrincipalKind, KindLayout] = {
    PrincipalKind.CLINIC: KindLayout(
        kind=PrincipalKind.CLINIC,
        collection="clinics",
        login_fields=("adminEmail", "adminUsername"),
        password_fields=("adminPassword", "passwordHash"),
        name_fields=("adminName", "fullName", "name"),
        email_field="email",
        tenant_field=None,
    ),
    PrincipalKind.DOCTOR: KindLayout(
        kind=PrincipalKind.DOCTOR,
        collection="doctors",
        login_fields=("email",),
        password_fields=("passwordHash",),
        name_fields=("fullName", "name"),
        email_field="email",
        tenant_field="clinicId",
        assigned_patients_field="assignedPatients",
    ),
    PrincipalKind.NURSE: KindLayout(
        kind=PrincipalKind.NURSE,
        collection="nurses",
        login_fields=("email",),
        password_fields=("passwordHash",),
        name_fields=("fullName", "name"),
        email_field="email",
        tenant_field="clinicId",
        assigned_patients_field="assignedPatients",
    ),
    PrincipalKind.PHARMACIST: KindLayout(
        kind=PrincipalKind.PHARMACIST,
        collection="pharmacists",
        login_fields=("email",),
        password_fields=("passwordHash",),
        name_fields=("fullName", "name"),
        email_field="email",
        tenant_field="clinicId",
    ),
}


def next_failed_attempt_state(
    attempts: int,
    lock_until: int | None,
    now: int,
    *,
    max_attempts: int,
    lockout_seconds: int,
) -> tuple[int, int | None]:
    """Return ``(attempts, lock_until)`` after one more failed login."""
    if lock_until is not None and lock_until <= now:
        attempts, lock_until = 0, None
    next_attempts = attempts + 1
    if next_attempts >= max_attempts and lock_until is None:
        lock_until = now + lockout_seconds
    return next_attempts, lock_until


def _epoch(value: Any) -> int | None:
    """Normalize stored instants (epoch seconds, epoch millis or datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, (int, float)):
        # Millisecond timestamps written by older clients.
        return int(value / 1000) if value > 10**11 else int(value)
    return None


def _first(doc: dict[str, Any], fields: tuple[str, ...]) -> str:
    for name in fields:
        value = doc.get(name)
        if value:
            return str(value)
    return ""


def _doc_id(doc: dict[str, Any]) -> str:
    return str(doc.get("_id") or "")


def to_principal(layout: KindLayout, doc: dict[str, Any]) -> Principal:
    """Map a stored actor document to the unified principal model."""
    principal_id = _doc_id(doc)
    tenant_id = principal_id
    if layout.tenant_field is not None:
        tenant_id = str(doc.get(layout.tenant_field) or "")
    assigned: list[str] = []
    if layout.assigned_patients_field is not None:
        assigned = [str(item) for item in doc.get(layout.assigned_patients_field) or []]
    return Principal(
        id=principal_id,
        kind=layout.kind,
        role=role_for_kind(layout.kind, doc.get("role")),
        display_name=_first(doc, layout.name_fields),
        primary_email=str(doc.get(layout.email_field) or ""),
        login_identifiers=[
            str(doc[name]) for name in layout.login_fields if doc.get(name)
        ],
        password_hash=_first(doc, layout.password_fields),
        is_active=bool(doc.get("isActive", True)),
        tenant_id=tenant_id,
        login_attempts=max(0, int(doc.get("loginAttempts") or 0)),
        lock_until=_epoch(doc.get("lockUntil")),
        last_login=_epoch(doc.get("lastLogin")),
        assigned_patient_ids=assigned,
    )


class PrincipalRepository:
    """Principal lookups and atomic login-state updates.

    MongoDB is used when a database handle is supplied; otherwise documents
    live in JSON files under ``<runtime_dir>/auth_store``.
    """

    def __init__(
        self,
        *,
        db: Database | None,
        runtime_dir: Path,
        max_login_attempts: int = 5,
        lockout_duration_seconds: int = 7200,
    ) -> None:
        self._db = db
        self._max_attempts = max(1, int(max_login_attempts))
        self._lockout_seconds = max(1, int(lockout_duration_seconds))
        self._files = {
            kind: JsonCollection(runtime_dir / "auth_store" / f"{layout.collection}.json")
            for kind, layout in LAYOUTS.items()
        }

    def _mongo(self, layout: KindLayout) -> Any:
        return self._db[layout.collection] if self._db is not None else None

    @staticmethod
    def _id_filter(principal_id: str) -> dict[str, Any]:
        if ObjectId.is_valid(principal_id):
            return {"_id": {"$in": [ObjectId(principal_id), principal_id]}}
        return {"_id": principal_id}

    def _find_raw_by_id(
        self, layout: KindLayout, principal_id: str
    ) -> dict[str, Any] | None:
        collection = self._mongo(layout)
        if collection is not None:
            with store_call("find_by_id"):
                return collection.find_one(self._id_filter(principal_id))
        for row in self._files[layout.kind].read():
            if _doc_id(row) == principal_id:
                return row
        return None

    def _locate(
        self, principal_id: str, kind: PrincipalKind | None
    ) -> tuple[KindLayout, dict[str, Any]] | None:
        kinds = (kind,) if kind is not None else KIND_PRECEDENCE
        for candidate in kinds:
            layout = LAYOUTS[candidate]
            doc = self._find_raw_by_id(layout, principal_id)
            if doc is not None:
                return layout, doc
        return None

    def find_by_login_identifier(self, identifier: str) -> Principal | None:
        """Resolve login identifier; clinics take precedence over other kinds."""
        key = identifier.strip().lower()
        if not key:
            return None
        for kind in KIND_PRECEDENCE:
            layout = LAYOUTS[kind]
            collection = self._mongo(layout)
            if collection is not None:
                pattern = {"$regex": f"^{re.escape(key)}$", "$options": "i"}
                with store_call("find_by_login_identifier"):
                    doc = collection.find_one(
                        {"$or": [{name: pattern} for name in layout.login_fields]}
                    )
            else:
                doc = next(
                    (
                        row
                        for row in self._files[kind].read()
                        if any(
                            str(row.get(name) or "").strip().lower() == key
                            for name in layout.login_fields
                        )
                    ),
                    None,
                )
            if doc is not None:
                return to_principal(layout, doc)
        return None

    def find_by_id(
        self, principal_id: str, kind: PrincipalKind | None = None
    ) -> Principal | None:
        """Find principal by id; ``kind`` narrows the lookup to one collection."""
        if not principal_id:
            return None
        located = self._locate(principal_id, kind)
        if located is None:
            return None
        layout, doc = located
        return to_principal(layout, doc)

    def _compare_and_set(
        self,
        layout: KindLayout,
        doc: dict[str, Any],
        expected: dict[str, Any],
        changes: dict[str, Any],
        unset: tuple[str, ...] = (),
    ) -> bool:
        """Apply changes only if ``expected`` fields still hold their read values."""
        collection = self._mongo(layout)
        if collection is not None:
            update: dict[str, Any] = {"$set": changes}
            if unset:
                update["$unset"] = {name: "" for name in unset}
            with store_call("compare_and_set"):
                result = collection.update_one({"_id": doc["_id"], **expected}, update)
            return result.matched_count == 1

        store = self._files[layout.kind]
        with store.locked():
            rows = store.read()
            for row in rows:
                if _doc_id(row) != _doc_id(doc):
                    continue
                if any(row.get(name) != value for name, value in expected.items()):
                    return False
                row.update(changes)
                for name in unset:
                    row.pop(name, None)
                store.write(rows)
                return True
        return False

    def _update(
        self,
        principal_id: str,
        kind: PrincipalKind | None,
        changes: dict[str, Any],
        unset: tuple[str, ...] = (),
    ) -> Principal | None:
        located = self._locate(principal_id, kind)
        if located is None:
            return None
        layout, doc = located
        self._compare_and_set(layout, doc, {}, changes, unset)
        return self.find_by_id(principal_id, layout.kind)

    def increment_login_attempts(
        self, principal_id: str, now: int, *, kind: PrincipalKind | None = None
    ) -> Principal | None:
        """Count one failed login, locking the account at the threshold."""
        for _ in range(CAS_RETRIES):
            located = self._locate(principal_id, kind)
            if located is None:
                return None
            layout, doc = located
            attempts, lock_until = next_failed_attempt_state(
                max(0, int(doc.get("loginAttempts") or 0)),
                _epoch(doc.get("lockUntil")),
                now,
                max_attempts=self._max_attempts,
                lockout_seconds=self._lockout_seconds,
            )
            expected = {
                "loginAttempts": doc.get("loginAttempts"),
                "lockUntil": doc.get("lockUntil"),
            }
            changes = {"loginAttempts": attempts, "lockUntil": lock_until}
            if self._compare_and_set(layout, doc, expected, changes):
                return to_principal(layout, {**doc, **changes})
        raise UnavailableError("Login state update contention")

    def reset_login_attempts(
        self, principal_id: str, now: int, *, kind: PrincipalKind | None = None
    ) -> Principal | None:
        """Clear failure counters and stamp last successful login."""
        return self._update(
            principal_id,
            kind,
            {"loginAttempts": 0, "lockUntil": None, "lastLogin": now},
        )

    def rewrite_password(
        self, principal_id: str, new_hash: str, *, kind: PrincipalKind | None = None
    ) -> Principal | None:
        """Replace stored password hash; legacy secondary fields are dropped."""
        located = self._locate(principal_id, kind)
        if located is None:
            return None
        layout, doc = located
        primary, *legacy = layout.password_fields
        self._compare_and_set(layout, doc, {}, {primary: new_hash}, tuple(legacy))
        return self.find_by_id(principal_id, layout.kind)

    def set_active(
        self, principal_id: str, active: bool, *, kind: PrincipalKind | None = None
    ) -> Principal | None:
        """Activate or deactivate a principal."""
        return self._update(principal_id, kind, {"isActive": bool(active)})

    def save_document(self, kind: PrincipalKind, doc: dict[str, Any]) -> str:
        """Insert a provisioned actor document and return its id."""
        layout = LAYOUTS[kind]
        collection = self._mongo(layout)
        if collection is not None:
            with store_call("save_document"):
                result = collection.insert_one(dict(doc))
            return str(result.inserted_id)

        row = dict(doc)
        row["_id"] = str(row.get("_id") or uuid.uuid4().hex)
        store = self._files[kind]
        with store.locked():
            rows = [item for item in store.read() if _doc_id(item) != row["_id"]]
            rows.append(row)
            store.write(rows)
        return row["_id"]

    def iter_principals(self, kind: PrincipalKind) -> Iterator[Principal]:
        """Yield every principal of one kind."""
        layout = LAYOUTS[kind]
        collection = self._mongo(layout)
        if collection is not None:
            with store_call("iter_principals"):
                docs = list(collection.find({}))
        else:
            docs = self._files[kind].read()
        for doc in docs:
            yield to_principal(layout, doc)
