"""Persistence for the token revocation set and refresh sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pymongo.database import Database

from clinic_auth.auth.models import RefreshSessionRecord
from clinic_auth.auth.storage import JsonCollection, store_call

REVOKED_COLLECTION = "revoked_tokens"
SESSIONS_COLLECTION = "refresh_sessions"


def _expire_at(exp: int) -> datetime:
    """TTL index field; MongoDB evicts documents once this instant passes."""
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def _live(row: dict[str, Any], field: str, now: int | None) -> bool:
    return now is None or int(row.get(field) or 0) > now


class TokenStore:
    """Revoked ``jti`` set plus issued refresh sessions.

    Revocations are written straight to the shared store, so every reader sees
    them on its next check.
    """

    def __init__(self, *, db: Database | None, runtime_dir: Path) -> None:
        self._revoked = db[REVOKED_COLLECTION] if db is not None else None
        self._sessions = db[SESSIONS_COLLECTION] if db is not None else None
        base = runtime_dir / "auth_store"
        self._revoked_file = JsonCollection(base / f"{REVOKED_COLLECTION}.json")
        self._sessions_file = JsonCollection(base / f"{SESSIONS_COLLECTION}.json")

    def revoke(self, jti: str, exp: int, *, now: int | None = None) -> None:
        """Add ``jti`` to the revocation set until its natural expiry.

        With ``now`` the file store also drops entries that already expired.
        """
        if not jti:
            return
        if self._revoked is not None:
            with store_call("revoke"):
                self._revoked.update_one(
                    {"jti": jti},
                    {"$set": {"jti": jti, "exp": int(exp), "expire_at": _expire_at(exp)}},
                    upsert=True,
                )
            return

        with self._revoked_file.locked():
            rows = [
                row
                for row in self._revoked_file.read()
                if row.get("jti") != jti and _live(row, "exp", now)
            ]
            rows.append({"jti": jti, "exp": int(exp)})
            self._revoked_file.write(rows)

    def is_revoked(self, jti: str) -> bool:
        if self._revoked is not None:
            with store_call("is_revoked"):
                return self._revoked.find_one({"jti": jti}, {"_id": 1}) is not None
        return any(row.get("jti") == jti for row in self._revoked_file.read())

    def purge_expired(self, now: int) -> int:
        """Drop revocations and sessions past expiry; returns removed count.

        MongoDB does this through TTL indexes, so only the file store is swept.
        """
        if self._revoked is not None:
            return 0
        removed = 0
        with self._revoked_file.locked():
            rows = self._revoked_file.read()
            kept = [row for row in rows if _live(row, "exp", now)]
            if len(kept) != len(rows):
                removed += len(rows) - len(kept)
                self._revoked_file.write(kept)
        with self._sessions_file.locked():
            rows = self._sessions_file.read()
            kept = [row for row in rows if _live(row, "expires_at", now)]
            if len(kept) != len(rows):
                removed += len(rows) - len(kept)
                self._sessions_file.write(kept)
        return removed

    def save_refresh_session(
        self, record: RefreshSessionRecord, *, now: int | None = None
    ) -> None:
        """Save refresh session record for rotation/revocation."""
        doc: dict[str, Any] = record.model_dump()
        if self._sessions is not None:
            doc["expire_at"] = _expire_at(record.expires_at)
            with store_call("save_refresh_session"):
                self._sessions.update_one({"jti": record.jti}, {"$set": doc}, upsert=True)
            return

        with self._sessions_file.locked():
            rows = [
                row
                for row in self._sessions_file.read()
                if row.get("jti") != record.jti and _live(row, "expires_at", now)
            ]
            rows.append(doc)
            self._sessions_file.write(rows)

    def get_refresh_session(self, jti: str) -> RefreshSessionRecord | None:
        if self._sessions is not None:
            with store_call("get_refresh_session"):
                doc = self._sessions.find_one({"jti": jti}, {"_id": 0, "expire_at": 0})
            return RefreshSessionRecord.model_validate(doc) if doc else None

        for row in self._sessions_file.read():
            if row.get("jti") == jti:
                return RefreshSessionRecord.model_validate(row)
        return None

    def claim_refresh_session(self, jti: str) -> bool:
        """Atomically mark a live session revoked; ``False`` if already revoked."""
        if self._sessions is not None:
            with store_call("claim_refresh_session"):
                result = self._sessions.update_one(
                    {"jti": jti, "revoked": False}, {"$set": {"revoked": True}}
                )
            return result.modified_count == 1

        with self._sessions_file.locked():
            rows = self._sessions_file.read()
            for row in rows:
                if row.get("jti") == jti and not row.get("revoked"):
                    row["revoked"] = True
                    self._sessions_file.write(rows)
                    return True
        return False

    def live_refresh_sessions(self, principal_id: str, now: int) -> list[RefreshSessionRecord]:
        """Return unrevoked, unexpired sessions of a principal, oldest first."""
        if self._sessions is not None:
            with store_call("live_refresh_sessions"):
                docs = list(
                    self._sessions.find(
                        {
                            "principal_id": principal_id,
                            "revoked": False,
                            "expires_at": {"$gt": now},
                        },
                        {"_id": 0, "expire_at": 0},
                    ).sort("issued_at", 1)
                )
        else:
            docs = [
                row
                for row in self._sessions_file.read()
                if row.get("principal_id") == principal_id
                and not row.get("revoked")
                and int(row.get("expires_at") or 0) > now
            ]
            docs.sort(key=lambda row: int(row.get("issued_at") or 0))
        return [RefreshSessionRecord.model_validate(doc) for doc in docs]
