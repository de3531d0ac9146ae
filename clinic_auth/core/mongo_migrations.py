"""Versioned MongoDB index migrations for the auth collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from pymongo.database import Database

from clinic_auth.auth.repository import LAYOUTS
from clinic_auth.auth.storage import store_call
from clinic_auth.auth.token_store import REVOKED_COLLECTION, SESSIONS_COLLECTION
from clinic_auth.core.logging import get_correlation_id

LOGGER = logging.getLogger(__name__)

MIGRATIONS_COLLECTION = "schema_migrations"

MigrationFn = Callable[[Database], None]


def _migration_20260301_01_principal_lookup(db: Database) -> None:
    for layout in LAYOUTS.values():
        for name in layout.login_fields:
            db[layout.collection].create_index(name)
        if layout.tenant_field:
            db[layout.collection].create_index(layout.tenant_field)


def _migration_20260301_02_token_store(db: Database) -> None:
    db[REVOKED_COLLECTION].create_index("jti", unique=True)
    db[SESSIONS_COLLECTION].create_index("jti", unique=True)
    db[SESSIONS_COLLECTION].create_index([("principal_id", 1), ("issued_at", 1)])


def _migration_20260301_03_token_ttl(db: Database) -> None:
    db[REVOKED_COLLECTION].create_index(
        "expire_at",
        expireAfterSeconds=0,
        name="idx_revoked_tokens_expire_at_ttl",
    )
    db[SESSIONS_COLLECTION].create_index(
        "expire_at",
        expireAfterSeconds=0,
        name="idx_refresh_sessions_expire_at_ttl",
    )


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20260301_01_principal_lookup", _migration_20260301_01_principal_lookup),
    ("20260301_02_token_store", _migration_20260301_02_token_store),
    ("20260301_03_token_ttl", _migration_20260301_03_token_ttl),
]


def apply_mongo_migrations(db: Database | None) -> list[str]:
    """Apply pending migrations and return the ids applied in this run."""
    if db is None:
        return []

    applied: list[str] = []
    with store_call("apply_mongo_migrations"):
        migration_collection = db[MIGRATIONS_COLLECTION]
        migration_collection.create_index("migration_id", unique=True)
        for migration_id, migration_fn in MIGRATIONS:
            if migration_collection.find_one({"migration_id": migration_id}):
                continue
            migration_fn(db)
            migration_collection.insert_one(
                {
                    "migration_id": migration_id,
                    "applied_at": datetime.now(timezone.utc),
                    "correlation_id": get_correlation_id(),
                }
            )
            applied.append(migration_id)
            LOGGER.info("Applied Mongo migration %s", migration_id)
    return applied
