"""MongoDB connection and JSON-file fallback shared by auth repositories."""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from clinic_auth.auth.errors import UnavailableError
from clinic_auth.core.config import StoreConfig

LOGGER = logging.getLogger(__name__)

_FILE_LOCKS: dict[Path, threading.RLock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def connect_mongo(config: StoreConfig) -> Database | None:
    """Return configured database, or ``None`` when no URI is set.

    A configured but unreachable server is a startup error; credentials are
    never silently moved to the local fallback store.
    """
    if not config.mongo_uri:
        LOGGER.warning("MONGODB_URI is not set. Using local JSON auth store fallback.")
        return None
    client: MongoClient = MongoClient(
        config.mongo_uri,
        serverSelectionTimeoutMS=config.timeout_ms,
        connectTimeoutMS=config.timeout_ms,
        socketTimeoutMS=config.timeout_ms,
    )
    client.admin.command("ping")
    LOGGER.info("Auth store using MongoDB: db=%s", config.mongo_db)
    return client[config.mongo_db]


@contextmanager
def store_call(operation: str) -> Iterator[None]:
    """Translate driver failures and timeouts into ``UnavailableError``."""
    try:
        yield
    except PyMongoError as exc:
        LOGGER.error("Auth store operation failed: %s (%s)", operation, type(exc).__name__)
        raise UnavailableError() from exc


class JsonCollection:
    """List-of-documents JSON file guarded by a per-path process lock."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        resolved = path.resolve()
        with _FILE_LOCKS_GUARD:
            self._lock = _FILE_LOCKS.setdefault(resolved, threading.RLock())

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def read(self) -> list[dict[str, Any]]:
        """Read rows with empty fallback for missing or corrupted files."""
        with self._lock:
            if not self._path.exists():
                return []
            try:
                payload = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                LOGGER.exception("Failed reading fallback auth store: %s", self._path)
                return []
        if not isinstance(payload, list):
            return []
        return [row for row in payload if isinstance(row, dict)]

    def write(self, rows: list[dict[str, Any]]) -> None:
        """Persist rows atomically via rename."""
        with self._lock:
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8"
            )
            os.replace(tmp_path, self._path)
