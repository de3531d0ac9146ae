from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from clinic_auth.api.application import create_app
from clinic_auth.auth.storage import connect_mongo
from clinic_auth.core.config import AppConfig
from clinic_auth.core.logging import setup_logging
from clinic_auth.core.mongo_migrations import apply_mongo_migrations

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent
RUNTIME_DIR = Path(os.getenv("RUNTIME_DIR", "").strip() or APP_ROOT / "runtime")
RUNTIME_DIR.mkdir(parents=True, exist_ok=True)


def build_app() -> FastAPI:
    db = connect_mongo(APP_CONFIG.store)
    applied = apply_mongo_migrations(db)
    if applied:
        LOGGER.info("Mongo migrations applied: %s", ", ".join(applied))
    return create_app(APP_CONFIG, runtime_dir=RUNTIME_DIR, db=db)


app = build_app()
