"""FastAPI application factory wiring the auth core together."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

from clinic_auth.api.http_setup import (
    register_exception_handlers,
    register_request_logging,
    register_request_size_limit,
)
from clinic_auth.auth.audit import AuditEmitter
from clinic_auth.auth.middleware import SessionGuard, create_auth_middleware
from clinic_auth.auth.repository import PrincipalRepository
from clinic_auth.auth.router import create_auth_router
from clinic_auth.auth.service import AuthService
from clinic_auth.auth.token_store import TokenStore
from clinic_auth.auth.tokens import TokenService
from clinic_auth.core.clock import Clock, SystemClock
from clinic_auth.core.config import AppConfig
from clinic_auth.core.security import PasswordHasher, SigningKeyRing

LOGGER = logging.getLogger("clinic_auth.api")


def create_app(
    config: AppConfig,
    *,
    runtime_dir: Path,
    db: Database | None = None,
    clock: Clock | None = None,
    audit: AuditEmitter | None = None,
) -> FastAPI:
    """Build the API app; ``db=None`` selects the JSON file store under ``runtime_dir``."""
    clock = clock or SystemClock()
    audit = audit or AuditEmitter()
    auth_config = config.auth

    repo = PrincipalRepository(
        db=db,
        runtime_dir=runtime_dir,
        max_login_attempts=auth_config.max_login_attempts,
        lockout_duration_seconds=auth_config.lockout_duration_seconds,
    )
    tokens = TokenService(
        keys=SigningKeyRing(auth_config.signing_keys, auth_config.active_kid),
        store=TokenStore(db=db, runtime_dir=runtime_dir),
        clock=clock,
        audit=audit,
        access_ttl_seconds=auth_config.access_token_ttl_seconds,
        refresh_ttl_seconds=auth_config.refresh_token_ttl_seconds,
        issuer=auth_config.issuer,
        max_refresh_sessions=auth_config.max_refresh_sessions,
    )
    service = AuthService(
        repo=repo,
        tokens=tokens,
        hasher=PasswordHasher(auth_config.hash_cost),
        clock=clock,
        audit=audit,
        config=auth_config,
    )
    service.bootstrap_clinic_admin()
    tokens.purge_expired()
    guard = SessionGuard(tokens=tokens, repo=repo)

    app = FastAPI(title="Clinic Auth API", version="1.0.0")
    app.state.config = config
    app.state.clock = clock
    app.state.audit = audit
    app.state.auth_service = service
    app.state.session_guard = guard

    # Added innermost first: auth, size limit, CORS, then request logging outermost.
    app.middleware("http")(create_auth_middleware(guard))
    register_request_size_limit(app, security=config.security)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    register_request_logging(app, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    app.include_router(create_auth_router(service))
    return app
