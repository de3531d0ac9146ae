"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

MIN_HASH_COST = 12


@dataclass(frozen=True)
class AuthConfig:
    """Authentication-related configuration."""

    signing_keys: dict[str, str]
    active_kid: str
    access_token_ttl_seconds: int = 900
    refresh_token_ttl_seconds: int = 604800
    max_login_attempts: int = 5
    lockout_duration_seconds: int = 7200
    hash_cost: int = MIN_HASH_COST
    max_refresh_sessions: int = 5
    issuer: str = "clinic-auth"
    bootstrap_admin: bool = False
    admin_email: str = ""
    admin_password: str = ""


@dataclass(frozen=True)
class StoreConfig:
    """Document store connection settings."""

    mongo_uri: str = ""
    mongo_db: str = "clinic"
    timeout_ms: int = 2000


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "INFO"


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str] = field(default_factory=list)
    request_max_bytes: int = 1024 * 1024


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    store: StoreConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        signing_keys, active_kid = parse_signing_keys(
            os.getenv("SIGNING_KEYS", ""),
            os.getenv("SIGNING_SECRET", ""),
        )
        bootstrap_admin = os.getenv("AUTH_BOOTSTRAP_ADMIN", "0").strip().lower() in {
            "1",
            "true",
            "yes",
            "on",
        }
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]

        return AppConfig(
            auth=AuthConfig(
                signing_keys=signing_keys,
                active_kid=active_kid,
                access_token_ttl_seconds=_positive_int("ACCESS_TTL", 900),
                refresh_token_ttl_seconds=_positive_int("REFRESH_TTL", 604800),
                max_login_attempts=_positive_int("MAX_LOGIN_ATTEMPTS", 5),
                lockout_duration_seconds=_positive_int("LOCKOUT_DURATION", 7200),
                hash_cost=max(MIN_HASH_COST, _positive_int("HASH_COST", MIN_HASH_COST)),
                max_refresh_sessions=_positive_int("MAX_REFRESH_SESSIONS", 5),
                issuer=os.getenv("AUTH_ISSUER", "clinic-auth").strip() or "clinic-auth",
                bootstrap_admin=bootstrap_admin,
                admin_email=os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower(),
                admin_password=os.getenv("AUTH_ADMIN_PASSWORD", "").strip(),
            ),
            store=StoreConfig(
                mongo_uri=os.getenv("MONGODB_URI", "").strip(),
                mongo_db=os.getenv("MONGODB_DB", "clinic").strip() or "clinic",
                timeout_ms=_positive_int("REPOSITORY_TIMEOUT_MS", 2000),
            ),
            logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=_positive_int("REQUEST_MAX_BYTES", 1024 * 1024),
            ),
        )


def parse_signing_keys(raw_keys: str, raw_secret: str) -> tuple[dict[str, str], str]:
    """Parse ``kid:secret,kid:secret`` rotation set; the first entry signs.

    ``SIGNING_SECRET`` alone yields a single key with kid ``default``. When
    neither is configured a random process-local secret is generated, so
    tokens do not survive a restart.
    """
    keys: dict[str, str] = {}
    active_kid = ""
    for chunk in raw_keys.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        kid, sep, secret = chunk.partition(":")
        if not sep or not kid.strip() or not secret.strip():
            raise ValueError(f"Invalid SIGNING_KEYS entry: {kid.strip() or '<empty>'}")
        keys[kid.strip()] = secret.strip()
        active_kid = active_kid or kid.strip()

    secret = raw_secret.strip()
    if secret:
        keys.setdefault("default", secret)
        active_kid = active_kid or "default"

    if not keys:
        LOGGER.warning(
            "SIGNING_SECRET / SIGNING_KEYS not set. Using a generated secret; "
            "issued tokens will not survive a restart."
        )
        keys = {"default": secrets.token_hex(64)}
        active_kid = "default"
    return keys, active_kid


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value
