"""Structured audit events produced by the auth core.

Storage is external: the emitter hands each event to its sinks and never lets
a sink failure reach the caller. Credentials never appear in events.
"""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field

AUDIT_LOGGER = logging.getLogger("clinic_auth.audit")
LOGGER = logging.getLogger(__name__)


class AuditEventKind(StrEnum):
    LOGIN_SUCCEEDED = "LoginSucceeded"
    LOGIN_FAILED = "LoginFailed"
    ACCOUNT_LOCKED = "AccountLocked"
    TOKEN_ISSUED = "TokenIssued"
    TOKEN_REFRESHED = "TokenRefreshed"
    TOKEN_REVOKED = "TokenRevoked"
    REFRESH_REUSE_DETECTED = "RefreshReuseDetected"
    AUTHORIZATION_DENIED = "AuthorizationDenied"


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditEvent(BaseModel):
    """Audit event payload."""

    ts: int = Field(default_factory=lambda: int(time.time()))
    kind: AuditEventKind
    principal_id: str | None = None
    target_kind: str | None = None
    target_id: str | None = None
    outcome: AuditOutcome
    meta: dict[str, Any] = Field(default_factory=dict)


AuditSink = Callable[[AuditEvent], None]


def log_sink(event: AuditEvent) -> None:
    """Write the event as a structured log record."""
    level = logging.INFO if event.outcome == AuditOutcome.SUCCESS else logging.WARNING
    AUDIT_LOGGER.log(
        level,
        "audit_event",
        extra={
            "event_kind": str(event.kind),
            "outcome": str(event.outcome),
            "principal_id": event.principal_id,
            "target_kind": event.target_kind,
            "target_id": event.target_id,
            "meta": event.meta,
        },
    )


class AuditEmitter:
    """Best-effort fan-out of audit events to sinks."""

    def __init__(self, sinks: Iterable[AuditSink] | None = None) -> None:
        self._sinks: list[AuditSink] = list(sinks) if sinks is not None else [log_sink]

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def emit(
        self,
        kind: AuditEventKind,
        /,
        *,
        outcome: AuditOutcome,
        ts: int | None = None,
        principal_id: str | None = None,
        target_kind: str | None = None,
        target_id: str | None = None,
        **meta: Any,
    ) -> AuditEvent:
        event = AuditEvent(
            ts=ts if ts is not None else int(time.time()),
            kind=kind,
            outcome=outcome,
            principal_id=principal_id,
            target_kind=target_kind,
            target_id=target_id,
            meta=meta,
        )
        for sink in self._sinks:
            try:
                sink(event)
            except Exception:
                LOGGER.exception("Audit sink failed for event %s", event.kind)
        return event
