from __future__ import annotations

import json
import logging

from clinic_auth.auth.audit import AuditEmitter, AuditEvent, AuditEventKind, AuditOutcome
from clinic_auth.core.logging import JsonLogFormatter, redact, set_correlation_id
from tests.auth_fixtures import RecordingSink


def test_emit_fans_out_to_every_sink() -> None:
    first, second = RecordingSink(), RecordingSink()
    emitter = AuditEmitter([first])
    emitter.add_sink(second)

    event = emitter.emit(
        AuditEventKind.TOKEN_ISSUED,
        outcome=AuditOutcome.SUCCESS,
        ts=10,
        principal_id="c1",
        access_jti="j1",
    )

    assert first.events == [event] == second.events
    assert event.ts == 10
    assert event.meta == {"access_jti": "j1"}


def test_failing_sink_never_reaches_caller(caplog) -> None:
    def broken(_event: AuditEvent) -> None:
        raise RuntimeError("sink down")

    after = RecordingSink()
    emitter = AuditEmitter([broken, after])

    with caplog.at_level(logging.ERROR):
        emitter.emit(AuditEventKind.LOGIN_FAILED, outcome=AuditOutcome.FAILURE)

    assert len(after.events) == 1
    assert "Audit sink failed" in caplog.text


def test_default_sink_writes_structured_log(caplog) -> None:
    emitter = AuditEmitter()

    with caplog.at_level(logging.INFO, logger="clinic_auth.audit"):
        emitter.emit(
            AuditEventKind.AUTHORIZATION_DENIED,
            outcome=AuditOutcome.FAILURE,
            principal_id="d1",
            target_kind="Patient",
            reason="out_of_scope",
        )

    record = next(r for r in caplog.records if r.name == "clinic_auth.audit")
    assert record.levelno == logging.WARNING
    assert record.event_kind == "AuthorizationDenied"
    assert record.meta == {"reason": "out_of_scope"}


def test_json_log_formatter_includes_correlation_and_extras() -> None:
    set_correlation_id("corr-1")
    record = logging.LogRecord("clinic_auth.api", logging.INFO, __file__, 1, "done", None, None)
    record.principal_id = "c1"
    record.status_code = 200

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["correlation_id"] == "corr-1"
    assert payload["principal_id"] == "c1"
    assert payload["status_code"] == 200
    assert "path" not in payload


def test_meta_may_reuse_event_field_names() -> None:
    sink = RecordingSink()

    event = AuditEmitter([sink]).emit(
        AuditEventKind.LOGIN_SUCCEEDED, outcome=AuditOutcome.SUCCESS, kind="clinic"
    )

    assert event.kind == AuditEventKind.LOGIN_SUCCEEDED
    assert event.meta == {"kind": "clinic"}


def test_json_log_formatter_redacts_credentials() -> None:
    record = logging.LogRecord("clinic_auth.audit", logging.INFO, __file__, 1, "event", None, None)
    record.meta = {"reason": "bad_password", "password": "hunter2", "nested": {"Token": "abc"}}

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["meta"] == {
        "reason": "bad_password",
        "password": "[redacted]",
        "nested": {"Token": "[redacted]"},
    }
    assert redact(["plain", {"refresh_token": "r"}]) == ["plain", {"refresh_token": "[redacted]"}]
