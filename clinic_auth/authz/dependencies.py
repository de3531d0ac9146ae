"""FastAPI dependencies that apply the authorization policy to requests."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request

from clinic_auth.auth.audit import AuditEmitter, AuditEventKind, AuditOutcome
from clinic_auth.auth.errors import AuthError, AuthErrorKind, AuthorizationError
from clinic_auth.auth.models import AuthContext
from clinic_auth.authz.policy import Action, DenyReason, Resource, ScopeTarget, authorize

LOGGER = logging.getLogger(__name__)

_DENY_KINDS = {
    DenyReason.FORBIDDEN: AuthErrorKind.FORBIDDEN,
    DenyReason.OUT_OF_SCOPE: AuthErrorKind.OUT_OF_SCOPE,
}


def current_auth(request: Request) -> AuthContext:
    """Return the context attached by the session guard."""
    ctx = getattr(request.state, "auth", None)
    if ctx is None:
        raise AuthError(AuthErrorKind.MISSING_CREDENTIAL, "Access token required")
    return ctx


def enforce(
    ctx: AuthContext,
    resource: Resource,
    action: Action,
    target: ScopeTarget | None = None,
    *,
    audit: AuditEmitter,
) -> None:
    """Raise ``AuthorizationError`` unless the policy allows the action."""
    decision = authorize(ctx, resource, action, target)
    if decision.allowed:
        return
    reason = decision.reason or DenyReason.FORBIDDEN
    audit.emit(
        AuditEventKind.AUTHORIZATION_DENIED,
        outcome=AuditOutcome.FAILURE,
        principal_id=ctx.principal_id,
        target_kind=str(resource),
        target_id=target.id if target is not None and target.id else None,
        reason=str(reason),
        action=str(action),
        role=str(ctx.role),
    )
    LOGGER.info(
        "Authorization denied",
        extra={
            "principal_id": ctx.principal_id,
            "reason": str(reason),
            "target_kind": str(resource),
        },
    )
    raise AuthorizationError(_DENY_KINDS[reason], "Access denied")


def require_access(resource: Resource, action: Action) -> Callable[[Request], AuthContext]:
    """Dependency factory for the role gate of a route.

    Row-level checks need the target loaded, so handlers call ``enforce`` with a
    ``ScopeTarget`` themselves once they have it. ``List`` is never refused here;
    listing handlers narrow rows with ``filter_visible``, which yields nothing
    for a role without access.
    """

    def dependency(request: Request) -> AuthContext:
        ctx = current_auth(request)
        if action != Action.LIST:
            enforce(ctx, resource, action, audit=request.app.state.audit)
        return ctx

    return dependency
