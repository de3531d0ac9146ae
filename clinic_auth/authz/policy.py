"""Role-based authorization: route allow-list composed with scope predicates.

Everything here is pure. Scope fields a decision needs are either on the
``AuthContext`` (loaded by the session guard) or on the ``ScopeTarget``
supplied by the domain handler.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Callable, Iterable, NamedTuple, TypeVar

from pydantic import BaseModel, ConfigDict

from clinic_auth.auth.models import AuthContext, Role


class Resource(StrEnum):
    DASHBOARD = "Dashboard"
    PATIENT = "Patient"
    APPOINTMENT = "Appointment"
    DOCTOR = "Doctor"
    NURSE = "Nurse"
    PHARMACIST = "Pharmacist"
    PRESCRIPTION = "Prescription"
    LAB_REPORT = "LabReport"
    REFERRAL = "Referral"
    INVOICE = "Invoice"
    TELECONSULTATION = "Teleconsultation"
    POST = "Post"
    INVENTORY = "Inventory"
    AUDIT_LOG = "AuditLog"
    COMPLIANCE_ALERT = "ComplianceAlert"
    EMAIL_SETTINGS = "EmailSettings"


class Action(StrEnum):
    LIST = "List"
    READ = "Read"
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class DenyReason(StrEnum):
    FORBIDDEN = "forbidden"
    OUT_OF_SCOPE = "out_of_scope"


class Decision(NamedTuple):
    allowed: bool
    reason: DenyReason | None = None


ALLOW = Decision(allowed=True)

NURSE_ROLES = frozenset({Role.NURSE, Role.HEAD_NURSE, Role.SUPERVISOR})
PHARMACY_ROLES = frozenset({Role.PHARMACIST, Role.HEAD_PHARMACIST, Role.PHARMACY_MANAGER})

ROUTE_ALLOW_LIST: dict[Role, frozenset[Resource]] = {
    Role.CLINIC: frozenset(Resource),
    Role.DOCTOR: frozenset(
        {
            Resource.DASHBOARD,
            Resource.PATIENT,
            Resource.APPOINTMENT,
            Resource.PRESCRIPTION,
            Resource.LAB_REPORT,
            Resource.REFERRAL,
            Resource.TELECONSULTATION,
            Resource.POST,
        }
    ),
    **{
        role: frozenset(
            {
                Resource.DASHBOARD,
                Resource.PATIENT,
                Resource.APPOINTMENT,
                Resource.PRESCRIPTION,
                Resource.LAB_REPORT,
                Resource.INVOICE,
            }
        )
        for role in NURSE_ROLES
    },
    **{
        role: frozenset({Resource.DASHBOARD, Resource.INVENTORY, Resource.PRESCRIPTION})
        for role in PHARMACY_ROLES
    },
}

# Resources a doctor may only touch when the row is linked to them.
DOCTOR_LINKED_RESOURCES = frozenset(
    {
        Resource.PATIENT,
        Resource.APPOINTMENT,
        Resource.PRESCRIPTION,
        Resource.LAB_REPORT,
        Resource.REFERRAL,
    }
)

READ_ACTIONS = frozenset({Action.LIST, Action.READ})


class ScopeTarget(BaseModel):
    """Attributes of the row an action applies to.

    ``linked_principal_ids`` holds whoever the row is linked to: a patient's
    assigned doctors, an appointment's doctor, a prescription's prescriber,
    the doctors on a referral. ``None`` means the handler did not load links.
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    tenant_id: str | None = None
    linked_principal_ids: frozenset[str] | None = None
    directed_to_pharmacy: bool = False


def is_route_allowed(role: Role, resource: Resource) -> bool:
    return resource in ROUTE_ALLOW_LIST.get(role, frozenset())


def is_action_allowed(role: Role, resource: Resource, action: Action) -> bool:
    """Per-action restrictions layered on top of the route allow-list."""
    if resource == Resource.PATIENT and action not in READ_ACTIONS:
        return role == Role.CLINIC
    if resource == Resource.PRESCRIPTION and action == Action.CREATE:
        return role in {Role.CLINIC, Role.DOCTOR}
    if resource == Resource.PRESCRIPTION and role in PHARMACY_ROLES:
        return action in READ_ACTIONS
    return True


def _same_tenant(ctx: AuthContext, target: ScopeTarget) -> bool:
    return bool(target.tenant_id) and target.tenant_id == ctx.tenant_id


def _linked_to_doctor(ctx: AuthContext, resource: Resource, target: ScopeTarget) -> bool:
    if target.linked_principal_ids is not None:
        return ctx.principal_id in target.linked_principal_ids
    # Without loaded links only the doctor's own assignment list can vouch for a patient.
    return resource == Resource.PATIENT and target.id in ctx.scope.assigned_patient_ids


def in_scope(ctx: AuthContext, resource: Resource, target: ScopeTarget) -> bool:
    """Row-level predicate; only ever narrows what the role gate allowed."""
    if not _same_tenant(ctx, target):
        return False
    if ctx.role == Role.DOCTOR and resource in DOCTOR_LINKED_RESOURCES:
        return _linked_to_doctor(ctx, resource, target)
    if ctx.role in PHARMACY_ROLES and resource == Resource.PRESCRIPTION:
        return target.directed_to_pharmacy
    return True


def authorize(
    ctx: AuthContext,
    resource: Resource,
    action: Action,
    target: ScopeTarget | None = None,
) -> Decision:
    """Decide whether ``ctx`` may perform ``action`` on ``resource`` (and ``target``)."""
    if not is_route_allowed(ctx.role, resource):
        return Decision(False, DenyReason.FORBIDDEN)
    if not is_action_allowed(ctx.role, resource, action):
        return Decision(False, DenyReason.FORBIDDEN)
    if target is not None and not in_scope(ctx, resource, target):
        return Decision(False, DenyReason.OUT_OF_SCOPE)
    return ALLOW


T = TypeVar("T")


def filter_visible(
    ctx: AuthContext,
    resource: Resource,
    rows: Iterable[T],
    target_of: Callable[[T], ScopeTarget],
) -> list[T]:
    """Return the rows ``ctx`` may list; out-of-scope rows are dropped silently."""
    if not authorize(ctx, resource, Action.LIST).allowed:
        return []
    return [row for row in rows if in_scope(ctx, resource, target_of(row))]


def permitted_actions(role: Role) -> dict[str, list[str]]:
    """Resource -> allowed actions for a role, ignoring row scope."""
    return {
        resource.value: [
            action.value for action in Action if is_action_allowed(role, resource, action)
        ]
        for resource in Resource
        if is_route_allowed(role, resource)
    }


def dashboard_variant(role: Role) -> str:
    """Dashboard flavour rendered for a role."""
    if role == Role.CLINIC:
        return "clinic"
    if role == Role.DOCTOR:
        return "doctor"
    if role in NURSE_ROLES:
        return "nurse"
    return "pharmacist"
