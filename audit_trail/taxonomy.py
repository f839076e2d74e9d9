"""
Audit Taxonomy

Static registry mapping audit event types to their presentation:
label, severity, category and optional rendering rules.

The registry drives presentation only. Whether an event is recorded never
depends on it, and rendering never fails for lack of a mapping: unknown
event types fall back to DEFAULT_ACTION.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Visual weight of an audit event."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


DetailRule = Callable[[Mapping[str, Any]], str | None]
ObjectLabelRule = Callable[[str | None, str | None, str | None], str]


@dataclass(frozen=True)
class ActionDefinition:
    """Presentation metadata for one event type."""

    label: str
    severity: Severity
    category: str
    icon: str | None = None
    detail_rule: DetailRule | None = None
    object_label_rule: ObjectLabelRule | None = None


# Display order for category filters
ACTION_CATEGORIES: tuple[str, ...] = (
    "Authentication",
    "Employees",
    "Roles",
    "Appraisals",
    "Goals",
    "Organization",
    "Invitations",
    "Security",
    "Users",
    "System",
)

OBJECT_TYPE_LABELS: Mapping[str, str] = MappingProxyType({
    "employee": "Employee",
    "appraisal": "Appraisal",
    "goal": "Goal",
    "organization": "Organization",
    "role": "Role",
})


def format_object_name(
    object_type: str | None,
    object_name: str | None = None,
    object_id: str | None = None,
) -> str:
    """
    Label for the object an event touched.

    Prefers the stored name; otherwise "<Type> <id prefix>".
    """
    if object_name:
        return object_name
    type_label = OBJECT_TYPE_LABELS.get(object_type or "", (object_type or "object").replace("_", " ").title())
    short_id = str(object_id)[:8] if object_id else "Unknown"
    return f"{type_label} {short_id}"


# ── Detail rules ──


def _updated_fields(details: Mapping[str, Any]) -> str | None:
    fields = details.get("updated_fields") or details.get("fields")
    if not fields:
        return None
    return "Updated " + ", ".join(str(f) for f in fields)


def _role(details: Mapping[str, Any]) -> str | None:
    role = details.get("role")
    return f"Role: {role}" if role else None


def _joined_as(details: Mapping[str, Any]) -> str | None:
    role = details.get("role")
    return f"As {role}" if role else None


def _imported(details: Mapping[str, Any]) -> str | None:
    count = details.get("count")
    return f"{int(count)} employees" if count is not None else None


def _rating(details: Mapping[str, Any]) -> str | None:
    rating = details.get("final_rating", details.get("rating"))
    return f"Rating: {rating}" if rating is not None else None


def _status_change(details: Mapping[str, Any]) -> str | None:
    old, new = details.get("from_status"), details.get("to_status")
    if not old or not new:
        return None
    return f"{old} → {new}"


def _goal_progress(details: Mapping[str, Any]) -> str | None:
    old, new = details.get("old_progress"), details.get("new_progress")
    if old is None or new is None:
        return _updated_fields(details)
    return f"Progress: {int(old)}% → {int(new)}%"


def _cycle_opened(details: Mapping[str, Any]) -> str | None:
    created = details.get("appraisals_created")
    return f"{int(created)} appraisals created" if created is not None else None


def _appraisers_assigned(details: Mapping[str, Any]) -> str | None:
    primary = details.get("primary_name") or details.get("primary_appraiser_id")
    if not primary:
        return None
    secondary = details.get("secondary_appraiser_ids") or []
    return f"Primary: {primary}, {len(secondary)} secondary"


def _appraiser_removed(details: Mapping[str, Any]) -> str | None:
    if details.get("was_primary"):
        return "Primary appraiser removed"
    return "Secondary appraiser removed"


def _reason(details: Mapping[str, Any]) -> str | None:
    reason = details.get("reason")
    return str(reason) if reason else None


def _mimic(details: Mapping[str, Any]) -> str | None:
    role = details.get("mimicked_role")
    return f"Mimicking {role}" if role else None


def _login_failed(details: Mapping[str, Any]) -> str | None:
    email = details.get("email")
    return f"Attempted login as {email}" if email else None


def _cross_org(details: Mapping[str, Any]) -> str | None:
    operation = details.get("operation") or details.get("path")
    return f"Blocked: {operation}" if operation else None


def _isolation(details: Mapping[str, Any]) -> str | None:
    violations = details.get("violations") or []
    return f"{len(violations)} violation(s) detected"


# ── Registry ──

DEFAULT_ACTION = ActionDefinition(
    label="System activity",
    severity=Severity.INFO,
    category="System",
    icon="activity",
)

ACTION_TAXONOMY: Mapping[str, ActionDefinition] = MappingProxyType({
    # Authentication
    "auth.login.success": ActionDefinition("Signed in", Severity.SUCCESS, "Authentication", "log-in"),
    "auth.login.failed": ActionDefinition(
        "Failed sign-in", Severity.DANGER, "Authentication", "shield-alert", _login_failed
    ),
    "auth.session.terminated": ActionDefinition("Signed out", Severity.INFO, "Authentication", "log-out"),
    "auth.role_mimic.started": ActionDefinition(
        "Started role mimicking", Severity.WARNING, "Authentication", "venetian-mask", _mimic
    ),
    "auth.role_mimic.reset": ActionDefinition(
        "Stopped role mimicking", Severity.INFO, "Authentication", "venetian-mask"
    ),
    # Employees
    "employee.created": ActionDefinition("Employee added", Severity.SUCCESS, "Employees", "user-plus"),
    "employee.updated": ActionDefinition(
        "Employee updated", Severity.INFO, "Employees", "user-pen", _updated_fields
    ),
    "employee.imported": ActionDefinition(
        "Employees imported", Severity.SUCCESS, "Employees", "upload", _imported
    ),
    # Roles
    "role_granted": ActionDefinition("Role granted", Severity.SUCCESS, "Roles", "shield-plus", _role),
    "role_activated": ActionDefinition("Role activated", Severity.SUCCESS, "Roles", "shield-check", _role),
    "role_deactivated": ActionDefinition("Role deactivated", Severity.WARNING, "Roles", "shield-off", _role),
    "role_assignment_success": ActionDefinition(
        "Role assigned", Severity.SUCCESS, "Roles", "shield-check", _role
    ),
    # Appraisals
    "appraisal.cycle.created": ActionDefinition(
        "Appraisal cycle created", Severity.INFO, "Appraisals", "calendar-plus"
    ),
    "appraisal.cycle.opened": ActionDefinition(
        "Appraisal cycle opened", Severity.SUCCESS, "Appraisals", "calendar-check", _cycle_opened
    ),
    "appraisal.cycle.closed": ActionDefinition(
        "Appraisal cycle closed", Severity.INFO, "Appraisals", "calendar-x"
    ),
    "appraisal.created": ActionDefinition("Appraisal created", Severity.SUCCESS, "Appraisals", "file-plus"),
    "appraisal.updated": ActionDefinition(
        "Appraisal updated", Severity.INFO, "Appraisals", "file-pen", _updated_fields
    ),
    "appraisal.graded": ActionDefinition("Appraisal graded", Severity.INFO, "Appraisals", "star", _rating),
    "appraisal.status_changed": ActionDefinition(
        "Appraisal status changed", Severity.INFO, "Appraisals", "git-branch", _status_change
    ),
    "appraisal.completed": ActionDefinition(
        "Appraisal completed", Severity.SUCCESS, "Appraisals", "file-check", _status_change
    ),
    "appraisal.deleted": ActionDefinition("Appraisal deleted", Severity.DANGER, "Appraisals", "trash"),
    "appraisal.signed.employee": ActionDefinition(
        "Signed by employee", Severity.SUCCESS, "Appraisals", "pen-line"
    ),
    "appraisal.signed.manager": ActionDefinition(
        "Signed by manager", Severity.SUCCESS, "Appraisals", "pen-line"
    ),
    "appraisal.appraisers.assigned": ActionDefinition(
        "Appraisers assigned", Severity.INFO, "Appraisals", "users", _appraisers_assigned
    ),
    "appraisal.appraiser.removed": ActionDefinition(
        "Appraiser removed", Severity.WARNING, "Appraisals", "user-minus", _appraiser_removed
    ),
    "appraisal.appraiser.rejected": ActionDefinition(
        "Appraiser assignment rejected", Severity.INFO, "Appraisals", "user-x", _reason
    ),
    # Goals
    "goal.created": ActionDefinition("Goal created", Severity.SUCCESS, "Goals", "target"),
    "goal.updated": ActionDefinition("Goal updated", Severity.INFO, "Goals", "target", _goal_progress),
    "goal.deleted": ActionDefinition("Goal deleted", Severity.WARNING, "Goals", "trash"),
    "goal.assigned": ActionDefinition("Goal assigned", Severity.INFO, "Goals", "target"),
    # Organization
    "org_created": ActionDefinition("Organization created", Severity.SUCCESS, "Organization", "building"),
    "org_created_or_found": ActionDefinition(
        "Organization resolved", Severity.INFO, "Organization", "building"
    ),
    "user_joined_org": ActionDefinition(
        "User joined organization", Severity.SUCCESS, "Organization", "user-check", _joined_as
    ),
    # Invitations
    "invitation_claimed": ActionDefinition("Invitation claimed", Severity.SUCCESS, "Invitations", "mail-check"),
    # Security
    "unauthorized_access_attempt": ActionDefinition(
        "Unauthorized access attempt", Severity.DANGER, "Security", "shield-x"
    ),
    "cross_organization_access_attempt": ActionDefinition(
        "Cross-organization access attempt", Severity.DANGER, "Security", "shield-x", _cross_org
    ),
    "tenant_isolation_violation": ActionDefinition(
        "Tenant isolation violation", Severity.DANGER, "Security", "shield-alert", _isolation
    ),
    "tenant_isolation_verified": ActionDefinition(
        "Tenant isolation verified", Severity.SUCCESS, "Security", "shield-check"
    ),
    "audit_logging_check": ActionDefinition(
        "Audit logging check", Severity.INFO, "Security", "clipboard-check"
    ),
    "hierarchy_cycle_detected": ActionDefinition(
        "Management cycle detected", Severity.WARNING, "Security", "refresh-ccw"
    ),
    # Users
    "user_creation_error": ActionDefinition(
        "User creation failed", Severity.DANGER, "Users", "user-x", _reason
    ),
})


def get_action_definition(event_type: str | None) -> ActionDefinition:
    """Lookup with a guaranteed fallback."""
    if not event_type:
        return DEFAULT_ACTION
    return ACTION_TAXONOMY.get(event_type, DEFAULT_ACTION)


def render_detail(event_type: str | None, details: Any) -> str | None:
    """One-line summary of an event payload, or None."""
    definition = get_action_definition(event_type)
    if definition.detail_rule is None or not isinstance(details, Mapping):
        return None
    try:
        return definition.detail_rule(details)
    except Exception:
        logger.warning(f"Detail rule for {event_type!r} could not render payload", exc_info=True)
        return None


def render_object_label(event_type: str | None, details: Any) -> str | None:
    """Label for the affected object, when the payload names one."""
    if not isinstance(details, Mapping):
        return None
    object_type = details.get("object_type")
    object_id = details.get("object_id")
    object_name = details.get("object_name")
    if not (object_type or object_id or object_name):
        return None

    rule = get_action_definition(event_type).object_label_rule or format_object_name
    try:
        return rule(object_type, object_name, str(object_id) if object_id else None)
    except Exception:
        logger.warning(f"Object label rule for {event_type!r} failed", exc_info=True)
        return format_object_name(None, None, None)


def event_types_in_category(category: str) -> list[str]:
    """Registered event types belonging to a category."""
    return [key for key, value in ACTION_TAXONOMY.items() if value.category == category]


def event_types_with_severity(severity: Severity | str) -> list[str]:
    """Registered event types with the given severity."""
    target = Severity(severity)
    return [key for key, value in ACTION_TAXONOMY.items() if value.severity == target]


def is_security_event(event_type: str | None, success: bool) -> bool:
    """Denials and danger-severity events must never be lost silently."""
    return not success or get_action_definition(event_type).severity == Severity.DANGER
