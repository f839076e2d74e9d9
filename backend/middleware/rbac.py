"""
Role-Based Access Control Middleware

Ranked roles, derived permissions, and the request identity used for
authorization across tenants.

Permissions are never stored. Each permission resolves from the active
role set through a minimum rank or an explicit role whitelist, and every
check fails closed on missing or malformed role data.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.db.session import get_db

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "Not authorized"


class Role(str, Enum):
    """System roles, highest privilege first."""

    ADMIN = "admin"
    DIRECTOR = "director"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    EMPLOYEE = "employee"


ROLE_RANK: Mapping[Role, int] = MappingProxyType({
    Role.ADMIN: 5,
    Role.DIRECTOR: 4,
    Role.MANAGER: 3,
    Role.SUPERVISOR: 2,
    Role.EMPLOYEE: 1,
})

ROLE_LABELS: Mapping[Role, str] = MappingProxyType({
    Role.ADMIN: "Administrator",
    Role.DIRECTOR: "Director",
    Role.MANAGER: "Manager",
    Role.SUPERVISOR: "Supervisor",
    Role.EMPLOYEE: "Employee",
})


class Permission(str, Enum):
    """Derived capabilities."""

    VIEW_OWN_DATA = "view_own_data"
    VIEW_REPORTS = "view_reports"
    CREATE_APPRAISALS = "create_appraisals"
    MANAGE_EMPLOYEES = "manage_employees"
    MANAGE_GOALS = "manage_goals"
    MANAGE_APPRAISALS = "manage_appraisals"
    ASSIGN_ROLES = "assign_roles"
    MANAGE_ROLES = "manage_roles"
    VIEW_AUDIT = "view_audit"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_ORGANIZATION = "manage_organization"
    MANAGE_APPRAISAL_CYCLES = "manage_appraisal_cycles"
    VERIFY_TENANCY = "verify_tenancy"
    MIMIC_ROLES = "mimic_roles"


@dataclass(frozen=True)
class PermissionRule:
    """Either a minimum rank or an explicit whitelist of roles."""

    min_role: Role | None = None
    roles: frozenset[Role] = frozenset()

    def allows(self, roles: frozenset[Role]) -> bool:
        if self.roles:
            return bool(self.roles & roles)
        if self.min_role is not None:
            return min_role_satisfied(roles, self.min_role)
        return False


_ADMIN_ONLY = PermissionRule(roles=frozenset({Role.ADMIN}))

PERMISSION_RULES: Mapping[Permission, PermissionRule] = MappingProxyType({
    Permission.VIEW_OWN_DATA: PermissionRule(min_role=Role.EMPLOYEE),
    Permission.VIEW_REPORTS: PermissionRule(min_role=Role.SUPERVISOR),
    Permission.CREATE_APPRAISALS: PermissionRule(min_role=Role.SUPERVISOR),
    Permission.MANAGE_EMPLOYEES: PermissionRule(min_role=Role.MANAGER),
    Permission.MANAGE_GOALS: PermissionRule(min_role=Role.MANAGER),
    Permission.MANAGE_APPRAISALS: PermissionRule(min_role=Role.DIRECTOR),
    Permission.ASSIGN_ROLES: _ADMIN_ONLY,
    Permission.MANAGE_ROLES: _ADMIN_ONLY,
    Permission.VIEW_AUDIT: _ADMIN_ONLY,
    Permission.MANAGE_SETTINGS: _ADMIN_ONLY,
    Permission.MANAGE_ORGANIZATION: _ADMIN_ONLY,
    Permission.MANAGE_APPRAISAL_CYCLES: _ADMIN_ONLY,
    Permission.VERIFY_TENANCY: _ADMIN_ONLY,
    Permission.MIMIC_ROLES: _ADMIN_ONLY,
})


# ── Pure role-set functions ──────────────────────────────────────────


def parse_roles(raw: Any) -> frozenset[Role]:
    """
    Coerce raw role data into a role set.

    Anything that is not an iterable of known role names yields an empty
    set, so downstream checks deny.
    """
    if raw is None or isinstance(raw, (str, bytes, Mapping)):
        return frozenset()
    try:
        items = list(raw)
    except TypeError:
        return frozenset()

    parsed: set[Role] = set()
    for item in items:
        try:
            parsed.add(Role(item))
        except (ValueError, TypeError):
            logger.warning(f"Discarding malformed role set containing {item!r}")
            return frozenset()
    return frozenset(parsed)


def role_rank(role: Role | None) -> int:
    if role is None:
        return 0
    return ROLE_RANK.get(role, 0)


def highest_role(roles: Iterable[Role]) -> Role | None:
    """Highest-ranked role in the set, or None for an empty set."""
    parsed = parse_roles(roles)
    if not parsed:
        return None
    return max(parsed, key=role_rank)


def has_role(roles: Iterable[Role], role: Role) -> bool:
    return role in parse_roles(roles)


def has_any_role(roles: Iterable[Role], candidates: Iterable[Role]) -> bool:
    return bool(parse_roles(roles) & parse_roles(candidates))


def min_role_satisfied(roles: Iterable[Role], min_role: Role) -> bool:
    """True iff the highest active rank is at least the rank of min_role."""
    top = highest_role(roles)
    if top is None:
        return False
    try:
        required = ROLE_RANK[Role(min_role)]
    except (KeyError, ValueError):
        return False
    return role_rank(top) >= required


def has_permission(roles: Iterable[Role], permission: Permission | str) -> bool:
    """Resolve a permission from the active role set. Unknown names deny."""
    try:
        rule = PERMISSION_RULES.get(Permission(permission))
        if rule is None:
            return False
        return rule.allows(parse_roles(roles))
    except ValueError:
        return False
    except Exception:
        logger.exception(f"Permission check for {permission!r} failed; denying")
        return False


def can_mimic(real_roles: Iterable[Role], target: Role | str | None) -> bool:
    """
    Whether a user holding real_roles may mimic target.

    Only administrative rank may mimic, and never a role ranked above the
    real one.
    """
    roles = parse_roles(real_roles)
    if not min_role_satisfied(roles, Role.ADMIN):
        return False
    try:
        target_role = Role(target)
    except (ValueError, TypeError):
        return False
    return role_rank(target_role) <= role_rank(highest_role(roles))


# ── Request identity ─────────────────────────────────────────────────


class CurrentUser(BaseModel):
    """
    Authenticated user context.

    roles holds the real, persisted role set for the session. mimicked_role
    is a session-only overlay: when set, every permission check uses it,
    while audit attribution always reads the real roles.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    email: str
    organization_id: UUID
    employee_id: UUID | None = None
    roles: frozenset[Role] = frozenset()
    mimicked_role: Role | None = None

    @field_validator("roles", mode="before")
    @classmethod
    def _coerce_roles(cls, value: Any) -> frozenset[Role]:
        return parse_roles(value)

    @property
    def original_role(self) -> Role | None:
        return highest_role(self.roles)

    @property
    def is_mimicking(self) -> bool:
        return self.mimicked_role is not None

    @property
    def effective_roles(self) -> frozenset[Role]:
        if self.mimicked_role is not None:
            return frozenset({self.mimicked_role})
        return self.roles

    @property
    def effective_role(self) -> Role | None:
        return highest_role(self.effective_roles)

    def has_role(self, role: Role) -> bool:
        return has_role(self.effective_roles, role)

    def has_any_role(self, *roles: Role) -> bool:
        return has_any_role(self.effective_roles, roles)

    def min_role_satisfied(self, min_role: Role) -> bool:
        return min_role_satisfied(self.effective_roles, min_role)

    def has_permission(self, permission: Permission | str) -> bool:
        return has_permission(self.effective_roles, permission)

    def has_any_permission(self, *permissions: Permission) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, *permissions: Permission) -> bool:
        return bool(permissions) and all(self.has_permission(p) for p in permissions)

    def audit_context(self) -> dict[str, Any]:
        """Real identity for audit records, with the mimicked role as metadata."""
        original = self.original_role
        context: dict[str, Any] = {
            "actor_email": self.email,
            "actor_role": original.value if original else None,
        }
        if self.mimicked_role is not None:
            context["mimicked_role"] = self.mimicked_role.value
        return context


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """
    Resolve the caller from a Bearer token.

    The token only identifies the user. Organization membership and roles
    are re-read from the database on every request.
    """
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authentication required")

    token = auth_header.split(" ", 1)[1]
    user = await _validate_token(token, db)

    request.state.user_id = user.id
    request.state.org_id = user.organization_id
    request.state.user_email = user.email
    return user


def require_permission(*permissions: Permission):
    """Dependency that checks for specific permissions."""

    async def check(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> CurrentUser:
        missing = [p for p in permissions if not user.has_permission(p)]
        if missing:
            await _deny(db, request, user, {"permissions": [p.value for p in missing]})
        return user

    return check


def require_role(*roles: Role):
    """Dependency that checks the caller holds one of the given roles."""

    async def check(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> CurrentUser:
        if not user.has_any_role(*roles):
            await _deny(db, request, user, {"roles": [r.value for r in roles]})
        return user

    return check


def require_org_access(org_id_param: str = "org_id"):
    """
    Dependency that verifies the path organization matches the caller's.

    The path value is only compared. Queries always scope by the
    organization resolved from the authenticated identity.
    """

    async def check(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> CurrentUser:
        org_id = request.path_params.get(org_id_param)
        if org_id and str(user.organization_id) != str(org_id):
            from audit_trail.ledger import AuditLedger

            logger.critical(
                f"Cross-organization access attempt by user {user.id}: "
                f"requested org {org_id}, member of {user.organization_id}"
            )
            await AuditLedger(db).record_for_user(
                user,
                "cross_organization_access_attempt",
                {
                    "requested_organization_id": str(org_id),
                    "method": request.method,
                    "path": request.url.path,
                },
                success=False,
                request=request,
            )
            raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)
        return user

    return check


async def _deny(
    db: AsyncSession,
    request: Request,
    user: CurrentUser,
    required: dict[str, Any],
) -> None:
    """Record an authorization denial and raise a generic 403."""
    from audit_trail.ledger import AuditLedger

    logger.warning(
        f"Authorization denied for user {user.id} on {request.method} {request.url.path}"
    )
    await AuditLedger(db).record_for_user(
        user,
        "unauthorized_access_attempt",
        {"method": request.method, "path": request.url.path, **required},
        success=False,
        request=request,
    )
    raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)


async def _validate_token(token: str, db: AsyncSession) -> CurrentUser:
    """Validate JWT token and build the user context from the database."""
    from backend.models.user import User
    from backend.services.auth import decode_token

    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    try:
        user_id = UUID(payload["sub"])
        token_org_id = UUID(payload["org_id"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims")

    result = await db.execute(select(User).where(User.id == user_id))
    db_user = result.scalar_one_or_none()
    if not db_user or not db_user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    if db_user.organization_id != token_org_id:
        raise HTTPException(status_code=401, detail="Invalid token claims")

    employee_id, roles = await load_active_roles(db, db_user.id, db_user.organization_id)

    mimicked_role: Role | None = None
    claim = payload.get("mimic_role")
    if claim is not None:
        if can_mimic(roles, claim):
            mimicked_role = Role(claim)
        else:
            logger.warning(f"Ignoring invalid mimic claim {claim!r} for user {db_user.id}")

    return CurrentUser(
        id=db_user.id,
        email=db_user.email,
        organization_id=db_user.organization_id,
        employee_id=employee_id,
        roles=roles,
        mimicked_role=mimicked_role,
    )


async def load_active_roles(
    db: AsyncSession,
    user_id: UUID,
    organization_id: UUID,
) -> tuple[UUID | None, frozenset[Role]]:
    """
    Load the employee linked to a user and their active roles.

    Any failure yields an empty role set.
    """
    from backend.models.employee import Employee
    from backend.models.role_assignment import RoleAssignment

    try:
        result = await db.execute(
            select(Employee.id).where(
                Employee.user_id == user_id,
                Employee.organization_id == organization_id,
            )
        )
        employee_id = result.scalar_one_or_none()
        if employee_id is None:
            return None, frozenset()

        result = await db.execute(
            select(RoleAssignment.role).where(
                RoleAssignment.employee_id == employee_id,
                RoleAssignment.organization_id == organization_id,
                RoleAssignment.is_active.is_(True),
            )
        )
        return employee_id, parse_roles(result.scalars().all())
    except SQLAlchemyError:
        logger.exception(f"Role lookup failed for user {user_id}; denying all permissions")
        return None, frozenset()
