"""
Role Service

Grants and revokes durable role assignments. Revocation deactivates the
row and keeps it for history; both directions are audited.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.middleware.rbac import CurrentUser, Role, role_rank
from backend.models.employee import Employee
from backend.models.role_assignment import RoleAssignment
from backend.services.tenant_guard import TenantGuard

logger = logging.getLogger(__name__)


class RoleGrantError(Exception):
    """Role change rejected."""


class RoleService:
    """Role assignment lifecycle within the caller's organization."""

    def __init__(self, db_session: AsyncSession, request: Request | None = None):
        self.db = db_session
        self.request = request

    async def list_assignments(
        self,
        user: CurrentUser,
        employee_id: UUID | None = None,
        include_inactive: bool = False,
    ) -> list[RoleAssignment]:
        guard = TenantGuard(self.db, user, self.request)
        query = guard.select(RoleAssignment)
        if employee_id is not None:
            query = query.where(RoleAssignment.employee_id == employee_id)
        if not include_inactive:
            query = query.where(RoleAssignment.is_active.is_(True))
        result = await self.db.execute(query.order_by(RoleAssignment.granted_at.desc()))
        return list(result.scalars().all())

    async def grant_role(
        self,
        user: CurrentUser,
        employee_id: UUID,
        role: Role,
        reason: str,
    ) -> RoleAssignment:
        """
        Grant a role. A previously revoked grant of the same role is
        reactivated instead of duplicated.
        """
        if not reason or not reason.strip():
            raise RoleGrantError("A reason is required to change roles")
        if role_rank(role) > role_rank(user.effective_role):
            raise RoleGrantError("Cannot grant a role above your own")

        guard = TenantGuard(self.db, user, self.request)
        employee = await guard.get_scoped_or_404(Employee, employee_id, "roles.grant")

        result = await self.db.execute(
            guard.select(RoleAssignment)
            .where(
                RoleAssignment.employee_id == employee.id,
                RoleAssignment.role == role.value,
            )
            .order_by(RoleAssignment.granted_at.desc())
        )
        existing = list(result.scalars().all())
        if any(a.is_active for a in existing):
            raise RoleGrantError(f"Employee already holds the {role.value} role")

        now = datetime.now(timezone.utc)
        if existing:
            assignment = existing[0]
            assignment.is_active = True
            assignment.granted_by = user.id
            assignment.granted_at = now
            assignment.revoked_by = None
            assignment.revoked_at = None
            assignment.reason = reason
            event_type = "role_activated"
        else:
            assignment = RoleAssignment(
                organization_id=user.organization_id,
                employee_id=employee.id,
                role=role.value,
                is_active=True,
                granted_by=user.id,
                granted_at=now,
                reason=reason,
            )
            self.db.add(assignment)
            event_type = "role_granted"

        await self.db.flush()
        await self.db.commit()

        logger.info(f"Role {role.value} granted to employee {employee.id} by user {user.id}")
        await AuditLedger(self.db).record_for_user(
            user,
            event_type,
            {
                "object_type": "employee",
                "object_id": str(employee.id),
                "object_name": employee.full_name,
                "role": role.value,
                "reason": reason,
            },
            request=self.request,
        )
        return assignment

    async def revoke_role(
        self,
        user: CurrentUser,
        assignment_id: UUID,
        reason: str,
    ) -> RoleAssignment:
        """Deactivate a role assignment. The row is kept."""
        if not reason or not reason.strip():
            raise RoleGrantError("A reason is required to change roles")

        guard = TenantGuard(self.db, user, self.request)
        assignment = await guard.get_scoped_or_404(RoleAssignment, assignment_id, "roles.revoke")
        if not assignment.is_active:
            raise RoleGrantError("Role assignment is already inactive")
        if assignment.employee_id == user.employee_id and assignment.role == Role.ADMIN.value:
            raise RoleGrantError("Administrators cannot revoke their own admin role")

        assignment.is_active = False
        assignment.revoked_by = user.id
        assignment.revoked_at = datetime.now(timezone.utc)
        assignment.reason = reason
        await self.db.flush()
        await self.db.commit()

        logger.info(f"Role {assignment.role} revoked from employee {assignment.employee_id} by user {user.id}")
        await AuditLedger(self.db).record_for_user(
            user,
            "role_deactivated",
            {
                "object_type": "employee",
                "object_id": str(assignment.employee_id),
                "role": assignment.role,
                "reason": reason,
            },
            request=self.request,
        )
        return assignment
