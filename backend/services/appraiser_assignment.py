"""
Appraiser Assignment Service

Suggests appraisers by walking the management chain and validates,
assigns and removes appraisers on an appraisal.

Rules for a valid assignment, first failure wins:
1. appraiser and employee belong to the caller's organization
2. an employee never appraises themselves
3. the appraiser sits above the employee in the management chain,
   unless an admin or director explicitly overrides
4. an inactive appraiser cannot be assigned

Replacing the appraiser set is one transaction: the old rows are deleted
and the new ones inserted before a single commit, so readers never see an
appraisal with zero or two primary appraisers. Removing the primary does
not promote a secondary; the appraisal is left visibly without a primary.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.config import get_settings
from backend.middleware.rbac import ROLE_LABELS, CurrentUser, Role, highest_role, parse_roles
from backend.models.appraisal import Appraisal, AppraiserAssignment, AppraiserRole
from backend.models.employee import Employee, EmployeeStatus
from backend.models.role_assignment import RoleAssignment
from backend.services.appraisal_workflow import AppraisalWorkflowService
from backend.services.tenant_guard import TenantGuard, tenant_select

logger = logging.getLogger(__name__)

REASON_ORG_MISMATCH = "Appraiser must be in the same organization"
REASON_SELF = "Employee cannot appraise themselves"
REASON_NOT_IN_HIERARCHY = "Appraiser must be above the employee in the management hierarchy"
REASON_INACTIVE = "Appraiser is inactive and cannot be assigned"
REASON_UNKNOWN = "Could not validate employee or appraiser"


class AssignmentRejectedError(Exception):
    """A proposed appraiser set failed validation."""

    def __init__(self, reasons: list[str]):
        self.reasons = reasons
        super().__init__("; ".join(reasons))


class SuggestedAppraiser(BaseModel):
    appraiser_id: UUID
    name: str
    role_label: str
    hierarchy_level: int


class AssignmentValidation(BaseModel):
    valid: bool
    reason: str | None = None


class AppraiserView(BaseModel):
    appraiser_id: UUID
    name: str
    role: AppraiserRole
    is_primary: bool
    position: int
    assigned_by: UUID | None = None
    assigned_at: datetime


class AppraisalAppraisers(BaseModel):
    """Current appraiser set. has_primary is False after the primary is removed."""

    appraisal_id: UUID
    has_primary: bool
    appraisers: list[AppraiserView] = Field(default_factory=list)


class RemovalResult(BaseModel):
    appraisal_id: UUID
    appraiser_id: UUID
    was_primary: bool
    has_primary: bool
    primary_vacant: bool
    warning: str | None = None


class AppraiserAssignmentService:
    """
    Hierarchy-aware appraiser suggestions, validation and assignment.
    """

    def __init__(self, db_session: AsyncSession, request: Request | None = None):
        self.db = db_session
        self.request = request
        self.max_depth = get_settings().hierarchy_max_depth

    # ── Hierarchy ──

    async def walk_management_chain(
        self,
        user: CurrentUser,
        employee: Employee,
    ) -> list[tuple[Employee, int]]:
        """
        Managers above an employee, nearest first, with their level.

        Stops at the depth bound, at a manager outside the organization,
        or on a repeated reference (a cycle, which is logged and audited).
        """
        chain: list[tuple[Employee, int]] = []
        visited = {employee.id}
        current = employee
        level = 0

        while current.manager_id is not None and level < self.max_depth:
            if current.manager_id in visited:
                logger.warning(
                    f"Management cycle detected at employee {current.id} -> {current.manager_id}"
                )
                await AuditLedger(self.db).record_for_user(
                    user,
                    "hierarchy_cycle_detected",
                    {
                        "object_type": "employee",
                        "object_id": str(employee.id),
                        "repeated_manager_id": str(current.manager_id),
                    },
                    request=self.request,
                )
                break

            result = await self.db.execute(
                tenant_select(Employee, user.organization_id).where(Employee.id == current.manager_id)
            )
            manager = result.scalar_one_or_none()
            if manager is None:
                logger.warning(
                    f"Manager {current.manager_id} of employee {current.id} not found in organization"
                )
                break

            level += 1
            chain.append((manager, level))
            visited.add(manager.id)
            current = manager

        return chain

    async def suggest_appraisers(
        self,
        user: CurrentUser,
        employee_id: UUID,
    ) -> list[SuggestedAppraiser]:
        """Eligible appraisers from the management chain, nearest manager first."""
        guard = TenantGuard(self.db, user, self.request)
        employee = await guard.get_scoped_or_404(Employee, employee_id, "appraisers.suggest")

        chain = [
            (manager, level)
            for manager, level in await self.walk_management_chain(user, employee)
            if manager.id != employee.id and manager.status != EmployeeStatus.INACTIVE.value
        ]
        roles = await self._highest_roles(user, [manager.id for manager, _ in chain])

        suggestions = []
        for manager, level in chain:
            role = roles.get(manager.id)
            suggestions.append(SuggestedAppraiser(
                appraiser_id=manager.id,
                name=manager.full_name,
                role_label=manager.job_title or (ROLE_LABELS[role] if role else "Manager"),
                hierarchy_level=level,
            ))
        return suggestions

    async def _highest_roles(self, user: CurrentUser, employee_ids: list[UUID]) -> dict[UUID, Role | None]:
        if not employee_ids:
            return {}
        result = await self.db.execute(
            select(RoleAssignment.employee_id, RoleAssignment.role).where(
                RoleAssignment.organization_id == user.organization_id,
                RoleAssignment.employee_id.in_(employee_ids),
                RoleAssignment.is_active.is_(True),
            )
        )
        grouped: dict[UUID, list[str]] = {}
        for employee_id, role in result.all():
            grouped.setdefault(employee_id, []).append(role)
        return {eid: highest_role(parse_roles(r)) for eid, r in grouped.items()}

    # ── Validation ──

    async def validate_assignment(
        self,
        user: CurrentUser,
        appraiser_id: UUID,
        employee_id: UUID,
        admin_override: bool = False,
        record: bool = True,
    ) -> AssignmentValidation:
        """Check one proposed appraiser for one employee."""
        result = await self._evaluate(user, appraiser_id, employee_id, admin_override)
        if not result.valid and record:
            await self._record_rejection(user, employee_id, [appraiser_id], [result.reason])
        return result

    async def _evaluate(
        self,
        user: CurrentUser,
        appraiser_id: UUID,
        employee_id: UUID,
        admin_override: bool,
    ) -> AssignmentValidation:
        org_id = user.organization_id
        employee = await self._load_in_org(employee_id, org_id)
        appraiser = await self._load_in_org(appraiser_id, org_id)

        if employee is None or appraiser is None:
            missing = [i for i, row in ((employee_id, employee), (appraiser_id, appraiser)) if row is None]
            foreign = await self._ids_in_other_orgs(missing, org_id)
            if foreign:
                await TenantGuard(self.db, user, self.request).report_cross_org_access(
                    "appraisers.validate",
                    {"object_type": "employee", "object_ids": [str(i) for i in foreign]},
                )
                return AssignmentValidation(valid=False, reason=REASON_ORG_MISMATCH)
            return AssignmentValidation(valid=False, reason=REASON_UNKNOWN)

        if employee.organization_id != appraiser.organization_id:
            return AssignmentValidation(valid=False, reason=REASON_ORG_MISMATCH)

        if employee.id == appraiser.id:
            return AssignmentValidation(valid=False, reason=REASON_SELF)

        chain_ids = {m.id for m, _ in await self.walk_management_chain(user, employee)}
        if appraiser.id not in chain_ids:
            if not (admin_override and user.min_role_satisfied(Role.DIRECTOR)):
                return AssignmentValidation(valid=False, reason=REASON_NOT_IN_HIERARCHY)
            logger.info(
                f"Admin override: {appraiser.id} accepted as non-hierarchical appraiser for {employee.id}"
            )

        if appraiser.status == EmployeeStatus.INACTIVE.value:
            return AssignmentValidation(valid=False, reason=REASON_INACTIVE)

        return AssignmentValidation(valid=True)

    async def _load_in_org(self, employee_id: UUID, organization_id: UUID) -> Employee | None:
        result = await self.db.execute(
            tenant_select(Employee, organization_id).where(Employee.id == employee_id)
        )
        return result.scalar_one_or_none()

    async def _ids_in_other_orgs(self, employee_ids: list[UUID], organization_id: UUID) -> list[UUID]:
        if not employee_ids:
            return []
        result = await self.db.execute(
            select(Employee.id).where(
                Employee.id.in_(employee_ids),
                Employee.organization_id != organization_id,
            )
        )
        return list(result.scalars().all())

    async def _record_rejection(
        self,
        user: CurrentUser,
        employee_id: UUID,
        appraiser_ids: list[UUID],
        reasons: list[str | None],
        appraisal_id: UUID | None = None,
    ) -> None:
        details = {
            "object_type": "appraisal" if appraisal_id else "employee",
            "object_id": str(appraisal_id or employee_id),
            "employee_id": str(employee_id),
            "appraiser_ids": [str(i) for i in appraiser_ids],
            "reason": "; ".join(r for r in reasons if r),
        }
        await AuditLedger(self.db).record_for_user(
            user, "appraisal.appraiser.rejected", details, success=False, request=self.request
        )

    # ── Assignment ──

    async def assign_appraisers(
        self,
        user: CurrentUser,
        appraisal_id: UUID,
        appraiser_ids: list[UUID],
        admin_override: bool = False,
    ) -> AppraisalAppraisers:
        """
        Replace the appraiser set of an appraisal.

        The first id becomes primary, the rest secondary. Every id is
        validated before anything is written; any failure rejects the set.
        """
        workflow = AppraisalWorkflowService(self.db, self.request)
        appraisal, _, current, access = await workflow.load_context(
            user, appraisal_id, "appraisers.assign"
        )
        if not access.can_assign_appraisers:
            await workflow.deny(user, "appraisers.assign", access.reasons, {
                "object_type": "appraisal",
                "object_id": str(appraisal.id),
            })

        reasons: list[str] = []
        if not appraiser_ids:
            reasons.append("At least one appraiser is required")
        elif len(set(appraiser_ids)) != len(appraiser_ids):
            reasons.append("Each appraiser can only be assigned once")
        else:
            for appraiser_id in appraiser_ids:
                result = await self._evaluate(user, appraiser_id, appraisal.employee_id, admin_override)
                if not result.valid:
                    reasons.append(f"{appraiser_id}: {result.reason}")

        if reasons:
            await self._record_rejection(
                user, appraisal.employee_id, appraiser_ids, reasons, appraisal_id=appraisal.id
            )
            raise AssignmentRejectedError(reasons)

        replaced = [str(a.appraiser_id) for a in current]
        now = datetime.now(timezone.utc)
        try:
            await self.db.execute(
                delete(AppraiserAssignment).where(
                    AppraiserAssignment.organization_id == user.organization_id,
                    AppraiserAssignment.appraisal_id == appraisal.id,
                )
            )
            for position, appraiser_id in enumerate(appraiser_ids):
                is_primary = position == 0
                self.db.add(AppraiserAssignment(
                    organization_id=user.organization_id,
                    appraisal_id=appraisal.id,
                    appraiser_id=appraiser_id,
                    role=(AppraiserRole.PRIMARY if is_primary else AppraiserRole.SECONDARY).value,
                    is_primary=is_primary,
                    position=position,
                    assigned_by=user.id,
                    assigned_at=now,
                ))
            await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception(f"Appraiser reassignment for appraisal {appraisal.id} rolled back")
            raise

        view = await self._read_appraisers(user, appraisal.id)
        primary = view.appraisers[0]
        await AuditLedger(self.db).record_for_user(
            user,
            "appraisal.appraisers.assigned",
            {
                "object_type": "appraisal",
                "object_id": str(appraisal.id),
                "primary_appraiser_id": str(primary.appraiser_id),
                "primary_name": primary.name,
                "secondary_appraiser_ids": [str(i) for i in appraiser_ids[1:]],
                "replaced_appraiser_ids": replaced,
                "admin_override": admin_override,
            },
            request=self.request,
        )
        return view

    async def remove_appraiser(
        self,
        user: CurrentUser,
        appraisal_id: UUID,
        appraiser_id: UUID,
    ) -> RemovalResult:
        """Delete one assignment. A removed primary is not replaced."""
        workflow = AppraisalWorkflowService(self.db, self.request)
        appraisal, _, current, access = await workflow.load_context(
            user, appraisal_id, "appraisers.remove"
        )
        if not access.can_assign_appraisers:
            await workflow.deny(user, "appraisers.remove", access.reasons, {
                "object_type": "appraisal",
                "object_id": str(appraisal.id),
            })

        target = next((a for a in current if a.appraiser_id == appraiser_id), None)
        if target is None:
            raise AssignmentRejectedError(["Appraiser is not assigned to this appraisal"])

        was_primary = target.is_primary
        await self.db.delete(target)
        await self.db.flush()
        await self.db.commit()

        has_primary = any(a.is_primary for a in current if a is not target)
        warning = None
        if was_primary:
            warning = "Primary appraiser removed; assign a new primary appraiser"
            logger.warning(f"Appraisal {appraisal.id} has no primary appraiser after removal")

        await AuditLedger(self.db).record_for_user(
            user,
            "appraisal.appraiser.removed",
            {
                "object_type": "appraisal",
                "object_id": str(appraisal.id),
                "appraiser_id": str(appraiser_id),
                "was_primary": was_primary,
                "primary_vacant": not has_primary,
            },
            request=self.request,
        )
        return RemovalResult(
            appraisal_id=appraisal.id,
            appraiser_id=appraiser_id,
            was_primary=was_primary,
            has_primary=has_primary,
            primary_vacant=not has_primary,
            warning=warning,
        )

    async def get_appraisers(self, user: CurrentUser, appraisal_id: UUID) -> AppraisalAppraisers:
        """Current appraiser set, primary first."""
        workflow = AppraisalWorkflowService(self.db, self.request)
        appraisal, _ = await workflow.get_appraisal(user, appraisal_id)
        return await self._read_appraisers(user, appraisal.id)

    async def _read_appraisers(self, user: CurrentUser, appraisal_id: UUID) -> AppraisalAppraisers:
        result = await self.db.execute(
            select(AppraiserAssignment, Employee)
            .join(Employee, AppraiserAssignment.appraiser_id == Employee.id)
            .where(
                AppraiserAssignment.organization_id == user.organization_id,
                Employee.organization_id == user.organization_id,
                AppraiserAssignment.appraisal_id == appraisal_id,
            )
            .order_by(AppraiserAssignment.is_primary.desc(), AppraiserAssignment.position)
        )
        appraisers = [
            AppraiserView(
                appraiser_id=assignment.appraiser_id,
                name=employee.full_name,
                role=AppraiserRole(assignment.role),
                is_primary=assignment.is_primary,
                position=assignment.position,
                assigned_by=assignment.assigned_by,
                assigned_at=assignment.assigned_at,
            )
            for assignment, employee in result.all()
        ]
        return AppraisalAppraisers(
            appraisal_id=appraisal_id,
            has_primary=any(a.is_primary for a in appraisers),
            appraisers=appraisers,
        )
