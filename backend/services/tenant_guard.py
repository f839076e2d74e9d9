"""
Tenant Isolation Guard

Scopes every tenant read and write to the caller's organization, detects
cross-organization references before mutation, and verifies isolation
on demand or on a schedule.

The organization used for scoping always comes from the authenticated
identity. A caller-supplied organization id is only ever compared.
"""

import logging
from datetime import datetime, timezone
from typing import Any, TypeVar
from uuid import UUID

from fastapi import HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from audit_trail.ledger import AuditLedger
from backend.config import get_settings
from backend.middleware.rbac import CurrentUser
from backend.models.appraisal import (
    Appraisal,
    AppraisalCompetencyRating,
    AppraisalCycle,
    AppraisalGoalRating,
    AppraiserAssignment,
)
from backend.models.employee import Employee
from backend.models.role_assignment import RoleAssignment
from backend.models.user import User

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

TENANT_SCOPED_MODELS: tuple[type, ...] = (
    User,
    Employee,
    RoleAssignment,
    AppraisalCycle,
    Appraisal,
    AppraisalGoalRating,
    AppraisalCompetencyRating,
    AppraiserAssignment,
)

BASE_RECOMMENDATIONS = [
    "Regularly run this verification in production",
    "Route every tenant query through tenant_select so the organization filter cannot be forgotten",
]


class TenantViolationError(Exception):
    """A reference crossed the organization boundary."""

    def __init__(self, operation: str, details: str = ""):
        self.operation = operation
        self.details = details
        super().__init__(
            f'Multi-tenant violation detected for operation "{operation}". {details}'.strip()
        )


def tenant_select(model: type[ModelT], organization_id: UUID) -> Select:
    """SELECT over a tenant-scoped model, filtered to one organization."""
    return select(model).where(model.organization_id == organization_id)


def assert_same_organization(
    expected_org_id: UUID,
    actual_org_id: UUID | None,
    operation: str,
) -> None:
    """Raise TenantViolationError when a row belongs to another organization."""
    if actual_org_id is None or actual_org_id != expected_org_id:
        raise TenantViolationError(
            operation,
            f"Expected organization {expected_org_id}, found {actual_org_id}.",
        )


class TenantGuard:
    """
    Per-request scoping helper bound to the authenticated caller.
    """

    def __init__(
        self,
        db: AsyncSession,
        user: CurrentUser,
        request: Request | None = None,
    ):
        self.db = db
        self.user = user
        self.request = request

    @property
    def organization_id(self) -> UUID:
        return self.user.organization_id

    def select(self, model: type[ModelT]) -> Select:
        return tenant_select(model, self.organization_id)

    async def get_scoped(
        self,
        model: type[ModelT],
        object_id: UUID,
        operation: str,
    ) -> ModelT | None:
        """
        Load a row by id within the caller's organization.

        Returns None when the row does not exist. A row that exists in
        another organization is reported and raises TenantViolationError.
        """
        result = await self.db.execute(self.select(model).where(model.id == object_id))
        row = result.scalar_one_or_none()
        if row is not None:
            return row

        other_org = await self.db.execute(
            select(model.organization_id).where(model.id == object_id)
        )
        foreign_org_id = other_org.scalar_one_or_none()
        if foreign_org_id is not None:
            await self.report_cross_org_access(
                operation,
                {
                    "object_type": model.__tablename__,
                    "object_id": str(object_id),
                },
            )
            raise TenantViolationError(
                operation,
                f"{model.__name__} {object_id} belongs to another organization.",
            )
        return None

    async def get_scoped_or_404(
        self,
        model: type[ModelT],
        object_id: UUID,
        operation: str,
    ) -> ModelT:
        row = await self.get_scoped(model, object_id, operation)
        if row is None:
            raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
        return row

    async def report_cross_org_access(
        self,
        operation: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log and audit a cross-organization attempt at danger severity."""
        logger.critical(
            f"Cross-organization access attempt by user {self.user.id} "
            f"(org {self.organization_id}) during {operation}: {details}"
        )
        await AuditLedger(self.db).record_for_user(
            self.user,
            "cross_organization_access_attempt",
            {"operation": operation, **(details or {})},
            success=False,
            request=self.request,
        )


# ── Verification ─────────────────────────────────────────────────────


class IsolationReport(BaseModel):
    """Outcome of a tenant isolation verification run."""

    organization_id: UUID
    is_secure: bool
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    tables_checked: list[str] = Field(default_factory=list)
    checked_at: datetime


def _cross_reference_checks(organization_id: UUID) -> list[tuple[str, Select]]:
    """
    Foreign-key pairs that must never straddle two organizations.

    Each query counts rows of this organization whose referenced row lives
    in another organization.
    """
    manager = aliased(Employee)
    return [
        (
            "employees.manager_id references another organization",
            select(func.count())
            .select_from(Employee)
            .join(manager, Employee.manager_id == manager.id)
            .where(Employee.organization_id == organization_id, manager.organization_id != organization_id),
        ),
        (
            "employees.user_id references another organization",
            select(func.count())
            .select_from(Employee)
            .join(User, Employee.user_id == User.id)
            .where(Employee.organization_id == organization_id, User.organization_id != organization_id),
        ),
        (
            "role_assignments.employee_id references another organization",
            select(func.count())
            .select_from(RoleAssignment)
            .join(Employee, RoleAssignment.employee_id == Employee.id)
            .where(RoleAssignment.organization_id == organization_id, Employee.organization_id != organization_id),
        ),
        (
            "appraisals.employee_id references another organization",
            select(func.count())
            .select_from(Appraisal)
            .join(Employee, Appraisal.employee_id == Employee.id)
            .where(Appraisal.organization_id == organization_id, Employee.organization_id != organization_id),
        ),
        (
            "appraisals.cycle_id references another organization",
            select(func.count())
            .select_from(Appraisal)
            .join(AppraisalCycle, Appraisal.cycle_id == AppraisalCycle.id)
            .where(Appraisal.organization_id == organization_id, AppraisalCycle.organization_id != organization_id),
        ),
        (
            "appraiser_assignments.appraisal_id references another organization",
            select(func.count())
            .select_from(AppraiserAssignment)
            .join(Appraisal, AppraiserAssignment.appraisal_id == Appraisal.id)
            .where(AppraiserAssignment.organization_id == organization_id, Appraisal.organization_id != organization_id),
        ),
        (
            "appraiser_assignments.appraiser_id references another organization",
            select(func.count())
            .select_from(AppraiserAssignment)
            .join(Employee, AppraiserAssignment.appraiser_id == Employee.id)
            .where(AppraiserAssignment.organization_id == organization_id, Employee.organization_id != organization_id),
        ),
        (
            "appraisal_goal_ratings.appraisal_id references another organization",
            select(func.count())
            .select_from(AppraisalGoalRating)
            .join(Appraisal, AppraisalGoalRating.appraisal_id == Appraisal.id)
            .where(AppraisalGoalRating.organization_id == organization_id, Appraisal.organization_id != organization_id),
        ),
        (
            "appraisal_competency_ratings.appraisal_id references another organization",
            select(func.count())
            .select_from(AppraisalCompetencyRating)
            .join(Appraisal, AppraisalCompetencyRating.appraisal_id == Appraisal.id)
            .where(
                AppraisalCompetencyRating.organization_id == organization_id,
                Appraisal.organization_id != organization_id,
            ),
        ),
    ]


class TenantIsolationVerifier:
    """
    Samples tenant-scoped tables and cross-references to prove isolation.

    A violation is a hard isolation failure. A warning means a check
    could not run, so isolation is unproven for that table but not disproven.
    """

    def __init__(self, db: AsyncSession, sample_size: int | None = None):
        self.db = db
        self.sample_size = sample_size or get_settings().isolation_sample_size

    async def verify_data_isolation(self, organization_id: UUID) -> IsolationReport:
        violations: list[str] = []
        warnings: list[str] = []
        tables_checked: list[str] = []

        for model in TENANT_SCOPED_MODELS:
            table = model.__tablename__
            try:
                result = await self.db.execute(
                    tenant_select(model, organization_id).limit(self.sample_size)
                )
                rows = result.scalars().all()
            except SQLAlchemyError as exc:
                await self.db.rollback()
                warnings.append(f"{table} query failed: {exc}")
                continue

            tables_checked.append(table)
            foreign = {row.organization_id for row in rows if row.organization_id != organization_id}
            if foreign:
                violations.append(
                    f"{table} returned rows from {len(foreign)} other organization(s): "
                    + ", ".join(sorted(str(o) for o in foreign))
                )

        for description, query in _cross_reference_checks(organization_id):
            try:
                count = (await self.db.execute(query)).scalar() or 0
            except SQLAlchemyError as exc:
                await self.db.rollback()
                warnings.append(f"{description.split('.')[0]} query failed: {exc}")
                continue
            if count:
                violations.append(f"{description}: {count} row(s)")

        return self._build_report(organization_id, violations, warnings, tables_checked)

    async def verify_audit_logging(self, organization_id: UUID) -> IsolationReport:
        """Write a check event and confirm it is readable within the tenant."""
        violations: list[str] = []
        ledger = AuditLedger(self.db)

        entry = await ledger.record(
            "audit_logging_check",
            {"purpose": "tenant isolation verification"},
            organization_id=organization_id,
        )
        if entry is None:
            violations.append("Audit logging write failed")
        else:
            stored = await ledger.get_entry(UUID(entry["id"]), organization_id)
            if stored is None:
                violations.append("Audit log entry not readable within its organization")

        return self._build_report(organization_id, violations, [], ["audit_log_entries"])

    async def verify_tenancy(
        self,
        organization_id: UUID,
        actor_id: UUID | None = None,
    ) -> IsolationReport:
        """Full verification: data isolation plus audit logging, with the outcome audited."""
        data = await self.verify_data_isolation(organization_id)
        audit = await self.verify_audit_logging(organization_id)

        report = self._build_report(
            organization_id,
            data.violations + audit.violations,
            data.warnings + audit.warnings,
            data.tables_checked + audit.tables_checked,
        )
        await self._record_outcome(report, actor_id)
        return report

    async def _record_outcome(self, report: IsolationReport, actor_id: UUID | None) -> None:
        ledger = AuditLedger(self.db)
        if report.violations:
            logger.critical(
                f"TENANT ISOLATION VIOLATION in org {report.organization_id}: {report.violations}"
            )
            await ledger.record(
                "tenant_isolation_violation",
                {"violations": report.violations, "warnings": report.warnings},
                success=False,
                actor_id=actor_id,
                organization_id=report.organization_id,
            )
            return

        if report.warnings:
            logger.warning(
                f"Tenant isolation unproven for org {report.organization_id}: {report.warnings}"
            )
        await ledger.record(
            "tenant_isolation_verified",
            {"tables_checked": report.tables_checked, "warnings": report.warnings},
            actor_id=actor_id,
            organization_id=report.organization_id,
        )

    def _build_report(
        self,
        organization_id: UUID,
        violations: list[str],
        warnings: list[str],
        tables_checked: list[str],
    ) -> IsolationReport:
        recommendations = list(BASE_RECOMMENDATIONS)
        if warnings:
            recommendations.append("Investigate failed queries; isolation is unproven for those tables")
        if violations:
            recommendations.append(
                "Treat as a security incident and review recent cross-organization activity in the audit log"
            )

        return IsolationReport(
            organization_id=organization_id,
            is_secure=not violations,
            violations=violations,
            warnings=warnings,
            recommendations=recommendations,
            tables_checked=tables_checked,
            checked_at=datetime.now(timezone.utc),
        )
