"""
Appraisal Cycle Service

Creating, opening and closing review cycles. Opening a cycle creates a
draft appraisal for every active employee who does not have one yet.
"""

import logging
from datetime import date
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.middleware.rbac import CurrentUser
from backend.models.appraisal import Appraisal, AppraisalCycle, AppraisalStatus, CycleStatus
from backend.models.employee import Employee, EmployeeStatus
from backend.services.appraisal_workflow import AppraisalConflictError
from backend.services.tenant_guard import TenantGuard

logger = logging.getLogger(__name__)


class AppraisalCycleService:
    """Cycle lifecycle: draft → active → completed."""

    def __init__(self, db_session: AsyncSession, request: Request | None = None):
        self.db = db_session
        self.request = request

    async def list_cycles(self, user: CurrentUser) -> list[AppraisalCycle]:
        guard = TenantGuard(self.db, user, self.request)
        result = await self.db.execute(
            guard.select(AppraisalCycle).order_by(AppraisalCycle.start_date.desc())
        )
        return list(result.scalars().all())

    async def create_cycle(
        self,
        user: CurrentUser,
        name: str,
        year: int,
        start_date: date,
        end_date: date,
    ) -> AppraisalCycle:
        if end_date < start_date:
            raise AppraisalConflictError("Cycle end date must not precede its start date")

        cycle = AppraisalCycle(
            organization_id=user.organization_id,
            name=name,
            year=year,
            start_date=start_date,
            end_date=end_date,
            status=CycleStatus.DRAFT.value,
        )
        self.db.add(cycle)
        await self.db.flush()
        await self.db.commit()

        await AuditLedger(self.db).record_for_user(
            user,
            "appraisal.cycle.created",
            {"object_type": "cycle", "object_id": str(cycle.id), "object_name": cycle.name, "year": year},
            request=self.request,
        )
        return cycle

    async def open_cycle(self, user: CurrentUser, cycle_id: UUID) -> tuple[AppraisalCycle, int]:
        """Activate a draft cycle and create the missing draft appraisals."""
        guard = TenantGuard(self.db, user, self.request)
        cycle = await guard.get_scoped_or_404(AppraisalCycle, cycle_id, "cycle.open")
        if cycle.status != CycleStatus.DRAFT.value:
            raise AppraisalConflictError(f"Only draft cycles can be opened (cycle is {cycle.status})")

        already = select(Appraisal.employee_id).where(
            Appraisal.organization_id == user.organization_id,
            Appraisal.cycle_id == cycle.id,
        )
        result = await self.db.execute(
            guard.select(Employee).where(
                Employee.status == EmployeeStatus.ACTIVE.value,
                Employee.id.not_in(already),
            )
        )
        employees = list(result.scalars().all())

        for employee in employees:
            self.db.add(Appraisal(
                organization_id=user.organization_id,
                employee_id=employee.id,
                cycle_id=cycle.id,
                status=AppraisalStatus.DRAFT.value,
                created_by=user.id,
            ))
        cycle.status = CycleStatus.ACTIVE.value
        await self.db.flush()
        await self.db.commit()

        logger.info(f"Cycle {cycle.id} opened with {len(employees)} new appraisals")
        await AuditLedger(self.db).record_for_user(
            user,
            "appraisal.cycle.opened",
            {"object_type": "cycle", "object_id": str(cycle.id), "object_name": cycle.name,
             "appraisals_created": len(employees)},
            request=self.request,
        )
        return cycle, len(employees)

    async def close_cycle(self, user: CurrentUser, cycle_id: UUID) -> AppraisalCycle:
        guard = TenantGuard(self.db, user, self.request)
        cycle = await guard.get_scoped_or_404(AppraisalCycle, cycle_id, "cycle.close")
        if cycle.status != CycleStatus.ACTIVE.value:
            raise AppraisalConflictError(f"Only active cycles can be closed (cycle is {cycle.status})")

        cycle.status = CycleStatus.COMPLETED.value
        await self.db.flush()
        await self.db.commit()

        await AuditLedger(self.db).record_for_user(
            user,
            "appraisal.cycle.closed",
            {"object_type": "cycle", "object_id": str(cycle.id), "object_name": cycle.name},
            request=self.request,
        )
        return cycle
