"""
Employee API Routes

Endpoints for managing employees and the management hierarchy within
an organization.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.config import get_settings
from backend.db.session import get_db
from backend.middleware.rbac import (
    NOT_AUTHORIZED,
    CurrentUser,
    Permission,
    require_org_access,
    require_permission,
)
from backend.models.employee import Employee
from backend.schemas.employee import (
    AppraiserSuggestionResponse,
    EmployeeCreate,
    EmployeeListResponse,
    EmployeeResponse,
    EmployeeUpdate,
)
from backend.services.appraiser_assignment import AppraiserAssignmentService
from backend.services.tenant_guard import TenantGuard

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_org_access())])


async def _validate_manager(
    guard: TenantGuard,
    manager_id: UUID,
    employee_id: UUID | None,
    operation: str,
) -> None:
    """Manager must exist in the caller's organization and not close a reporting loop."""
    if employee_id is not None and manager_id == employee_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="An employee cannot be their own manager",
        )

    manager = await guard.get_scoped_or_404(Employee, manager_id, operation)
    if employee_id is None:
        return

    visited = {manager.id}
    current = manager
    for _ in range(get_settings().hierarchy_max_depth * 4):
        if current.manager_id is None or current.manager_id in visited:
            return
        if current.manager_id == employee_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Manager change would create a reporting loop",
            )
        visited.add(current.manager_id)
        next_manager = await guard.get_scoped(Employee, current.manager_id, operation)
        if next_manager is None:
            return
        current = next_manager


async def _check_employee_number(
    guard: TenantGuard,
    employee_number: str | None,
    employee_id: UUID | None = None,
) -> None:
    if not employee_number:
        return
    query = guard.select(Employee).where(Employee.employee_number == employee_number)
    if employee_id is not None:
        query = query.where(Employee.id != employee_id)
    existing = await guard.db.execute(query)
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Employee number already exists in organization",
        )


@router.post(
    "/",
    response_model=EmployeeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create employee",
    description="Create a new employee record, optionally placed under a manager.",
)
async def create_employee(
    org_id: UUID,
    body: EmployeeCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_EMPLOYEES)),
) -> EmployeeResponse:
    """Create a new employee."""
    guard = TenantGuard(db, user, request)
    await _check_employee_number(guard, body.employee_number)
    if body.manager_id is not None:
        await _validate_manager(guard, body.manager_id, None, "employee.create")

    employee = Employee(
        organization_id=user.organization_id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email.lower() if body.email else None,
        employee_number=body.employee_number,
        job_title=body.job_title,
        department=body.department,
        division=body.division,
        hire_date=body.hire_date,
        manager_id=body.manager_id,
        status=body.status.value,
        created_by=user.id,
    )
    db.add(employee)
    await db.flush()
    await db.refresh(employee)
    await db.commit()

    await AuditLedger(db).record_for_user(
        user,
        "employee.created",
        {
            "object_type": "employee",
            "object_id": str(employee.id),
            "object_name": employee.full_name,
        },
        request=request,
    )
    return EmployeeResponse.model_validate(employee)


@router.get(
    "/",
    response_model=EmployeeListResponse,
    summary="List employees",
    description="List employees with pagination and filtering.",
)
async def list_employees(
    org_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    status_filter: str | None = Query(None, alias="status"),
    department: str | None = None,
    manager_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_REPORTS)),
) -> EmployeeListResponse:
    """List employees with filtering."""
    query = select(Employee).where(Employee.organization_id == user.organization_id)

    if status_filter:
        query = query.where(Employee.status == status_filter)
    if department:
        query = query.where(Employee.department == department)
    if manager_id:
        query = query.where(Employee.manager_id == manager_id)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    offset = (page - 1) * page_size
    query = query.order_by(Employee.last_name, Employee.first_name)
    query = query.offset(offset).limit(page_size)

    result = await db.execute(query)
    employees = result.scalars().all()

    return EmployeeListResponse(
        items=[EmployeeResponse.model_validate(e) for e in employees],
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    )


@router.get(
    "/{employee_id}",
    response_model=EmployeeResponse,
    summary="Get employee",
    description="Get employee details. Employees may read their own record.",
)
async def get_employee(
    org_id: UUID,
    employee_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> EmployeeResponse:
    """Get employee by ID."""
    if employee_id != user.employee_id and not user.has_permission(Permission.VIEW_REPORTS):
        await AuditLedger(db).record_for_user(
            user,
            "unauthorized_access_attempt",
            {"operation": "employee.view", "object_type": "employee", "object_id": str(employee_id)},
            success=False,
            request=request,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=NOT_AUTHORIZED)

    employee = await TenantGuard(db, user, request).get_scoped_or_404(
        Employee, employee_id, "employee.view"
    )
    return EmployeeResponse.model_validate(employee)


@router.patch(
    "/{employee_id}",
    response_model=EmployeeResponse,
    summary="Update employee",
    description="Update employee information, including their manager.",
)
async def update_employee(
    org_id: UUID,
    employee_id: UUID,
    body: EmployeeUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_EMPLOYEES)),
) -> EmployeeResponse:
    """Update employee."""
    guard = TenantGuard(db, user, request)
    employee = await guard.get_scoped_or_404(Employee, employee_id, "employee.update")

    update_data = body.model_dump(exclude_unset=True)
    if "employee_number" in update_data:
        await _check_employee_number(guard, update_data["employee_number"], employee.id)
    if update_data.get("manager_id") is not None:
        await _validate_manager(guard, update_data["manager_id"], employee.id, "employee.update")

    updated_fields = []
    for field, value in update_data.items():
        value = getattr(value, "value", value)
        if field == "email" and value:
            value = value.lower()
        if getattr(employee, field) != value:
            setattr(employee, field, value)
            updated_fields.append(field)

    if not updated_fields:
        return EmployeeResponse.model_validate(employee)

    employee.modified_by = user.id
    await db.flush()
    await db.refresh(employee)
    await db.commit()

    await AuditLedger(db).record_for_user(
        user,
        "employee.updated",
        {
            "object_type": "employee",
            "object_id": str(employee.id),
            "object_name": employee.full_name,
            "updated_fields": updated_fields,
        },
        request=request,
    )
    return EmployeeResponse.model_validate(employee)


@router.get(
    "/{employee_id}/appraiser-suggestions",
    response_model=list[AppraiserSuggestionResponse],
    summary="Suggest appraisers",
    description="Eligible appraisers from the employee's management chain, nearest first.",
)
async def suggest_appraisers(
    org_id: UUID,
    employee_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.CREATE_APPRAISALS)),
) -> list[AppraiserSuggestionResponse]:
    suggestions = await AppraiserAssignmentService(db, request).suggest_appraisers(user, employee_id)
    return [AppraiserSuggestionResponse(**s.model_dump()) for s in suggestions]
