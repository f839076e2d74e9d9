"""
Role Assignment API Routes

Granting and revoking durable roles. Admin only.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.db.session import get_db
from backend.middleware.rbac import (
    CurrentUser,
    Permission,
    require_org_access,
    require_permission,
)
from backend.schemas.role import RoleAssignmentResponse, RoleGrantRequest, RoleRevokeRequest
from backend.services.role_service import RoleService

router = APIRouter(dependencies=[Depends(require_org_access())])


@router.get(
    "/",
    response_model=list[RoleAssignmentResponse],
    summary="List role assignments",
)
async def list_role_assignments(
    org_id: UUID,
    request: Request,
    employee_id: UUID | None = None,
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_ROLES)),
) -> list[RoleAssignmentResponse]:
    assignments = await RoleService(db, request).list_assignments(
        user, employee_id=employee_id, include_inactive=include_inactive
    )
    return [RoleAssignmentResponse.model_validate(a) for a in assignments]


@router.post(
    "/",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant role",
    description="Grant a role to an employee. A reason is required and recorded.",
)
async def grant_role(
    org_id: UUID,
    body: RoleGrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.ASSIGN_ROLES)),
) -> RoleAssignmentResponse:
    assignment = await RoleService(db, request).grant_role(
        user, body.employee_id, body.role, body.reason
    )
    await db.refresh(assignment)
    return RoleAssignmentResponse.model_validate(assignment)


@router.post(
    "/{assignment_id}/revoke",
    response_model=RoleAssignmentResponse,
    summary="Revoke role",
    description="Deactivate a role assignment. The assignment is kept for history.",
)
async def revoke_role(
    org_id: UUID,
    assignment_id: UUID,
    body: RoleRevokeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.ASSIGN_ROLES)),
) -> RoleAssignmentResponse:
    assignment = await RoleService(db, request).revoke_role(user, assignment_id, body.reason)
    await db.refresh(assignment)
    return RoleAssignmentResponse.model_validate(assignment)
