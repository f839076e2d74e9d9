"""
Admin API Routes

Organization-level security operations.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.db.session import get_db
from backend.middleware.rbac import (
    CurrentUser,
    Permission,
    require_org_access,
    require_permission,
)
from backend.schemas.audit import IsolationReportResponse
from backend.services.tenant_guard import TenantIsolationVerifier

router = APIRouter(dependencies=[Depends(require_org_access())])


@router.post(
    "/isolation",
    response_model=IsolationReportResponse,
    summary="Verify tenant isolation",
    description="Sample tenant tables and cross-references, then verify audit logging.",
)
async def verify_isolation(
    org_id: UUID,
    user: CurrentUser = Depends(require_permission(Permission.VERIFY_TENANCY)),
    db: AsyncSession = Depends(get_db),
) -> IsolationReportResponse:
    report = await TenantIsolationVerifier(db).verify_tenancy(user.organization_id, actor_id=user.id)
    return IsolationReportResponse(**report.model_dump())
