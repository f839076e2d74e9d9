"""
Appraisal Cycle API Routes
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.db.session import get_db
from backend.middleware.rbac import (
    CurrentUser,
    Permission,
    require_org_access,
    require_permission,
)
from backend.schemas.appraisal import CycleCreate, CycleOpenResponse, CycleResponse
from backend.services.appraisal_cycles import AppraisalCycleService

router = APIRouter(dependencies=[Depends(require_org_access())])


@router.get("/", response_model=list[CycleResponse], summary="List appraisal cycles")
async def list_cycles(
    org_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> list[CycleResponse]:
    cycles = await AppraisalCycleService(db, request).list_cycles(user)
    return [CycleResponse.model_validate(c) for c in cycles]


@router.post(
    "/",
    response_model=CycleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create appraisal cycle",
)
async def create_cycle(
    org_id: UUID,
    body: CycleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_APPRAISAL_CYCLES)),
) -> CycleResponse:
    cycle = await AppraisalCycleService(db, request).create_cycle(
        user, body.name, body.year, body.start_date, body.end_date
    )
    await db.refresh(cycle)
    return CycleResponse.model_validate(cycle)


@router.post(
    "/{cycle_id}/open",
    response_model=CycleOpenResponse,
    summary="Open appraisal cycle",
    description="Activate a draft cycle and create draft appraisals for active employees.",
)
async def open_cycle(
    org_id: UUID,
    cycle_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_APPRAISAL_CYCLES)),
) -> CycleOpenResponse:
    cycle, created = await AppraisalCycleService(db, request).open_cycle(user, cycle_id)
    await db.refresh(cycle)
    return CycleOpenResponse(cycle=CycleResponse.model_validate(cycle), appraisals_created=created)


@router.post("/{cycle_id}/close", response_model=CycleResponse, summary="Close appraisal cycle")
async def close_cycle(
    org_id: UUID,
    cycle_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_APPRAISAL_CYCLES)),
) -> CycleResponse:
    cycle = await AppraisalCycleService(db, request).close_cycle(user, cycle_id)
    await db.refresh(cycle)
    return CycleResponse.model_validate(cycle)
