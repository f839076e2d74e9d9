"""
Appraisal API Routes

Appraisal records, workflow transitions and appraiser assignment.
Row-level access (participant, direct report, completed lock) is decided
by the workflow service; the dependencies here gate coarse permissions.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.db.session import get_db
from backend.middleware.rbac import (
    CurrentUser,
    Permission,
    Role,
    require_org_access,
    require_permission,
    require_role,
)
from backend.models.appraisal import Appraisal, AppraisalStatus
from backend.schemas.appraisal import (
    AccessResponse,
    AppraisalCreate,
    AppraisalDetailResponse,
    AppraisalResponse,
    AppraisalUpdate,
    AppraiserAssignRequest,
    AppraiserRemovalResponse,
    AppraisersResponse,
    AppraiserValidateRequest,
    CompetencyRatingResponse,
    GoalRatingResponse,
    ReadinessResponse,
    TransitionRequest,
    TransitionResponse,
    ValidationResponse,
)
from backend.services.appraisal_workflow import AppraisalAccess, AppraisalWorkflowService
from backend.services.appraiser_assignment import AppraiserAssignmentService

router = APIRouter(dependencies=[Depends(require_org_access())])


async def _detail(
    service: AppraisalWorkflowService,
    user: CurrentUser,
    appraisal: Appraisal,
    access: AppraisalAccess | None = None,
) -> AppraisalDetailResponse:
    await service.db.refresh(appraisal)
    goals, competencies = await service.get_rating_items(user, appraisal)
    return AppraisalDetailResponse(
        **AppraisalResponse.model_validate(appraisal).model_dump(),
        goal_ratings=[GoalRatingResponse.model_validate(g) for g in goals],
        competency_ratings=[CompetencyRatingResponse.model_validate(c) for c in competencies],
        access=AccessResponse(**access.model_dump()) if access else None,
    )


@router.get("/", response_model=list[AppraisalResponse], summary="List appraisals")
async def list_appraisals(
    org_id: UUID,
    request: Request,
    status_filter: AppraisalStatus | None = Query(None, alias="status"),
    cycle_id: UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> list[AppraisalResponse]:
    """Appraisals visible to the caller; employees see only their own and those they appraise."""
    appraisals = await AppraisalWorkflowService(db, request).list_appraisals(
        user, status=status_filter, cycle_id=cycle_id, limit=limit, offset=offset
    )
    return [AppraisalResponse.model_validate(a) for a in appraisals]


@router.post(
    "/",
    response_model=AppraisalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create appraisal",
)
async def create_appraisal(
    org_id: UUID,
    body: AppraisalCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.CREATE_APPRAISALS)),
) -> AppraisalDetailResponse:
    service = AppraisalWorkflowService(db, request)
    appraisal = await service.create_appraisal(user, body.employee_id, body.cycle_id)
    return await _detail(service, user, appraisal)


@router.get("/{appraisal_id}", response_model=AppraisalDetailResponse, summary="Get appraisal")
async def get_appraisal(
    org_id: UUID,
    appraisal_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> AppraisalDetailResponse:
    service = AppraisalWorkflowService(db, request)
    appraisal, access = await service.get_appraisal(user, appraisal_id)
    return await _detail(service, user, appraisal, access)


@router.patch("/{appraisal_id}", response_model=AppraisalDetailResponse, summary="Update appraisal")
async def update_appraisal(
    org_id: UUID,
    appraisal_id: UUID,
    body: AppraisalUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> AppraisalDetailResponse:
    """Edit fields and ratings. Requires edit access to this appraisal."""
    changes = body.model_dump(
        exclude_unset=True, exclude={"goal_ratings", "competency_ratings"}
    )
    if "phase" in changes and changes["phase"] is not None:
        changes["phase"] = changes["phase"].value

    service = AppraisalWorkflowService(db, request)
    appraisal = await service.update_appraisal(
        user,
        appraisal_id,
        changes,
        goal_ratings=[g.model_dump(exclude_unset=True) for g in body.goal_ratings],
        competency_ratings=[c.model_dump(exclude_unset=True) for c in body.competency_ratings],
    )
    return await _detail(service, user, appraisal)


@router.delete(
    "/{appraisal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete appraisal",
    description="Permanently delete an appraisal, including completed ones. Admin only.",
)
async def delete_appraisal(
    org_id: UUID,
    appraisal_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_role(Role.ADMIN)),
) -> None:
    await AppraisalWorkflowService(db, request).hard_delete(user, appraisal_id)


@router.get("/{appraisal_id}/access", response_model=AccessResponse, summary="Caller's access")
async def get_access(
    org_id: UUID,
    appraisal_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> AccessResponse:
    access = await AppraisalWorkflowService(db, request).get_access(user, appraisal_id)
    return AccessResponse(**access.model_dump())


@router.get(
    "/{appraisal_id}/readiness",
    response_model=ReadinessResponse,
    summary="Completion readiness",
    description="Lists every goal and competency still missing a rating.",
)
async def get_readiness(
    org_id: UUID,
    appraisal_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> ReadinessResponse:
    readiness = await AppraisalWorkflowService(db, request).completion_readiness(user, appraisal_id)
    return ReadinessResponse(**readiness.model_dump())


@router.post(
    "/{appraisal_id}/transition",
    response_model=TransitionResponse,
    summary="Change appraisal status",
    description="A rejected transition is returned with valid=false and a reason.",
)
async def transition_appraisal(
    org_id: UUID,
    appraisal_id: UUID,
    body: TransitionRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> TransitionResponse:
    result = await AppraisalWorkflowService(db, request).transition(user, appraisal_id, body.to_status)
    return TransitionResponse(**result.model_dump())


# ── Appraisers ──


@router.get("/{appraisal_id}/appraisers", response_model=AppraisersResponse, summary="List appraisers")
async def get_appraisers(
    org_id: UUID,
    appraisal_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_OWN_DATA)),
) -> AppraisersResponse:
    view = await AppraiserAssignmentService(db, request).get_appraisers(user, appraisal_id)
    return AppraisersResponse(**view.model_dump(mode="json"))


@router.put(
    "/{appraisal_id}/appraisers",
    response_model=AppraisersResponse,
    summary="Assign appraisers",
    description="Replace the appraiser set. The first id becomes the primary appraiser.",
)
async def assign_appraisers(
    org_id: UUID,
    appraisal_id: UUID,
    body: AppraiserAssignRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.CREATE_APPRAISALS)),
) -> AppraisersResponse:
    view = await AppraiserAssignmentService(db, request).assign_appraisers(
        user, appraisal_id, body.appraiser_ids, admin_override=body.admin_override
    )
    return AppraisersResponse(**view.model_dump(mode="json"))


@router.post(
    "/appraisers/validate",
    response_model=ValidationResponse,
    summary="Validate appraiser",
    description="Check whether one appraiser may appraise one employee.",
)
async def validate_appraiser(
    org_id: UUID,
    body: AppraiserValidateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.CREATE_APPRAISALS)),
) -> ValidationResponse:
    result = await AppraiserAssignmentService(db, request).validate_assignment(
        user, body.appraiser_id, body.employee_id, admin_override=body.admin_override
    )
    return ValidationResponse(**result.model_dump())


@router.delete(
    "/{appraisal_id}/appraisers/{appraiser_id}",
    response_model=AppraiserRemovalResponse,
    summary="Remove appraiser",
    description="Removing the primary leaves the appraisal without one until reassigned.",
)
async def remove_appraiser(
    org_id: UUID,
    appraisal_id: UUID,
    appraiser_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.CREATE_APPRAISALS)),
) -> AppraiserRemovalResponse:
    result = await AppraiserAssignmentService(db, request).remove_appraiser(user, appraisal_id, appraiser_id)
    return AppraiserRemovalResponse(**result.model_dump())
