"""
Audit Trail API Routes

Rendered audit feed, category list and hash-chain verification.
Admin only.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.integrity import verify_chain
from audit_trail.ledger import AuditLedger
from audit_trail.taxonomy import (
    ACTION_CATEGORIES,
    Severity,
    event_types_in_category,
    event_types_with_severity,
)
from backend.db.session import get_db
from backend.middleware.rbac import (
    CurrentUser,
    Permission,
    require_org_access,
    require_permission,
)
from backend.schemas.audit import AuditEntryResponse, AuditFeedResponse, ChainVerificationResponse

router = APIRouter(dependencies=[Depends(require_org_access())])


@router.get("/", response_model=AuditFeedResponse, summary="Audit feed")
async def get_audit_feed(
    org_id: UUID,
    category: str | None = None,
    severity: Severity | None = None,
    event_type: str | None = None,
    user_id: UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_AUDIT)),
) -> AuditFeedResponse:
    """
    Audit entries for the caller's organization, newest first.

    Filters combine: an event type outside the chosen category or
    severity yields an empty page.
    """
    event_types: set[str] | None = None
    if category:
        if category not in ACTION_CATEGORIES:
            raise HTTPException(status_code=422, detail=f"Unknown category: {category}")
        event_types = set(event_types_in_category(category))
    if severity:
        by_severity = set(event_types_with_severity(severity))
        event_types = by_severity if event_types is None else event_types & by_severity
    if event_type:
        event_types = {event_type} if event_types is None else event_types & {event_type}

    ledger = AuditLedger(db)
    entries = await ledger.get_entries(
        user.organization_id,
        event_types=sorted(event_types) if event_types is not None else None,
        user_id=user_id,
        limit=limit,
        offset=offset,
    )
    return AuditFeedResponse(
        total=await ledger.get_entry_count(user.organization_id),
        entries=[AuditEntryResponse(**e) for e in entries],
    )


@router.get("/categories", response_model=list[str], summary="Audit categories")
async def get_categories(
    org_id: UUID,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_AUDIT)),
) -> list[str]:
    return list(ACTION_CATEGORIES)


@router.get(
    "/verify",
    response_model=ChainVerificationResponse,
    summary="Verify audit chain",
    description="Recompute the organization's hash chain and report the first broken entry.",
)
async def verify_audit_chain(
    org_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_permission(Permission.VIEW_AUDIT)),
) -> ChainVerificationResponse:
    result = await verify_chain(db, user.organization_id)
    return ChainVerificationResponse(**result)
