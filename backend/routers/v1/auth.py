"""
Auth Router

Login, token refresh, caller identity, logout, role mimicking and
effective permissions.
"""

import logging
from uuid import UUID

import jwt as pyjwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger, client_context
from backend.config import get_settings
from backend.db.session import get_db
from backend.middleware.rbac import CurrentUser, get_current_user
from backend.models.user import User
from backend.schemas.auth import (
    CapabilitiesResponse,
    LoginRequest,
    MeResponse,
    MimicRequest,
    MimicResponse,
    RefreshRequest,
    TokenResponse,
)
from backend.services.auth import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from backend.services.role_mimicking import RoleMimickingService, describe_capabilities

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_pair(user: User) -> TokenResponse:
    settings = get_settings()
    return TokenResponse(
        access_token=create_access_token(
            sub=str(user.id),
            email=user.email,
            org_id=str(user.organization_id),
        ),
        refresh_token=create_refresh_token(
            sub=str(user.id),
            org_id=str(user.organization_id),
        ),
        expires_in=settings.access_token_expire_minutes * 60,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Authenticate with email and password, returns JWT token pair."""
    ledger = AuditLedger(db)
    ip_address, user_agent = client_context(request)

    user = await authenticate_user(db, body.email, body.password)
    if user is None:
        # Attribute the failure to the account's organization when it exists
        result = await db.execute(select(User).where(User.email == body.email.lower()))
        known = result.scalar_one_or_none()
        logger.warning(f"Failed login for {body.email}")
        await ledger.record(
            "auth.login.failed",
            {"email": body.email.lower()},
            success=False,
            actor_id=known.id if known else None,
            organization_id=known.organization_id if known else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    tokens = _token_pair(user)
    await db.commit()
    await ledger.record(
        "auth.login.success",
        {"actor_email": user.email},
        actor_id=user.id,
        organization_id=user.organization_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return tokens


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange a valid refresh token for a new token pair. Mimicking does not survive a refresh."""
    try:
        payload = decode_token(body.refresh_token)
    except pyjwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid refresh token: {e}",
        )

    if payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not a refresh token",
        )

    try:
        user_id = UUID(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token claims",
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or deactivated",
        )

    return _token_pair(user)


@router.get("/me", response_model=MeResponse)
async def get_me(
    current_user: CurrentUser = Depends(get_current_user),
) -> MeResponse:
    """Caller identity with real and effective roles."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        organization_id=current_user.organization_id,
        employee_id=current_user.employee_id,
        roles=sorted(current_user.roles, key=lambda r: r.value),
        original_role=current_user.original_role,
        mimicked_role=current_user.mimicked_role,
        effective_role=current_user.effective_role,
        is_mimicking=current_user.is_mimicking,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Record the end of a session. Tokens are stateless; the client discards them."""
    await AuditLedger(db).record_for_user(
        current_user,
        "auth.session.terminated",
        {},
        request=request,
    )


@router.post("/mimic", response_model=MimicResponse)
async def start_mimic(
    body: MimicRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MimicResponse:
    """Experience the platform as a role at or below your own. Admins only."""
    session = await RoleMimickingService(db).start(current_user, body.role, request)
    return MimicResponse(**session.model_dump())


@router.delete("/mimic", response_model=MimicResponse)
async def reset_mimic(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MimicResponse:
    """Drop the mimic overlay and return a token carrying the real role."""
    session = await RoleMimickingService(db).reset(current_user, request)
    return MimicResponse(**session.model_dump())


@router.get("/permissions", response_model=CapabilitiesResponse)
async def get_permissions(
    current_user: CurrentUser = Depends(get_current_user),
) -> CapabilitiesResponse:
    """Effective permissions of the caller, reflecting any mimicked role."""
    return CapabilitiesResponse(**describe_capabilities(current_user))
