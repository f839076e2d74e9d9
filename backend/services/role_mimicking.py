"""
Role Mimicking Service

Lets an administrator temporarily experience the platform as a lower role.

The overlay lives only in the caller's access token (the mimic_role claim).
It is never written to role assignments, it is re-validated against the
real roles on every request, and replacing or dropping the token ends it.
"""

import logging

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.middleware.rbac import ROLE_LABELS, CurrentUser, Permission, Role, can_mimic
from backend.services.auth import create_access_token

logger = logging.getLogger(__name__)


class MimicDeniedError(Exception):
    """Mimicking request rejected; would escalate or caller is not an admin."""


class MimicSession(BaseModel):
    """Token and role state after starting or resetting a mimic session."""

    access_token: str
    token_type: str = "bearer"
    original_role: Role | None
    mimicked_role: Role | None
    effective_role: Role | None


def start_mimicking(user: CurrentUser, role: Role | str) -> CurrentUser:
    """
    Return the caller's identity with the mimic overlay applied.

    Raises MimicDeniedError when the caller's real roles lack
    administrative rank or the target outranks the real role.
    """
    if not can_mimic(user.roles, role):
        raise MimicDeniedError(
            f"Cannot mimic role {role!r}: only administrators may mimic, and only roles at or below their own"
        )
    return user.model_copy(update={"mimicked_role": Role(role)})


def reset_mimicking(user: CurrentUser) -> CurrentUser:
    """Return the caller's identity with the overlay cleared."""
    return user.model_copy(update={"mimicked_role": None})


def issue_session_token(user: CurrentUser) -> MimicSession:
    token = create_access_token(
        sub=str(user.id),
        email=user.email,
        org_id=str(user.organization_id),
        mimic_role=user.mimicked_role.value if user.mimicked_role else None,
    )
    return MimicSession(
        access_token=token,
        original_role=user.original_role,
        mimicked_role=user.mimicked_role,
        effective_role=user.effective_role,
    )


class RoleMimickingService:
    """Starts and resets mimic sessions, auditing both under the real identity."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def start(
        self,
        user: CurrentUser,
        role: Role,
        request: Request | None = None,
    ) -> MimicSession:
        ledger = AuditLedger(self.db)
        try:
            mimicking = start_mimicking(user, role)
        except MimicDeniedError:
            logger.warning(f"User {user.id} denied mimicking {role}")
            await ledger.record_for_user(
                user,
                "unauthorized_access_attempt",
                {"operation": "role_mimic.start", "requested_role": getattr(role, "value", role)},
                success=False,
                request=request,
            )
            raise

        logger.info(f"User {user.id} ({user.original_role}) now mimicking {role}")
        # The real identity is recorded; the requested role is metadata
        await ledger.record_for_user(
            user,
            "auth.role_mimic.started",
            {"mimicked_role": mimicking.mimicked_role.value},
            request=request,
        )
        return issue_session_token(mimicking)

    async def reset(
        self,
        user: CurrentUser,
        request: Request | None = None,
    ) -> MimicSession:
        restored = reset_mimicking(user)
        if user.is_mimicking:
            await AuditLedger(self.db).record_for_user(
                user,
                "auth.role_mimic.reset",
                {"restored_role": user.original_role.value if user.original_role else None},
                request=request,
            )
        return issue_session_token(restored)


def describe_capabilities(user: CurrentUser) -> dict:
    """Effective permissions of the caller, for client-side feature toggles."""
    return {
        "original_role": user.original_role,
        "effective_role": user.effective_role,
        "effective_role_label": ROLE_LABELS.get(user.effective_role) if user.effective_role else None,
        "is_mimicking": user.is_mimicking,
        "permissions": sorted(p.value for p in Permission if user.has_permission(p)),
    }
