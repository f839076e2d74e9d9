"""
Role Assignment Pydantic Schemas
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from backend.middleware.rbac import Role


class RoleGrantRequest(BaseModel):
    """Grant a role to an employee."""

    employee_id: UUID
    role: Role
    reason: str = Field(..., min_length=1, max_length=500)


class RoleRevokeRequest(BaseModel):
    """Deactivate a role assignment."""

    reason: str = Field(..., min_length=1, max_length=500)


class RoleAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    employee_id: UUID
    role: Role
    is_active: bool
    granted_by: UUID | None
    granted_at: datetime
    revoked_by: UUID | None
    revoked_at: datetime | None
    reason: str | None
