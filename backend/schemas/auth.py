"""
Auth Pydantic Schemas

Request/response models for authentication and role mimicking endpoints.
"""

from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from backend.middleware.rbac import Role


class LoginRequest(BaseModel):
    """Schema for user login."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """JWT token pair response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class RefreshRequest(BaseModel):
    """Schema for token refresh."""

    refresh_token: str


class MeResponse(BaseModel):
    """Caller identity with real and effective roles."""

    user_id: UUID
    email: str
    organization_id: UUID
    employee_id: UUID | None
    roles: list[Role]
    original_role: Role | None
    mimicked_role: Role | None
    effective_role: Role | None
    is_mimicking: bool


class MimicRequest(BaseModel):
    """Role to mimic for the rest of the session."""

    role: Role


class MimicResponse(BaseModel):
    """Replacement access token carrying (or clearing) the mimic overlay."""

    access_token: str
    token_type: str = "bearer"
    original_role: Role | None
    mimicked_role: Role | None
    effective_role: Role | None


class CapabilitiesResponse(BaseModel):
    """Effective permissions for feature toggling."""

    original_role: Role | None
    effective_role: Role | None
    effective_role_label: str | None
    is_mimicking: bool
    permissions: list[str]
