"""Pydantic API Schemas for Appraisely."""

from backend.schemas.appraisal import (
    AppraisalCreate,
    AppraisalDetailResponse,
    AppraisalResponse,
    AppraisalUpdate,
    CycleCreate,
    CycleResponse,
)
from backend.schemas.employee import (
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
)
from backend.schemas.role import (
    RoleAssignmentResponse,
    RoleGrantRequest,
    RoleRevokeRequest,
)

__all__ = [
    "EmployeeCreate",
    "EmployeeResponse",
    "EmployeeUpdate",
    "RoleAssignmentResponse",
    "RoleGrantRequest",
    "RoleRevokeRequest",
    "CycleCreate",
    "CycleResponse",
    "AppraisalCreate",
    "AppraisalDetailResponse",
    "AppraisalResponse",
    "AppraisalUpdate",
]
