"""
Employee Pydantic Schemas

API request/response models for Employee endpoints.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from backend.models.employee import EmployeeStatus


class EmployeeBase(BaseModel):
    """Base employee fields shared across schemas."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class EmployeeCreate(EmployeeBase):
    """Schema for creating a new employee."""

    email: EmailStr | None = None
    employee_number: str | None = Field(default=None, max_length=50)
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=100)
    division: str | None = Field(default=None, max_length=100)
    hire_date: date | None = None
    manager_id: UUID | None = Field(
        default=None,
        description="Direct manager; must belong to the same organization",
    )
    status: EmployeeStatus = EmployeeStatus.PENDING


class EmployeeUpdate(BaseModel):
    """Schema for updating an employee."""

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    employee_number: str | None = Field(default=None, max_length=50)
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=100)
    division: str | None = Field(default=None, max_length=100)
    hire_date: date | None = None
    manager_id: UUID | None = None
    status: EmployeeStatus | None = None


class EmployeeResponse(EmployeeBase):
    """Schema for employee response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    user_id: UUID | None
    email: str | None
    employee_number: str | None
    job_title: str | None
    department: str | None
    division: str | None
    hire_date: date | None
    manager_id: UUID | None
    status: str
    created_at: datetime
    updated_at: datetime


class EmployeeListResponse(BaseModel):
    """Paginated employee list response."""

    items: list[EmployeeResponse]
    total: int
    page: int
    page_size: int
    pages: int


class AppraiserSuggestionResponse(BaseModel):
    """Suggested appraiser from the management chain."""

    appraiser_id: UUID
    name: str
    role_label: str
    hierarchy_level: int
