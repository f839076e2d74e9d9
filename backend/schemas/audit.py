"""
Audit Pydantic Schemas

Rendered audit feed entries and integrity verification results.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AuditEntryResponse(BaseModel):
    """Audit entry rendered through the taxonomy."""

    id: UUID
    organization_id: UUID | None
    user_id: UUID | None
    event_type: str
    event_details: dict[str, Any]
    success: bool
    label: str
    severity: str
    category: str
    icon: str | None
    summary: str | None
    object_label: str | None
    sequence_number: int | None
    created_at: datetime


class AuditFeedResponse(BaseModel):
    total: int
    entries: list[AuditEntryResponse]


class ChainVerificationResponse(BaseModel):
    is_valid: bool
    total_entries: int
    entries_checked: int
    first_broken_entry: int | None
    message: str


class IsolationReportResponse(BaseModel):
    organization_id: UUID
    is_secure: bool
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    tables_checked: list[str] = Field(default_factory=list)
    checked_at: datetime
