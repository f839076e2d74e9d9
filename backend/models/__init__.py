"""SQLAlchemy ORM Models for Appraisely."""

from backend.models.appraisal import (
    Appraisal,
    AppraisalCompetencyRating,
    AppraisalCycle,
    AppraisalGoalRating,
    AppraiserAssignment,
)
from backend.models.audit_log import AuditLogEntry
from backend.models.base import AuditMixin, Base, TenantScopedMixin, TimestampMixin
from backend.models.employee import Employee
from backend.models.organization import Organization
from backend.models.role_assignment import RoleAssignment
from backend.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "TenantScopedMixin",
    "AuditMixin",
    "Organization",
    "User",
    "Employee",
    "RoleAssignment",
    "AppraisalCycle",
    "Appraisal",
    "AppraisalGoalRating",
    "AppraisalCompetencyRating",
    "AppraiserAssignment",
    "AuditLogEntry",
]
