"""
Employee Model

People inside an organization, linked into a management hierarchy
through a self-referential manager reference.
"""

from datetime import date
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import AuditMixin, Base, TenantScopedMixin, TimestampMixin


class EmployeeStatus(str, Enum):
    """Employee lifecycle status."""

    PENDING = "pending"
    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


class Employee(TenantScopedMixin, TimestampMixin, AuditMixin, Base):
    """
    Employee record.

    The manager reference must point at an employee of the same
    organization. Cross-organization references are rejected by the
    tenant guard before they are written and reported by the isolation
    verifier if they ever appear.
    """

    __tablename__ = "employees"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Login identity, null until the employee accepts an invitation",
    )

    # Core identity
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    employee_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Organization-assigned employee number",
    )

    # Job information
    job_title: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    department: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    division: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    hire_date: Mapped[date | None] = mapped_column(
        nullable=True,
    )

    # Hierarchy
    manager_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        comment="Direct manager (same organization only)",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=EmployeeStatus.ACTIVE.value,
        nullable=False,
        comment="Status: pending|invited|active|inactive",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'invited', 'active', 'inactive')",
            name="valid_employee_status",
        ),
        CheckConstraint(
            "manager_id IS NULL OR manager_id <> id",
            name="employee_not_own_manager",
        ),
        UniqueConstraint(
            "organization_id",
            "employee_number",
            name="uq_employee_org_number",
        ),
        Index("ix_employees_org_status", "organization_id", "status"),
        Index("ix_employees_manager_id", "manager_id"),
        Index("ix_employees_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Employee {self.first_name} {self.last_name} ({self.status})>"

    @property
    def full_name(self) -> str:
        """Return full name."""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE.value
