"""
RoleAssignment Model

Durable role grants. An employee's effective role set is the union of
their active assignments in their own organization. Revocation
deactivates a row; rows are never hard-deleted.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, TenantScopedMixin, TimestampMixin


class RoleAssignment(TenantScopedMixin, TimestampMixin, Base):
    """
    A single role held by an employee.

    At most one active row exists per (employee, role). A revoked grant
    keeps its row with is_active=False and the revocation metadata.
    """

    __tablename__ = "role_assignments"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Role: admin|director|manager|supervisor|employee",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    granted_by: Mapped[UUID | None] = mapped_column(
        nullable=True,
        comment="User ID that granted the role (null for seeded grants)",
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    revoked_by: Mapped[UUID | None] = mapped_column(
        nullable=True,
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    reason: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Justification recorded with the grant or revocation",
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'director', 'manager', 'supervisor', 'employee')",
            name="valid_role",
        ),
        Index(
            "uq_role_assignments_active",
            "employee_id",
            "role",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("ix_role_assignments_employee", "employee_id", "is_active"),
    )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "revoked"
        return f"<RoleAssignment {self.role} employee={self.employee_id} {state}>"
