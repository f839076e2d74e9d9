"""
User Model

Login identity for Appraisely users.
Roles are not stored here: they come from active role assignments on the
linked employee record (see backend/models/role_assignment.py).
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, TenantScopedMixin, TimestampMixin


class User(TenantScopedMixin, TimestampMixin, Base):
    """
    User record for authentication.

    Each user belongs to exactly one organization. Authorization is derived
    from the role assignments of the employee linked to this user.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )

    # Identity
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Authentication
    hashed_password: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Nullable for invited users who have not set a password",
    )

    # Status
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Login tracking
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
