"""
Organization Model

Multi-tenant root entity for Appraisely.
Every employee, role assignment, appraisal and audit entry is scoped to an organization.
"""

from uuid import UUID, uuid4

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, JSONType, TimestampMixin


class Organization(TimestampMixin, Base):
    """
    Multi-tenant organization record.

    The unit of data isolation. No query may span organizations and no
    foreign key may reference a row belonging to another organization.
    """

    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name of the organization",
    )
    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="URL-safe unique identifier",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Flexible settings (rating scale labels, review reminders, etc.)
    settings: Mapped[dict] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
        comment="Organization-specific configuration",
    )

    __table_args__ = (
        Index("ix_organizations_is_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Organization {self.name} ({self.slug})>"
