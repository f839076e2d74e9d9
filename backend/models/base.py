"""
Base Model Classes and Mixins

Provides foundational patterns for all Appraisely database models.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """
    Declarative base for all Appraisely models.

    Provides common type annotations and metadata configuration.
    """

    type_annotation_map: dict[type, Any] = {}


class TimestampMixin:
    """
    Mixin for automatic created_at and updated_at timestamps.

    Automatically sets created_at on insert and updated_at on every update.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when record was created",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Timestamp when record was last updated",
    )


class TenantScopedMixin:
    """
    Mixin for rows that belong to exactly one organization.

    Every tenant-scoped table carries a non-null organization_id. The tenant
    guard and the isolation verifier discover scoped models through this mixin.
    """

    @declared_attr
    def organization_id(cls) -> Mapped[UUID]:
        return mapped_column(
            ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
            comment="Owning organization (tenant boundary)",
        )


class AuditMixin:
    """
    Mixin for tracking who created and last modified a record.
    """

    created_by: Mapped[UUID | None] = mapped_column(
        nullable=True,
        comment="User ID who created this record",
    )
    modified_by: Mapped[UUID | None] = mapped_column(
        nullable=True,
        comment="User ID who last modified this record",
    )
