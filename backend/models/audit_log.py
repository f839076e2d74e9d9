"""
AuditLogEntry Model

Append-only audit trail with per-organization hash chain integrity.
The single source of truth for "what happened".
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, JSONType


class AuditLogEntry(Base):
    """
    Immutable audit event.

    Entries that belong to an organization are chained per organization:
    - sequence_number increases by one per entry
    - previous_hash links to the prior entry's entry_hash ("GENESIS" first)
    - content_hash covers the event payload for tamper detection

    This table is append-only. No UPDATE or DELETE is ever issued against it.
    """

    __tablename__ = "audit_log_entries"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    organization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Organization context (null for pre-authentication events)",
    )
    user_id: Mapped[UUID | None] = mapped_column(
        nullable=True,
        comment="Real acting user (never the mimicked identity)",
    )

    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Taxonomy key, e.g. appraisal.status_changed",
    )
    event_details: Mapped[dict] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
        comment="Opaque event payload",
    )
    success: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Hash chain
    sequence_number: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="Per-organization sequence (null when not chained)",
    )
    previous_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    entry_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 of previous_hash|content|timestamp",
    )
    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 of the canonical event content",
    )

    # Request context
    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )
    user_agent: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    # Assigned by the application so ordering follows wall-clock order of writes
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "sequence_number",
            name="uq_audit_org_sequence",
        ),
        Index("ix_audit_log_org_created", "organization_id", "created_at"),
        Index("ix_audit_log_event_type", "event_type"),
        Index("ix_audit_log_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.event_type} seq={self.sequence_number} org={self.organization_id}>"
