"""
Appraisal Models

Appraisal cycles, appraisals, their rating items and appraiser assignments.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import AuditMixin, Base, TenantScopedMixin, TimestampMixin


class CycleStatus(str, Enum):
    """Appraisal cycle lifecycle."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"


class AppraisalStatus(str, Enum):
    """Appraisal workflow states."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    AWAITING_SECONDARY = "awaiting_secondary"
    COMPLETED = "completed"


class AppraisalPhase(str, Enum):
    """Review phase within a cycle."""

    GOAL_SETTING = "goal_setting"
    MID_TERM = "mid_term"
    YEAR_END = "year_end"


class AppraiserRole(str, Enum):
    """Reviewer tier on an appraisal."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class AppraisalCycle(TenantScopedMixin, TimestampMixin, Base):
    """
    A review period for an organization.

    Opening a cycle creates one draft appraisal per active employee.
    """

    __tablename__ = "appraisal_cycles"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(
        nullable=False,
    )
    end_date: Mapped[date] = mapped_column(
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=CycleStatus.DRAFT.value,
        nullable=False,
        comment="Cycle status: draft|active|completed",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'completed')",
            name="valid_cycle_status",
        ),
        CheckConstraint(
            "end_date >= start_date",
            name="valid_cycle_dates",
        ),
        Index("ix_appraisal_cycles_org_status", "organization_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<AppraisalCycle {self.name} ({self.status})>"


class Appraisal(TenantScopedMixin, TimestampMixin, AuditMixin, Base):
    """
    One employee's appraisal within a cycle.

    Status changes only through the workflow state machine. A completed
    appraisal is read-only and can only be removed by an admin hard delete.
    """

    __tablename__ = "appraisals"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    cycle_id: Mapped[UUID] = mapped_column(
        ForeignKey("appraisal_cycles.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(30),
        default=AppraisalStatus.DRAFT.value,
        nullable=False,
        comment="Status: draft|in_progress|awaiting_secondary|completed",
    )
    phase: Mapped[str] = mapped_column(
        String(20),
        default=AppraisalPhase.GOAL_SETTING.value,
        nullable=False,
        comment="Phase: goal_setting|mid_term|year_end",
    )

    # Outcome
    final_rating: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="Overall rating on a 1-5 scale",
    )
    overall_feedback: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    development_goals: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Completion flags
    self_assessment_completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    manager_review_completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'in_progress', 'awaiting_secondary', 'completed')",
            name="valid_appraisal_status",
        ),
        CheckConstraint(
            "phase IN ('goal_setting', 'mid_term', 'year_end')",
            name="valid_appraisal_phase",
        ),
        CheckConstraint(
            "final_rating IS NULL OR (final_rating >= 1 AND final_rating <= 5)",
            name="valid_final_rating",
        ),
        UniqueConstraint(
            "employee_id",
            "cycle_id",
            name="uq_appraisal_employee_cycle",
        ),
        Index("ix_appraisals_org_status", "organization_id", "status"),
        Index("ix_appraisals_employee_id", "employee_id"),
    )

    def __repr__(self) -> str:
        return f"<Appraisal employee={self.employee_id} ({self.status})>"


class AppraisalGoalRating(TenantScopedMixin, TimestampMixin, Base):
    """A goal attached to an appraisal, rated by the appraiser."""

    __tablename__ = "appraisal_goal_ratings"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    appraisal_id: Mapped[UUID] = mapped_column(
        ForeignKey("appraisals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    weight: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Relative weight in percent",
    )
    rating: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="1-5 rating; null until rated",
    )
    comment: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="valid_goal_rating",
        ),
    )


class AppraisalCompetencyRating(TenantScopedMixin, TimestampMixin, Base):
    """A competency scored on an appraisal."""

    __tablename__ = "appraisal_competency_ratings"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    appraisal_id: Mapped[UUID] = mapped_column(
        ForeignKey("appraisals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    rating: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="1-5 rating; null until rated",
    )
    comment: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="valid_competency_rating",
        ),
        UniqueConstraint(
            "appraisal_id",
            "competency",
            name="uq_competency_per_appraisal",
        ),
    )


class AppraiserAssignment(TenantScopedMixin, Base):
    """
    Reviewer attached to an appraisal.

    Exactly one primary per appraisal while assigned, backed by a partial
    unique index. The set is replaced as a whole inside one transaction.
    """

    __tablename__ = "appraiser_assignments"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    appraisal_id: Mapped[UUID] = mapped_column(
        ForeignKey("appraisals.id", ondelete="CASCADE"),
        nullable=False,
    )
    appraiser_id: Mapped[UUID] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Reviewer tier: primary|secondary",
    )
    is_primary: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    position: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Order in the assigned list (0 is primary)",
    )
    assigned_by: Mapped[UUID | None] = mapped_column(
        nullable=True,
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('primary', 'secondary')",
            name="valid_appraiser_role",
        ),
        UniqueConstraint(
            "appraisal_id",
            "appraiser_id",
            name="uq_appraiser_per_appraisal",
        ),
        Index(
            "uq_appraiser_assignments_primary",
            "appraisal_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary"),
        ),
        Index("ix_appraiser_assignments_appraiser", "appraiser_id"),
    )

    def __repr__(self) -> str:
        return f"<AppraiserAssignment {self.role} appraiser={self.appraiser_id}>"
