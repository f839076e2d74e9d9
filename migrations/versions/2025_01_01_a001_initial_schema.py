"""Initial schema: all Appraisely models

Revision ID: a001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _organization_fk() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Uuid(),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning organization (tenant boundary)",
    )


def upgrade() -> None:
    # === organizations ===
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, comment="Display name of the organization"),
        sa.Column("slug", sa.String(100), nullable=False, unique=True, comment="URL-safe unique identifier"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"])

    # === users ===
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    # === employees ===
    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("employee_number", sa.String(50), nullable=True),
        sa.Column("job_title", sa.String(255), nullable=True),
        sa.Column("department", sa.String(100), nullable=True),
        sa.Column("division", sa.String(100), nullable=True),
        sa.Column("hire_date", sa.Date(), nullable=True),
        sa.Column(
            "manager_id",
            sa.Uuid(),
            sa.ForeignKey("employees.id", ondelete="SET NULL"),
            nullable=True,
            comment="Direct manager (same organization only)",
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("modified_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'invited', 'active', 'inactive')",
            name="valid_employee_status",
        ),
        sa.CheckConstraint("manager_id IS NULL OR manager_id <> id", name="employee_not_own_manager"),
        sa.UniqueConstraint("organization_id", "employee_number", name="uq_employee_org_number"),
    )
    op.create_index("ix_employees_organization_id", "employees", ["organization_id"])
    op.create_index("ix_employees_org_status", "employees", ["organization_id", "status"])
    op.create_index("ix_employees_manager_id", "employees", ["manager_id"])
    op.create_index("ix_employees_user_id", "employees", ["user_id"])

    # === role_assignments ===
    op.create_table(
        "role_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("employee_id", sa.Uuid(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("granted_by", sa.Uuid(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_by", sa.Uuid(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "role IN ('admin', 'director', 'manager', 'supervisor', 'employee')",
            name="valid_role",
        ),
    )
    op.create_index("ix_role_assignments_organization_id", "role_assignments", ["organization_id"])
    op.create_index("ix_role_assignments_employee", "role_assignments", ["employee_id", "is_active"])
    op.create_index(
        "uq_role_assignments_active",
        "role_assignments",
        ["employee_id", "role"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # === appraisal_cycles ===
    op.create_table(
        "appraisal_cycles",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('draft', 'active', 'completed')", name="valid_cycle_status"),
        sa.CheckConstraint("end_date >= start_date", name="valid_cycle_dates"),
    )
    op.create_index("ix_appraisal_cycles_organization_id", "appraisal_cycles", ["organization_id"])
    op.create_index("ix_appraisal_cycles_org_status", "appraisal_cycles", ["organization_id", "status"])

    # === appraisals ===
    op.create_table(
        "appraisals",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("employee_id", sa.Uuid(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "cycle_id", sa.Uuid(), sa.ForeignKey("appraisal_cycles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("phase", sa.String(20), nullable=False, server_default="goal_setting"),
        sa.Column("final_rating", sa.Integer(), nullable=True),
        sa.Column("overall_feedback", sa.Text(), nullable=True),
        sa.Column("development_goals", sa.Text(), nullable=True),
        sa.Column("self_assessment_completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("manager_review_completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("modified_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('draft', 'in_progress', 'awaiting_secondary', 'completed')",
            name="valid_appraisal_status",
        ),
        sa.CheckConstraint("phase IN ('goal_setting', 'mid_term', 'year_end')", name="valid_appraisal_phase"),
        sa.CheckConstraint(
            "final_rating IS NULL OR (final_rating >= 1 AND final_rating <= 5)",
            name="valid_final_rating",
        ),
        sa.UniqueConstraint("employee_id", "cycle_id", name="uq_appraisal_employee_cycle"),
    )
    op.create_index("ix_appraisals_organization_id", "appraisals", ["organization_id"])
    op.create_index("ix_appraisals_org_status", "appraisals", ["organization_id", "status"])
    op.create_index("ix_appraisals_employee_id", "appraisals", ["employee_id"])

    # === appraisal_goal_ratings ===
    op.create_table(
        "appraisal_goal_ratings",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("appraisal_id", sa.Uuid(), sa.ForeignKey("appraisals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="valid_goal_rating"),
    )
    op.create_index("ix_appraisal_goal_ratings_organization_id", "appraisal_goal_ratings", ["organization_id"])
    op.create_index("ix_appraisal_goal_ratings_appraisal_id", "appraisal_goal_ratings", ["appraisal_id"])

    # === appraisal_competency_ratings ===
    op.create_table(
        "appraisal_competency_ratings",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("appraisal_id", sa.Uuid(), sa.ForeignKey("appraisals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competency", sa.String(255), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="valid_competency_rating"),
        sa.UniqueConstraint("appraisal_id", "competency", name="uq_competency_per_appraisal"),
    )
    op.create_index(
        "ix_appraisal_competency_ratings_organization_id", "appraisal_competency_ratings", ["organization_id"]
    )
    op.create_index(
        "ix_appraisal_competency_ratings_appraisal_id", "appraisal_competency_ratings", ["appraisal_id"]
    )

    # === appraiser_assignments ===
    op.create_table(
        "appraiser_assignments",
        sa.Column("id", sa.Uuid(), nullable=False),
        _organization_fk(),
        sa.Column("appraisal_id", sa.Uuid(), sa.ForeignKey("appraisals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("appraiser_id", sa.Uuid(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assigned_by", sa.Uuid(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("role IN ('primary', 'secondary')", name="valid_appraiser_role"),
        sa.UniqueConstraint("appraisal_id", "appraiser_id", name="uq_appraiser_per_appraisal"),
    )
    op.create_index("ix_appraiser_assignments_organization_id", "appraiser_assignments", ["organization_id"])
    op.create_index("ix_appraiser_assignments_appraiser", "appraiser_assignments", ["appraiser_id"])
    op.create_index(
        "uq_appraiser_assignments_primary",
        "appraiser_assignments",
        ["appraisal_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )

    # === audit_log_entries (append-only) ===
    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=True, comment="Real acting user"),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sequence_number", sa.Integer(), nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "sequence_number", name="uq_audit_org_sequence"),
    )
    op.create_index("ix_audit_log_org_created", "audit_log_entries", ["organization_id", "created_at"])
    op.create_index("ix_audit_log_event_type", "audit_log_entries", ["event_type"])
    op.create_index("ix_audit_log_user_id", "audit_log_entries", ["user_id"])


def downgrade() -> None:
    op.drop_table("audit_log_entries")
    op.drop_table("appraiser_assignments")
    op.drop_table("appraisal_competency_ratings")
    op.drop_table("appraisal_goal_ratings")
    op.drop_table("appraisals")
    op.drop_table("appraisal_cycles")
    op.drop_table("role_assignments")
    op.drop_table("employees")
    op.drop_table("users")
    op.drop_table("organizations")
