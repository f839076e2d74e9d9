"""
Appraisal Pydantic Schemas

API request/response models for cycles, appraisals, workflow transitions
and appraiser assignment.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.models.appraisal import AppraisalPhase, AppraisalStatus, CycleStatus


def _reject_null(value):
    # Omit a field to leave it unchanged; these columns cannot be cleared
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


# ── Cycles ──


class CycleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    year: int = Field(..., ge=2000, le=2100)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_dates(self) -> "CycleCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class CycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    name: str
    year: int
    start_date: date
    end_date: date
    status: CycleStatus
    created_at: datetime


class CycleOpenResponse(BaseModel):
    cycle: CycleResponse
    appraisals_created: int


# ── Appraisals ──


class AppraisalCreate(BaseModel):
    employee_id: UUID
    cycle_id: UUID


class GoalRatingInput(BaseModel):
    """Existing goal (id set) to rate, or a new goal (no id) to add."""

    id: UUID | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    weight: int | None = Field(default=None, ge=0, le=100)
    rating: int | None = Field(default=None, ge=1, le=5)
    comment: str | None = None

    @field_validator("title", "weight", mode="before")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)

    @model_validator(mode="after")
    def _new_goal_needs_title(self) -> "GoalRatingInput":
        if self.id is None and not self.title:
            raise ValueError("title is required when adding a goal")
        return self


class CompetencyRatingInput(BaseModel):
    """Existing competency (id set) to rate, or a new one (no id) to add."""

    id: UUID | None = None
    competency: str | None = Field(default=None, min_length=1, max_length=255)
    rating: int | None = Field(default=None, ge=1, le=5)
    comment: str | None = None

    @field_validator("competency", mode="before")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)

    @model_validator(mode="after")
    def _new_competency_needs_name(self) -> "CompetencyRatingInput":
        if self.id is None and not self.competency:
            raise ValueError("competency is required when adding a competency")
        return self


class AppraisalUpdate(BaseModel):
    phase: AppraisalPhase | None = None
    final_rating: int | None = Field(default=None, ge=1, le=5)
    overall_feedback: str | None = None
    development_goals: str | None = None
    self_assessment_completed: bool | None = None
    goal_ratings: list[GoalRatingInput] = Field(default_factory=list)
    competency_ratings: list[CompetencyRatingInput] = Field(default_factory=list)

    @field_validator(
        "phase", "self_assessment_completed", "goal_ratings", "competency_ratings", mode="before"
    )
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)


class GoalRatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    weight: int
    rating: int | None
    comment: str | None


class CompetencyRatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    competency: str
    rating: int | None
    comment: str | None


class AppraisalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    employee_id: UUID
    cycle_id: UUID
    status: AppraisalStatus
    phase: AppraisalPhase
    final_rating: int | None
    overall_feedback: str | None
    development_goals: str | None
    self_assessment_completed: bool
    manager_review_completed: bool
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AccessResponse(BaseModel):
    can_view: bool
    can_edit: bool
    can_create: bool
    can_assign_appraisers: bool
    can_submit: bool
    reasons: list[str]


class AppraisalDetailResponse(AppraisalResponse):
    goal_ratings: list[GoalRatingResponse] = Field(default_factory=list)
    competency_ratings: list[CompetencyRatingResponse] = Field(default_factory=list)
    access: AccessResponse | None = None


class TransitionRequest(BaseModel):
    to_status: AppraisalStatus


class TransitionResponse(BaseModel):
    valid: bool
    reason: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    missing_items: list[str] = Field(default_factory=list)


class ReadinessResponse(BaseModel):
    can_submit: bool
    missing_items: list[str]


# ── Appraisers ──


class AppraiserAssignRequest(BaseModel):
    """Ordered appraiser ids; the first becomes primary."""

    appraiser_ids: list[UUID] = Field(..., min_length=1)
    admin_override: bool = Field(
        default=False,
        description="Allow non-hierarchical appraisers (admin or director only)",
    )


class AppraiserValidateRequest(BaseModel):
    appraiser_id: UUID
    employee_id: UUID
    admin_override: bool = False


class ValidationResponse(BaseModel):
    valid: bool
    reason: str | None = None


class AppraiserResponse(BaseModel):
    appraiser_id: UUID
    name: str
    role: str
    is_primary: bool
    position: int
    assigned_by: UUID | None
    assigned_at: datetime


class AppraisersResponse(BaseModel):
    appraisal_id: UUID
    has_primary: bool
    appraisers: list[AppraiserResponse]


class AppraiserRemovalResponse(BaseModel):
    appraisal_id: UUID
    appraiser_id: UUID
    was_primary: bool
    has_primary: bool
    primary_vacant: bool
    warning: str | None = None
