"""
Appraisal Workflow State Machine

Governs the appraisal lifecycle:

    draft → in_progress → awaiting_secondary → completed
                       ↘───────────────────────↗

The allowed transitions are plain data (ALLOWED_TRANSITIONS) checked with a
single lookup. Access rules (who may view, edit, assign or submit) are
evaluated here as well, so a completed appraisal or one awaiting secondary
review is locked at the access-check layer and not only in the UI.

Invalid transitions and incomplete ratings are expected user errors: they
come back as structured results. Access denials raise AppraisalAccessDenied
and are always audited.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any
from uuid import UUID

from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail.ledger import AuditLedger
from backend.middleware.rbac import CurrentUser, Role
from backend.models.appraisal import (
    Appraisal,
    AppraisalCompetencyRating,
    AppraisalCycle,
    AppraisalGoalRating,
    AppraisalStatus,
    AppraiserAssignment,
)
from backend.models.employee import Employee
from backend.services.tenant_guard import TenantGuard

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Mapping[AppraisalStatus, frozenset[AppraisalStatus]] = MappingProxyType({
    AppraisalStatus.DRAFT: frozenset({AppraisalStatus.IN_PROGRESS}),
    AppraisalStatus.IN_PROGRESS: frozenset({
        AppraisalStatus.AWAITING_SECONDARY,
        AppraisalStatus.COMPLETED,
    }),
    AppraisalStatus.AWAITING_SECONDARY: frozenset({AppraisalStatus.COMPLETED}),
    AppraisalStatus.COMPLETED: frozenset(),
})

COMPLETION_ROLE_REASON = (
    "Only managers and above or the primary appraiser can mark appraisals as completed"
)


class AppraisalAccessDenied(Exception):
    """Caller may not perform the requested operation on this appraisal."""

    def __init__(self, operation: str, reasons: list[str] | None = None):
        self.operation = operation
        self.reasons = reasons or []
        super().__init__(f"Access denied for {operation}: {'; '.join(self.reasons)}")


class AppraisalConflictError(Exception):
    """Requested change conflicts with existing data."""


class TransitionResult(BaseModel):
    """Outcome of a requested status change."""

    valid: bool
    reason: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    missing_items: list[str] = Field(default_factory=list)


class CompletionReadiness(BaseModel):
    """Whether every rating item carries a rating."""

    can_submit: bool
    missing_items: list[str] = Field(default_factory=list)


class AppraisalAccess(BaseModel):
    """What the caller may do with one appraisal."""

    can_view: bool = False
    can_edit: bool = False
    can_create: bool = False
    can_assign_appraisers: bool = False
    can_submit: bool = False
    reasons: list[str] = Field(default_factory=list)


# ── Pure rules ───────────────────────────────────────────────────────


def is_transition_allowed(current: AppraisalStatus | str, new: AppraisalStatus | str) -> bool:
    try:
        return AppraisalStatus(new) in ALLOWED_TRANSITIONS[AppraisalStatus(current)]
    except (KeyError, ValueError):
        return False


def validate_status_transition(
    current: AppraisalStatus | str,
    new: AppraisalStatus | str,
    user: CurrentUser,
    is_primary_appraiser: bool = False,
) -> TransitionResult:
    """
    Check a status change against the transition table and the role gate.

    Reaching completed requires rank >= manager or being the registered
    primary appraiser.
    """
    current_value = getattr(current, "value", current)
    new_value = getattr(new, "value", new)

    if not is_transition_allowed(current, new):
        return TransitionResult(
            valid=False,
            reason=f"Cannot transition from {current_value} to {new_value}",
            from_status=current_value,
            to_status=new_value,
        )

    if AppraisalStatus(new) == AppraisalStatus.COMPLETED:
        if not (user.min_role_satisfied(Role.MANAGER) or is_primary_appraiser):
            return TransitionResult(
                valid=False,
                reason=COMPLETION_ROLE_REASON,
                from_status=current_value,
                to_status=new_value,
            )

    return TransitionResult(valid=True, from_status=current_value, to_status=new_value)


def validate_appraisal_completion(
    goal_ratings: Iterable[AppraisalGoalRating],
    competency_ratings: Iterable[AppraisalCompetencyRating],
) -> CompletionReadiness:
    """Enumerate every goal and competency still lacking a rating."""
    missing = [
        f"Goal rating missing: {goal.title}"
        for goal in goal_ratings
        if goal.rating is None
    ]
    missing.extend(
        f"Competency rating missing: {item.competency}"
        for item in competency_ratings
        if item.rating is None
    )
    return CompletionReadiness(can_submit=not missing, missing_items=missing)


def evaluate_appraisal_access(
    user: CurrentUser,
    appraisal: Appraisal,
    employee: Employee,
    assignments: Iterable[AppraiserAssignment],
) -> AppraisalAccess:
    """
    Resolve view/edit/create/assign/submit rights for one appraisal.

    - admin/director: full access
    - manager: view; manage only direct reports (one level)
    - assigned appraiser: view and edit; primary may submit
    - own appraisal: view only
    - completed: read-only for everyone
    - awaiting_secondary: only secondary appraisers (or admin/director) edit
    """
    reasons: list[str] = []
    status = AppraisalStatus(appraisal.status)

    own = user.employee_id is not None and user.employee_id == appraisal.employee_id
    mine = None
    if user.employee_id is not None:
        mine = next((a for a in assignments if a.appraiser_id == user.employee_id), None)
    is_primary = mine is not None and mine.is_primary
    is_secondary = mine is not None and not mine.is_primary

    senior = user.min_role_satisfied(Role.DIRECTOR)
    manager = user.min_role_satisfied(Role.MANAGER) and not senior
    direct_report = (
        user.employee_id is not None and employee.manager_id == user.employee_id
    )
    manages = senior or (manager and direct_report)

    access = AppraisalAccess(
        can_view=senior or manager or mine is not None or own,
        can_edit=manages or mine is not None,
        can_create=manages,
        can_assign_appraisers=manages,
        can_submit=manages or is_primary,
    )

    if manager and not direct_report and mine is None:
        reasons.append("Can only manage appraisals for direct reports")

    if own:
        access.can_edit = False
        access.can_submit = False
        access.can_create = False
        access.can_assign_appraisers = False
        reasons.append("Employees cannot edit their own appraisals")

    if status == AppraisalStatus.COMPLETED:
        access.can_edit = False
        access.can_submit = False
        access.can_assign_appraisers = False
        reasons.append("Cannot edit completed appraisals")
    elif status == AppraisalStatus.AWAITING_SECONDARY and not senior:
        if not is_secondary:
            access.can_edit = False
            access.can_submit = False
            reasons.append("Appraisal is awaiting secondary appraiser review")
        else:
            # Completion still needs manager rank; a secondary is never primary
            access.can_submit = access.can_edit and user.min_role_satisfied(Role.MANAGER)

    if not access.can_view:
        reasons.append("Not a participant in this appraisal")

    access.reasons = reasons
    return access


# ── Service ──────────────────────────────────────────────────────────


class AppraisalWorkflowService:
    """
    Appraisal reads and writes behind access checks, tenant scoping and auditing.
    """

    def __init__(self, db_session: AsyncSession, request: Request | None = None):
        self.db = db_session
        self.request = request

    def _guard(self, user: CurrentUser) -> TenantGuard:
        return TenantGuard(self.db, user, self.request)

    async def load_context(
        self,
        user: CurrentUser,
        appraisal_id: UUID,
        operation: str,
    ) -> tuple[Appraisal, Employee, list[AppraiserAssignment], AppraisalAccess]:
        """Scoped appraisal plus everything needed to evaluate access."""
        guard = self._guard(user)
        appraisal = await guard.get_scoped_or_404(Appraisal, appraisal_id, operation)
        employee = await guard.get_scoped_or_404(Employee, appraisal.employee_id, operation)
        result = await self.db.execute(
            guard.select(AppraiserAssignment).where(
                AppraiserAssignment.appraisal_id == appraisal.id
            )
        )
        assignments = list(result.scalars().all())
        access = evaluate_appraisal_access(user, appraisal, employee, assignments)
        return appraisal, employee, assignments, access

    async def deny(
        self,
        user: CurrentUser,
        operation: str,
        reasons: list[str],
        details: dict[str, Any] | None = None,
    ) -> None:
        """Audit an access denial and raise."""
        logger.warning(f"Appraisal access denied for user {user.id}: {operation} {reasons}")
        await AuditLedger(self.db).record_for_user(
            user,
            "unauthorized_access_attempt",
            {"operation": operation, "reasons": reasons, **(details or {})},
            success=False,
            request=self.request,
        )
        raise AppraisalAccessDenied(operation, reasons)

    async def _audit(self, user: CurrentUser, event_type: str, details: dict[str, Any]) -> None:
        await AuditLedger(self.db).record_for_user(
            user, event_type, details, request=self.request
        )

    # ── Reads ──

    async def get_appraisal(self, user: CurrentUser, appraisal_id: UUID) -> tuple[Appraisal, AppraisalAccess]:
        appraisal, _, _, access = await self.load_context(user, appraisal_id, "appraisal.view")
        if not access.can_view:
            await self.deny(user, "appraisal.view", access.reasons, _object(appraisal))
        return appraisal, access

    async def get_access(self, user: CurrentUser, appraisal_id: UUID) -> AppraisalAccess:
        _, _, _, access = await self.load_context(user, appraisal_id, "appraisal.access")
        return access

    async def list_appraisals(
        self,
        user: CurrentUser,
        status: AppraisalStatus | None = None,
        cycle_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Appraisal]:
        """Appraisals visible to the caller within their organization."""
        guard = self._guard(user)
        query = guard.select(Appraisal)
        if status is not None:
            query = query.where(Appraisal.status == status.value)
        if cycle_id is not None:
            query = query.where(Appraisal.cycle_id == cycle_id)

        if not user.min_role_satisfied(Role.MANAGER):
            participant_ids = select(AppraiserAssignment.appraisal_id).where(
                AppraiserAssignment.organization_id == user.organization_id,
                AppraiserAssignment.appraiser_id == user.employee_id,
            )
            query = query.where(
                (Appraisal.employee_id == user.employee_id)
                | Appraisal.id.in_(participant_ids)
            )

        query = query.order_by(Appraisal.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_rating_items(
        self,
        user: CurrentUser,
        appraisal: Appraisal,
    ) -> tuple[list[AppraisalGoalRating], list[AppraisalCompetencyRating]]:
        guard = self._guard(user)
        goals = await self.db.execute(
            guard.select(AppraisalGoalRating)
            .where(AppraisalGoalRating.appraisal_id == appraisal.id)
            .order_by(AppraisalGoalRating.created_at, AppraisalGoalRating.title)
        )
        competencies = await self.db.execute(
            guard.select(AppraisalCompetencyRating)
            .where(AppraisalCompetencyRating.appraisal_id == appraisal.id)
            .order_by(AppraisalCompetencyRating.competency)
        )
        return list(goals.scalars().all()), list(competencies.scalars().all())

    async def completion_readiness(self, user: CurrentUser, appraisal_id: UUID) -> CompletionReadiness:
        appraisal, _ = await self.get_appraisal(user, appraisal_id)
        goals, competencies = await self.get_rating_items(user, appraisal)
        return validate_appraisal_completion(goals, competencies)

    # ── Writes ──

    async def create_appraisal(
        self,
        user: CurrentUser,
        employee_id: UUID,
        cycle_id: UUID,
    ) -> Appraisal:
        guard = self._guard(user)
        employee = await guard.get_scoped_or_404(Employee, employee_id, "appraisal.create")
        cycle = await guard.get_scoped_or_404(AppraisalCycle, cycle_id, "appraisal.create")

        draft = Appraisal(
            organization_id=user.organization_id,
            employee_id=employee.id,
            cycle_id=cycle.id,
            status=AppraisalStatus.DRAFT.value,
        )
        access = evaluate_appraisal_access(user, draft, employee, [])
        if not access.can_create:
            await self.deny(
                user, "appraisal.create", access.reasons,
                {"object_type": "employee", "object_id": str(employee.id)},
            )

        existing = await self.db.execute(
            guard.select(Appraisal).where(
                Appraisal.employee_id == employee.id,
                Appraisal.cycle_id == cycle.id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AppraisalConflictError("Employee already has an appraisal in this cycle")

        draft.created_by = user.id
        self.db.add(draft)
        await self.db.flush()
        await self.db.commit()

        await self._audit(user, "appraisal.created", {
            **_object(draft),
            "object_name": f"{employee.full_name} - {cycle.name}",
            "employee_id": str(employee.id),
            "cycle_id": str(cycle.id),
        })
        return draft

    async def update_appraisal(
        self,
        user: CurrentUser,
        appraisal_id: UUID,
        changes: dict[str, Any],
        goal_ratings: list[dict[str, Any]] | None = None,
        competency_ratings: list[dict[str, Any]] | None = None,
    ) -> Appraisal:
        """
        Apply field and rating changes. Requires edit access.

        Rating entries with an id update that item; entries without one add
        a new item to the appraisal.
        """
        appraisal, _, _, access = await self.load_context(user, appraisal_id, "appraisal.update")
        if not access.can_edit:
            await self.deny(user, "appraisal.update", access.reasons, _object(appraisal))

        # Every referenced rating item is resolved before anything is changed;
        # a cross-organization rejection commits its audit entry.
        guard = self._guard(user)
        goal_items = await self._resolve_rating_items(guard, appraisal, AppraisalGoalRating, goal_ratings)
        competency_items = await self._resolve_rating_items(
            guard, appraisal, AppraisalCompetencyRating, competency_ratings
        )

        updated_fields: list[str] = []
        previous_rating = appraisal.final_rating
        for field, value in changes.items():
            if getattr(appraisal, field) != value:
                setattr(appraisal, field, value)
                updated_fields.append(field)

        for item, row in goal_items:
            if self._apply_rating(appraisal, AppraisalGoalRating, item, row, "title"):
                updated_fields.append("goal_ratings")
        for item, row in competency_items:
            if self._apply_rating(appraisal, AppraisalCompetencyRating, item, row, "competency"):
                updated_fields.append("competency_ratings")

        updated_fields = list(dict.fromkeys(updated_fields))
        if not updated_fields:
            return appraisal

        appraisal.modified_by = user.id
        await self.db.flush()
        await self.db.commit()

        await self._audit(user, "appraisal.updated", {**_object(appraisal), "updated_fields": updated_fields})
        if "final_rating" in updated_fields:
            await self._audit(user, "appraisal.graded", {
                **_object(appraisal),
                "final_rating": appraisal.final_rating,
                "previous_rating": previous_rating,
            })
        return appraisal

    async def _resolve_rating_items(
        self,
        guard: TenantGuard,
        appraisal: Appraisal,
        model: type[AppraisalGoalRating] | type[AppraisalCompetencyRating],
        items: list[dict[str, Any]] | None,
    ) -> list[tuple[dict[str, Any], AppraisalGoalRating | AppraisalCompetencyRating | None]]:
        """Pair each rating entry with its existing row, or None for a new item."""
        resolved = []
        for item in items or []:
            item_id = item.get("id")
            if item_id is None:
                resolved.append((item, None))
                continue
            row = await guard.get_scoped_or_404(model, item_id, "appraisal.update")
            if row.appraisal_id != appraisal.id:
                raise AppraisalConflictError("Rating item belongs to a different appraisal")
            resolved.append((item, row))
        return resolved

    def _apply_rating(
        self,
        appraisal: Appraisal,
        model: type[AppraisalGoalRating] | type[AppraisalCompetencyRating],
        item: dict[str, Any],
        row: AppraisalGoalRating | AppraisalCompetencyRating | None,
        label_field: str,
    ) -> bool:
        if row is None:
            values = {k: v for k, v in item.items() if k != "id" and v is not None}
            self.db.add(model(
                organization_id=appraisal.organization_id,
                appraisal_id=appraisal.id,
                **values,
            ))
            return True

        changed = False
        for field in ("rating", "comment", label_field, "weight"):
            if field in item and hasattr(row, field) and getattr(row, field) != item[field]:
                setattr(row, field, item[field])
                changed = True
        return changed

    async def transition(
        self,
        user: CurrentUser,
        appraisal_id: UUID,
        new_status: AppraisalStatus | str,
    ) -> TransitionResult:
        """
        Move an appraisal to a new status.

        Order: access check, transition table and role gate, completion
        readiness, write, audit.
        """
        appraisal, _, assignments, access = await self.load_context(
            user, appraisal_id, "appraisal.transition"
        )
        if not access.can_edit:
            await self.deny(user, "appraisal.transition", access.reasons, {
                **_object(appraisal),
                "from_status": appraisal.status,
                "to_status": getattr(new_status, "value", new_status),
            })

        is_primary = any(
            a.is_primary and a.appraiser_id == user.employee_id for a in assignments
        ) if user.employee_id else False

        result = validate_status_transition(appraisal.status, new_status, user, is_primary)
        if not result.valid:
            logger.info(f"Rejected transition for appraisal {appraisal.id}: {result.reason}")
            return result

        target = AppraisalStatus(new_status)
        if target == AppraisalStatus.COMPLETED:
            goals, competencies = await self.get_rating_items(user, appraisal)
            readiness = validate_appraisal_completion(goals, competencies)
            if not readiness.can_submit:
                return TransitionResult(
                    valid=False,
                    reason="Appraisal has unrated items",
                    from_status=result.from_status,
                    to_status=result.to_status,
                    missing_items=readiness.missing_items,
                )
            appraisal.completed_at = datetime.now(timezone.utc)
            appraisal.manager_review_completed = True

        previous = appraisal.status
        appraisal.status = target.value
        appraisal.modified_by = user.id
        await self.db.flush()
        await self.db.commit()

        event = "appraisal.completed" if target == AppraisalStatus.COMPLETED else "appraisal.status_changed"
        await self._audit(user, event, {
            **_object(appraisal),
            "from_status": previous,
            "to_status": target.value,
        })
        return result

    async def hard_delete(self, user: CurrentUser, appraisal_id: UUID) -> None:
        """Admin-only permanent removal, including completed appraisals."""
        guard = self._guard(user)
        appraisal = await guard.get_scoped_or_404(Appraisal, appraisal_id, "appraisal.delete")
        if not user.has_role(Role.ADMIN):
            await self.deny(user, "appraisal.delete", ["Only administrators can delete appraisals"], _object(appraisal))

        details = {
            **_object(appraisal),
            "employee_id": str(appraisal.employee_id),
            "cycle_id": str(appraisal.cycle_id),
            "status": appraisal.status,
        }
        await self.db.delete(appraisal)
        await self.db.flush()
        await self.db.commit()

        logger.warning(f"Appraisal {appraisal_id} hard-deleted by user {user.id}")
        await self._audit(user, "appraisal.deleted", details)


def _object(appraisal: Appraisal) -> dict[str, Any]:
    return {"object_type": "appraisal", "object_id": str(appraisal.id)}
