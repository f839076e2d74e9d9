"""
Integration tests for the appraisal workflow service: status transitions,
completion readiness, the awaiting-secondary lock and the audit events
each step leaves behind.
"""

import pytest
from sqlalchemy import select

from backend.models.appraisal import (
    Appraisal,
    AppraisalCompetencyRating,
    AppraisalGoalRating,
    AppraisalStatus,
)
from backend.models.audit_log import AuditLogEntry
from backend.services.appraisal_workflow import (
    AppraisalAccessDenied,
    AppraisalConflictError,
    AppraisalWorkflowService,
)


async def _event_types(db_session, organization_id) -> list[str]:
    result = await db_session.execute(
        select(AuditLogEntry.event_type)
        .where(AuditLogEntry.organization_id == organization_id)
        .order_by(AuditLogEntry.sequence_number)
    )
    return list(result.scalars().all())


async def _rate_everything(db_session, service, member, appraisal) -> None:
    goals = await db_session.execute(
        select(AppraisalGoalRating.id).where(AppraisalGoalRating.appraisal_id == appraisal.id)
    )
    competencies = await db_session.execute(
        select(AppraisalCompetencyRating.id).where(AppraisalCompetencyRating.appraisal_id == appraisal.id)
    )
    await service.update_appraisal(
        member.identity,
        appraisal.id,
        {},
        goal_ratings=[{"id": goal_id, "rating": 4} for goal_id in goals.scalars().all()],
        competency_ratings=[{"id": item_id, "rating": 3} for item_id in competencies.scalars().all()],
    )


async def _set_status(db_session, appraisal, status: AppraisalStatus) -> None:
    appraisal.status = status.value
    await db_session.commit()


# ---------------------------------------------------------------------------
# Completion readiness
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unrated_items_block_completion(db_session, people, appraisal):
    service = AppraisalWorkflowService(db_session)

    result = await service.transition(people["supervisor"].identity, appraisal.id, "completed")

    assert result.valid is False
    assert result.reason == "Appraisal has unrated items"
    assert result.missing_items == [
        "Goal rating missing: Ship the routing overhaul",
        "Competency rating missing: Communication",
    ]
    stored = await db_session.get(Appraisal, appraisal.id)
    assert stored.status == AppraisalStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_readiness_reports_missing_items(db_session, people, appraisal):
    readiness = await AppraisalWorkflowService(db_session).completion_readiness(
        people["manager"].identity, appraisal.id
    )
    assert readiness.can_submit is False
    assert len(readiness.missing_items) == 2


@pytest.mark.asyncio
async def test_primary_completes_once_everything_is_rated(db_session, org, people, appraisal):
    service = AppraisalWorkflowService(db_session)
    supervisor = people["supervisor"]

    await _rate_everything(db_session, service, supervisor, appraisal)
    result = await service.transition(supervisor.identity, appraisal.id, AppraisalStatus.COMPLETED)

    assert result.valid is True
    assert result.from_status == "in_progress"
    assert result.to_status == "completed"

    stored = await db_session.get(Appraisal, appraisal.id)
    assert stored.status == AppraisalStatus.COMPLETED.value
    assert stored.completed_at is not None
    assert stored.manager_review_completed is True

    events = await _event_types(db_session, org.id)
    assert "appraisal.updated" in events
    assert events[-1] == "appraisal.completed"


@pytest.mark.asyncio
async def test_new_unrated_goal_blocks_completion_again(db_session, people, appraisal):
    service = AppraisalWorkflowService(db_session)
    supervisor = people["supervisor"]
    await _rate_everything(db_session, service, supervisor, appraisal)

    await service.update_appraisal(
        supervisor.identity, appraisal.id, {}, goal_ratings=[{"title": "Mentor a new hire", "weight": 20}]
    )
    result = await service.transition(supervisor.identity, appraisal.id, "completed")

    assert result.valid is False
    assert result.missing_items == ["Goal rating missing: Mentor a new hire"]


# ---------------------------------------------------------------------------
# Transition table and role gate through the service
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_primary_hands_over_to_secondary(db_session, org, people, appraisal):
    result = await AppraisalWorkflowService(db_session).transition(
        people["supervisor"].identity, appraisal.id, "awaiting_secondary"
    )

    assert result.valid is True
    stored = await db_session.get(Appraisal, appraisal.id)
    assert stored.status == AppraisalStatus.AWAITING_SECONDARY.value
    assert "appraisal.status_changed" in await _event_types(db_session, org.id)


@pytest.mark.asyncio
async def test_unlisted_transition_returns_reason(db_session, people, appraisal):
    await _set_status(db_session, appraisal, AppraisalStatus.DRAFT)

    result = await AppraisalWorkflowService(db_session).transition(
        people["admin"].identity, appraisal.id, "completed"
    )

    assert result.valid is False
    assert result.reason == "Cannot transition from draft to completed"
    stored = await db_session.get(Appraisal, appraisal.id)
    assert stored.status == AppraisalStatus.DRAFT.value


@pytest.mark.asyncio
async def test_completed_appraisal_cannot_be_reopened(db_session, org, people, appraisal):
    await _set_status(db_session, appraisal, AppraisalStatus.COMPLETED)

    with pytest.raises(AppraisalAccessDenied) as exc_info:
        await AppraisalWorkflowService(db_session).transition(
            people["admin"].identity, appraisal.id, "in_progress"
        )

    assert "Cannot edit completed appraisals" in exc_info.value.reasons
    assert "unauthorized_access_attempt" in await _event_types(db_session, org.id)


@pytest.mark.asyncio
async def test_employee_cannot_move_own_appraisal(db_session, people, appraisal):
    with pytest.raises(AppraisalAccessDenied):
        await AppraisalWorkflowService(db_session).transition(
            people["employee"].identity, appraisal.id, "awaiting_secondary"
        )


@pytest.mark.asyncio
async def test_non_participant_cannot_transition(db_session, people, appraisal):
    with pytest.raises(AppraisalAccessDenied) as exc_info:
        await AppraisalWorkflowService(db_session).transition(
            people["peer"].identity, appraisal.id, "awaiting_secondary"
        )
    assert "Not a participant in this appraisal" in exc_info.value.reasons


# ---------------------------------------------------------------------------
# Awaiting secondary review
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_primary_is_locked_out_while_awaiting_secondary(db_session, people, appraisal):
    await _set_status(db_session, appraisal, AppraisalStatus.AWAITING_SECONDARY)

    with pytest.raises(AppraisalAccessDenied) as exc_info:
        await AppraisalWorkflowService(db_session).update_appraisal(
            people["supervisor"].identity, appraisal.id, {"overall_feedback": "Late edit"}
        )

    assert "Appraisal is awaiting secondary appraiser review" in exc_info.value.reasons


@pytest.mark.asyncio
async def test_secondary_edits_and_completes_while_awaiting(db_session, org, people, appraisal):
    await _set_status(db_session, appraisal, AppraisalStatus.AWAITING_SECONDARY)
    service = AppraisalWorkflowService(db_session)
    secondary = people["manager"]

    updated = await service.update_appraisal(
        secondary.identity, appraisal.id, {"overall_feedback": "Consistently reliable"}
    )
    assert updated.overall_feedback == "Consistently reliable"

    await _rate_everything(db_session, service, secondary, appraisal)
    result = await service.transition(secondary.identity, appraisal.id, "completed")

    assert result.valid is True
    assert (await _event_types(db_session, org.id))[-1] == "appraisal.completed"


# ---------------------------------------------------------------------------
# Updates, creation, listing, deletion
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_final_rating_is_graded_event(db_session, org, people, appraisal):
    await AppraisalWorkflowService(db_session).update_appraisal(
        people["supervisor"].identity, appraisal.id, {"final_rating": 4}
    )

    events = await _event_types(db_session, org.id)
    assert events[-2:] == ["appraisal.updated", "appraisal.graded"]


@pytest.mark.asyncio
async def test_update_without_changes_writes_nothing(db_session, org, people, appraisal):
    await AppraisalWorkflowService(db_session).update_appraisal(
        people["supervisor"].identity, appraisal.id, {}
    )
    assert await _event_types(db_session, org.id) == []


@pytest.mark.asyncio
async def test_manager_creates_for_direct_report(db_session, org, people, cycle):
    created = await AppraisalWorkflowService(db_session).create_appraisal(
        people["manager"].identity, people["supervisor"].employee.id, cycle.id
    )

    assert created.status == AppraisalStatus.DRAFT.value
    assert created.created_by == people["manager"].user.id
    assert "appraisal.created" in await _event_types(db_session, org.id)


@pytest.mark.asyncio
async def test_manager_cannot_create_for_indirect_report(db_session, people, cycle):
    with pytest.raises(AppraisalAccessDenied):
        await AppraisalWorkflowService(db_session).create_appraisal(
            people["manager"].identity, people["peer"].employee.id, cycle.id
        )


@pytest.mark.asyncio
async def test_second_appraisal_in_cycle_conflicts(db_session, people, appraisal, cycle):
    with pytest.raises(AppraisalConflictError):
        await AppraisalWorkflowService(db_session).create_appraisal(
            people["admin"].identity, people["employee"].employee.id, cycle.id
        )


@pytest.mark.asyncio
async def test_listing_is_limited_for_non_managers(db_session, people, appraisal):
    service = AppraisalWorkflowService(db_session)

    assert [a.id for a in await service.list_appraisals(people["employee"].identity)] == [appraisal.id]
    assert [a.id for a in await service.list_appraisals(people["supervisor"].identity)] == [appraisal.id]
    assert await service.list_appraisals(people["peer"].identity) == []
    assert [a.id for a in await service.list_appraisals(people["other_manager"].identity)] == [appraisal.id]


@pytest.mark.asyncio
async def test_only_admins_hard_delete(db_session, org, people, appraisal):
    service = AppraisalWorkflowService(db_session)

    with pytest.raises(AppraisalAccessDenied):
        await service.hard_delete(people["director"].identity, appraisal.id)

    await _set_status(db_session, appraisal, AppraisalStatus.COMPLETED)
    await service.hard_delete(people["admin"].identity, appraisal.id)

    remaining = await db_session.execute(select(Appraisal).where(Appraisal.id == appraisal.id))
    assert remaining.scalar_one_or_none() is None
    assert (await _event_types(db_session, org.id))[-1] == "appraisal.deleted"
