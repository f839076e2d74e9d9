"""
Multi-Tenant Data Isolation Tests

Verifies that members of one organization cannot read, reference or
modify another organization's data, through the API or the services,
and that every attempt is audited against the caller's organization.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models.appraisal import Appraisal, AppraisalCycle, AppraisalGoalRating
from backend.models.audit_log import AuditLogEntry
from backend.models.employee import Employee
from backend.models.role_assignment import RoleAssignment
from backend.services.appraisal_workflow import AppraisalConflictError, AppraisalWorkflowService
from backend.services.tenant_guard import (
    TENANT_SCOPED_MODELS,
    TenantGuard,
    TenantIsolationVerifier,
    TenantViolationError,
    assert_same_organization,
    tenant_select,
)
from tests.factories import make_appraisal, make_cycle, make_goal


@pytest_asyncio.fixture
async def foreign_appraisal(db_session: AsyncSession, other_org, outsiders) -> Appraisal:
    """An appraisal owned by the second organization."""
    cycle = make_cycle(other_org.id, name="Contoso FY2025")
    db_session.add(cycle)
    await db_session.flush()
    record = make_appraisal(other_org.id, outsiders["employee"].employee.id, cycle.id)
    db_session.add(record)
    await db_session.commit()
    return record


async def _entries(db_session, organization_id, event_type) -> list[AuditLogEntry]:
    result = await db_session.execute(
        select(AuditLogEntry).where(
            AuditLogEntry.organization_id == organization_id,
            AuditLogEntry.event_type == event_type,
        )
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Query scoping
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("model", TENANT_SCOPED_MODELS, ids=lambda m: m.__tablename__)
async def test_scoped_queries_never_return_foreign_rows(
    db_session, org, people, outsiders, appraisal, foreign_appraisal, model
):
    result = await db_session.execute(tenant_select(model, org.id))
    rows = result.scalars().all()

    assert all(row.organization_id == org.id for row in rows)


@pytest.mark.asyncio
async def test_scoped_queries_see_own_rows(db_session, org, other_org, people, outsiders):
    ours = (await db_session.execute(tenant_select(Employee, org.id))).scalars().all()
    theirs = (await db_session.execute(tenant_select(Employee, other_org.id))).scalars().all()

    assert {e.id for e in ours} == {m.employee.id for m in people.values()}
    assert {e.id for e in theirs} == {m.employee.id for m in outsiders.values()}


def test_assert_same_organization():
    own = uuid4()
    assert_same_organization(own, own, "noop")
    with pytest.raises(TenantViolationError):
        assert_same_organization(own, uuid4(), "employee.update")
    with pytest.raises(TenantViolationError):
        assert_same_organization(own, None, "employee.update")


# ---------------------------------------------------------------------------
# Guarded lookups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_scoped_on_foreign_id_raises_and_audits(db_session, org, people, outsiders):
    guard = TenantGuard(db_session, people["admin"].identity)

    with pytest.raises(TenantViolationError):
        await guard.get_scoped(Employee, outsiders["employee"].employee.id, "employee.view")

    entries = await _entries(db_session, org.id, "cross_organization_access_attempt")
    assert len(entries) == 1
    assert entries[0].success is False
    assert entries[0].user_id == people["admin"].user.id
    assert entries[0].event_details["operation"] == "employee.view"


@pytest.mark.asyncio
async def test_get_scoped_on_missing_id_returns_none(db_session, people):
    guard = TenantGuard(db_session, people["admin"].identity)
    assert await guard.get_scoped(Employee, uuid4(), "employee.view") is None


@pytest.mark.asyncio
async def test_workflow_refuses_foreign_appraisal(db_session, org, people, foreign_appraisal):
    with pytest.raises(TenantViolationError):
        await AppraisalWorkflowService(db_session).get_appraisal(people["admin"].identity, foreign_appraisal.id)

    assert await _entries(db_session, org.id, "cross_organization_access_attempt")


@pytest.mark.asyncio
async def test_foreign_rating_item_leaves_appraisal_untouched(
    db_session, org, people, appraisal, foreign_appraisal
):
    """Rejecting a foreign rating id must not commit the other edits in the same update."""
    foreign_goal = make_goal(foreign_appraisal.organization_id, foreign_appraisal.id)
    db_session.add(foreign_goal)
    await db_session.commit()
    org_id, appraisal_id, foreign_goal_id = org.id, appraisal.id, foreign_goal.id
    director = people["director"].identity

    with pytest.raises(TenantViolationError):
        await AppraisalWorkflowService(db_session).update_appraisal(
            director,
            appraisal_id,
            {"overall_feedback": "Edited alongside a foreign goal", "final_rating": 2},
            goal_ratings=[{"id": foreign_goal_id, "rating": 5}],
        )

    # End of request: anything not committed is discarded
    await db_session.rollback()

    stored = (await db_session.execute(
        select(Appraisal.overall_feedback, Appraisal.final_rating).where(Appraisal.id == appraisal_id)
    )).one()
    assert tuple(stored) == (None, None)
    foreign_rating = await db_session.execute(
        select(AppraisalGoalRating.rating).where(AppraisalGoalRating.id == foreign_goal_id)
    )
    assert foreign_rating.scalar_one() is None
    assert await _entries(db_session, org_id, "cross_organization_access_attempt")
    assert await _entries(db_session, org_id, "appraisal.updated") == []


@pytest.mark.asyncio
async def test_patch_with_foreign_goal_id_is_forbidden(
    client, db_session, org, people, appraisal, foreign_appraisal
):
    foreign_goal = make_goal(foreign_appraisal.organization_id, foreign_appraisal.id)
    db_session.add(foreign_goal)
    await db_session.commit()
    appraisal_id = appraisal.id

    response = await client.patch(
        f"/api/v1/organizations/{org.id}/appraisals/{appraisal_id}",
        json={
            "overall_feedback": "Edited alongside a foreign goal",
            "goal_ratings": [{"id": str(foreign_goal.id), "rating": 5}],
        },
        headers=people["director"].headers,
    )

    assert response.status_code == 403
    await db_session.rollback()
    stored = await db_session.execute(select(Appraisal.overall_feedback).where(Appraisal.id == appraisal_id))
    assert stored.scalar_one() is None


@pytest.mark.asyncio
async def test_rating_item_from_other_appraisal_is_rejected_before_edits(
    db_session, org, people, cycle, appraisal
):
    other = make_appraisal(org.id, people["peer"].employee.id, cycle.id, status="in_progress")
    db_session.add(other)
    await db_session.flush()
    other_goal = make_goal(org.id, other.id)
    db_session.add(other_goal)
    await db_session.commit()
    appraisal_id = appraisal.id

    with pytest.raises(AppraisalConflictError):
        await AppraisalWorkflowService(db_session).update_appraisal(
            people["director"].identity,
            appraisal_id,
            {"overall_feedback": "Should not stick"},
            goal_ratings=[{"id": other_goal.id, "rating": 5}],
        )

    await db_session.rollback()
    stored = await db_session.execute(select(Appraisal.overall_feedback).where(Appraisal.id == appraisal_id))
    assert stored.scalar_one() is None


# ---------------------------------------------------------------------------
# API boundaries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_path_for_other_org_is_forbidden(client, db_session, org, other_org, people):
    """Org A's admin cannot use Org B's path, and the attempt is audited in Org A."""
    response = await client.get(
        f"/api/v1/organizations/{other_org.id}/employees/", headers=people["admin"].headers
    )

    assert response.status_code == 403
    entries = await _entries(db_session, org.id, "cross_organization_access_attempt")
    assert len(entries) == 1
    assert entries[0].event_details["requested_organization_id"] == str(other_org.id)
    assert await _entries(db_session, other_org.id, "cross_organization_access_attempt") == []


@pytest.mark.asyncio
async def test_foreign_employee_id_in_own_path_is_forbidden(client, db_session, org, people, outsiders):
    response = await client.get(
        f"/api/v1/organizations/{org.id}/employees/{outsiders['employee'].employee.id}",
        headers=people["admin"].headers,
    )

    assert response.status_code == 403
    assert await _entries(db_session, org.id, "cross_organization_access_attempt")


@pytest.mark.asyncio
async def test_foreign_appraisal_id_is_forbidden(client, org, people, foreign_appraisal):
    response = await client.get(
        f"/api/v1/organizations/{org.id}/appraisals/{foreign_appraisal.id}",
        headers=people["admin"].headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cannot_set_foreign_manager(client, db_session, org, people, outsiders):
    employee = people["peer"].employee
    response = await client.patch(
        f"/api/v1/organizations/{org.id}/employees/{employee.id}",
        json={"manager_id": str(outsiders["admin"].employee.id)},
        headers=people["admin"].headers,
    )

    assert response.status_code == 403
    stored = await db_session.execute(select(Employee.manager_id).where(Employee.id == employee.id))
    assert stored.scalar_one() == people["supervisor"].employee.id


@pytest.mark.asyncio
async def test_cannot_grant_role_to_foreign_employee(client, db_session, org, people, outsiders):
    response = await client.post(
        f"/api/v1/organizations/{org.id}/roles/",
        json={"employee_id": str(outsiders["employee"].employee.id), "role": "manager", "reason": "Takeover"},
        headers=people["admin"].headers,
    )

    assert response.status_code == 403
    granted = await db_session.execute(
        select(RoleAssignment).where(RoleAssignment.employee_id == outsiders["employee"].employee.id)
    )
    assert [a.role for a in granted.scalars().all()] == ["employee"]


@pytest.mark.asyncio
async def test_cannot_appraise_with_foreign_cycle(client, db_session, org, other_org, people):
    foreign_cycle = make_cycle(other_org.id)
    db_session.add(foreign_cycle)
    await db_session.commit()

    response = await client.post(
        f"/api/v1/organizations/{org.id}/appraisals/",
        json={"employee_id": str(people["employee"].employee.id), "cycle_id": str(foreign_cycle.id)},
        headers=people["admin"].headers,
    )

    assert response.status_code == 403
    created = await db_session.execute(select(Appraisal).where(Appraisal.cycle_id == foreign_cycle.id))
    assert created.scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_listing_only_returns_own_cycles(client, org, people, cycle, outsiders):
    response = await client.get(f"/api/v1/organizations/{org.id}/cycles/", headers=people["admin"].headers)
    assert [c["id"] for c in response.json()] == [str(cycle.id)]


@pytest.mark.asyncio
async def test_audit_feed_is_per_organization(client, db_session, org, other_org, people, outsiders):
    await client.post("/api/v1/auth/logout", headers=outsiders["admin"].headers)
    await client.post("/api/v1/auth/logout", headers=people["admin"].headers)

    response = await client.get(f"/api/v1/organizations/{org.id}/audit/", headers=people["admin"].headers)

    entries = response.json()["entries"]
    assert len(entries) == 1
    assert entries[0]["organization_id"] == str(org.id)


# ---------------------------------------------------------------------------
# Isolation verifier
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_verifier_passes_clean_data(db_session, org, people, outsiders, appraisal):
    report = await TenantIsolationVerifier(db_session).verify_tenancy(org.id)

    assert report.is_secure is True
    assert report.violations == []
    assert set(report.tables_checked) >= {m.__tablename__ for m in TENANT_SCOPED_MODELS}
    assert "audit_log_entries" in report.tables_checked
    assert await _entries(db_session, org.id, "tenant_isolation_verified")


@pytest.mark.asyncio
async def test_verifier_detects_cross_org_manager(db_session, org, people, outsiders):
    people["peer"].employee.manager_id = outsiders["admin"].employee.id
    await db_session.commit()

    report = await TenantIsolationVerifier(db_session).verify_tenancy(org.id)

    assert report.is_secure is False
    assert "employees.manager_id references another organization: 1 row(s)" in report.violations
    violations = await _entries(db_session, org.id, "tenant_isolation_violation")
    assert len(violations) == 1
    assert violations[0].success is False


@pytest.mark.asyncio
async def test_verifier_detects_cross_org_appraisal_cycle(db_session, org, other_org, people, outsiders):
    foreign_cycle = make_cycle(other_org.id)
    db_session.add(foreign_cycle)
    await db_session.flush()
    db_session.add(make_appraisal(org.id, people["employee"].employee.id, foreign_cycle.id))
    await db_session.commit()

    report = await TenantIsolationVerifier(db_session).verify_data_isolation(org.id)

    assert report.is_secure is False
    assert "appraisals.cycle_id references another organization: 1 row(s)" in report.violations
    # The other organization is unaffected by the bad reference
    assert (await TenantIsolationVerifier(db_session).verify_data_isolation(other_org.id)).is_secure is True


@pytest.mark.asyncio
async def test_isolation_endpoint_requires_admin(client, org, people):
    response = await client.post(
        f"/api/v1/organizations/{org.id}/admin/isolation", headers=people["director"].headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cycles_are_scoped(db_session, org, other_org, cycle):
    db_session.add(make_cycle(other_org.id))
    await db_session.commit()

    result = await db_session.execute(tenant_select(AppraisalCycle, org.id))
    assert [c.id for c in result.scalars().all()] == [cycle.id]
