"""
Tests for the scheduled security sweeps, run against the test database.
"""

from contextlib import asynccontextmanager

import pytest
from sqlalchemy import update

from audit_trail.ledger import AuditLedger
from backend.models.audit_log import AuditLogEntry
from workers.tasks.security_tasks import (
    _async_verify_all_audit_chains,
    _async_verify_all_organizations,
    _async_verify_organization,
)


@pytest.fixture
def worker_session(monkeypatch, db_session):
    """Route the workers' standalone sessions to the test session."""

    @asynccontextmanager
    async def _session():
        yield db_session

    monkeypatch.setattr("backend.db.session.get_async_session", _session)
    return db_session


@pytest.mark.asyncio
async def test_isolation_sweep_clean(worker_session, org, other_org, people, outsiders):
    result = await _async_verify_all_organizations()

    assert result == {"organizations_checked": 2, "insecure_organizations": []}


@pytest.mark.asyncio
async def test_isolation_sweep_reports_insecure_org(worker_session, org, other_org, people, outsiders):
    people["employee"].employee.manager_id = outsiders["admin"].employee.id
    await worker_session.commit()

    result = await _async_verify_all_organizations()

    assert result["insecure_organizations"] == [str(org.id)]


@pytest.mark.asyncio
async def test_isolation_sweep_skips_inactive_orgs(worker_session, org, other_org):
    other_org.is_active = False
    await worker_session.commit()

    result = await _async_verify_all_organizations()

    assert result["organizations_checked"] == 1


@pytest.mark.asyncio
async def test_single_org_verification_is_serializable(worker_session, org, people):
    report = await _async_verify_organization(org.id)

    assert report["organization_id"] == str(org.id)
    assert report["is_secure"] is True


@pytest.mark.asyncio
async def test_chain_sweep_flags_tampered_org(worker_session, org, other_org):
    ledger = AuditLedger(worker_session)
    for organization in (org, other_org):
        await ledger.record("auth.login.success", {}, organization_id=organization.id)
        await ledger.record("auth.session.terminated", {}, organization_id=organization.id)

    await worker_session.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.organization_id == other_org.id, AuditLogEntry.sequence_number == 1)
        .values(event_type="auth.login.failed")
    )
    await worker_session.commit()

    result = await _async_verify_all_audit_chains()

    assert result == {"organizations_checked": 2, "broken_chains": [str(other_org.id)]}
