"""
Security Tasks

Scheduled tenant isolation verification and audit chain integrity checks.
"""

import asyncio
import logging
from uuid import UUID

from workers.celery_app import app

logger = logging.getLogger(__name__)


@app.task
def verify_all_organizations() -> dict:
    """Run tenant isolation verification for every active organization."""
    logger.info("Starting tenant isolation sweep")
    return asyncio.run(_async_verify_all_organizations())


@app.task
def verify_organization(organization_id: str) -> dict:
    """Run tenant isolation verification for one organization."""
    logger.info(f"Verifying tenant isolation for org {organization_id}")
    return asyncio.run(_async_verify_organization(UUID(organization_id)))


@app.task
def verify_all_audit_chains() -> dict:
    """Verify the audit hash chain of every organization."""
    logger.info("Starting audit chain verification")
    return asyncio.run(_async_verify_all_audit_chains())


async def _active_organization_ids(db) -> list[UUID]:
    from sqlalchemy import select

    from backend.models.organization import Organization

    result = await db.execute(select(Organization.id).where(Organization.is_active.is_(True)))
    return list(result.scalars().all())


async def _async_verify_all_organizations() -> dict:
    from backend.db.session import get_async_session
    from backend.services.tenant_guard import TenantIsolationVerifier

    insecure: list[str] = []
    async with get_async_session() as db:
        org_ids = await _active_organization_ids(db)
        verifier = TenantIsolationVerifier(db)
        for org_id in org_ids:
            report = await verifier.verify_tenancy(org_id)
            if not report.is_secure:
                insecure.append(str(org_id))

    if insecure:
        logger.critical(f"Tenant isolation sweep found violations in {len(insecure)} org(s): {insecure}")
    else:
        logger.info(f"Tenant isolation sweep passed for {len(org_ids)} org(s)")
    return {"organizations_checked": len(org_ids), "insecure_organizations": insecure}


async def _async_verify_organization(organization_id: UUID) -> dict:
    from backend.db.session import get_async_session
    from backend.services.tenant_guard import TenantIsolationVerifier

    async with get_async_session() as db:
        report = await TenantIsolationVerifier(db).verify_tenancy(organization_id)
    return report.model_dump(mode="json")


async def _async_verify_all_audit_chains() -> dict:
    from audit_trail.integrity import verify_chain
    from backend.db.session import get_async_session

    broken: list[str] = []
    async with get_async_session() as db:
        org_ids = await _active_organization_ids(db)
        for org_id in org_ids:
            integrity = await verify_chain(db, org_id)
            if not integrity["is_valid"]:
                logger.critical(
                    f"AUDIT CHAIN INTEGRITY FAILURE for org {org_id}: {integrity['message']}"
                )
                broken.append(str(org_id))
            else:
                logger.info(
                    f"Audit chain OK for org {org_id}: "
                    f"{integrity['entries_checked']} entries verified"
                )

    return {"organizations_checked": len(org_ids), "broken_chains": broken}
