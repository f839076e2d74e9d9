"""
Test Configuration and Fixtures

Provides an in-memory database per test, an async test client, and a
two-organization fixture set with a five-level management hierarchy.
"""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-min-32-chars"

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.db.session import get_db
from backend.main import app
from backend.middleware.rbac import CurrentUser, Role
from backend.models import Base
from backend.models.appraisal import Appraisal, AppraisalCycle
from backend.models.employee import Employee
from backend.models.organization import Organization
from backend.models.user import User
from tests.factories import (
    auth_headers_for,
    create_member,
    current_user_for,
    make_appraisal,
    make_appraiser_assignment,
    make_competency,
    make_cycle,
    make_goal,
    make_organization,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@dataclass
class Member:
    """A persisted person: login user, employee record and their single role."""

    user: User
    employee: Employee
    role: Role | None

    @property
    def identity(self) -> CurrentUser:
        roles = (self.role,) if self.role else ()
        return current_user_for(self.user, self.employee, *roles)

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers_for(self.user)

    def mimicking(self, role: Role) -> CurrentUser:
        roles = (self.role,) if self.role else ()
        return current_user_for(self.user, self.employee, *roles, mimicked_role=role)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a fresh in-memory database and session for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async test client with dependency override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def org(db_session: AsyncSession) -> Organization:
    """Organization under test."""
    organization = make_organization(name="Northwind Logistics", slug="northwind")
    db_session.add(organization)
    await db_session.commit()
    return organization


@pytest_asyncio.fixture
async def other_org(db_session: AsyncSession) -> Organization:
    """A second tenant that must stay invisible to the first."""
    organization = make_organization(name="Contoso Retail", slug="contoso")
    db_session.add(organization)
    await db_session.commit()
    return organization


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def people(db_session: AsyncSession, org: Organization) -> dict[str, Member]:
    """
    Management chain inside org:

        admin -> director -> manager -> supervisor -> employee, peer
                          -> other_manager
    """
    members: dict[str, Member] = {}

    async def add(key: str, role: Role, manager_key: str | None = None, **overrides) -> None:
        manager = members[manager_key].employee if manager_key else None
        user, employee = await create_member(
            db_session, org, role, first_name=key.replace("_", "").title(), manager=manager, **overrides
        )
        members[key] = Member(user, employee, role)

    await add("admin", Role.ADMIN)
    await add("director", Role.DIRECTOR, "admin")
    await add("manager", Role.MANAGER, "director")
    await add("other_manager", Role.MANAGER, "director")
    await add("supervisor", Role.SUPERVISOR, "manager")
    await add("employee", Role.EMPLOYEE, "supervisor")
    await add("peer", Role.EMPLOYEE, "supervisor")
    await db_session.commit()
    return members


@pytest_asyncio.fixture
async def outsiders(db_session: AsyncSession, other_org: Organization) -> dict[str, Member]:
    """Members of the second organization."""
    admin_user, admin_employee = await create_member(db_session, other_org, Role.ADMIN, first_name="Oscar")
    user, employee = await create_member(
        db_session, other_org, Role.EMPLOYEE, first_name="Olive", manager=admin_employee
    )
    await db_session.commit()
    return {
        "admin": Member(admin_user, admin_employee, Role.ADMIN),
        "employee": Member(user, employee, Role.EMPLOYEE),
    }


# ---------------------------------------------------------------------------
# Appraisals
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def cycle(db_session: AsyncSession, org: Organization) -> AppraisalCycle:
    appraisal_cycle = make_cycle(org.id)
    db_session.add(appraisal_cycle)
    await db_session.commit()
    return appraisal_cycle


@pytest_asyncio.fixture
async def appraisal(
    db_session: AsyncSession,
    org: Organization,
    people: dict[str, Member],
    cycle: AppraisalCycle,
) -> Appraisal:
    """
    In-progress appraisal of `employee` with the supervisor as primary and
    the manager as secondary appraiser. One goal and one competency, both unrated.
    """
    record = make_appraisal(org.id, people["employee"].employee.id, cycle.id, status="in_progress")
    db_session.add(record)
    await db_session.flush()

    db_session.add_all([
        make_goal(org.id, record.id),
        make_competency(org.id, record.id),
        make_appraiser_assignment(org.id, record.id, people["supervisor"].employee.id, primary=True, position=0),
        make_appraiser_assignment(org.id, record.id, people["manager"].employee.id, primary=False, position=1),
    ])
    await db_session.commit()
    return record
