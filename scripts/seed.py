"""
Seed Script

Populates the database with demo data for development and testing.
Creates "Northwind Logistics" with a five-level management hierarchy,
role assignments, login users and an active appraisal cycle, plus a
second organization so tenant isolation can be exercised.

Usage:
    python -m scripts.seed
"""

import asyncio
from datetime import date, datetime, timezone
from uuid import uuid4

from backend.config import get_settings
from backend.db.session import get_async_session
from backend.middleware.rbac import Role
from backend.models.appraisal import (
    Appraisal,
    AppraisalCompetencyRating,
    AppraisalCycle,
    AppraisalGoalRating,
    AppraisalStatus,
    AppraiserAssignment,
    AppraiserRole,
    CycleStatus,
)
from backend.models.employee import Employee, EmployeeStatus
from backend.models.organization import Organization
from backend.models.role_assignment import RoleAssignment
from backend.models.user import User
from backend.services.auth import hash_password

settings = get_settings()

DEMO_PASSWORD = "Appraisely2025!"

COMPETENCIES = ["Communication", "Ownership", "Technical depth"]


async def seed():
    """Create demo data."""
    now = datetime.now(timezone.utc)

    async with get_async_session() as db:
        # ── Organizations ─────────────────────────────────
        org = Organization(
            id=uuid4(),
            name="Northwind Logistics",
            slug="northwind",
            settings={"rating_scale": ["Unsatisfactory", "Developing", "Solid", "Strong", "Exceptional"]},
        )
        other_org = Organization(
            id=uuid4(),
            name="Contoso Retail",
            slug="contoso",
            settings={},
        )
        db.add_all([org, other_org])
        await db.flush()

        # ── Hierarchy (top-down, manager resolved by key) ─
        people = [
            ("ceo", "Ada", "Lovelace", "Chief Executive Officer", None, Role.ADMIN),
            ("ops_director", "Grace", "Hopper", "Director of Operations", "ceo", Role.DIRECTOR),
            ("fleet_manager", "Alan", "Turing", "Fleet Manager", "ops_director", Role.MANAGER),
            ("shift_supervisor", "Edsger", "Dijkstra", "Shift Supervisor", "fleet_manager", Role.SUPERVISOR),
            ("driver_1", "Barbara", "Liskov", "Driver", "shift_supervisor", Role.EMPLOYEE),
            ("driver_2", "Donald", "Knuth", "Driver", "shift_supervisor", Role.EMPLOYEE),
            ("dispatcher", "Frances", "Allen", "Dispatcher", "fleet_manager", Role.EMPLOYEE),
        ]

        employees: dict[str, Employee] = {}
        users: dict[str, User] = {}
        for number, (key, first, last, title, manager_key, role) in enumerate(people, start=1):
            email = f"{first.lower()}@northwind.com"
            user = User(
                id=uuid4(),
                organization_id=org.id,
                email=email,
                name=f"{first} {last}",
                hashed_password=hash_password(DEMO_PASSWORD),
            )
            db.add(user)
            users[key] = user

            employee = Employee(
                id=uuid4(),
                organization_id=org.id,
                user_id=user.id,
                first_name=first,
                last_name=last,
                email=email,
                employee_number=f"NW-{number:03d}",
                job_title=title,
                department="Operations",
                hire_date=date(2022, 1, 10),
                manager_id=employees[manager_key].id if manager_key else None,
                status=EmployeeStatus.ACTIVE.value,
            )
            db.add(employee)
            employees[key] = employee
            await db.flush()

            db.add(RoleAssignment(
                organization_id=org.id,
                employee_id=employee.id,
                role=role.value,
                granted_at=now,
                reason="Initial seed",
            ))

        # Contoso has its own admin; nothing links across organizations
        contoso_user = User(
            id=uuid4(),
            organization_id=other_org.id,
            email="admin@contoso.com",
            name="Contoso Admin",
            hashed_password=hash_password(DEMO_PASSWORD),
        )
        db.add(contoso_user)
        await db.flush()
        contoso_admin = Employee(
            id=uuid4(),
            organization_id=other_org.id,
            user_id=contoso_user.id,
            first_name="Contoso",
            last_name="Admin",
            email=contoso_user.email,
            employee_number="CR-001",
            job_title="Administrator",
            status=EmployeeStatus.ACTIVE.value,
        )
        db.add(contoso_admin)
        await db.flush()
        db.add(RoleAssignment(
            organization_id=other_org.id,
            employee_id=contoso_admin.id,
            role=Role.ADMIN.value,
            granted_at=now,
            reason="Initial seed",
        ))

        # ── Appraisal cycle ───────────────────────────────
        cycle = AppraisalCycle(
            id=uuid4(),
            organization_id=org.id,
            name="FY2025 Annual Review",
            year=2025,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 12, 31),
            status=CycleStatus.ACTIVE.value,
        )
        db.add(cycle)
        await db.flush()

        appraisal_count = 0
        for key, employee in employees.items():
            if employee.manager_id is None:
                continue
            appraisal = Appraisal(
                id=uuid4(),
                organization_id=org.id,
                employee_id=employee.id,
                cycle_id=cycle.id,
                status=AppraisalStatus.DRAFT.value,
                created_by=users["ceo"].id,
            )
            db.add(appraisal)
            await db.flush()
            appraisal_count += 1

            db.add(AppraisalGoalRating(
                organization_id=org.id,
                appraisal_id=appraisal.id,
                title="Deliver quarterly objectives",
                weight=100,
            ))
            for competency in COMPETENCIES:
                db.add(AppraisalCompetencyRating(
                    organization_id=org.id,
                    appraisal_id=appraisal.id,
                    competency=competency,
                ))

            db.add(AppraiserAssignment(
                organization_id=org.id,
                appraisal_id=appraisal.id,
                appraiser_id=employee.manager_id,
                role=AppraiserRole.PRIMARY.value,
                is_primary=True,
                position=0,
                assigned_by=users["ceo"].id,
                assigned_at=now,
            ))

        await db.flush()

        print(f"Seeded organization: {org.name} (ID: {org.id})")
        print(f"Second organization: {other_org.name} (ID: {other_org.id})")
        for key, user in users.items():
            print(f"  {key:<17} {user.email} / {DEMO_PASSWORD}")
        print(f"Cycle: {cycle.name} with {appraisal_count} appraisals")


if __name__ == "__main__":
    asyncio.run(seed())
