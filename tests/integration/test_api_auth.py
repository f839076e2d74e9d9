"""Integration tests for the auth API endpoints at /api/v1/auth."""

import pytest
from sqlalchemy import select

from backend.models.audit_log import AuditLogEntry
from tests.factories import TEST_PASSWORD

BASE = "http://test/api/v1/auth"


async def _entries(db_session, event_type: str) -> list[AuditLogEntry]:
    result = await db_session.execute(
        select(AuditLogEntry).where(AuditLogEntry.event_type == event_type)
    )
    return list(result.scalars().all())


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# --------------------------------------------------------------------------- #
# Login
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_login_success(client, db_session, people):
    """Logging in with valid credentials returns 200 and tokens."""
    admin = people["admin"]
    response = await client.post(
        f"{BASE}/login", json={"email": admin.user.email, "password": TEST_PASSWORD}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["refresh_token"]

    entries = await _entries(db_session, "auth.login.success")
    assert len(entries) == 1
    assert entries[0].user_id == admin.user.id
    assert entries[0].organization_id == admin.user.organization_id


@pytest.mark.asyncio
async def test_login_is_case_insensitive(client, people):
    email = people["manager"].user.email.upper()
    response = await client.post(f"{BASE}/login", json={"email": email, "password": TEST_PASSWORD})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client, db_session, people):
    """A wrong password returns 401 and is audited against the account's organization."""
    user = people["employee"].user
    response = await client.post(f"{BASE}/login", json={"email": user.email, "password": "WrongPass1!"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"

    entries = await _entries(db_session, "auth.login.failed")
    assert len(entries) == 1
    assert entries[0].success is False
    assert entries[0].organization_id == user.organization_id


@pytest.mark.asyncio
async def test_login_unknown_email(client, db_session, org):
    """Unknown accounts get the same 401; the failure is recorded outside any chain."""
    response = await client.post(
        f"{BASE}/login", json={"email": "nobody@northwind.com", "password": TEST_PASSWORD}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"

    entries = await _entries(db_session, "auth.login.failed")
    assert len(entries) == 1
    assert entries[0].organization_id is None
    assert entries[0].sequence_number is None


@pytest.mark.asyncio
async def test_login_inactive_user(client, db_session, people):
    people["peer"].user.is_active = False
    await db_session.commit()

    response = await client.post(
        f"{BASE}/login", json={"email": people["peer"].user.email, "password": TEST_PASSWORD}
    )
    assert response.status_code == 401


# --------------------------------------------------------------------------- #
# Token refresh
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_refresh_token(client, people):
    """A valid refresh token yields a new working access token."""
    login = await client.post(
        f"{BASE}/login", json={"email": people["director"].user.email, "password": TEST_PASSWORD}
    )
    refresh_token = login.json()["refresh_token"]

    response = await client.post(f"{BASE}/refresh", json={"refresh_token": refresh_token})

    assert response.status_code == 200
    me = await client.get(f"{BASE}/me", headers=_bearer(response.json()["access_token"]))
    assert me.status_code == 200
    assert me.json()["roles"] == ["director"]


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(client, people):
    login = await client.post(
        f"{BASE}/login", json={"email": people["director"].user.email, "password": TEST_PASSWORD}
    )
    access_token = login.json()["access_token"]

    response = await client.post(f"{BASE}/refresh", json={"refresh_token": access_token})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_invalid_token(client):
    response = await client.post(f"{BASE}/refresh", json={"refresh_token": "invalid.token.value"})
    assert response.status_code == 401


# --------------------------------------------------------------------------- #
# Identity
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_me(client, people):
    """GET /me resolves roles from the database."""
    member = people["supervisor"]
    response = await client.get(f"{BASE}/me", headers=member.headers)

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == str(member.user.id)
    assert data["employee_id"] == str(member.employee.id)
    assert data["roles"] == ["supervisor"]
    assert data["effective_role"] == "supervisor"
    assert data["is_mimicking"] is False


@pytest.mark.asyncio
async def test_me_without_token(client):
    response = await client.get(f"{BASE}/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    response = await client.get(f"{BASE}/me", headers=_bearer("not-a-jwt"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_permissions(client, people):
    response = await client.get(f"{BASE}/permissions", headers=people["manager"].headers)

    assert response.status_code == 200
    data = response.json()
    assert data["effective_role"] == "manager"
    assert "manage_employees" in data["permissions"]
    assert "assign_roles" not in data["permissions"]


@pytest.mark.asyncio
async def test_logout_is_audited(client, db_session, people):
    response = await client.post(f"{BASE}/logout", headers=people["manager"].headers)

    assert response.status_code == 204
    entries = await _entries(db_session, "auth.session.terminated")
    assert [e.user_id for e in entries] == [people["manager"].user.id]


# --------------------------------------------------------------------------- #
# Role mimicking
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_admin_mimics_employee(client, db_session, org, people):
    """The mimic token narrows permissions; the audit keeps the real identity."""
    admin = people["admin"]
    response = await client.post(f"{BASE}/mimic", json={"role": "employee"}, headers=admin.headers)

    assert response.status_code == 200
    data = response.json()
    assert data["original_role"] == "admin"
    assert data["mimicked_role"] == "employee"
    assert data["effective_role"] == "employee"
    mimic_headers = _bearer(data["access_token"])

    me = (await client.get(f"{BASE}/me", headers=mimic_headers)).json()
    assert me["roles"] == ["admin"]
    assert me["is_mimicking"] is True
    assert me["effective_role"] == "employee"

    permissions = (await client.get(f"{BASE}/permissions", headers=mimic_headers)).json()
    assert permissions["permissions"] == ["view_own_data"]

    # Admin-only endpoints are closed while mimicking
    denied = await client.get(f"/api/v1/organizations/{org.id}/audit/", headers=mimic_headers)
    assert denied.status_code == 403

    started = await _entries(db_session, "auth.role_mimic.started")
    assert len(started) == 1
    assert started[0].user_id == admin.user.id
    assert started[0].event_details["mimicked_role"] == "employee"


@pytest.mark.asyncio
async def test_reset_mimic_restores_real_role(client, db_session, org, people):
    admin = people["admin"]
    started = await client.post(f"{BASE}/mimic", json={"role": "manager"}, headers=admin.headers)
    mimic_headers = _bearer(started.json()["access_token"])

    response = await client.delete(f"{BASE}/mimic", headers=mimic_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["mimicked_role"] is None
    assert data["effective_role"] == "admin"

    restored = _bearer(data["access_token"])
    audit = await client.get(f"/api/v1/organizations/{org.id}/audit/", headers=restored)
    assert audit.status_code == 200
    assert len(await _entries(db_session, "auth.role_mimic.reset")) == 1


@pytest.mark.asyncio
async def test_non_admin_cannot_mimic(client, db_session, people):
    response = await client.post(
        f"{BASE}/mimic", json={"role": "employee"}, headers=people["director"].headers
    )

    assert response.status_code == 403
    denials = await _entries(db_session, "unauthorized_access_attempt")
    assert [d.user_id for d in denials] == [people["director"].user.id]


@pytest.mark.asyncio
async def test_mimic_unknown_role_is_rejected(client, people):
    response = await client.post(
        f"{BASE}/mimic", json={"role": "superuser"}, headers=people["admin"].headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_mimic_token_loses_overlay_after_demotion(client, db_session, people):
    """A mimic claim is only honoured while the real role still allows it."""
    from backend.models.role_assignment import RoleAssignment

    admin = people["admin"]
    started = await client.post(f"{BASE}/mimic", json={"role": "employee"}, headers=admin.headers)
    mimic_headers = _bearer(started.json()["access_token"])

    result = await db_session.execute(
        select(RoleAssignment).where(RoleAssignment.employee_id == admin.employee.id)
    )
    assignment = result.scalar_one()
    assignment.role = "director"
    await db_session.commit()

    me = (await client.get(f"{BASE}/me", headers=mimic_headers)).json()
    assert me["is_mimicking"] is False
    assert me["effective_role"] == "director"
