"""
Unit Tests for RBAC Middleware

Tests rank ordering, permission derivation, deny-by-default handling of
malformed role data, CurrentUser helpers and JWT token validation.
"""

from datetime import datetime, timedelta, timezone
from itertools import permutations
from uuid import uuid4

import jwt
import pytest
from fastapi import HTTPException

from backend.config import get_settings
from backend.middleware.rbac import (
    PERMISSION_RULES,
    ROLE_RANK,
    CurrentUser,
    Permission,
    Role,
    _validate_token,
    can_mimic,
    has_any_role,
    has_permission,
    highest_role,
    min_role_satisfied,
    parse_roles,
)
from backend.services.auth import create_access_token, create_refresh_token

settings = get_settings()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_user(*roles: Role, mimicked_role: Role | None = None) -> CurrentUser:
    return CurrentUser(
        id=uuid4(),
        email="test@example.com",
        organization_id=uuid4(),
        employee_id=uuid4(),
        roles=frozenset(roles),
        mimicked_role=mimicked_role,
    )


MALFORMED_ROLE_SETS = [
    None,
    [],
    "admin",
    b"admin",
    {"role": "admin"},
    ["superuser"],
    ["admin", "root"],
    [None],
    [42],
    42,
]


# ===========================================================================
# Rank ordering
# ===========================================================================

class TestRankOrdering:

    def test_ranks_are_strictly_ordered(self):
        ordered = [Role.EMPLOYEE, Role.SUPERVISOR, Role.MANAGER, Role.DIRECTOR, Role.ADMIN]
        ranks = [ROLE_RANK[r] for r in ordered]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ranks)

    @pytest.mark.parametrize("higher,lower", [
        (a, b) for a, b in permutations(Role, 2) if ROLE_RANK[a] > ROLE_RANK[b]
    ])
    def test_min_role_is_monotonic(self, higher, lower):
        """A higher role satisfies a lower minimum; the reverse never holds."""
        assert min_role_satisfied({higher}, lower) is True
        assert min_role_satisfied({lower}, higher) is False

    @pytest.mark.parametrize("role", list(Role))
    def test_role_satisfies_itself(self, role):
        assert min_role_satisfied({role}, role) is True

    def test_highest_role_picks_top_rank(self):
        assert highest_role({Role.EMPLOYEE, Role.MANAGER, Role.SUPERVISOR}) == Role.MANAGER

    def test_highest_role_of_empty_set_is_none(self):
        assert highest_role(set()) is None

    def test_union_of_roles_uses_highest(self):
        user = _make_user(Role.EMPLOYEE, Role.DIRECTOR)
        assert user.effective_role == Role.DIRECTOR
        assert user.has_permission(Permission.MANAGE_APPRAISALS) is True


# ===========================================================================
# Deny by default
# ===========================================================================

class TestDenyByDefault:

    @pytest.mark.parametrize("raw", MALFORMED_ROLE_SETS)
    def test_malformed_role_set_parses_to_empty(self, raw):
        assert parse_roles(raw) == frozenset()

    @pytest.mark.parametrize("raw", MALFORMED_ROLE_SETS)
    def test_malformed_role_set_has_no_roles(self, raw):
        assert has_any_role(raw, list(Role)) is False

    @pytest.mark.parametrize("raw", MALFORMED_ROLE_SETS)
    @pytest.mark.parametrize("permission", list(Permission))
    def test_malformed_role_set_has_no_permissions(self, raw, permission):
        assert has_permission(raw, permission) is False

    @pytest.mark.parametrize("raw", MALFORMED_ROLE_SETS)
    def test_malformed_role_set_fails_min_role(self, raw):
        assert min_role_satisfied(raw, Role.EMPLOYEE) is False

    def test_unknown_permission_is_denied(self):
        assert has_permission({Role.ADMIN}, "launch_missiles") is False

    def test_unknown_min_role_is_denied(self):
        assert min_role_satisfied({Role.ADMIN}, "overlord") is False

    def test_current_user_with_garbage_roles_has_nothing(self):
        user = CurrentUser(
            id=uuid4(),
            email="x@example.com",
            organization_id=uuid4(),
            roles=["admin", "not-a-role"],
        )
        assert user.roles == frozenset()
        assert user.effective_role is None
        assert not any(user.has_permission(p) for p in Permission)


# ===========================================================================
# Permission derivation
# ===========================================================================

class TestPermissions:

    def test_every_permission_has_a_rule(self):
        assert set(PERMISSION_RULES) == set(Permission)

    def test_admin_has_every_permission(self):
        user = _make_user(Role.ADMIN)
        assert all(user.has_permission(p) for p in Permission)

    def test_employee_only_views_own_data(self):
        user = _make_user(Role.EMPLOYEE)
        granted = {p for p in Permission if user.has_permission(p)}
        assert granted == {Permission.VIEW_OWN_DATA}

    def test_supervisor_can_create_appraisals_but_not_manage_employees(self):
        user = _make_user(Role.SUPERVISOR)
        assert user.has_permission(Permission.VIEW_REPORTS)
        assert user.has_permission(Permission.CREATE_APPRAISALS)
        assert not user.has_permission(Permission.MANAGE_EMPLOYEES)

    def test_manager_manages_employees_and_goals(self):
        user = _make_user(Role.MANAGER)
        assert user.has_all_permissions(Permission.MANAGE_EMPLOYEES, Permission.MANAGE_GOALS)
        assert not user.has_permission(Permission.MANAGE_APPRAISALS)

    @pytest.mark.parametrize("permission", [
        Permission.ASSIGN_ROLES,
        Permission.MANAGE_ROLES,
        Permission.VIEW_AUDIT,
        Permission.MANAGE_SETTINGS,
        Permission.MANAGE_ORGANIZATION,
        Permission.MANAGE_APPRAISAL_CYCLES,
        Permission.VERIFY_TENANCY,
        Permission.MIMIC_ROLES,
    ])
    def test_admin_only_permissions_exclude_director(self, permission):
        assert has_permission({Role.DIRECTOR}, permission) is False
        assert has_permission({Role.ADMIN}, permission) is True

    def test_has_all_permissions_with_no_arguments_is_false(self):
        assert _make_user(Role.ADMIN).has_all_permissions() is False

    def test_has_any_permission(self):
        user = _make_user(Role.SUPERVISOR)
        assert user.has_any_permission(Permission.VIEW_AUDIT, Permission.VIEW_REPORTS)
        assert not user.has_any_permission(Permission.VIEW_AUDIT, Permission.MANAGE_ROLES)


# ===========================================================================
# Mimicking rules on the identity
# ===========================================================================

class TestMimicOverlay:

    @pytest.mark.parametrize("target", list(Role))
    def test_admin_can_mimic_any_role(self, target):
        assert can_mimic({Role.ADMIN}, target) is True

    @pytest.mark.parametrize("real", [Role.DIRECTOR, Role.MANAGER, Role.SUPERVISOR, Role.EMPLOYEE])
    def test_non_admin_cannot_mimic(self, real):
        assert can_mimic({real}, Role.EMPLOYEE) is False

    def test_unknown_target_cannot_be_mimicked(self):
        assert can_mimic({Role.ADMIN}, "overlord") is False

    def test_overlay_drives_permissions(self):
        user = _make_user(Role.ADMIN, mimicked_role=Role.EMPLOYEE)
        assert user.is_mimicking
        assert user.effective_role == Role.EMPLOYEE
        assert user.original_role == Role.ADMIN
        assert not user.has_permission(Permission.MANAGE_EMPLOYEES)

    def test_audit_context_keeps_real_role(self):
        user = _make_user(Role.ADMIN, mimicked_role=Role.SUPERVISOR)
        context = user.audit_context()
        assert context["actor_role"] == "admin"
        assert context["mimicked_role"] == "supervisor"

    def test_audit_context_without_overlay_has_no_mimic_key(self):
        assert "mimicked_role" not in _make_user(Role.MANAGER).audit_context()


# ===========================================================================
# Token validation
# ===========================================================================

class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar_one_or_none(self):
        return self._value

    def scalars(self):
        return self

    def all(self):
        return self._value


class _FakeSession:
    """Replays canned results for the queries _validate_token issues."""

    def __init__(self, *results):
        self._results = list(results)

    async def execute(self, query):
        return _FakeResult(self._results.pop(0))


class _DbUser:
    def __init__(self, organization_id, is_active=True):
        self.id = uuid4()
        self.email = "someone@example.com"
        self.organization_id = organization_id
        self.is_active = is_active


class TestValidateToken:

    @pytest.mark.asyncio
    async def test_valid_token_loads_roles_from_database(self):
        org_id = uuid4()
        db_user = _DbUser(org_id)
        employee_id = uuid4()
        token = create_access_token(sub=str(db_user.id), email=db_user.email, org_id=str(org_id))

        user = await _validate_token(token, _FakeSession(db_user, employee_id, ["manager", "employee"]))

        assert user.id == db_user.id
        assert user.employee_id == employee_id
        assert user.roles == frozenset({Role.MANAGER, Role.EMPLOYEE})
        assert user.mimicked_role is None

    @pytest.mark.asyncio
    async def test_mimic_claim_is_honoured_for_admin(self):
        org_id = uuid4()
        db_user = _DbUser(org_id)
        token = create_access_token(
            sub=str(db_user.id), email=db_user.email, org_id=str(org_id), mimic_role="employee"
        )

        user = await _validate_token(token, _FakeSession(db_user, uuid4(), ["admin"]))

        assert user.mimicked_role == Role.EMPLOYEE
        assert user.original_role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_mimic_claim_is_dropped_after_demotion(self):
        """A stale mimic claim cannot outlive the admin role it relied on."""
        org_id = uuid4()
        db_user = _DbUser(org_id)
        token = create_access_token(
            sub=str(db_user.id), email=db_user.email, org_id=str(org_id), mimic_role="employee"
        )

        user = await _validate_token(token, _FakeSession(db_user, uuid4(), ["manager"]))

        assert user.mimicked_role is None
        assert user.effective_role == Role.MANAGER

    @pytest.mark.asyncio
    async def test_user_without_employee_record_has_no_roles(self):
        org_id = uuid4()
        db_user = _DbUser(org_id)
        token = create_access_token(sub=str(db_user.id), email=db_user.email, org_id=str(org_id))

        user = await _validate_token(token, _FakeSession(db_user, None))

        assert user.roles == frozenset()
        assert user.employee_id is None

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": str(uuid4()),
                "org_id": str(uuid4()),
                "type": "access",
                "iat": now - timedelta(hours=2),
                "exp": now - timedelta(hours=1),
            },
            settings.secret_key,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            await _validate_token(token, _FakeSession())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self):
        token = jwt.encode(
            {"sub": str(uuid4()), "org_id": str(uuid4()), "type": "access"},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            await _validate_token(token, _FakeSession())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_token_cannot_authenticate(self):
        token = create_refresh_token(sub=str(uuid4()), org_id=str(uuid4()))
        with pytest.raises(HTTPException) as exc_info:
            await _validate_token(token, _FakeSession())
        assert exc_info.value.detail == "Invalid token type"

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(self):
        org_id = uuid4()
        db_user = _DbUser(org_id, is_active=False)
        token = create_access_token(sub=str(db_user.id), email=db_user.email, org_id=str(org_id))
        with pytest.raises(HTTPException) as exc_info:
            await _validate_token(token, _FakeSession(db_user))
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_org_must_match_membership(self):
        db_user = _DbUser(uuid4())
        token = create_access_token(sub=str(db_user.id), email=db_user.email, org_id=str(uuid4()))
        with pytest.raises(HTTPException) as exc_info:
            await _validate_token(token, _FakeSession(db_user))
        assert exc_info.value.detail == "Invalid token claims"
