# tests/test_roles.py — Role hierarchy and route permission table
import pytest
from httpx import AsyncClient

import roles
from models import UserRole
from roles import ROUTE_PERMISSIONS, rank, required_roles, satisfies, satisfies_any, validate_route_table
from tests.conftest import get_auth_headers, make_user


class TestHierarchy:
    def test_ranks(self):
        assert [rank(r) for r in (UserRole.OWNER, UserRole.HEAD, UserRole.LEAD, UserRole.ACTOR)] == [4, 3, 2, 1]

    def test_unknown_role_ranks_zero(self):
        assert rank("SUPERUSER") == 0
        assert rank("") == 0

    @pytest.mark.parametrize("actual", list(UserRole))
    @pytest.mark.parametrize("required", list(UserRole))
    def test_satisfies_is_rank_comparison(self, actual, required):
        assert satisfies(actual, required) == (rank(actual) >= rank(required))

    def test_unknown_roles_satisfy_nothing(self):
        assert not satisfies("SUPERUSER", UserRole.ACTOR)
        assert not satisfies(UserRole.OWNER, "SUPERUSER")

    def test_satisfies_any(self):
        assert satisfies_any(UserRole.LEAD, {UserRole.HEAD, UserRole.LEAD})
        assert not satisfies_any(UserRole.ACTOR, {UserRole.HEAD, UserRole.LEAD})
        assert not satisfies_any(UserRole.OWNER, set())

    def test_string_values_accepted(self):
        assert satisfies("HEAD", "LEAD")


class TestRouteTable:
    def test_every_entry_is_bound_after_app_import(self):
        import main  # noqa: F401
        validate_route_table()

    def test_unknown_route_id_fails_loudly(self):
        with pytest.raises(LookupError):
            required_roles("nope.nothing")

    def test_empty_entry_is_rejected(self, monkeypatch):
        monkeypatch.setitem(ROUTE_PERMISSIONS, "teams.list", frozenset())
        with pytest.raises(RuntimeError, match="empty role set"):
            validate_route_table()

    def test_unbound_entry_is_rejected(self, monkeypatch):
        monkeypatch.setitem(ROUTE_PERMISSIONS, "ghost.route", frozenset({UserRole.ACTOR}))
        with pytest.raises(RuntimeError, match="ghost.route: not bound"):
            validate_route_table()

    def test_unknown_role_is_rejected(self, monkeypatch):
        monkeypatch.setitem(ROUTE_PERMISSIONS, "teams.list", frozenset({"ROOT"}))
        with pytest.raises(RuntimeError, match="unknown role"):
            validate_route_table()

    def test_admin_routes_are_owner_only(self):
        admin_ids = [k for k in ROUTE_PERMISSIONS if k.startswith("admin.")]
        assert admin_ids
        assert all(ROUTE_PERMISSIONS[k] == roles.OWNER_ONLY for k in admin_ids)


@pytest.mark.asyncio
class TestRouteEnforcement:
    @pytest.mark.parametrize("role, expected", [
        (UserRole.OWNER, 200),
        (UserRole.HEAD, 403),
        (UserRole.LEAD, 403),
        (UserRole.ACTOR, 403),
    ])
    async def test_admin_listing_by_role(self, client: AsyncClient, db_session, role, expected):
        user = await make_user(db_session, role)
        res = await client.get("/api/v1/admin/users", headers=get_auth_headers(user))
        assert res.status_code == expected
        if expected == 403:
            assert res.json()["detail"]["code"] == "FORBIDDEN"

    async def test_head_passes_head_route_actor_does_not(self, client: AsyncClient, alpha_head, alpha_actor, alpha_team, beta_team):
        body = {"toTeamId": beta_team.id, "shareTasks": True}
        denied = await client.post(f"/api/v1/teams/{alpha_team.id}/shares", json=body,
                                   headers=get_auth_headers(alpha_actor))
        assert denied.status_code == 403
        allowed = await client.post(f"/api/v1/teams/{alpha_team.id}/shares", json=body,
                                    headers=get_auth_headers(alpha_head))
        assert allowed.status_code == 201
