# tests/test_teams.py — Teams, membership and the team sharing registry
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditEventType, AuditLog, Notification, NotificationType, Task, TeamShare
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestTeamCrud:
    async def test_owner_creates_team_and_joins_it(self, client: AsyncClient, owner_user, db_session):
        res = await client.post("/api/v1/teams", json={"name": "Platform", "description": "Infra"},
                                headers=get_auth_headers(owner_user))
        assert res.status_code == 201
        team = res.json()
        assert team["ownerId"] == owner_user.id
        assert team["memberCount"] == 1

        await db_session.refresh(owner_user)
        assert owner_user.team_id == team["id"]

    async def test_head_cannot_create_team(self, client: AsyncClient, alpha_head):
        res = await client.post("/api/v1/teams", json={"name": "Rogue"}, headers=get_auth_headers(alpha_head))
        assert res.status_code == 403

    async def test_list_includes_member_counts(self, client: AsyncClient, alpha_team, alpha_actor, beta_team, loner):
        res = await client.get("/api/v1/teams", headers=get_auth_headers(loner))
        assert res.status_code == 200
        counts = {t["name"]: t["memberCount"] for t in res.json()}
        assert counts == {"Alpha": 2, "Beta": 1}

    async def test_my_team(self, client: AsyncClient, alpha_team, alpha_actor, loner):
        res = await client.get("/api/v1/teams/my-team", headers=get_auth_headers(alpha_actor))
        assert res.status_code == 200
        assert res.json()["id"] == alpha_team.id

        res = await client.get("/api/v1/teams/my-team", headers=get_auth_headers(loner))
        assert res.status_code == 404

    async def test_unknown_team_is_not_found(self, client: AsyncClient, loner):
        res = await client.get("/api/v1/teams/does-not-exist", headers=get_auth_headers(loner))
        assert res.status_code == 404
        assert res.json()["detail"]["code"] == "NOT_FOUND"

    async def test_non_empty_team_cannot_be_deleted(self, client: AsyncClient, owner_user, alpha_team):
        res = await client.delete(f"/api/v1/teams/{alpha_team.id}", headers=get_auth_headers(owner_user))
        assert res.status_code == 409
        assert res.json()["detail"]["code"] == "CONFLICT"

    async def test_empty_team_can_be_deleted(self, client: AsyncClient, owner_user, db_session):
        headers = get_auth_headers(owner_user)
        team_id = (await client.post("/api/v1/teams", json={"name": "Solo"}, headers=headers)).json()["id"]

        res = await client.delete(f"/api/v1/teams/{team_id}", headers=headers)
        assert res.status_code == 409

        # The owner may leave once they are the last member.
        res = await client.delete(f"/api/v1/teams/{team_id}/members/{owner_user.id}", headers=headers)
        assert res.status_code == 204

        res = await client.delete(f"/api/v1/teams/{team_id}", headers=headers)
        assert res.status_code == 204
        await db_session.refresh(owner_user)
        assert owner_user.team_id is None

    async def test_sole_owner_can_be_unassigned_by_admin(self, client: AsyncClient, owner_user, alpha_team, alpha_head):
        headers = get_auth_headers(owner_user)
        res = await client.patch(f"/api/v1/admin/users/{alpha_head.id}/team", json={"teamId": None}, headers=headers)
        assert res.status_code == 200
        assert res.json()["teamId"] is None

        res = await client.delete(f"/api/v1/teams/{alpha_team.id}", headers=headers)
        assert res.status_code == 204

    async def test_creator_already_in_a_team_must_name_an_owner(self, client: AsyncClient, owner_user, loner,
                                                                alpha_actor):
        headers = get_auth_headers(owner_user)
        first = await client.post("/api/v1/teams", json={"name": "First"}, headers=headers)
        assert first.status_code == 201

        res = await client.post("/api/v1/teams", json={"name": "Second"}, headers=headers)
        assert res.status_code == 409

        res = await client.post("/api/v1/teams", json={"name": "Second", "ownerId": alpha_actor.id}, headers=headers)
        assert res.status_code == 409

        res = await client.post("/api/v1/teams", json={"name": "Second", "ownerId": loner.id}, headers=headers)
        assert res.status_code == 201
        assert res.json()["ownerId"] == loner.id
        assert res.json()["memberCount"] == 1

    async def test_ownership_transfer_to_member(self, client: AsyncClient, owner_user, alpha_team, alpha_lead, beta_actor):
        headers = get_auth_headers(owner_user)
        outsider = await client.patch(f"/api/v1/teams/{alpha_team.id}", json={"ownerId": beta_actor.id}, headers=headers)
        assert outsider.status_code == 409

        res = await client.patch(f"/api/v1/teams/{alpha_team.id}", json={"ownerId": alpha_lead.id}, headers=headers)
        assert res.status_code == 200
        assert res.json()["ownerId"] == alpha_lead.id


@pytest.mark.asyncio
class TestMembership:
    async def test_head_adds_member_to_own_team(self, client: AsyncClient, alpha_head, alpha_team, loner, db_session):
        res = await client.post(f"/api/v1/teams/{alpha_team.id}/members", json={"userId": loner.id},
                                headers=get_auth_headers(alpha_head))
        assert res.status_code == 201
        assert res.json()["teamId"] == alpha_team.id

        notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == loner.id)
        )).scalars().all()
        assert [n.type for n in notes] == [NotificationType.TEAM_INVITE]

    async def test_add_existing_member_conflicts(self, client: AsyncClient, alpha_head, alpha_team, alpha_actor):
        res = await client.post(f"/api/v1/teams/{alpha_team.id}/members", json={"userId": alpha_actor.id},
                                headers=get_auth_headers(alpha_head))
        assert res.status_code == 409

    async def test_head_cannot_manage_other_team(self, client: AsyncClient, alpha_head, beta_team, loner):
        res = await client.post(f"/api/v1/teams/{beta_team.id}/members", json={"userId": loner.id},
                                headers=get_auth_headers(alpha_head))
        assert res.status_code == 403

    async def test_lead_cannot_add_members(self, client: AsyncClient, alpha_lead, alpha_team, loner):
        res = await client.post(f"/api/v1/teams/{alpha_team.id}/members", json={"userId": loner.id},
                                headers=get_auth_headers(alpha_lead))
        assert res.status_code == 403

    async def test_remove_member(self, client: AsyncClient, alpha_head, alpha_team, alpha_actor, db_session):
        res = await client.delete(f"/api/v1/teams/{alpha_team.id}/members/{alpha_actor.id}",
                                  headers=get_auth_headers(alpha_head))
        assert res.status_code == 204
        await db_session.refresh(alpha_actor)
        assert alpha_actor.team_id is None

    async def test_remove_non_member_conflicts(self, client: AsyncClient, alpha_head, alpha_team, beta_actor):
        res = await client.delete(f"/api/v1/teams/{alpha_team.id}/members/{beta_actor.id}",
                                  headers=get_auth_headers(alpha_head))
        assert res.status_code == 409

    async def test_team_owner_cannot_be_removed(self, client: AsyncClient, owner_user, alpha_team, alpha_head,
                                                 alpha_actor):
        res = await client.delete(f"/api/v1/teams/{alpha_team.id}/members/{alpha_head.id}",
                                  headers=get_auth_headers(owner_user))
        assert res.status_code == 403

    async def test_transfer_member(self, client: AsyncClient, owner_user, alpha_team, beta_team, alpha_actor):
        res = await client.patch(
            f"/api/v1/teams/{alpha_team.id}/members/{alpha_actor.id}/transfer/{beta_team.id}",
            headers=get_auth_headers(owner_user),
        )
        assert res.status_code == 200
        assert res.json()["teamId"] == beta_team.id

    async def test_team_owner_cannot_be_transferred_away(self, client: AsyncClient, owner_user, alpha_team, beta_team, alpha_head):
        res = await client.patch(
            f"/api/v1/teams/{alpha_team.id}/members/{alpha_head.id}/transfer/{beta_team.id}",
            headers=get_auth_headers(owner_user),
        )
        assert res.status_code == 409

    async def test_list_members(self, client: AsyncClient, alpha_team, alpha_actor, alpha_head, beta_actor):
        res = await client.get(f"/api/v1/teams/{alpha_team.id}/members", headers=get_auth_headers(beta_actor))
        assert res.status_code == 200
        assert {m["id"] for m in res.json()} == {alpha_actor.id, alpha_head.id}


@pytest.mark.asyncio
class TestTeamShares:
    async def _share(self, client, user, from_team, to_team, **flags):
        body = {"toTeamId": to_team.id, **flags}
        return await client.post(f"/api/v1/teams/{from_team.id}/shares", json=body, headers=get_auth_headers(user))

    async def test_create_and_list(self, client: AsyncClient, alpha_head, alpha_team, beta_team, beta_actor):
        res = await self._share(client, alpha_head, alpha_team, beta_team, shareTasks=True)
        assert res.status_code == 201
        share = res.json()
        assert share["shareTasks"] is True
        assert share["shareSchedules"] is False

        listing = await client.get(f"/api/v1/teams/{beta_team.id}/shares", headers=get_auth_headers(beta_actor))
        assert listing.status_code == 200
        body = listing.json()
        assert body["sharingTo"] == []
        assert body["receivingFrom"][0]["fromTeamName"] == "Alpha"

    async def test_duplicate_pair_conflicts(self, client: AsyncClient, alpha_head, alpha_team, beta_team):
        assert (await self._share(client, alpha_head, alpha_team, beta_team)).status_code == 201
        res = await self._share(client, alpha_head, alpha_team, beta_team, shareSchedules=True)
        assert res.status_code == 409
        assert res.json()["detail"]["code"] == "CONFLICT"

    async def test_reverse_direction_is_a_separate_edge(self, client: AsyncClient, alpha_head, beta_head, alpha_team, beta_team):
        assert (await self._share(client, alpha_head, alpha_team, beta_team)).status_code == 201
        assert (await self._share(client, beta_head, beta_team, alpha_team)).status_code == 201

    async def test_self_edge_rejected(self, client: AsyncClient, alpha_head, alpha_team):
        res = await self._share(client, alpha_head, alpha_team, alpha_team, shareTasks=True)
        assert res.status_code == 400
        assert res.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_head_of_other_team_cannot_share_for_it(self, client: AsyncClient, beta_head, alpha_team, beta_team):
        res = await self._share(client, beta_head, alpha_team, beta_team, shareTasks=True)
        assert res.status_code == 403

    async def test_owner_can_share_any_team(self, client: AsyncClient, owner_user, alpha_team, beta_team):
        res = await self._share(client, owner_user, alpha_team, beta_team, shareTasks=True)
        assert res.status_code == 201

    async def test_unknown_target_team(self, client: AsyncClient, alpha_head, alpha_team):
        res = await client.post(f"/api/v1/teams/{alpha_team.id}/shares", json={"toTeamId": "nope"},
                                headers=get_auth_headers(alpha_head))
        assert res.status_code == 404

    async def test_update_and_remove_are_audited(self, client: AsyncClient, alpha_head, alpha_team, beta_team, db_session):
        share_id = (await self._share(client, alpha_head, alpha_team, beta_team)).json()["id"]
        headers = get_auth_headers(alpha_head)

        res = await client.patch(f"/api/v1/teams/shares/{share_id}", json={"shareSchedules": True}, headers=headers)
        assert res.status_code == 200
        assert res.json()["shareSchedules"] is True

        res = await client.delete(f"/api/v1/teams/shares/{share_id}", headers=headers)
        assert res.status_code == 204
        assert (await db_session.execute(select(TeamShare))).scalars().all() == []

        events = (await db_session.execute(
            select(AuditLog.event_type).where(AuditLog.entity_id == share_id).order_by(AuditLog.created_at)
        )).scalars().all()
        assert set(events) == {
            AuditEventType.TEAM_SHARE_CREATED, AuditEventType.TEAM_SHARE_UPDATED, AuditEventType.TEAM_SHARE_REMOVED,
        }

    async def test_shared_tasks_listing(self, client: AsyncClient, db_session, alpha_head, alpha_team, beta_team, beta_actor):
        db_session.add(Task(title="Alpha roadmap", creator_id=alpha_head.id, team_id=alpha_team.id))
        await db_session.commit()
        url = f"/api/v1/teams/{beta_team.id}/shared-tasks"

        assert (await client.get(url, headers=get_auth_headers(beta_actor))).json() == []

        await self._share(client, alpha_head, alpha_team, beta_team, shareTasks=True)
        res = await client.get(url, headers=get_auth_headers(beta_actor))
        assert res.status_code == 200
        assert [t["title"] for t in res.json()] == ["Alpha roadmap"]

    async def test_shared_listing_requires_membership(self, client: AsyncClient, alpha_actor, beta_team):
        res = await client.get(f"/api/v1/teams/{beta_team.id}/shared-tasks", headers=get_auth_headers(alpha_actor))
        assert res.status_code == 403

    async def test_deleting_team_removes_its_edges(self, client: AsyncClient, db_session, owner_user, alpha_team):
        headers = get_auth_headers(owner_user)
        gamma_id = (await client.post("/api/v1/teams", json={"name": "Gamma"}, headers=headers)).json()["id"]
        res = await client.post(f"/api/v1/teams/{alpha_team.id}/shares",
                                json={"toTeamId": gamma_id, "shareTasks": True}, headers=headers)
        assert res.status_code == 201

        # The owner joined Gamma on creation and leaves it as its last member.
        res = await client.delete(f"/api/v1/teams/{gamma_id}/members/{owner_user.id}", headers=headers)
        assert res.status_code == 204

        res = await client.delete(f"/api/v1/teams/{gamma_id}", headers=headers)
        assert res.status_code == 204
        assert (await db_session.execute(select(TeamShare))).scalars().all() == []
