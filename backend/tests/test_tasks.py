# tests/test_tasks.py — Tasks, comments, history and share-aware visibility
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Notification, NotificationType, TeamShare
from tests.conftest import get_auth_headers


async def _create(client: AsyncClient, user, **body):
    body.setdefault("title", "Write release notes")
    res = await client.post("/api/v1/tasks", json=body, headers=get_auth_headers(user))
    assert res.status_code == 201, res.text
    return res.json()


@pytest.mark.asyncio
class TestTaskCrud:
    async def test_create_defaults_to_callers_team(self, client: AsyncClient, alpha_actor, alpha_team):
        task = await _create(client, alpha_actor)
        assert task["teamId"] == alpha_team.id
        assert task["status"] == "TODO"
        assert task["priority"] == "P2"
        assert task["creatorId"] == alpha_actor.id

    async def test_create_with_unknown_assignee(self, client: AsyncClient, alpha_actor):
        res = await client.post("/api/v1/tasks", json={"title": "x", "assigneeId": "ghost"},
                                headers=get_auth_headers(alpha_actor))
        assert res.status_code == 404

    async def test_invalid_status_is_rejected(self, client: AsyncClient, alpha_actor):
        res = await client.post("/api/v1/tasks", json={"title": "x", "status": "BLOCKED"},
                                headers=get_auth_headers(alpha_actor))
        assert res.status_code == 422

    async def test_assignment_notifies_assignee(self, client: AsyncClient, alpha_actor, alpha_lead, db_session):
        await _create(client, alpha_lead, assigneeId=alpha_actor.id)
        notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == alpha_actor.id)
        )).scalars().all()
        assert [n.type for n in notes] == [NotificationType.TASK_ASSIGNED]

    async def test_update_records_history(self, client: AsyncClient, alpha_actor):
        task = await _create(client, alpha_actor)
        headers = get_auth_headers(alpha_actor)
        res = await client.patch(f"/api/v1/tasks/{task['id']}", json={"status": "IN_PROGRESS", "priority": "P0"},
                                 headers=headers)
        assert res.status_code == 200
        assert res.json()["status"] == "IN_PROGRESS"

        history = (await client.get(f"/api/v1/tasks/{task['id']}/history", headers=headers)).json()
        fields = {h["fieldName"]: (h["oldValue"], h["newValue"]) for h in history}
        assert fields["status"] == ("TODO", "IN_PROGRESS")
        assert fields["priority"] == ("P2", "P0")
        assert "created" in fields

    async def test_completion_notifies_creator(self, client: AsyncClient, alpha_lead, alpha_actor, db_session):
        task = await _create(client, alpha_lead, assigneeId=alpha_actor.id)
        await client.patch(f"/api/v1/tasks/{task['id']}", json={"status": "DONE"}, headers=get_auth_headers(alpha_actor))
        notes = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == alpha_lead.id)
        )).scalars().all()
        assert NotificationType.TASK_COMPLETED in notes

    async def test_teammate_reads_but_cannot_edit(self, client: AsyncClient, alpha_actor, alpha_lead):
        task = await _create(client, alpha_actor)
        headers = get_auth_headers(alpha_lead)
        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=headers)).status_code == 200
        res = await client.patch(f"/api/v1/tasks/{task['id']}", json={"title": "hijack"}, headers=headers)
        assert res.status_code == 403
        res = await client.delete(f"/api/v1/tasks/{task['id']}", headers=headers)
        assert res.status_code == 403

    async def test_assignee_may_edit_and_delete(self, client: AsyncClient, alpha_lead, beta_actor):
        task = await _create(client, alpha_lead, assigneeId=beta_actor.id)
        headers = get_auth_headers(beta_actor)
        assert (await client.patch(f"/api/v1/tasks/{task['id']}", json={"title": "mine now"}, headers=headers)).status_code == 200
        assert (await client.delete(f"/api/v1/tasks/{task['id']}", headers=headers)).status_code == 204

    async def test_owner_role_may_delete_anything(self, client: AsyncClient, alpha_actor, owner_user):
        task = await _create(client, alpha_actor)
        res = await client.delete(f"/api/v1/tasks/{task['id']}", headers=get_auth_headers(owner_user))
        assert res.status_code == 204
        res = await client.get(f"/api/v1/tasks/{task['id']}", headers=get_auth_headers(owner_user))
        assert res.status_code == 404

    async def test_missing_task_is_404_not_403(self, client: AsyncClient, beta_actor):
        res = await client.get("/api/v1/tasks/missing", headers=get_auth_headers(beta_actor))
        assert res.status_code == 404

    async def test_my_and_created(self, client: AsyncClient, alpha_lead, alpha_actor):
        await _create(client, alpha_lead, title="for actor", assigneeId=alpha_actor.id)
        await _create(client, alpha_actor, title="own")
        mine = (await client.get("/api/v1/tasks/my", headers=get_auth_headers(alpha_actor))).json()
        created = (await client.get("/api/v1/tasks/created", headers=get_auth_headers(alpha_actor))).json()
        assert [t["title"] for t in mine] == ["for actor"]
        assert [t["title"] for t in created] == ["own"]


@pytest.mark.asyncio
class TestTaskSharing:
    async def test_team_share_scenario(self, client: AsyncClient, db_session, alpha_head, alpha_team,
                                       beta_team, beta_actor):
        """A task of Alpha becomes readable to Beta only while Alpha shares tasks with Beta."""
        task = await _create(client, alpha_head, title="Alpha secret")
        beta = get_auth_headers(beta_actor)

        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=beta)).status_code == 403
        listing = (await client.get("/api/v1/tasks", headers=beta)).json()
        assert listing["total"] == 0

        # Schedules-only edge does not grant tasks.
        share = await client.post(f"/api/v1/teams/{alpha_team.id}/shares",
                                  json={"toTeamId": beta_team.id, "shareSchedules": True},
                                  headers=get_auth_headers(alpha_head))
        share_id = share.json()["id"]
        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=beta)).status_code == 403

        await client.patch(f"/api/v1/teams/shares/{share_id}", json={"shareTasks": True},
                           headers=get_auth_headers(alpha_head))
        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=beta)).status_code == 200
        listing = (await client.get("/api/v1/tasks", headers=beta)).json()
        assert [t["title"] for t in listing["data"]] == ["Alpha secret"]

        # Read access only.
        res = await client.patch(f"/api/v1/tasks/{task['id']}", json={"title": "edited"}, headers=beta)
        assert res.status_code == 403

        # The edge is directed: Alpha gains nothing on Beta's tasks.
        beta_task = await _create(client, beta_actor, title="Beta thing")
        res = await client.get(f"/api/v1/tasks/{beta_task['id']}", headers=get_auth_headers(alpha_head))
        assert res.status_code == 403

        await client.delete(f"/api/v1/teams/shares/{share_id}", headers=get_auth_headers(alpha_head))
        assert (await db_session.execute(select(TeamShare))).scalars().all() == []
        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=beta)).status_code == 403

    async def test_owner_lists_everything(self, client: AsyncClient, alpha_actor, beta_actor, owner_user):
        await _create(client, alpha_actor)
        await _create(client, beta_actor)
        listing = (await client.get("/api/v1/tasks", headers=get_auth_headers(owner_user))).json()
        assert listing["total"] == 2

    async def test_list_filters(self, client: AsyncClient, alpha_actor):
        await _create(client, alpha_actor, title="Fix login bug", priority="P0")
        await _create(client, alpha_actor, title="Write docs", priority="P3")
        headers = get_auth_headers(alpha_actor)
        res = await client.get("/api/v1/tasks", params={"priority": "P0"}, headers=headers)
        assert [t["title"] for t in res.json()["data"]] == ["Fix login bug"]
        res = await client.get("/api/v1/tasks", params={"search": "docs"}, headers=headers)
        assert [t["title"] for t in res.json()["data"]] == ["Write docs"]


@pytest.mark.asyncio
class TestComments:
    async def test_comment_flow(self, client: AsyncClient, alpha_actor, alpha_lead, db_session):
        task = await _create(client, alpha_actor)
        res = await client.post(f"/api/v1/tasks/{task['id']}/comments", json={"content": "Looks good"},
                                headers=get_auth_headers(alpha_lead))
        assert res.status_code == 201
        comment = res.json()

        listing = await client.get(f"/api/v1/tasks/{task['id']}/comments", headers=get_auth_headers(alpha_actor))
        assert [c["content"] for c in listing.json()] == ["Looks good"]

        notes = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == alpha_actor.id)
        )).scalars().all()
        assert notes == [NotificationType.TASK_COMMENT]

        # Task creator may delete someone else's comment.
        res = await client.delete(f"/api/v1/tasks/{task['id']}/comments/{comment['id']}",
                                  headers=get_auth_headers(alpha_actor))
        assert res.status_code == 204

    async def test_outsider_cannot_comment(self, client: AsyncClient, alpha_actor, beta_actor):
        task = await _create(client, alpha_actor)
        res = await client.post(f"/api/v1/tasks/{task['id']}/comments", json={"content": "hi"},
                                headers=get_auth_headers(beta_actor))
        assert res.status_code == 403

    async def test_teammate_cannot_delete_others_comment(self, client: AsyncClient, alpha_actor, alpha_lead, alpha_head):
        task = await _create(client, alpha_actor)
        comment = (await client.post(f"/api/v1/tasks/{task['id']}/comments", json={"content": "mine"},
                                     headers=get_auth_headers(alpha_lead))).json()
        res = await client.delete(f"/api/v1/tasks/{task['id']}/comments/{comment['id']}",
                                  headers=get_auth_headers(alpha_head))
        assert res.status_code == 403

    async def test_comment_must_belong_to_task(self, client: AsyncClient, alpha_actor):
        first = await _create(client, alpha_actor, title="one")
        second = await _create(client, alpha_actor, title="two")
        comment = (await client.post(f"/api/v1/tasks/{first['id']}/comments", json={"content": "x"},
                                     headers=get_auth_headers(alpha_actor))).json()
        res = await client.delete(f"/api/v1/tasks/{second['id']}/comments/{comment['id']}",
                                  headers=get_auth_headers(alpha_actor))
        assert res.status_code == 404
