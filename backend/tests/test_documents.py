"""Tests for the team Documents router"""
import pytest
from httpx import AsyncClient
from tests.conftest import get_auth_headers


async def _create(client: AsyncClient, user, **body):
    payload = {"title": "Onboarding", "content": "Read the handbook first.", **body}
    r = await client.post("/api/v1/documents", json=payload, headers=get_auth_headers(user))
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_create_in_own_team(client: AsyncClient, alpha_actor, alpha_team):
    doc = await _create(client, alpha_actor, tags=["Guide", "guide", " HR "])
    assert doc["teamId"] == alpha_team.id
    assert doc["creatorId"] == alpha_actor.id
    assert doc["tags"] == ["guide", "hr"]


@pytest.mark.asyncio
async def test_create_in_other_team_forbidden(client: AsyncClient, alpha_actor, beta_team):
    r = await client.post("/api/v1/documents", json={
        "title": "Sneaky", "content": "x", "teamId": beta_team.id,
    }, headers=get_auth_headers(alpha_actor))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_owner_creates_in_any_team(client: AsyncClient, owner_user, beta_team):
    doc = await _create(client, owner_user, teamId=beta_team.id)
    assert doc["teamId"] == beta_team.id


@pytest.mark.asyncio
async def test_teamless_caller_needs_team_id(client: AsyncClient, loner):
    r = await client.post("/api/v1/documents", json={"title": "x", "content": "y"}, headers=get_auth_headers(loner))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_too_many_tags(client: AsyncClient, alpha_actor):
    r = await client.post("/api/v1/documents", json={
        "title": "x", "content": "y", "tags": [f"t{i}" for i in range(21)],
    }, headers=get_auth_headers(alpha_actor))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_list_is_team_scoped(client: AsyncClient, alpha_actor, beta_actor, owner_user, alpha_team):
    await _create(client, alpha_actor, title="Alpha doc")
    await _create(client, beta_actor, title="Beta doc")

    r = await client.get("/api/v1/documents", headers=get_auth_headers(alpha_actor))
    assert [d["title"] for d in r.json()["data"]] == ["Alpha doc"]

    r = await client.get("/api/v1/documents", headers=get_auth_headers(owner_user))
    assert r.json()["total"] == 2
    r = await client.get(f"/api/v1/documents?teamId={alpha_team.id}", headers=get_auth_headers(owner_user))
    assert r.json()["total"] == 1


@pytest.mark.asyncio
async def test_list_other_team_forbidden(client: AsyncClient, alpha_actor, beta_team):
    r = await client.get(f"/api/v1/documents?teamId={beta_team.id}", headers=get_auth_headers(alpha_actor))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_list_for_teamless_caller_is_empty(client: AsyncClient, loner):
    r = await client.get("/api/v1/documents", headers=get_auth_headers(loner))
    assert r.json() == {"data": [], "total": 0}


@pytest.mark.asyncio
async def test_filter_by_tag_and_search(client: AsyncClient, alpha_actor):
    await _create(client, alpha_actor, title="Deploy runbook", tags=["ops"])
    await _create(client, alpha_actor, title="Vacation policy", tags=["hr"])
    headers = get_auth_headers(alpha_actor)

    r = await client.get("/api/v1/documents?tag=OPS", headers=headers)
    assert [d["title"] for d in r.json()["data"]] == ["Deploy runbook"]
    r = await client.get("/api/v1/documents?search=vacation", headers=headers)
    assert [d["title"] for d in r.json()["data"]] == ["Vacation policy"]


@pytest.mark.asyncio
async def test_teammate_reads_outsider_does_not(client: AsyncClient, alpha_actor, alpha_lead, beta_actor):
    doc = await _create(client, alpha_actor)
    r = await client.get(f"/api/v1/documents/{doc['id']}", headers=get_auth_headers(alpha_lead))
    assert r.status_code == 200
    r = await client.get(f"/api/v1/documents/{doc['id']}", headers=get_auth_headers(beta_actor))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_only_author_or_owner_edits(client: AsyncClient, alpha_actor, alpha_head, owner_user):
    doc = await _create(client, alpha_actor)
    r = await client.patch(f"/api/v1/documents/{doc['id']}", json={"title": "Mine"},
                           headers=get_auth_headers(alpha_head))
    assert r.status_code == 403

    r = await client.patch(f"/api/v1/documents/{doc['id']}", json={"title": "Renamed", "tags": ["New"]},
                           headers=get_auth_headers(alpha_actor))
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed"
    assert r.json()["tags"] == ["new"]

    r = await client.delete(f"/api/v1/documents/{doc['id']}", headers=get_auth_headers(alpha_head))
    assert r.status_code == 403
    r = await client.delete(f"/api/v1/documents/{doc['id']}", headers=get_auth_headers(owner_user))
    assert r.status_code == 204
    r = await client.get(f"/api/v1/documents/{doc['id']}", headers=get_auth_headers(owner_user))
    assert r.status_code == 404
