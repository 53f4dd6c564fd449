# tests/test_retros_api.py — Retro creation, listing and HTTP lifecycle tests
import pytest
from httpx import AsyncClient

from models import User, UserRole
from retro_errors import Forbidden, NotFound, ValidationError
from retro_service import MAX_VOTES_LIMIT, RetroConfig
from template_catalog import ColumnDraft
from tests.conftest import LIKED, get_auth_headers


@pytest.mark.asyncio
async def test_create_retro_defaults(service, test_team, test_user, built_in_templates):
    retro = await service.create_retro(test_team.id, "template-4ls", RetroConfig(name="  Sprint 7  "), test_user.id)
    assert retro.name == "Sprint 7"
    assert retro.status.value == "draft"
    assert retro.is_anonymous is True
    assert retro.vote_type.value == "multi"
    assert retro.max_votes_per_user == 3
    assert retro.timer_duration is None


@pytest.mark.asyncio
@pytest.mark.parametrize("config", [
    {"name": ""},
    {"name": "R", "vote_type": "ranked"},
    {"name": "R", "max_votes_per_user": 0},
    {"name": "R", "max_votes_per_user": MAX_VOTES_LIMIT + 1},
    {"name": "R", "timer_duration": 0},
])
async def test_create_retro_rejects_bad_config(service, test_team, test_user, built_in_templates, config):
    with pytest.raises(ValidationError):
        await service.create_retro(test_team.id, "template-4ls", RetroConfig(**config), test_user.id)


@pytest.mark.asyncio
async def test_single_vote_retro_ignores_vote_limit(service, test_team, test_user, built_in_templates):
    retro = await service.create_retro(
        test_team.id, "template-4ls",
        RetroConfig(name="R", vote_type="single", max_votes_per_user=MAX_VOTES_LIMIT + 1),
        test_user.id,
    )
    assert retro.vote_type.value == "single"

    view = await service.get_retro_view(retro.id, test_user.id)
    assert view.max_votes_per_user == 1


@pytest.mark.asyncio
async def test_create_retro_requires_membership(service, test_team, outsider, built_in_templates):
    with pytest.raises(Forbidden):
        await service.create_retro(test_team.id, "template-4ls", RetroConfig(name="R"), outsider.id)


@pytest.mark.asyncio
async def test_create_retro_unknown_team_or_template(service, test_team, test_user, built_in_templates):
    with pytest.raises(NotFound):
        await service.create_retro("no-team", "template-4ls", RetroConfig(name="R"), test_user.id)
    with pytest.raises(NotFound):
        await service.create_retro(test_team.id, "no-template", RetroConfig(name="R"), test_user.id)


@pytest.mark.asyncio
async def test_create_retro_rejects_foreign_org_template(service, db_session, test_team, test_user, other_org):
    foreign_admin = User(
        email="admin@other.dev", display_name="Other Admin",
        organisation_id=other_org.id, role=UserRole.ORG_ADMIN,
    )
    db_session.add(foreign_admin)
    await db_session.commit()

    template = await service.create_template(
        other_org.id, foreign_admin.id, "Theirs", None, [ColumnDraft(name="Only")],
    )
    template_id = template.id
    with pytest.raises(ValidationError):
        await service.create_retro(test_team.id, template_id, RetroConfig(name="R"), test_user.id)


@pytest.mark.asyncio
async def test_list_team_retros_newest_first(service, make_retro, lead_user, test_user, test_team):
    older = await make_retro(name="Older")
    newer = await make_retro(name="Newer")
    await service.start_retro(older, lead_user.id)
    await service.create_card(older, LIKED, test_user.id, "One")

    summaries = await service.list_team_retros(test_team.id, test_user.id)
    assert [s.id for s in summaries] == [newer, older]
    assert summaries[1].card_count == 1
    assert summaries[1].status == "active"
    assert summaries[0].template_name == "4Ls"


@pytest.mark.asyncio
async def test_list_team_retros_requires_membership(service, make_retro, test_team, outsider):
    await make_retro()
    with pytest.raises(Forbidden):
        await service.list_team_retros(test_team.id, outsider.id)


# ============================================================
# HTTP
# ============================================================

@pytest.mark.asyncio
async def test_retro_lifecycle_over_http(client: AsyncClient, test_team, lead_user, test_user, built_in_templates):
    lead = get_auth_headers(lead_user)
    member = get_auth_headers(test_user)

    resp = await client.post("/api/v1/retros", json={
        "team_id": test_team.id,
        "template_id": "template-4ls",
        "name": "Sprint 12",
        "timer_duration": 600,
    }, headers=lead)
    assert resp.status_code == 201
    retro = resp.json()
    assert retro["status"] == "draft"
    assert retro["template_name"] == "4Ls"
    retro_id = retro["id"]

    resp = await client.post(f"/api/v1/retros/{retro_id}/join", headers=member)
    assert resp.status_code == 200

    resp = await client.post(f"/api/v1/retros/{retro_id}/start", headers=member)
    assert resp.status_code == 403
    assert resp.json()["code"] == "RETRO-AUTH-001"

    resp = await client.post(f"/api/v1/retros/{retro_id}/voting", headers=lead)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "invalid_transition"

    resp = await client.post(f"/api/v1/retros/{retro_id}/start", headers=lead)
    assert resp.status_code == 200
    assert resp.json()["status"] == "active"
    assert resp.json()["timer_ends_at"] is not None

    resp = await client.get(f"/api/v1/retros/{retro_id}", headers=member)
    assert resp.status_code == 200
    view = resp.json()
    assert view["has_joined"] is True
    assert 0 < view["time_remaining"] <= 600
    assert [c["id"] for c in view["columns"]][0] == LIKED

    for step in ("voting", "discussion", "complete"):
        resp = await client.post(f"/api/v1/retros/{retro_id}/{step}", headers=lead)
        assert resp.status_code == 200
    assert resp.json()["status"] == "completed"

    resp = await client.get("/api/v1/retros", params={"team_id": test_team.id}, headers=member)
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == [retro_id]


@pytest.mark.asyncio
async def test_create_retro_http_validation(client: AsyncClient, test_team, test_user, built_in_templates):
    resp = await client.post("/api/v1/retros", json={
        "team_id": test_team.id,
        "template_id": "template-4ls",
        "name": "Bad",
        "vote_type": "weighted",
    }, headers=get_auth_headers(test_user))
    assert resp.status_code == 422
    assert resp.json()["kind"] == "validation_error"

    resp = await client.post("/api/v1/retros", json={"team_id": test_team.id}, headers=get_auth_headers(test_user))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unknown_retro_http(client: AsyncClient, test_user):
    resp = await client.get("/api/v1/retros/missing", headers=get_auth_headers(test_user))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Retrospective not found"


@pytest.mark.asyncio
async def test_health_and_root(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert "X-Request-ID" in resp.headers

    resp = await client.get("/")
    assert resp.json()["name"] == "RetroBoard"
