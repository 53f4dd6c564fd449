# tests/test_cards_comments.py — Card and comment lifecycle tests
import pytest
from httpx import AsyncClient

from retro_errors import Forbidden, InvalidPhase, NotFound, ValidationError
from retro_service import MAX_CONTENT_LENGTH
from tests.conftest import LIKED, LEARNED, advance_to, get_auth_headers


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["draft", "voting", "discussing", "completed"])
async def test_create_card_outside_active(service, make_retro, lead_user, test_user, status):
    retro_id = await make_retro()
    await advance_to(service, retro_id, lead_user.id, status)
    with pytest.raises(InvalidPhase) as exc_info:
        await service.create_card(retro_id, LIKED, test_user.id, "Too late")
    assert "'active'" in exc_info.value.message


@pytest.mark.asyncio
async def test_create_card_content_rules(service, make_retro, lead_user, test_user):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)

    with pytest.raises(ValidationError):
        await service.create_card(retro_id, LIKED, test_user.id, "   ")
    with pytest.raises(ValidationError):
        await service.create_card(retro_id, LIKED, test_user.id, "x" * (MAX_CONTENT_LENGTH + 1))

    card_id = await service.create_card(retro_id, LIKED, test_user.id, "  Fast CI builds  ")
    view = await service.get_retro_view(retro_id, test_user.id)
    liked = next(col for col in view.columns if col.id == LIKED)
    assert [(c.id, c.content) for c in liked.cards] == [(card_id, "Fast CI builds")]


@pytest.mark.asyncio
async def test_create_card_rejects_foreign_column(service, make_retro, lead_user, test_user):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    # column from a different built-in template
    with pytest.raises(ValidationError):
        await service.create_card(retro_id, "appreciation-spirit", test_user.id, "Nice")


@pytest.mark.asyncio
async def test_outsider_cannot_add_card(service, make_retro, lead_user, outsider):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    with pytest.raises(Forbidden):
        await service.create_card(retro_id, LIKED, outsider.id, "Hello")


@pytest.mark.asyncio
async def test_delete_card_author_only(service, make_retro, lead_user, test_user, second_user):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    card_id = await service.create_card(retro_id, LEARNED, test_user.id, "Feature flags")

    with pytest.raises(Forbidden):
        await service.delete_card(card_id, second_user.id)

    await service.delete_card(card_id, test_user.id)
    with pytest.raises(NotFound):
        await service.delete_card(card_id, test_user.id)

    view = await service.get_retro_view(retro_id, test_user.id)
    assert view.card_count == 0


@pytest.mark.asyncio
async def test_delete_card_after_active(service, make_retro, lead_user, test_user):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    card_id = await service.create_card(retro_id, LIKED, test_user.id, "Standups")
    await service.move_to_voting(retro_id, lead_user.id)
    with pytest.raises(InvalidPhase):
        await service.delete_card(card_id, test_user.id)


# ============================================================
# COMMENTS
# ============================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["active", "voting", "completed"])
async def test_comment_outside_discussion(service, make_retro, lead_user, test_user, status):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    card_id = await service.create_card(retro_id, LIKED, test_user.id, "Retro snacks")
    await advance_to(service, retro_id, lead_user.id, status, start="active")

    with pytest.raises(InvalidPhase) as exc_info:
        await service.create_comment(card_id, test_user.id, "Yes!")
    assert "'discussing'" in exc_info.value.message


@pytest.mark.asyncio
async def test_comments_visible_from_discussion(service, make_retro, lead_user, test_user, second_user):
    retro_id = await make_retro(is_anonymous=False)
    await service.start_retro(retro_id, lead_user.id)
    card_id = await service.create_card(retro_id, LIKED, test_user.id, "Demo day")

    view = await service.get_retro_view(retro_id, test_user.id)
    assert view.columns[0].cards[0].comments is None

    await service.move_to_voting(retro_id, lead_user.id)
    await service.move_to_discussion(retro_id, lead_user.id)
    first = await service.create_comment(card_id, second_user.id, "Loved it")
    second = await service.create_comment(card_id, test_user.id, "Same time next sprint?")

    view = await service.get_retro_view(retro_id, test_user.id)
    comments = view.columns[0].cards[0].comments
    assert [c.id for c in comments] == [first, second]
    assert comments[0].author.name == "Second User"
    assert comments[1].is_own is True


@pytest.mark.asyncio
async def test_delete_comment_author_only(service, make_retro, lead_user, test_user, second_user):
    retro_id = await make_retro()
    await service.start_retro(retro_id, lead_user.id)
    card_id = await service.create_card(retro_id, LIKED, test_user.id, "Mob reviews")
    await service.move_to_voting(retro_id, lead_user.id)
    await service.move_to_discussion(retro_id, lead_user.id)
    comment_id = await service.create_comment(card_id, second_user.id, "+1")

    # no lead override for comments
    with pytest.raises(Forbidden):
        await service.delete_comment(comment_id, lead_user.id)
    await service.delete_comment(comment_id, second_user.id)

    with pytest.raises(NotFound):
        await service.delete_comment(comment_id, second_user.id)


# ============================================================
# HTTP
# ============================================================

@pytest.mark.asyncio
async def test_card_and_comment_endpoints(client: AsyncClient, service, make_retro, lead_user, test_user):
    retro_id = await make_retro()
    headers = get_auth_headers(test_user)

    resp = await client.post(f"/api/v1/retros/{retro_id}/cards", json={"column_id": LIKED, "content": "Hi"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "invalid_phase"
    assert "'active'" in resp.json()["detail"]

    await service.start_retro(retro_id, lead_user.id)
    resp = await client.post(f"/api/v1/retros/{retro_id}/cards", json={"column_id": LIKED, "content": ""}, headers=headers)
    assert resp.status_code == 422
    assert resp.json()["code"] == "RETRO-INPUT-001"

    resp = await client.post(f"/api/v1/retros/{retro_id}/cards", json={"column_id": LIKED, "content": "Hi"}, headers=headers)
    assert resp.status_code == 201
    card_id = resp.json()["id"]

    await service.move_to_voting(retro_id, lead_user.id)
    await service.move_to_discussion(retro_id, lead_user.id)

    resp = await client.post(f"/api/v1/cards/{card_id}/comments", json={"content": "Agreed"}, headers=headers)
    assert resp.status_code == 201
    comment_id = resp.json()["id"]

    resp = await client.delete(f"/api/v1/comments/{comment_id}", headers=headers)
    assert resp.status_code == 200

    resp = await client.delete(f"/api/v1/cards/{card_id}", headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_unknown_card_endpoint(client: AsyncClient, test_user):
    resp = await client.delete("/api/v1/cards/nope", headers=get_auth_headers(test_user))
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"
