# routers/cards.py — Card deletion, voting and discussion comments
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from retro_service import RetroService, VoteResult

router = APIRouter(prefix="/api/v1", tags=["Cards"])


class CommentCreate(BaseModel):
    content: str


class CommentCreated(BaseModel):
    id: str
    card_id: str


@router.delete("/cards/{card_id}")
async def delete_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await RetroService(db).delete_card(card_id, user.id)
    return {"status": "deleted", "card_id": card_id}


# --- Votes ---

@router.post("/cards/{card_id}/votes", response_model=VoteResult)
async def vote_for_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await RetroService(db).vote_for_card(card_id, user.id)


@router.delete("/cards/{card_id}/votes", response_model=VoteResult)
async def remove_vote(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await RetroService(db).remove_vote(card_id, user.id)


# --- Comments ---

@router.post("/cards/{card_id}/comments", response_model=CommentCreated, status_code=201)
async def create_comment(
    card_id: str,
    body: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment_id = await RetroService(db).create_comment(card_id, user.id, body.content)
    return CommentCreated(id=comment_id, card_id=card_id)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await RetroService(db).delete_comment(comment_id, user.id)
    return {"status": "deleted", "comment_id": comment_id}
