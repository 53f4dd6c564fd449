# routers/retros.py — Retrospective sessions: creation, joining, phases, read model
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from retro_service import RetroService, RetroConfig, ActionItemDraft
from models import as_utc
from retro_view import ActionItemOut, RetroSummary, RetroView, summarize_retro

router = APIRouter(prefix="/api/v1/retros", tags=["Retrospectives"])


# ============================================================
# SCHEMAS
# ============================================================

class RetroCreate(BaseModel):
    team_id: str
    template_id: str
    name: str = Field(..., min_length=1, max_length=100)
    is_anonymous: bool = True
    vote_type: str = "multi"
    max_votes_per_user: int = 3
    timer_duration: Optional[int] = None


class CardCreate(BaseModel):
    column_id: str
    content: str


class CardCreated(BaseModel):
    id: str
    retro_id: str
    column_id: str


class ActionItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    card_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None


# ============================================================
# RETROS
# ============================================================

@router.get("", response_model=List[RetroSummary])
async def list_retros(
    team_id: str = Query(...),
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """A team's retrospectives, newest first"""
    return await RetroService(db).list_team_retros(team_id, user.id, limit=limit)


@router.post("", response_model=RetroSummary, status_code=201)
async def create_retro(
    body: RetroCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    service = RetroService(db)
    config = RetroConfig(
        name=body.name,
        is_anonymous=body.is_anonymous,
        vote_type=body.vote_type,
        max_votes_per_user=body.max_votes_per_user,
        timer_duration=body.timer_duration,
    )
    retro = await service.create_retro(body.team_id, body.template_id, config, user.id)
    template = await service.get_template(retro.template_id)
    return summarize_retro(retro, template.name)


@router.get("/{retro_id}", response_model=RetroView)
async def get_retro(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Full board state for polling clients"""
    return await RetroService(db).get_retro_view(retro_id, user.id)


@router.post("/{retro_id}/join")
async def join_retro(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await RetroService(db).join_retro(retro_id, user.id)
    return {"status": "joined", "retro_id": retro_id}


# ============================================================
# PHASE TRANSITIONS
# ============================================================

def _ts(dt) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def _phase_response(retro) -> dict:
    return {
        "id": retro.id,
        "status": getattr(retro.status, "value", retro.status),
        "timer_ends_at": _ts(retro.timer_ends_at),
    }


@router.post("/{retro_id}/start")
async def start_retro(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await RetroService(db).start_retro(retro_id, user.id)
    return _phase_response(retro)


@router.post("/{retro_id}/voting")
async def move_to_voting(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await RetroService(db).move_to_voting(retro_id, user.id)
    return _phase_response(retro)


@router.post("/{retro_id}/discussion")
async def move_to_discussion(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await RetroService(db).move_to_discussion(retro_id, user.id)
    return _phase_response(retro)


@router.post("/{retro_id}/complete")
async def complete_retro(
    retro_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await RetroService(db).complete_retro(retro_id, user.id)
    return _phase_response(retro)


# ============================================================
# CARDS & ACTION ITEMS
# ============================================================

@router.post("/{retro_id}/cards", response_model=CardCreated, status_code=201)
async def create_card(
    retro_id: str,
    body: CardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    card_id = await RetroService(db).create_card(retro_id, body.column_id, user.id, body.content)
    return CardCreated(id=card_id, retro_id=retro_id, column_id=body.column_id)


@router.post("/{retro_id}/action-items", response_model=ActionItemOut, status_code=201)
async def create_action_item(
    retro_id: str,
    body: ActionItemCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    draft = ActionItemDraft(**body.model_dump())
    return await RetroService(db).create_action_item(retro_id, user.id, draft)
