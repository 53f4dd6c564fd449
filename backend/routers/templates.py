# routers/templates.py — Retrospective template catalog
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_min_role, CurrentUser
from database import get_db_session
from models import Template, UserRole
from retro_service import RetroService
from template_catalog import ColumnDraft

router = APIRouter(prefix="/api/v1/templates", tags=["Templates"])


# ============================================================
# SCHEMAS
# ============================================================

class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    columns: List[ColumnDraft] = Field(..., min_length=1)


class TemplateColumnOut(BaseModel):
    id: str
    name: str
    emoji: Optional[str] = None
    prompt: Optional[str] = None
    order: int


class TemplateOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_built_in: bool
    organisation_id: Optional[str] = None
    columns: List[TemplateColumnOut] = []


def _template_out(t: Template) -> TemplateOut:
    return TemplateOut(
        id=t.id,
        name=t.name,
        description=t.description,
        is_built_in=t.is_built_in,
        organisation_id=t.organisation_id,
        columns=[
            TemplateColumnOut(id=c.id, name=c.name, emoji=c.emoji, prompt=c.prompt, order=c.order)
            for c in t.columns
        ],
    )


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("", response_model=List[TemplateOut])
async def list_templates(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Built-in templates plus the caller's organisation templates"""
    templates = await RetroService(db).list_templates(user.organisation_id)
    return [_template_out(t) for t in templates]


@router.post("/seed")
async def seed_templates(
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    seeded = await RetroService(db).seed_built_ins()
    return {"seeded": seeded}


@router.get("/{template_id}", response_model=TemplateOut)
async def get_template(
    template_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    template = await RetroService(db).get_template(template_id, user.organisation_id)
    return _template_out(template)


@router.post("", response_model=TemplateOut, status_code=201)
async def create_template(
    body: TemplateCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    template = await RetroService(db).create_template(
        user.organisation_id, user.id, body.name, body.description, body.columns,
    )
    return _template_out(template)
