# routers/action_items.py — Follow-up actions raised during discussion
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from retro_service import RetroService, ActionItemPatch
from retro_view import ActionItemOut

router = APIRouter(prefix="/api/v1/action-items", tags=["Action Items"])


class ActionItemUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    status: Optional[str] = None  # pending, in_progress, completed
    due_date: Optional[datetime] = None


@router.patch("/{item_id}", response_model=ActionItemOut)
async def update_action_item(
    item_id: str,
    body: ActionItemUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    patch = ActionItemPatch(**body.model_dump(exclude_unset=True))
    return await RetroService(db).update_action_item(item_id, user.id, patch)


@router.delete("/{item_id}")
async def delete_action_item(
    item_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await RetroService(db).delete_action_item(item_id, user.id)
    return {"status": "deleted", "item_id": item_id}
