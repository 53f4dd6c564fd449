# retro_store.py — Retro session store access and the per-retro unit of work
#
# Every mutation of a retrospective runs inside `locked_retro`:
#   1. an asyncio.Lock keyed by retro id serialises writers in this process
#   2. the retro row is re-read with SELECT ... FOR UPDATE (row lock on
#      PostgreSQL, a no-op on SQLite) so the phase/quota checks see committed state
#   3. the unit commits before the lock is released, or rolls back on any error
import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import ActionItem, Card, CardComment, Retrospective
from retro_errors import NotFound

_retro_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def retro_lock(retro_id: str) -> asyncio.Lock:
    """Return the process-wide lock guarding one retro's mutations"""
    lock = _retro_locks.get(retro_id)
    if lock is None:
        lock = asyncio.Lock()
        _retro_locks[retro_id] = lock
    return lock


async def load_retro(db: AsyncSession, retro_id: str, for_update: bool = False) -> Retrospective:
    stmt = select(Retrospective).where(Retrospective.id == retro_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    retro = result.scalar_one_or_none()
    if not retro:
        raise NotFound("Retrospective", retro_id)
    return retro


async def _load(db: AsyncSession, model, object_id: str, label: str):
    stmt = select(model).where(model.id == object_id).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    obj = result.scalar_one_or_none()
    if not obj:
        raise NotFound(label, object_id)
    return obj


async def load_card(db: AsyncSession, card_id: str) -> Card:
    return await _load(db, Card, card_id, "Card")


async def load_comment(db: AsyncSession, comment_id: str) -> CardComment:
    return await _load(db, CardComment, comment_id, "Comment")


async def load_action_item(db: AsyncSession, item_id: str) -> ActionItem:
    return await _load(db, ActionItem, item_id, "Action item")


async def retro_id_for_card(db: AsyncSession, card_id: str) -> str:
    result = await db.execute(select(Card.retro_id).where(Card.id == card_id))
    retro_id: Optional[str] = result.scalar_one_or_none()
    if retro_id is None:
        raise NotFound("Card", card_id)
    return retro_id


@asynccontextmanager
async def locked_retro(db: AsyncSession, retro_id: str) -> AsyncIterator[Retrospective]:
    """Run one atomic unit of work against a retro.

    Yields the freshly loaded, row-locked retro. Commits on success and
    rolls back on any exception, which is re-raised unchanged.
    """
    async with retro_lock(retro_id):
        try:
            retro = await load_retro(db, retro_id, for_update=True)
            yield retro
            await db.commit()
        except Exception:
            await db.rollback()
            raise
