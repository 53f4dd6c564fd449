# template_catalog.py — Retrospective template catalog
# Built-in templates are seeded once with stable ids; organisation admins
# may add their own. Templates are treated as immutable once created.
import logging
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from membership import MembershipOracle
from models import Template, TemplateColumn
from retro_errors import Forbidden, NotFound, ValidationError

logger = logging.getLogger("retroboard.templates")

MAX_TEMPLATE_COLUMNS = 10

BUILT_IN_TEMPLATES = [
    {
        "id": "template-4ls",
        "name": "4Ls",
        "description": (
            "Four simple words to dig into both positive and negative aspects of your last Sprint. "
            "The Ls stand for: liked, learned, lacked, and longed for."
        ),
        "columns": [
            {"id": "4ls-liked", "name": "Liked", "emoji": "❤️", "prompt": "Things you really enjoyed"},
            {"id": "4ls-learned", "name": "Learned", "emoji": "📚", "prompt": "Things you have learned"},
            {"id": "4ls-lacked", "name": "Lacked", "emoji": "⚠️", "prompt": "Things the team missed"},
            {"id": "4ls-longed", "name": "Longed For", "emoji": "🌟", "prompt": "Something you wished for"},
        ],
    },
    {
        "id": "template-appreciation",
        "name": "Appreciation Game",
        "description": (
            "A short activity based on the good things your team members did! "
            "Reinforce your team's relationship hence its velocity."
        ),
        "columns": [
            {"id": "appreciation-spirit", "name": "Team Spirit", "emoji": "🤝", "prompt": "You really served the team when…"},
            {"id": "appreciation-ideas", "name": "Ideas", "emoji": "💡", "prompt": "What I would like to see more of"},
        ],
    },
    {
        "id": "template-cupid",
        "name": "Cupid's Retrospective",
        "description": (
            "Spread the love at your retrospective! "
            "Strengthen bonds and accentuate recognition within the team."
        ),
        "columns": [
            {"id": "cupid-self", "name": "Self-love", "emoji": "💜", "prompt": "Tell us how you made a difference"},
            {"id": "cupid-good", "name": "Good Stuff!", "emoji": "👍", "prompt": "What did you like about the last Sprint/project?"},
            {"id": "cupid-wishes", "name": "My Wishes", "emoji": "🌠", "prompt": "What are your wishes for the team?"},
            {"id": "cupid-team", "name": "A Team to Die For", "emoji": "💕", "prompt": "Share sweet words about your teammates"},
        ],
    },
]


class ColumnDraft(BaseModel):
    name: str = Field(..., max_length=50)
    emoji: Optional[str] = Field(default=None, max_length=16)
    prompt: Optional[str] = Field(default=None, max_length=200)
    order: Optional[int] = None


def _with_columns(stmt):
    return stmt.options(selectinload(Template.columns))


async def list_templates(db: AsyncSession, organisation_id: Optional[str] = None) -> List[Template]:
    """All templates with ordered columns.

    When an organisation is given, only built-ins and that organisation's
    own templates are returned.
    """
    stmt = _with_columns(select(Template))
    if organisation_id is not None:
        stmt = stmt.where(or_(
            Template.organisation_id.is_(None),
            Template.organisation_id == organisation_id,
        ))
    stmt = stmt.order_by(Template.is_built_in.desc(), Template.name.asc())
    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


async def get_template(db: AsyncSession, template_id: str) -> Template:
    stmt = _with_columns(select(Template).where(Template.id == template_id))
    result = await db.execute(stmt.execution_options(populate_existing=True))
    template = result.scalar_one_or_none()
    if not template:
        raise NotFound("Template", template_id)
    return template


async def seed_built_ins(db: AsyncSession) -> bool:
    """Insert the built-in templates unless any template already exists.

    Returns True when this call inserted them. Concurrent first-time callers
    collide on the stable primary keys; the loser rolls back and reports False.
    """
    existing = await db.execute(select(Template.id).limit(1))
    if existing.scalar_one_or_none() is not None:
        logger.debug("Templates already seeded, skipping")
        return False

    for entry in BUILT_IN_TEMPLATES:
        db.add(Template(
            id=entry["id"],
            name=entry["name"],
            description=entry["description"],
            is_built_in=True,
            columns=[
                TemplateColumn(id=col["id"], name=col["name"], emoji=col["emoji"], prompt=col["prompt"], order=i)
                for i, col in enumerate(entry["columns"])
            ],
        ))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning("Built-in templates were seeded concurrently; keeping the existing set")
        return False

    logger.info("Seeded %d built-in templates", len(BUILT_IN_TEMPLATES))
    return True


def _normalise_columns(columns: List[ColumnDraft]) -> List[TemplateColumn]:
    if not columns:
        raise ValidationError("A template needs at least one column")
    if len(columns) > MAX_TEMPLATE_COLUMNS:
        raise ValidationError(f"A template can have at most {MAX_TEMPLATE_COLUMNS} columns")

    out = []
    seen_orders = set()
    for position, col in enumerate(columns):
        name = (col.name or "").strip()
        if not name:
            raise ValidationError("Column names cannot be empty")
        order = col.order if col.order is not None else position
        if order in seen_orders:
            raise ValidationError(f"Duplicate column order {order}")
        seen_orders.add(order)
        out.append(TemplateColumn(name=name, emoji=col.emoji, prompt=col.prompt, order=order))
    return out


async def create_template(
    db: AsyncSession,
    oracle: MembershipOracle,
    organisation_id: str,
    caller_id: str,
    name: str,
    description: Optional[str],
    columns: List[ColumnDraft],
) -> Template:
    """Create an organisation-owned template (organisation admins only)"""
    if not await oracle.is_org_admin(organisation_id, caller_id):
        raise Forbidden("Only organisation admins can create templates")

    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("Template name cannot be empty")

    template = Template(
        name=clean_name,
        description=description,
        is_built_in=False,
        organisation_id=organisation_id,
        created_by_id=caller_id,
        columns=_normalise_columns(columns),
    )
    db.add(template)
    await db.commit()
    logger.info("Template '%s' created for organisation %s", clean_name, organisation_id)
    return await get_template(db, template.id)
