# retro_service.py — Retrospective session engine facade
#
# One method per operation the routers expose. Every mutation runs as a single
# unit of work via retro_store.locked_retro; reads go through the read model.
# Methods raise retro_errors.RetroError subclasses for expected failures and
# let store errors propagate untouched.
import os
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import template_catalog
from membership import MembershipOracle
from models import (
    ActionItem, ActionItemStatus, Card, CardComment, Retrospective, RetroParticipant,
    RetroStatus, Template, TemplateColumn, VoteType,
)
from phase_machine import (
    ACTION_ITEM_PHASES, CARD_PHASES, COMMENT_PHASES,
    advance_phase, can_control, require_phase,
)
from retro_errors import Forbidden, NotFound, ValidationError
from retro_store import (
    load_action_item, load_card, load_comment, load_retro, locked_retro, retro_id_for_card,
)
from retro_view import (
    ActionItemOut, RetroSummary, RetroView, action_item_out, build_retro_view, summarize_retro,
)
import vote_ledger

logger = logging.getLogger("retroboard.service")

MAX_CONTENT_LENGTH = int(os.getenv("RETRO_MAX_CONTENT_LENGTH", "2000"))
MAX_VOTES_LIMIT = int(os.getenv("RETRO_MAX_VOTES_LIMIT", "20"))
MAX_TIMER_SECONDS = int(os.getenv("RETRO_MAX_TIMER_SECONDS", "86400"))
MAX_NAME_LENGTH = 100
MAX_TITLE_LENGTH = 200


# ============================================================
# INPUT MODELS
# ============================================================

class RetroConfig(BaseModel):
    """Settings chosen in the creation wizard; immutable afterwards"""
    name: str
    is_anonymous: bool = True
    vote_type: str = VoteType.MULTI.value
    max_votes_per_user: int = 3
    timer_duration: Optional[int] = None


class ActionItemDraft(BaseModel):
    title: str
    description: Optional[str] = None
    card_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None


class ActionItemPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[datetime] = None


class VoteResult(BaseModel):
    card_id: str
    vote_count: int
    remaining_votes: int


def clean_text(value: Optional[str], what: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{what} cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"{what} cannot be longer than {max_length} characters")
    return text


def validate_config(config: RetroConfig) -> RetroConfig:
    name = clean_text(config.name, "Retro name", MAX_NAME_LENGTH)
    try:
        vote_type = VoteType(config.vote_type)
    except ValueError:
        raise ValidationError(f"Unknown vote type '{config.vote_type}' (expected 'single' or 'multi')")
    # single-vote retros always allow exactly one vote
    if vote_type == VoteType.MULTI and not 1 <= config.max_votes_per_user <= MAX_VOTES_LIMIT:
        raise ValidationError(f"Votes per user must be between 1 and {MAX_VOTES_LIMIT}")
    if config.timer_duration is not None and not 1 <= config.timer_duration <= MAX_TIMER_SECONDS:
        raise ValidationError(f"Timer must be between 1 and {MAX_TIMER_SECONDS} seconds")
    return config.model_copy(update={"name": name, "vote_type": vote_type.value})


# ============================================================
# SERVICE
# ============================================================

class RetroService:
    """Retrospective engine bound to one database session"""

    def __init__(self, db: AsyncSession, oracle: Optional[MembershipOracle] = None):
        self.db = db
        self.oracle = oracle or MembershipOracle(db)

    async def _require_member(self, team_id: str, user_id: str) -> None:
        if not await self.oracle.is_team_member(team_id, user_id):
            raise Forbidden("You are not a member of this team")

    # --- Template catalog ---

    async def list_templates(self, organisation_id: Optional[str] = None) -> List[Template]:
        return await template_catalog.list_templates(self.db, organisation_id)

    async def get_template(self, template_id: str, organisation_id: Optional[str] = None) -> Template:
        template = await template_catalog.get_template(self.db, template_id)
        if organisation_id is not None and template.organisation_id not in (None, organisation_id):
            raise NotFound("Template", template_id)
        return template

    async def seed_built_ins(self) -> bool:
        return await template_catalog.seed_built_ins(self.db)

    async def create_template(self, organisation_id: str, caller_id: str, name: str,
                              description: Optional[str], columns) -> Template:
        return await template_catalog.create_template(
            self.db, self.oracle, organisation_id, caller_id, name, description, columns,
        )

    # --- Retrospectives ---

    async def create_retro(self, team_id: str, template_id: str, config: RetroConfig, caller_id: str) -> Retrospective:
        team_org = await self.oracle.team_organisation(team_id)
        if team_org is None:
            raise NotFound("Team", team_id)
        await self._require_member(team_id, caller_id)

        template = await template_catalog.get_template(self.db, template_id)
        if template.organisation_id is not None and template.organisation_id != team_org:
            raise ValidationError("This template belongs to another organisation")

        config = validate_config(config)
        retro = Retrospective(
            name=config.name,
            team_id=team_id,
            template_id=template.id,
            created_by_id=caller_id,
            status=RetroStatus.DRAFT,
            is_anonymous=config.is_anonymous,
            vote_type=VoteType(config.vote_type),
            max_votes_per_user=config.max_votes_per_user,
            timer_duration=config.timer_duration,
        )
        self.db.add(retro)
        await self.db.commit()
        logger.info("Retro '%s' (%s) created in team %s by %s", retro.name, retro.id, team_id, caller_id)
        return retro

    async def list_team_retros(self, team_id: str, caller_id: str, limit: int = 50) -> List[RetroSummary]:
        if await self.oracle.team_organisation(team_id) is None:
            raise NotFound("Team", team_id)
        await self._require_member(team_id, caller_id)

        stmt = (
            select(Retrospective, Template.name)
            .join(Template, Template.id == Retrospective.template_id)
            .where(Retrospective.team_id == team_id)
            .order_by(Retrospective.created_at.desc())
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).all()

        count_stmt = (
            select(Card.retro_id, func.count(Card.id))
            .where(Card.retro_id.in_([r.id for r, _ in rows]))
            .group_by(Card.retro_id)
        )
        counts = dict((await self.db.execute(count_stmt)).all()) if rows else {}
        return [summarize_retro(r, name, counts.get(r.id, 0)) for r, name in rows]

    async def join_retro(self, retro_id: str, caller_id: str) -> None:
        """Record the caller as a participant; repeat calls are no-ops"""
        try:
            async with locked_retro(self.db, retro_id) as retro:
                await self._require_member(retro.team_id, caller_id)
                existing = await self.db.execute(select(RetroParticipant.id).where(
                    RetroParticipant.retro_id == retro.id,
                    RetroParticipant.user_id == caller_id,
                ))
                if existing.scalar_one_or_none() is None:
                    self.db.add(RetroParticipant(retro_id=retro.id, user_id=caller_id))
                    logger.debug("User %s joined retro %s", caller_id, retro.id)
        except IntegrityError:
            # another worker inserted the same participant row first
            logger.debug("Concurrent join of retro %s by %s already recorded", retro_id, caller_id)

    async def get_retro_view(self, retro_id: str, caller_id: str, now: Optional[datetime] = None) -> RetroView:
        retro = await load_retro(self.db, retro_id)
        await self._require_member(retro.team_id, caller_id)
        return await build_retro_view(self.db, self.oracle, retro, caller_id, now=now)

    # --- Phase transitions ---

    async def transition(self, retro_id: str, caller_id: str, target: RetroStatus,
                         now: Optional[datetime] = None) -> Retrospective:
        async with locked_retro(self.db, retro_id) as retro:
            await advance_phase(self.db, self.oracle, retro, caller_id, target, now=now)
        return retro

    async def start_retro(self, retro_id: str, caller_id: str, now: Optional[datetime] = None) -> Retrospective:
        return await self.transition(retro_id, caller_id, RetroStatus.ACTIVE, now=now)

    async def move_to_voting(self, retro_id: str, caller_id: str, now: Optional[datetime] = None) -> Retrospective:
        return await self.transition(retro_id, caller_id, RetroStatus.VOTING, now=now)

    async def move_to_discussion(self, retro_id: str, caller_id: str, now: Optional[datetime] = None) -> Retrospective:
        return await self.transition(retro_id, caller_id, RetroStatus.DISCUSSING, now=now)

    async def complete_retro(self, retro_id: str, caller_id: str, now: Optional[datetime] = None) -> Retrospective:
        return await self.transition(retro_id, caller_id, RetroStatus.COMPLETED, now=now)

    # --- Cards ---

    async def create_card(self, retro_id: str, column_id: str, caller_id: str, content: str) -> str:
        async with locked_retro(self.db, retro_id) as retro:
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, CARD_PHASES, action="Adding cards")
            text = clean_text(content, "Card content")

            column = await self.db.execute(select(TemplateColumn.id).where(
                TemplateColumn.id == column_id,
                TemplateColumn.template_id == retro.template_id,
            ))
            if column.scalar_one_or_none() is None:
                raise ValidationError("Column does not belong to this retro's template")

            card = Card(retro_id=retro.id, column_id=column_id, author_id=caller_id, content=text)
            self.db.add(card)
            await self.db.flush()
        logger.debug("Card %s added to retro %s", card.id, retro_id)
        return card.id

    async def delete_card(self, card_id: str, caller_id: str) -> None:
        retro_id = await retro_id_for_card(self.db, card_id)
        async with locked_retro(self.db, retro_id) as retro:
            card = await load_card(self.db, card_id)
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, CARD_PHASES, action="Deleting cards")
            if card.author_id != caller_id:
                raise Forbidden("You can only delete your own cards")
            await self.db.delete(card)
        logger.debug("Card %s deleted from retro %s", card_id, retro_id)

    # --- Votes ---

    async def vote_for_card(self, card_id: str, caller_id: str) -> VoteResult:
        retro_id = await retro_id_for_card(self.db, card_id)
        async with locked_retro(self.db, retro_id) as retro:
            card = await load_card(self.db, card_id)
            await self._require_member(retro.team_id, caller_id)
            count = await vote_ledger.vote_for_card(self.db, retro, card, caller_id)
            used = await vote_ledger.user_vote_count(self.db, retro.id, caller_id)
        return VoteResult(
            card_id=card_id,
            vote_count=count,
            remaining_votes=max(0, vote_ledger.vote_quota(retro) - used),
        )

    async def remove_vote(self, card_id: str, caller_id: str) -> VoteResult:
        retro_id = await retro_id_for_card(self.db, card_id)
        async with locked_retro(self.db, retro_id) as retro:
            card = await load_card(self.db, card_id)
            await self._require_member(retro.team_id, caller_id)
            count = await vote_ledger.remove_vote(self.db, retro, card, caller_id)
            used = await vote_ledger.user_vote_count(self.db, retro.id, caller_id)
        return VoteResult(
            card_id=card_id,
            vote_count=count,
            remaining_votes=max(0, vote_ledger.vote_quota(retro) - used),
        )

    # --- Comments ---

    async def create_comment(self, card_id: str, caller_id: str, content: str) -> str:
        retro_id = await retro_id_for_card(self.db, card_id)
        async with locked_retro(self.db, retro_id) as retro:
            card = await load_card(self.db, card_id)
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, COMMENT_PHASES, action="Commenting")
            text = clean_text(content, "Comment")

            comment = CardComment(card_id=card.id, author_id=caller_id, content=text)
            self.db.add(comment)
            await self.db.flush()
        return comment.id

    async def delete_comment(self, comment_id: str, caller_id: str) -> None:
        comment = await load_comment(self.db, comment_id)
        retro_id = await retro_id_for_card(self.db, comment.card_id)
        async with locked_retro(self.db, retro_id) as retro:
            comment = await load_comment(self.db, comment_id)
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, COMMENT_PHASES, action="Deleting comments")
            if comment.author_id != caller_id:
                raise Forbidden("You can only delete your own comments")
            await self.db.delete(comment)

    # --- Action items ---

    async def _check_assignee(self, retro: Retrospective, assignee_id: Optional[str]) -> None:
        if assignee_id and not await self.oracle.is_team_member(retro.team_id, assignee_id):
            raise ValidationError("Action items can only be assigned to team members")

    async def create_action_item(self, retro_id: str, caller_id: str, draft: ActionItemDraft) -> ActionItemOut:
        async with locked_retro(self.db, retro_id) as retro:
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, ACTION_ITEM_PHASES, action="Adding action items")
            title = clean_text(draft.title, "Action item title", MAX_TITLE_LENGTH)

            if draft.card_id:
                card = await self.db.execute(select(Card.retro_id).where(Card.id == draft.card_id))
                if card.scalar_one_or_none() != retro.id:
                    raise ValidationError("Card does not belong to this retro")
            await self._check_assignee(retro, draft.assignee_id)

            item = ActionItem(
                retro_id=retro.id,
                card_id=draft.card_id,
                title=title,
                description=draft.description,
                assignee_id=draft.assignee_id,
                created_by_id=caller_id,
                status=ActionItemStatus.PENDING,
                due_date=draft.due_date,
            )
            self.db.add(item)
            await self.db.flush()
        logger.info("Action item %s added to retro %s", item.id, retro_id)
        return await self._action_item_out(item)

    async def update_action_item(self, item_id: str, caller_id: str, patch: ActionItemPatch) -> ActionItemOut:
        item = await load_action_item(self.db, item_id)
        async with locked_retro(self.db, item.retro_id) as retro:
            item = await load_action_item(self.db, item_id)
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, ACTION_ITEM_PHASES, action="Updating action items")

            if patch.title is not None:
                item.title = clean_text(patch.title, "Action item title", MAX_TITLE_LENGTH)
            if patch.description is not None:
                item.description = patch.description
            if patch.assignee_id is not None:
                await self._check_assignee(retro, patch.assignee_id)
                item.assignee_id = patch.assignee_id or None
            if patch.status is not None:
                try:
                    item.status = ActionItemStatus(patch.status)
                except ValueError:
                    raise ValidationError(f"Unknown action item status '{patch.status}'")
            if patch.due_date is not None:
                item.due_date = patch.due_date
        return await self._action_item_out(item)

    async def delete_action_item(self, item_id: str, caller_id: str) -> None:
        item = await load_action_item(self.db, item_id)
        async with locked_retro(self.db, item.retro_id) as retro:
            item = await load_action_item(self.db, item_id)
            await self._require_member(retro.team_id, caller_id)
            require_phase(retro, ACTION_ITEM_PHASES, action="Deleting action items")
            if item.created_by_id != caller_id and not await can_control(self.oracle, retro, caller_id):
                raise Forbidden("Only the item's author, the retro creator or a team lead can delete it")
            await self.db.delete(item)

    async def _action_item_out(self, item: ActionItem) -> ActionItemOut:
        assignee_name = None
        if item.assignee_id:
            assignee_name = (await self.oracle.get_user_display(item.assignee_id)).name
        return action_item_out(item, assignee_name)
